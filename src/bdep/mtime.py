# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Timestamp-based freshness check for a package's build output.

A package is *stale* when any file under its sources is newer than the
oldest file in its output directory::

    package/
    ├── src/index.ts      mtime 120  ─┐
    ├── package.json      mtime 100   ├─ newest source = 120
    ├── node_modules/     (pruned)   ─┘
    └── dist/
        ├── index.js      mtime 110  ─┐
        └── index.d.ts    mtime 130  ─┴─ oldest output = 110

    120 > 110 → stale

Decision order:

1. Output directory missing → stale.
2. No source files at all → fresh. There is nothing to build from.
3. Output directory empty → stale. An empty output is never trusted.
4. Otherwise stale iff ``newest_source > oldest_output``.

Symlinks are neither followed nor counted. A file that disappears
between listing and ``stat`` is ignored. Any other filesystem error
(most often a permission problem) is raised as ``BD-PROBE-FAILED``.
"""

from __future__ import annotations

import os
import stat
from collections.abc import Collection, Iterator
from pathlib import Path

from bdep.errors import BdepError, E
from bdep.logging import get_logger

logger = get_logger(__name__)

# Directory names that never hold sources.
EXCLUDE_DIRS: frozenset[str] = frozenset({
    'node_modules',
    'dist',
    '.next',
    'build',
    '.git',
    'coverage',
})


def probe_failed(path: Path | str, exc: OSError) -> BdepError:
    """Wrap an unexpected filesystem error as ``BD-PROBE-FAILED``."""
    return BdepError(
        code=E.PROBE_FAILED,
        message=f'Cannot inspect {path}: {exc}',
        hint=f'Check permissions on {path}.',
    )


def iter_files(root: Path, exclude: Collection[str] = frozenset()) -> Iterator[Path]:
    """Yield regular files under ``root``.

    Subdirectories whose name is in ``exclude`` are pruned. A missing
    ``root`` yields nothing.

    Raises:
        BdepError: ``BD-PROBE-FAILED`` if a directory cannot be listed.
    """
    try:
        with os.scandir(root) as it:
            entries = list(it)
    except (FileNotFoundError, NotADirectoryError):
        return
    except OSError as exc:
        raise probe_failed(root, exc) from exc

    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            if entry.name in exclude:
                continue
            yield from iter_files(Path(entry.path), exclude)
        elif entry.is_file(follow_symlinks=False):
            yield Path(entry.path)


def is_dir(path: Path) -> bool:
    """Whether ``path`` is a directory. Missing paths are not.

    Raises:
        BdepError: ``BD-PROBE-FAILED`` if ``path`` cannot be inspected.
    """
    try:
        return stat.S_ISDIR(os.stat(path).st_mode)
    except (FileNotFoundError, NotADirectoryError):
        return False
    except OSError as exc:
        raise probe_failed(path, exc) from exc


def file_mtime(path: Path) -> float | None:
    """Return the modification time of ``path``, or ``None`` if it vanished."""
    try:
        return os.stat(path, follow_symlinks=False).st_mtime
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise probe_failed(path, exc) from exc


def _mtimes(root: Path, exclude: Collection[str]) -> Iterator[float]:
    for path in iter_files(root, exclude):
        mtime = file_mtime(path)
        if mtime is not None:
            yield mtime


def newest_mtime(root: Path, exclude: Collection[str] = frozenset()) -> float | None:
    """Latest modification time under ``root``, or ``None`` if there are no files."""
    return max(_mtimes(root, exclude), default=None)


def oldest_mtime(root: Path, exclude: Collection[str] = frozenset()) -> float | None:
    """Earliest modification time under ``root``, or ``None`` if there are no files."""
    return min(_mtimes(root, exclude), default=None)


def needs_build(
    package_dir: Path,
    *,
    output_dir: str = 'dist',
    exclude_dirs: Collection[str] = EXCLUDE_DIRS,
) -> bool:
    """Decide whether ``package_dir`` must be rebuilt.

    Args:
        package_dir: The package directory.
        output_dir: Build output location, relative to ``package_dir``.
        exclude_dirs: Directory names pruned when looking for sources.
            The output directory's own name is always pruned too.

    Returns:
        ``True`` if the package is stale, ``False`` if its output is
        current.

    Raises:
        BdepError: ``BD-PROBE-FAILED`` on an unreadable directory or file.
    """
    output = package_dir / output_dir
    if not is_dir(output):
        logger.debug('stale', package=str(package_dir), reason='output_missing')
        return True

    source_exclude = frozenset(exclude_dirs) | {output.name}
    newest_source = newest_mtime(package_dir, source_exclude)
    if newest_source is None:
        logger.debug('fresh', package=str(package_dir), reason='no_sources')
        return False

    oldest_output = oldest_mtime(output)
    if oldest_output is None:
        logger.debug('stale', package=str(package_dir), reason='output_empty')
        return True

    stale = newest_source > oldest_output
    logger.debug(
        'stale' if stale else 'fresh',
        package=str(package_dir),
        reason='mtime',
        newest_source=newest_source,
        oldest_output=oldest_output,
    )
    return stale


__all__ = [
    'EXCLUDE_DIRS',
    'file_mtime',
    'is_dir',
    'iter_files',
    'needs_build',
    'newest_mtime',
    'oldest_mtime',
    'probe_failed',
]
