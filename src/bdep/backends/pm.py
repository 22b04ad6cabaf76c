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

"""Package manager detection and invocation.

:func:`detect_package_manager` picks ``npm``, ``pnpm``, ``yarn`` or
``bun`` for a workspace. :class:`PackageManagerBackend` runs
``<pm> run <script>`` and ``<pm> install`` through
:func:`~bdep.backends._run.run_command`.

Detection order::

    workspace root (pnpm-workspace.yaml / "workspaces" / .git)
      │
      ├── any manifest uses "workspace:" deps?
      │     yes → bun.lockb, bun.lock, pnpm-lock.yaml → else pnpm
      │
      ├── lockfile: bun.lockb, bun.lock, pnpm-lock.yaml,
      │             yarn.lock, package-lock.json
      ├── root package.json "packageManager": "pnpm@9.1.0" → pnpm
      └── npm

npm and yarn classic do not understand the ``workspace:`` protocol, so
a workspace that uses it can only be driven by bun or pnpm.

All methods are async. The blocking subprocess call is dispatched to
``asyncio.to_thread()`` so that several builds can run at once.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path

from bdep.backends._run import CommandResult, TimeoutExpired, run_command
from bdep.errors import BdepError, E
from bdep.logging import get_logger
from bdep.mtime import probe_failed
from bdep.workspace import Package, extract_workspace_deps, find_workspace_root

log = get_logger('bdep.backends.pm')

SUPPORTED_PACKAGE_MANAGERS = ('npm', 'pnpm', 'yarn', 'bun')

_LOCKFILES: tuple[tuple[str, str], ...] = (
    ('bun.lockb', 'bun'),
    ('bun.lock', 'bun'),
    ('pnpm-lock.yaml', 'pnpm'),
    ('yarn.lock', 'yarn'),
    ('package-lock.json', 'npm'),
)
_WORKSPACE_PROTOCOL_MANAGERS = frozenset({'bun', 'pnpm'})
_MANIFEST_SCAN_SKIP = frozenset({'node_modules', '.git', '.next', 'dist', 'build'})

# How much of a failed command's stderr ends up in the error hint.
_STDERR_EXCERPT_CHARS = 2000


def _iter_manifests(root: Path) -> Iterator[Path]:
    """Yield every package.json under ``root``, skipping vendored and output dirs."""
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except (FileNotFoundError, NotADirectoryError):
        return
    except OSError as exc:
        raise probe_failed(root, exc) from exc
    for entry in entries:
        if entry.is_file(follow_symlinks=False) and entry.name == 'package.json':
            yield Path(entry.path)
        elif entry.is_dir(follow_symlinks=False) and entry.name not in _MANIFEST_SCAN_SKIP:
            yield from _iter_manifests(Path(entry.path))


def has_workspace_protocol_deps(root: Path) -> bool:
    """Whether any manifest under ``root`` declares a ``workspace:`` dependency.

    Unparseable manifests are ignored here; discovery reports them.

    Raises:
        BdepError: ``BD-PROBE-FAILED`` if a directory cannot be listed.
    """
    for manifest in _iter_manifests(root):
        try:
            data = json.loads(manifest.read_text(encoding='utf-8'))
        except (OSError, ValueError) as exc:
            log.debug('manifest_skipped', path=str(manifest), error=str(exc))
            continue
        if isinstance(data, dict) and extract_workspace_deps(data):
            return True
    return False


def _package_manager_field(root: Path) -> str | None:
    manifest = root / 'package.json'
    try:
        data = json.loads(manifest.read_text(encoding='utf-8'))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    field = data.get('packageManager')
    if not isinstance(field, str):
        return None
    name = field.split('@', 1)[0]
    return name if name in SUPPORTED_PACKAGE_MANAGERS else None


async def detect_package_manager(package_dir: Path) -> str:
    """Detect the package manager driving the workspace of ``package_dir``.

    Returns:
        One of :data:`SUPPORTED_PACKAGE_MANAGERS`.
    """
    root = await find_workspace_root(package_dir, git_fallback=True)

    if await asyncio.to_thread(has_workspace_protocol_deps, root):
        for filename, manager in _LOCKFILES:
            if manager in _WORKSPACE_PROTOCOL_MANAGERS and (root / filename).exists():
                log.debug('package_manager_detected', manager=manager, reason=filename, root=str(root))
                return manager
        log.debug('package_manager_detected', manager='pnpm', reason='workspace_protocol', root=str(root))
        return 'pnpm'

    for filename, manager in _LOCKFILES:
        if (root / filename).exists():
            log.debug('package_manager_detected', manager=manager, reason=filename, root=str(root))
            return manager

    manager = _package_manager_field(root)
    if manager is not None:
        log.debug('package_manager_detected', manager=manager, reason='packageManager', root=str(root))
        return manager

    log.debug('package_manager_detected', manager='npm', reason='default', root=str(root))
    return 'npm'


class PackageManagerBackend:
    """Runs package manager commands for one workspace.

    Args:
        name: Executable name, one of :data:`SUPPORTED_PACKAGE_MANAGERS`.
        timeout: Seconds before a single command is killed, or ``None``.
    """

    def __init__(self, name: str, *, timeout: float | None = None) -> None:
        """Initialize with the package manager executable name."""
        if name not in SUPPORTED_PACKAGE_MANAGERS:
            raise BdepError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"Unsupported package manager '{name}'",
                hint=f'Use one of: {", ".join(SUPPORTED_PACKAGE_MANAGERS)}.',
            )
        self.name = name
        self.timeout = timeout

    async def build(self, package_dir: Path, *, script: str = 'build') -> CommandResult:
        """Run ``<pm> run <script>`` in ``package_dir``.

        Raises:
            TimeoutExpired: If the configured timeout elapses.
        """
        cmd = [self.name, 'run', script]
        log.info('build', package=package_dir.name, cmd=' '.join(cmd))
        return await asyncio.to_thread(run_command, cmd, cwd=package_dir, timeout=self.timeout)

    async def install(self, cwd: Path) -> CommandResult:
        """Run ``<pm> install`` in ``cwd`` with output shown to the user."""
        cmd = [self.name, 'install']
        log.info('install', cwd=str(cwd), cmd=' '.join(cmd))
        return await asyncio.to_thread(run_command, cmd, cwd=cwd, timeout=self.timeout, capture=False)


def _stderr_excerpt(result: CommandResult) -> str:
    text = (result.stderr or result.stdout).strip()
    if len(text) > _STDERR_EXCERPT_CHARS:
        text = '…' + text[-_STDERR_EXCERPT_CHARS:]
    return text


def make_build_fn(
    backend: PackageManagerBackend,
    *,
    script: str = 'build',
) -> Callable[[Package], Awaitable[None]]:
    """Adapt ``backend`` to the executor's build function contract.

    The returned coroutine function completes normally on exit status 0
    and raises :class:`BdepError` (``BD-BUILD-FAILED``) otherwise.
    """

    async def _build(pkg: Package) -> None:
        try:
            result = await backend.build(pkg.path, script=script)
        except TimeoutExpired as exc:
            raise BdepError(
                code=E.BUILD_FAILED,
                message=f'Build of {pkg.name} timed out after {exc.timeout}s',
                hint='Raise "timeout" in bdep.toml or remove it.',
            ) from exc
        except FileNotFoundError as exc:
            raise BdepError(
                code=E.BUILD_FAILED,
                message=f"Could not run '{backend.name}' for {pkg.name}: {exc}",
                hint=f'Install {backend.name} or set package_manager in bdep.toml.',
            ) from exc
        if not result.ok:
            raise BdepError(
                code=E.BUILD_FAILED,
                message=f"'{result.command_str}' failed in {pkg.name} with exit code {result.return_code}",
                hint=_stderr_excerpt(result),
            )

    return _build


async def run_install(backend: PackageManagerBackend, cwd: Path) -> None:
    """Run the install step, raising ``BD-INSTALL-FAILED`` if it fails."""
    try:
        result = await backend.install(cwd)
    except (TimeoutExpired, FileNotFoundError) as exc:
        raise BdepError(
            code=E.INSTALL_FAILED,
            message=f"'{backend.name} install' could not complete: {exc}",
        ) from exc
    if not result.ok:
        raise BdepError(
            code=E.INSTALL_FAILED,
            message=f"'{result.command_str}' exited with code {result.return_code}",
            hint=f"Run '{result.command_str}' in {cwd} to see the full output.",
        )


__all__ = [
    'SUPPORTED_PACKAGE_MANAGERS',
    'PackageManagerBackend',
    'detect_package_manager',
    'has_workspace_protocol_deps',
    'make_build_fn',
    'run_install',
]
