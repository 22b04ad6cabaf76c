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

"""Configuration loading from ``bdep.toml``.

The file is optional and lives at the workspace root. All keys are
top-level::

    concurrency = 4
    force = false
    output_dir = "dist"
    build_script = "build"
    exclude_dirs = ["node_modules", "dist", ".git"]
    package_manager = "pnpm"
    timeout = 600

Command-line flags take precedence over file values. Unknown keys are
rejected with a "did you mean" suggestion, so typos never silently fall
back to defaults.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from bdep.errors import BdepError, E
from bdep.logging import get_logger
from bdep.mtime import EXCLUDE_DIRS

logger = get_logger(__name__)

CONFIG_FILENAME = 'bdep.toml'

VALID_KEYS: frozenset[str] = frozenset({
    'concurrency',
    'force',
    'output_dir',
    'build_script',
    'exclude_dirs',
    'package_manager',
    'timeout',
})

VALID_PACKAGE_MANAGERS: frozenset[str] = frozenset({'npm', 'pnpm', 'yarn', 'bun'})

_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    'concurrency': int,
    'force': bool,
    'output_dir': str,
    'build_script': str,
    'exclude_dirs': list,
    'package_manager': str,
    'timeout': (int, float),
}


@dataclass(frozen=True)
class BdepConfig:
    """Validated contents of ``bdep.toml``.

    Attributes:
        concurrency: Maximum parallel builds, or ``None`` for the CPU count.
        force: Rebuild even when outputs look current.
        output_dir: Build output directory, relative to each package.
        build_script: ``package.json`` script that builds a package.
        exclude_dirs: Directory names ignored when looking for sources.
        package_manager: Forced package manager, or ``None`` to detect.
        timeout: Seconds before a single build is killed, or ``None``.
        config_path: The file this was loaded from, if any.
    """

    concurrency: int | None = None
    force: bool = False
    output_dir: str = 'dist'
    build_script: str = 'build'
    exclude_dirs: tuple[str, ...] = tuple(sorted(EXCLUDE_DIRS))
    package_manager: str | None = None
    timeout: float | None = None
    config_path: Path | None = None


def _invalid(key: str, message: str, hint: str = '') -> BdepError:
    return BdepError(
        code=E.CONFIG_INVALID_VALUE,
        message=f"'{key}' {message}",
        hint=hint or f'Check the value of {key} in {CONFIG_FILENAME}.',
    )


def _validate_value_type(key: str, value: Any) -> None:  # noqa: ANN401 - dynamic config values
    """Raise if a config value has the wrong type."""
    expected = _TYPE_MAP[key]
    # bool is an int subclass; only 'force' accepts it.
    if isinstance(value, bool) and expected is not bool:
        raise _invalid(key, 'must not be a boolean')
    if not isinstance(value, expected):
        type_name = expected.__name__ if isinstance(expected, type) else 'number'
        raise _invalid(key, f'must be {type_name}, got {type(value).__name__}')


def _validate(raw: dict[str, Any]) -> None:  # noqa: ANN401 - dynamic config values
    for key in raw:
        if key not in VALID_KEYS:
            suggestion = difflib.get_close_matches(key, VALID_KEYS, n=1, cutoff=0.6)
            raise BdepError(
                code=E.CONFIG_INVALID_KEY,
                message=f"Unknown key '{key}' in {CONFIG_FILENAME}",
                hint=f"Did you mean '{suggestion[0]}'?" if suggestion else f'Valid keys: {", ".join(sorted(VALID_KEYS))}.',
            )

    for key, value in raw.items():
        _validate_value_type(key, value)

    if 'concurrency' in raw and raw['concurrency'] < 1:
        raise _invalid('concurrency', f'must be at least 1, got {raw["concurrency"]}')
    if 'timeout' in raw and raw['timeout'] <= 0:
        raise _invalid('timeout', f'must be positive, got {raw["timeout"]}')
    if 'package_manager' in raw and raw['package_manager'] not in VALID_PACKAGE_MANAGERS:
        raise _invalid(
            'package_manager',
            f"must be one of {sorted(VALID_PACKAGE_MANAGERS)}, got '{raw['package_manager']}'",
        )
    for key in ('output_dir', 'build_script'):
        if key in raw and not raw[key].strip():
            raise _invalid(key, 'must not be empty')
    if 'exclude_dirs' in raw and not all(isinstance(item, str) for item in raw['exclude_dirs']):
        raise _invalid('exclude_dirs', 'must be a list of strings')


def load_config(workspace_root: Path) -> BdepConfig:
    """Load and validate ``bdep.toml`` from ``workspace_root``.

    Returns defaults when the file does not exist.

    Raises:
        BdepError: ``BD-CONFIG-PARSE-ERROR`` for unreadable or invalid
            TOML, ``BD-CONFIG-INVALID-KEY`` or
            ``BD-CONFIG-INVALID-VALUE`` for bad contents.
    """
    config_path = workspace_root / CONFIG_FILENAME
    if not config_path.is_file():
        logger.debug('no_bdep_config', path=str(config_path))
        return BdepConfig()

    try:
        text = config_path.read_text(encoding='utf-8')
    except OSError as exc:
        raise BdepError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to read {config_path}: {exc}',
        ) from exc

    try:
        doc = tomlkit.parse(text)
    except tomlkit.exceptions.TOMLKitError as exc:
        raise BdepError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to parse {config_path}: {exc}',
            hint='Check the TOML syntax near the reported line.',
        ) from exc

    raw: dict[str, Any] = doc.unwrap()  # noqa: ANN401 - dynamic config values
    _validate(raw)

    kwargs: dict[str, Any] = dict(raw)  # noqa: ANN401 - dynamic config values
    if 'exclude_dirs' in kwargs:
        kwargs['exclude_dirs'] = tuple(kwargs['exclude_dirs'])
    if 'timeout' in kwargs:
        kwargs['timeout'] = float(kwargs['timeout'])

    logger.debug('loaded_bdep_config', path=str(config_path), keys=sorted(raw))
    return BdepConfig(**kwargs, config_path=config_path)


__all__ = [
    'CONFIG_FILENAME',
    'VALID_KEYS',
    'VALID_PACKAGE_MANAGERS',
    'BdepConfig',
    'load_config',
]
