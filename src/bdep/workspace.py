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

"""Workspace member discovery for JavaScript monorepos.

A package's internal dependencies are the entries of ``dependencies``
and ``devDependencies`` whose version spec starts with ``workspace:``.
Starting from one package, :func:`collect_dependencies` finds the
workspace root, discovers every member, and returns the transitive
closure of the starting package's internal dependencies.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Workspace root      │ The nearest parent directory whose            │
    │                     │ package.json lists "workspaces" (or that has  │
    │                     │ a pnpm-workspace.yaml).                       │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Member patterns     │ Globs like "packages/*". A leading "!" in     │
    │                     │ pnpm-workspace.yaml excludes matches.         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Nested workspaces   │ A member can declare its own "workspaces".    │
    │                     │ Discovery recurses into them, visiting each   │
    │                     │ real directory once.                          │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Closure             │ Dependencies of dependencies, each collected  │
    │                     │ once. The starting package is not included.   │
    └─────────────────────┴────────────────────────────────────────────────┘

Layout example::

    repo/
    ├── package.json          {"workspaces": ["packages/*", "apps/*"]}
    ├── packages/
    │   ├── core/             {"name": "core"}
    │   └── ui/               {"name": "ui", "dependencies": {"core": "workspace:*"}}
    └── apps/
        └── web/              {"dependencies": {"ui": "workspace:^"}}

    collect_dependencies('repo/apps/web') -> {'ui': ..., 'core': ...}
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bdep.backends._io import read_file
from bdep.errors import BdepError, E
from bdep.logging import get_logger

logger = get_logger(__name__)

WORKSPACE_PROTOCOL = 'workspace:'

_DEP_SECTIONS = ('dependencies', 'devDependencies')
_PNPM_WORKSPACE_FILE = 'pnpm-workspace.yaml'
_IGNORED_MEMBER_DIRS = frozenset({'node_modules'})


@dataclass(frozen=True)
class Package:
    """A single package discovered in the workspace.

    Attributes:
        name: The ``name`` field, or the directory name if absent.
        version: The ``version`` field, or ``"0.0.0"``.
        path: Package directory.
        manifest_path: Path to the package's ``package.json``.
        internal_deps: Names declared with the ``workspace:`` protocol,
            sorted and unique. Names outside the current package set
            are ignored by the graph.
        scripts: The manifest's ``scripts`` table.
    """

    name: str
    version: str
    path: Path
    manifest_path: Path
    internal_deps: list[str] = field(default_factory=list)
    scripts: dict[str, str] = field(default_factory=dict)

    def has_script(self, script: str) -> bool:
        """Whether the manifest defines a non-empty ``script``."""
        return bool(self.scripts.get(script))


def _parse_json(text: str, path: Path) -> dict[str, Any]:  # noqa: ANN401 - JSON dict values are inherently untyped
    """Parse JSON text, raising a BdepError on failure."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BdepError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'Failed to parse {path}: {exc}',
            hint=f'Check that {path} contains valid JSON.',
        ) from exc
    if not isinstance(data, dict):
        raise BdepError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'{path} is not a JSON object',
            hint=f'Expected a JSON object at the top level of {path}.',
        )
    return data


def _parse_yaml_simple(text: str) -> dict[str, list[str]]:
    """Parse the flat ``key: [list of strings]`` shape of pnpm-workspace.yaml.

    Only block lists are understood::

        packages:
          - 'packages/*'
          - '!packages/scratch'
    """
    result: dict[str, list[str]] = {}
    current_key: str | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue

        if stripped.endswith(':') and not stripped.startswith('-'):
            current_key = stripped[:-1].strip()
            result[current_key] = []
            continue

        if stripped.startswith('-') and current_key is not None:
            value = stripped[1:].strip()
            if (value.startswith("'") and value.endswith("'")) or (value.startswith('"') and value.endswith('"')):
                value = value[1:-1]
            result[current_key].append(value)

    return result


async def parse_package_json(package_dir: Path) -> dict[str, Any]:  # noqa: ANN401 - JSON dict values are inherently untyped
    """Read and parse ``package_dir/package.json``.

    Raises:
        FileNotFoundError: If the directory has no ``package.json``.
        BdepError: If the file is unreadable or not a JSON object.
    """
    path = package_dir / 'package.json'
    return _parse_json(await read_file(path), path)


def workspace_patterns(data: dict[str, Any]) -> list[str]:  # noqa: ANN401 - JSON dict values are inherently untyped
    """Return the member globs declared by a manifest's ``workspaces`` field.

    Both the array form and the ``{"packages": [...]}`` object form
    (yarn classic) are accepted.
    """
    workspaces = data.get('workspaces')
    if isinstance(workspaces, list):
        return [p for p in workspaces if isinstance(p, str)]
    if isinstance(workspaces, dict):
        packages = workspaces.get('packages')
        if isinstance(packages, list):
            return [p for p in packages if isinstance(p, str)]
    return []


def extract_workspace_deps(data: dict[str, Any]) -> list[str]:  # noqa: ANN401 - JSON dict values are inherently untyped
    """Return the sorted names declared with the ``workspace:`` protocol."""
    names: set[str] = set()
    for section_name in _DEP_SECTIONS:
        section = data.get(section_name)
        if not isinstance(section, dict):
            continue
        for dep_name, spec in section.items():
            if isinstance(spec, str) and spec.startswith(WORKSPACE_PROTOCOL):
                names.add(dep_name)
    return sorted(names)


def _package_from_manifest(package_dir: Path, data: dict[str, Any]) -> Package:  # noqa: ANN401 - JSON dict values are inherently untyped
    name = data.get('name')
    if not isinstance(name, str) or not name:
        name = package_dir.name
    scripts = data.get('scripts')
    if not isinstance(scripts, dict):
        scripts = {}
    return Package(
        name=name,
        version=str(data.get('version', '0.0.0')),
        path=package_dir,
        manifest_path=package_dir / 'package.json',
        internal_deps=extract_workspace_deps(data),
        scripts={k: v for k, v in scripts.items() if isinstance(v, str)},
    )


async def _declares_workspace(directory: Path) -> bool:
    if (directory / _PNPM_WORKSPACE_FILE).is_file():
        return True
    try:
        data = await parse_package_json(directory)
    except FileNotFoundError:
        return False
    except BdepError as exc:
        # A broken manifest above the package is not ours to fix.
        logger.warning('workspace_root_candidate_unreadable', path=str(directory), error=str(exc))
        return False
    return 'workspaces' in data


async def find_workspace_root(start: Path, *, git_fallback: bool = False) -> Path:
    """Walk upward from ``start`` to the directory that declares the workspace.

    A directory declares the workspace when it holds a
    ``pnpm-workspace.yaml`` or a ``package.json`` with a ``workspaces``
    field.

    Args:
        start: Directory to start from (inclusive).
        git_fallback: When nothing declares a workspace, return the
            nearest directory containing ``.git`` instead of ``start``.

    Returns:
        The workspace root, or ``start`` when none is found.
    """
    start = start.resolve()
    for directory in (start, *start.parents):
        if await _declares_workspace(directory):
            logger.debug('workspace_root_found', root=str(directory))
            return directory

    if git_fallback:
        for directory in (start, *start.parents):
            if (directory / '.git').exists():
                logger.debug('workspace_root_from_git', root=str(directory))
                return directory

    return start


def _glob_safe(base: Path, pattern: str) -> list[Path]:
    """Expand a glob relative to ``base``, accepting ``.`` and ``./x``."""
    if pattern.startswith('./'):
        pattern = pattern[2:]
    if pattern in {'', '.'}:
        return [base]
    return sorted(base.glob(pattern))


def _expand_member_globs(base: Path, patterns: Iterable[str]) -> list[Path]:
    """Expand member patterns to candidate package directories.

    ``!pattern`` entries remove matches. Anything under ``node_modules``
    and anything that is not a directory is dropped.
    """
    include: list[str] = []
    exclude: list[str] = []
    for pattern in patterns:
        if pattern.startswith('!'):
            exclude.append(pattern[1:])
        else:
            include.append(pattern)

    found: dict[Path, Path] = {}
    for pattern in include:
        for candidate in _glob_safe(base, pattern):
            relative = candidate.relative_to(base).parts
            if _IGNORED_MEMBER_DIRS.intersection(relative):
                continue
            if candidate.is_dir():
                found.setdefault(candidate.resolve(), candidate)

    excluded = {c.resolve() for pattern in exclude for c in _glob_safe(base, pattern)}
    return [found[real] for real in sorted(found) if real not in excluded]


async def _member_patterns(directory: Path, data: dict[str, Any]) -> list[str]:  # noqa: ANN401 - JSON dict values are inherently untyped
    patterns = workspace_patterns(data)
    pnpm_file = directory / _PNPM_WORKSPACE_FILE
    if pnpm_file.is_file():
        patterns.extend(_parse_yaml_simple(await read_file(pnpm_file)).get('packages', []))
    return patterns


async def discover_workspace_packages(root: Path) -> dict[str, Package]:
    """Discover every package reachable from ``root`` through member patterns.

    The root itself is included when it has a ``package.json``.
    Directories without a manifest are skipped. Each real directory is
    visited once, so symlinked members and overlapping patterns do not
    produce duplicates.

    Raises:
        BdepError: ``BD-WORKSPACE-DUPLICATE-PACKAGE`` if two directories
            declare the same name, or ``BD-WORKSPACE-PARSE-ERROR`` for a
            malformed manifest.
    """
    packages: dict[str, Package] = {}
    visited: set[Path] = set()

    async def _visit(directory: Path) -> None:
        real = directory.resolve()
        if real in visited:
            return
        visited.add(real)

        try:
            data = await parse_package_json(directory)
        except FileNotFoundError:
            logger.debug('member_without_manifest', path=str(directory))
            return

        pkg = _package_from_manifest(directory, data)
        existing = packages.get(pkg.name)
        if existing is not None:
            raise BdepError(
                code=E.WORKSPACE_DUPLICATE_PACKAGE,
                message=f"Duplicate package name '{pkg.name}' found at {existing.path} and {directory}",
                hint='Each package in the workspace must have a unique name.',
            )
        packages[pkg.name] = pkg

        for member in _expand_member_globs(directory, await _member_patterns(directory, data)):
            await _visit(member)

    await _visit(root)
    logger.info('discovered_packages', root=str(root), count=len(packages))
    return packages


async def collect_dependencies(start: Path | str) -> dict[str, Package]:
    """Return the transitive internal-dependency closure of a package.

    Packages are keyed by name in depth-first discovery order. The
    workspace is only scanned when the starting package declares at
    least one ``workspace:`` dependency. Declared names that no member
    provides are logged and skipped.

    Args:
        start: The starting package directory.

    Raises:
        BdepError: ``BD-WORKSPACE-NOT-FOUND`` if ``start`` has no
            ``package.json``.
    """
    start_dir = Path(start).resolve()
    try:
        data = await parse_package_json(start_dir)
    except FileNotFoundError as exc:
        raise BdepError(
            code=E.WORKSPACE_NOT_FOUND,
            message=f'No package.json found in {start_dir}',
            hint='Run bdep from a package directory inside the workspace.',
        ) from exc

    direct = extract_workspace_deps(data)
    if not direct:
        logger.info('no_workspace_deps', path=str(start_dir))
        return {}

    root = await find_workspace_root(start_dir)
    members = await discover_workspace_packages(root)

    result: dict[str, Package] = {}
    seen: set[str] = set()

    stack = list(reversed(direct))
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        pkg = members.get(name)
        if pkg is None:
            logger.warning('workspace_dep_not_found', package=name, root=str(root))
            continue
        result[name] = pkg
        stack.extend(reversed(pkg.internal_deps))

    logger.info('collected_dependencies', start=str(start_dir), count=len(result))
    return result


__all__ = [
    'WORKSPACE_PROTOCOL',
    'Package',
    'collect_dependencies',
    'discover_workspace_packages',
    'extract_workspace_deps',
    'find_workspace_root',
    'parse_package_json',
    'workspace_patterns',
]
