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

"""Programmatic API for bdep.

The CLI is a thin layer over these coroutines, so scripts and other
tools can drive a build the same way.

Usage::

    from bdep.api import execute, plan

    build_plan = await plan('apps/web')
    for i, layer in enumerate(build_plan.layers):
        print(i, layer)

    result = await execute('apps/web', concurrency=4)
    assert result.ok, result.summary()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from bdep.backends.pm import PackageManagerBackend, detect_package_manager, make_build_fn, run_install
from bdep.builder import BuildConfig, BuildFn, BuildResult, build_all, default_concurrency
from bdep.config import BdepConfig, load_config
from bdep.graph import DependencyGraph, build_graph, compute_layers
from bdep.logging import get_logger
from bdep.observer import BuildObserver
from bdep.workspace import Package, collect_dependencies, find_workspace_root

logger = get_logger(__name__)


@dataclass
class BuildPlan:
    """Everything decided before the first build starts.

    Attributes:
        start: The starting package directory.
        root: The workspace root.
        packages: The starting package's internal-dependency closure.
        graph: Dependency graph over ``packages``.
        layers: Build layers, first to last.
        config: Settings loaded from ``bdep.toml``.
    """

    start: Path
    root: Path
    packages: dict[str, Package] = field(default_factory=dict)
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    layers: list[list[str]] = field(default_factory=list)
    config: BdepConfig = field(default_factory=BdepConfig)


async def plan(start: str | Path, *, config: BdepConfig | None = None) -> BuildPlan:
    """Discover the closure of ``start`` and compute its build layers.

    Raises:
        CycleDetectedError: If the closure contains a dependency cycle.
        BdepError: For discovery and configuration problems.
    """
    start_dir = Path(start).resolve()
    packages = await collect_dependencies(start_dir)
    root = await find_workspace_root(start_dir)
    if config is None:
        config = load_config(root)

    graph = build_graph(packages)
    layers = compute_layers(graph)
    logger.info('build_plan', start=str(start_dir), packages=len(packages), layers=len(layers))
    return BuildPlan(start=start_dir, root=root, packages=packages, graph=graph, layers=layers, config=config)


async def _backend_for(start: Path, config: BdepConfig) -> PackageManagerBackend:
    name = config.package_manager or await detect_package_manager(start)
    return PackageManagerBackend(name, timeout=config.timeout)


async def install(start: str | Path, *, config: BdepConfig | None = None) -> None:
    """Run ``<pm> install`` in ``start`` with the detected package manager."""
    start_dir = Path(start).resolve()
    if config is None:
        config = load_config(await find_workspace_root(start_dir))
    backend = await _backend_for(start_dir, config)
    await run_install(backend, start_dir)


def _build_config(config: BdepConfig, *, force: bool | None, concurrency: int | None) -> BuildConfig:
    if concurrency is None:
        concurrency = config.concurrency or default_concurrency()
    return BuildConfig(
        force=config.force if force is None else force,
        concurrency=concurrency,
        output_dir=config.output_dir,
        build_script=config.build_script,
        exclude_dirs=frozenset(config.exclude_dirs),
    )


async def run_plan(
    build_plan: BuildPlan,
    *,
    force: bool | None = None,
    concurrency: int | None = None,
    observer: BuildObserver | None = None,
    build_fn: BuildFn | None = None,
) -> BuildResult:
    """Execute a plan produced by :func:`plan`. See :func:`execute`."""
    build_config = _build_config(build_plan.config, force=force, concurrency=concurrency)
    if not build_plan.packages:
        return BuildResult()

    if build_fn is None:
        backend = await _backend_for(build_plan.start, build_plan.config)
        build_fn = make_build_fn(backend, script=build_config.build_script)

    return await build_all(
        build_plan.layers,
        build_plan.packages,
        build_fn,
        config=build_config,
        observer=observer,
    )


async def execute(
    start: str | Path,
    *,
    force: bool | None = None,
    concurrency: int | None = None,
    config: BdepConfig | None = None,
    observer: BuildObserver | None = None,
    build_fn: BuildFn | None = None,
) -> BuildResult:
    """Build the workspace dependencies of ``start``.

    Args:
        start: The starting package directory.
        force: Override ``force`` from ``bdep.toml``.
        concurrency: Override ``concurrency`` from ``bdep.toml``.
        config: Use this instead of loading ``bdep.toml``.
        observer: Progress callbacks.
        build_fn: Build one package. Defaults to ``<pm> run <script>``
            with the detected package manager.

    Returns:
        A :class:`BuildResult` mapping every package to its outcome.
        No build is attempted when planning fails.
    """
    build_plan = await plan(start, config=config)
    return await run_plan(
        build_plan,
        force=force,
        concurrency=concurrency,
        observer=observer,
        build_fn=build_fn,
    )


__all__ = [
    'BuildPlan',
    'execute',
    'install',
    'plan',
    'run_plan',
]
