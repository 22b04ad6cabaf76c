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

"""Layer-by-layer build executor.

Runs layers strictly in order. Within a layer every buildable package
gets its own task, and each task must acquire a shared
:class:`asyncio.Semaphore` before doing anything, so at most
``concurrency`` packages are checked or built at once.

Per-package flow (under the semaphore)::

    failure already seen in this layer? ── yes ──→ not-attempted
         │ no
    force? ── no ──→ needs_build()? ── no ──→ skipped-unchanged
         │ yes                  │ yes
         └──────────┬───────────┘
                build_fn(pkg) ── raises ──→ failed
                    │
                  built

Failure handling:

- Packages already admitted when a build fails run to completion.
- Packages of the same layer still waiting for the semaphore are not
  started and end up ``not-attempted``.
- No later layer starts. Its buildable packages are ``not-attempted``.
- A filesystem probe error (``BD-PROBE-FAILED``) is fatal. It is raised
  once the layer's in-flight work has finished.

Usage::

    result = await build_all(
        layers,
        packages,
        build_fn,
        config=BuildConfig(concurrency=4),
    )
    if not result.ok:
        print(result.summary())
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from bdep.errors import BdepError, E
from bdep.logging import get_logger
from bdep.mtime import EXCLUDE_DIRS, needs_build, probe_failed
from bdep.observer import BuildObserver, BuildStage
from bdep.ui import NullProgressUI
from bdep.workspace import Package

logger = get_logger(__name__)

# Completes normally on success, raises on failure.
BuildFn = Callable[[Package], Awaitable[None]]


class BuildOutcome(str, Enum):
    """Final outcome for one package in one run."""

    BUILT = 'built'
    SKIPPED_NO_BUILD_STEP = 'skipped-no-build-step'
    SKIPPED_UNCHANGED = 'skipped-unchanged'
    FAILED = 'failed'
    NOT_ATTEMPTED = 'not-attempted'


def default_concurrency() -> int:
    """Number of processing units, at least 1."""
    return os.cpu_count() or 1


@dataclass(frozen=True)
class BuildConfig:
    """Settings for one :func:`build_all` run.

    Attributes:
        force: Build every buildable package, skipping the freshness check.
        concurrency: Maximum packages checked or built at the same time.
        output_dir: Build output location relative to each package.
        build_script: Script name that marks a package as buildable.
        exclude_dirs: Directory names ignored when looking for sources.
    """

    force: bool = False
    concurrency: int = field(default_factory=default_concurrency)
    output_dir: str = 'dist'
    build_script: str = 'build'
    exclude_dirs: Collection[str] = EXCLUDE_DIRS


@dataclass
class BuildResult:
    """Result of a complete build run.

    Attributes:
        outcomes: Exactly one :class:`BuildOutcome` per package, in
            layer order.
        errors: Failed package name → error message.
        layers: The layers the run was executed against.
        completed: Buildable packages that reached built, unchanged or
            failed.
        total: Number of buildable packages.
    """

    outcomes: dict[str, BuildOutcome] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    layers: list[list[str]] = field(default_factory=list)
    completed: int = 0
    total: int = 0

    @property
    def ok(self) -> bool:
        """Return True if no package failed."""
        return BuildOutcome.FAILED not in self.outcomes.values()

    def names(self, outcome: BuildOutcome) -> list[str]:
        """Packages that ended with ``outcome``, in layer order."""
        return [name for name, o in self.outcomes.items() if o == outcome]

    def summary(self) -> str:
        """Return a human-readable summary."""
        labels = [
            (BuildOutcome.BUILT, 'built'),
            (BuildOutcome.SKIPPED_UNCHANGED, 'unchanged'),
            (BuildOutcome.SKIPPED_NO_BUILD_STEP, 'without build script'),
            (BuildOutcome.FAILED, 'failed'),
            (BuildOutcome.NOT_ATTEMPTED, 'not attempted'),
        ]
        parts = []
        for outcome, label in labels:
            count = len(self.names(outcome))
            if count:
                parts.append(f'{count} {label}')
        return ', '.join(parts) if parts else 'no packages processed'


async def _build_one(
    *,
    pkg: Package,
    build_fn: BuildFn,
    config: BuildConfig,
    semaphore: asyncio.Semaphore,
    failure_seen: asyncio.Event,
    result: BuildResult,
    observer: BuildObserver,
) -> None:
    """Check and, if needed, build one package.

    Records the outcome in ``result``. Only a probe error escapes.
    """
    name = pkg.name
    async with semaphore:
        if failure_seen.is_set():
            logger.info('package_not_admitted', package=name)
            observer.on_stage(name, BuildStage.BLOCKED)
            return

        if not config.force:
            observer.on_stage(name, BuildStage.CHECKING)
            try:
                stale = await asyncio.to_thread(
                    needs_build,
                    pkg.path,
                    output_dir=config.output_dir,
                    exclude_dirs=config.exclude_dirs,
                )
            except BdepError:
                failure_seen.set()
                raise
            except OSError as exc:
                failure_seen.set()
                raise probe_failed(pkg.path, exc) from exc
            if not stale:
                result.outcomes[name] = BuildOutcome.SKIPPED_UNCHANGED
                result.completed += 1
                observer.on_stage(name, BuildStage.UNCHANGED)
                return

            # A sibling may have failed while this package was being checked.
            if failure_seen.is_set():
                logger.info('package_not_admitted', package=name)
                observer.on_stage(name, BuildStage.BLOCKED)
                return

        observer.on_stage(name, BuildStage.BUILDING)
        try:
            await build_fn(pkg)
        except Exception as exc:  # noqa: BLE001 - any build failure is recorded, not propagated
            failure_seen.set()
            result.outcomes[name] = BuildOutcome.FAILED
            result.errors[name] = str(exc)
            result.completed += 1
            logger.error('package_failed', package=name, error=str(exc))
            observer.on_error(name, str(exc))
            return

        result.outcomes[name] = BuildOutcome.BUILT
        result.completed += 1
        logger.info('package_built', package=name)
        observer.on_stage(name, BuildStage.BUILT)


async def build_all(
    layers: Sequence[Sequence[str]],
    packages: Mapping[str, Package],
    build_fn: BuildFn,
    *,
    config: BuildConfig | None = None,
    observer: BuildObserver | None = None,
) -> BuildResult:
    """Build ``layers`` in order with bounded concurrency.

    Args:
        layers: Output of :func:`~bdep.graph.build_layers`.
        packages: Name → :class:`Package` for every name in ``layers``.
        build_fn: Invoked once per stale buildable package.
        config: Run settings. Defaults to :class:`BuildConfig()`.
        observer: Progress callbacks. Defaults to a no-op observer.

    Returns:
        A :class:`BuildResult` with one outcome per package.

    Raises:
        BdepError: ``BD-CONFIG-INVALID-VALUE`` if ``concurrency`` is
            below 1, or ``BD-PROBE-FAILED`` if a freshness check hits an
            unreadable path.
    """
    config = config or BuildConfig()
    observer = observer or NullProgressUI()

    if config.concurrency < 1:
        raise BdepError(
            code=E.CONFIG_INVALID_VALUE,
            message=f'concurrency must be at least 1, got {config.concurrency}',
            hint='Pass --parallel with a positive number.',
        )

    result = BuildResult(layers=[list(layer) for layer in layers])
    buildable: set[str] = set()
    observer_packages: list[tuple[str, int, bool]] = []
    for layer_idx, layer in enumerate(layers):
        for name in layer:
            can_build = packages[name].has_script(config.build_script)
            if can_build:
                buildable.add(name)
                result.outcomes[name] = BuildOutcome.NOT_ATTEMPTED
            else:
                result.outcomes[name] = BuildOutcome.SKIPPED_NO_BUILD_STEP
            observer_packages.append((name, layer_idx, can_build))
    result.total = len(buildable)

    observer.init_packages(observer_packages)
    for name, outcome in result.outcomes.items():
        if outcome == BuildOutcome.SKIPPED_NO_BUILD_STEP:
            observer.on_stage(name, BuildStage.SKIPPED)

    semaphore = asyncio.Semaphore(config.concurrency)
    halted = False

    for layer_idx, layer in enumerate(layers):
        names = [name for name in layer if name in buildable]
        if not names:
            logger.debug('layer_empty', layer=layer_idx)
            continue

        if halted:
            for name in names:
                observer.on_stage(name, BuildStage.BLOCKED)
            continue

        logger.info(
            'layer_start',
            layer=layer_idx,
            packages=names,
            concurrency=config.concurrency,
        )
        observer.on_layer_start(layer_idx, len(layers), names)

        failure_seen = asyncio.Event()
        tasks = [
            asyncio.create_task(
                _build_one(
                    pkg=packages[name],
                    build_fn=build_fn,
                    config=config,
                    semaphore=semaphore,
                    failure_seen=failure_seen,
                    result=result,
                    observer=observer,
                ),
                name=f'build-{name}',
            )
            for name in names
        ]
        done = await asyncio.gather(*tasks, return_exceptions=True)

        fatal: BaseException | None = None
        for name, outcome in zip(names, done, strict=True):
            if isinstance(outcome, BaseException):
                result.outcomes[name] = BuildOutcome.FAILED
                result.errors[name] = str(outcome)
                observer.on_error(name, str(outcome))
                fatal = fatal or outcome
        if fatal is not None:
            logger.error('layer_aborted', layer=layer_idx, error=str(fatal))
            observer.on_complete()
            raise fatal

        failed = [name for name in names if result.outcomes[name] == BuildOutcome.FAILED]
        if failed:
            logger.error('layer_failed', layer=layer_idx, failed=failed)
            halted = True
            continue

        logger.info('layer_complete', layer=layer_idx, packages=names)

    observer.on_complete()
    logger.info(
        'build_complete',
        summary=result.summary(),
        built=len(result.names(BuildOutcome.BUILT)),
        unchanged=len(result.names(BuildOutcome.SKIPPED_UNCHANGED)),
        failed=len(result.names(BuildOutcome.FAILED)),
    )
    return result


__all__ = [
    'BuildConfig',
    'BuildFn',
    'BuildOutcome',
    'BuildResult',
    'build_all',
    'default_concurrency',
]
