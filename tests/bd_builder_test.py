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

"""Tests for bdep.builder layer execution."""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Sequence
from pathlib import Path

import pytest
from bdep.builder import BuildConfig, BuildOutcome, BuildResult, build_all
from bdep.errors import E, BdepError
from bdep.logging import configure_logging
from bdep.observer import BuildObserver, BuildStage
from bdep.workspace import Package

configure_logging(quiet=True)


def _pkg(name: str, tmp_path: Path, *, buildable: bool = True) -> Package:
    path = tmp_path / name
    path.mkdir(parents=True, exist_ok=True)
    return Package(
        name=name,
        version='1.0.0',
        path=path,
        manifest_path=path / 'package.json',
        scripts={'build': 'tsc'} if buildable else {},
    )


def _packages(tmp_path: Path, *names: str, unbuildable: Sequence[str] = ()) -> dict[str, Package]:
    return {name: _pkg(name, tmp_path, buildable=name not in unbuildable) for name in names}


def _make_fresh(pkg: Package) -> None:
    src = pkg.path / 'src' / 'index.ts'
    out = pkg.path / 'dist' / 'index.js'
    for path, mtime in ((src, 100), (out, 200)):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('x', encoding='utf-8')
        os.utime(path, (mtime, mtime))


class FakeBuilder:
    """Records calls and tracks how many builds overlap."""

    def __init__(self, *, fail: Sequence[str] = (), delays: dict[str, float] | None = None) -> None:
        """Configure which packages fail and how long each build takes."""
        self.fail = set(fail)
        self.delays = delays or {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, pkg: Package) -> None:
        """Pretend to build ``pkg``."""
        self.calls.append(pkg.name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(pkg.name, 0.01))
            if pkg.name in self.fail:
                raise RuntimeError(f'{pkg.name} exploded')
        finally:
            self.in_flight -= 1


class RecordingObserver(BuildObserver):
    """Observer that records every callback."""

    def __init__(self) -> None:
        """Start with empty records."""
        self.registered: list[tuple[str, int, bool]] = []
        self.layers: list[tuple[int, int, list[str]]] = []
        self.stages: list[tuple[str, BuildStage]] = []
        self.errors: list[tuple[str, str]] = []
        self.completed = 0

    def init_packages(self, packages: Sequence[tuple[str, int, bool]]) -> None:
        """Record registration."""
        self.registered = list(packages)

    def on_layer_start(self, layer: int, total_layers: int, package_names: list[str]) -> None:
        """Record layer start."""
        self.layers.append((layer, total_layers, list(package_names)))

    def on_stage(self, name: str, stage: BuildStage) -> None:
        """Record a stage transition."""
        self.stages.append((name, stage))

    def on_error(self, name: str, error: str) -> None:
        """Record a failure."""
        self.errors.append((name, error))

    def on_complete(self) -> None:
        """Count completions."""
        self.completed += 1

    def stages_of(self, name: str) -> list[BuildStage]:
        """Stages one package went through, in order."""
        return [stage for n, stage in self.stages if n == name]


class TestBuildAll:
    """Tests for build_all()."""

    @pytest.mark.asyncio
    async def test_builds_every_layer_in_order(self, tmp_path: Path) -> None:
        """A dependency is always built before its dependents start."""
        packages = _packages(tmp_path, 'core', 'lib-a', 'lib-b', 'app')
        layers = [['core'], ['lib-a', 'lib-b'], ['app']]
        builder = FakeBuilder()

        result = await build_all(layers, packages, builder, config=BuildConfig(force=True, concurrency=4))

        assert result.ok
        assert builder.calls[0] == 'core'
        assert set(builder.calls[1:3]) == {'lib-a', 'lib-b'}
        assert builder.calls[3] == 'app'
        assert result.names(BuildOutcome.BUILT) == ['core', 'lib-a', 'lib-b', 'app']
        assert result.completed == 4
        assert result.total == 4

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, tmp_path: Path) -> None:
        """No more than ``concurrency`` builds run at once."""
        names = [f'p{i}' for i in range(6)]
        packages = _packages(tmp_path, *names)
        builder = FakeBuilder(delays=dict.fromkeys(names, 0.03))

        await build_all([names], packages, builder, config=BuildConfig(force=True, concurrency=2))

        assert builder.max_in_flight == 2, f'Got {builder.max_in_flight}'
        assert sorted(builder.calls) == names

    @pytest.mark.asyncio
    async def test_concurrency_one_is_sequential(self, tmp_path: Path) -> None:
        """With a single slot, builds never overlap."""
        packages = _packages(tmp_path, 'x', 'y', 'z')
        builder = FakeBuilder()

        await build_all([['x', 'y', 'z']], packages, builder, config=BuildConfig(force=True, concurrency=1))

        assert builder.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_concurrency_below_one_rejected(self, tmp_path: Path) -> None:
        """A zero concurrency limit is a configuration error."""
        packages = _packages(tmp_path, 'x')
        with pytest.raises(BdepError) as exc_info:
            await build_all([['x']], packages, FakeBuilder(), config=BuildConfig(concurrency=0))
        assert exc_info.value.code == E.CONFIG_INVALID_VALUE

    @pytest.mark.asyncio
    async def test_no_build_script_is_skipped(self, tmp_path: Path) -> None:
        """Packages without a build script are never handed to build_fn."""
        packages = _packages(tmp_path, 'types', 'core', unbuildable=['types'])
        builder = FakeBuilder()
        observer = RecordingObserver()

        result = await build_all(
            [['types', 'core']],
            packages,
            builder,
            config=BuildConfig(force=True),
            observer=observer,
        )

        assert builder.calls == ['core']
        assert result.outcomes == {
            'types': BuildOutcome.SKIPPED_NO_BUILD_STEP,
            'core': BuildOutcome.BUILT,
        }
        assert result.total == 1
        assert observer.stages_of('types') == [BuildStage.SKIPPED]
        assert ('types', 0, False) in observer.registered

    @pytest.mark.asyncio
    async def test_empty_script_counts_as_missing(self, tmp_path: Path) -> None:
        """An empty build script is the same as none."""
        path = tmp_path / 'blank'
        path.mkdir()
        pkg = Package(
            name='blank',
            version='1.0.0',
            path=path,
            manifest_path=path / 'package.json',
            scripts={'build': ''},
        )
        builder = FakeBuilder()
        result = await build_all([['blank']], {'blank': pkg}, builder, config=BuildConfig(force=True))
        assert builder.calls == []
        assert result.outcomes['blank'] == BuildOutcome.SKIPPED_NO_BUILD_STEP

    @pytest.mark.asyncio
    async def test_fresh_package_is_unchanged(self, tmp_path: Path) -> None:
        """Up-to-date output skips the build unless forced."""
        packages = _packages(tmp_path, 'core')
        _make_fresh(packages['core'])
        builder = FakeBuilder()

        result = await build_all([['core']], packages, builder, config=BuildConfig())

        assert builder.calls == []
        assert result.outcomes['core'] == BuildOutcome.SKIPPED_UNCHANGED
        assert result.completed == 1

    @pytest.mark.asyncio
    async def test_force_ignores_freshness(self, tmp_path: Path) -> None:
        """Force builds a package whose output is current."""
        packages = _packages(tmp_path, 'core')
        _make_fresh(packages['core'])
        builder = FakeBuilder()
        observer = RecordingObserver()

        result = await build_all([['core']], packages, builder, config=BuildConfig(force=True), observer=observer)

        assert builder.calls == ['core']
        assert result.outcomes['core'] == BuildOutcome.BUILT
        assert BuildStage.CHECKING not in observer.stages_of('core')

    @pytest.mark.asyncio
    async def test_stale_package_is_built(self, tmp_path: Path) -> None:
        """Missing output triggers a build without force."""
        packages = _packages(tmp_path, 'core')
        builder = FakeBuilder()
        observer = RecordingObserver()

        result = await build_all([['core']], packages, builder, observer=observer)

        assert result.outcomes['core'] == BuildOutcome.BUILT
        assert observer.stages_of('core') == [BuildStage.CHECKING, BuildStage.BUILDING, BuildStage.BUILT]

    @pytest.mark.asyncio
    async def test_failure_halts_later_layers(self, tmp_path: Path) -> None:
        """A failed layer stops every later layer from starting."""
        packages = _packages(tmp_path, 'core', 'lib', 'app')
        builder = FakeBuilder(fail=['core'])
        observer = RecordingObserver()

        result = await build_all(
            [['core'], ['lib'], ['app']],
            packages,
            builder,
            config=BuildConfig(force=True),
            observer=observer,
        )

        assert not result.ok
        assert builder.calls == ['core']
        assert result.outcomes == {
            'core': BuildOutcome.FAILED,
            'lib': BuildOutcome.NOT_ATTEMPTED,
            'app': BuildOutcome.NOT_ATTEMPTED,
        }
        assert 'core exploded' in result.errors['core']
        assert observer.errors == [('core', 'core exploded')]
        assert [layer for layer, _, _ in observer.layers] == [0]
        assert observer.stages_of('lib') == [BuildStage.BLOCKED]
        assert observer.completed == 1

    @pytest.mark.asyncio
    async def test_in_flight_builds_finish_after_failure(self, tmp_path: Path) -> None:
        """Admitted builds complete; queued ones in the same layer never start."""
        packages = _packages(tmp_path, 'fast-fail', 'slow', 'queued')
        builder = FakeBuilder(fail=['fast-fail'], delays={'fast-fail': 0.0, 'slow': 0.05})

        result = await build_all(
            [['fast-fail', 'slow', 'queued']],
            packages,
            builder,
            config=BuildConfig(force=True, concurrency=2),
        )

        assert result.outcomes['fast-fail'] == BuildOutcome.FAILED
        assert result.outcomes['slow'] == BuildOutcome.BUILT
        assert result.outcomes['queued'] == BuildOutcome.NOT_ATTEMPTED
        assert 'queued' not in builder.calls

    @pytest.mark.asyncio
    async def test_one_outcome_per_package(self, tmp_path: Path) -> None:
        """Every package in the layers gets exactly one outcome."""
        packages = _packages(tmp_path, 'a', 'b', 'c', 'd', unbuildable=['d'])
        layers = [['a', 'b'], ['c', 'd']]

        result = await build_all(layers, packages, FakeBuilder(fail=['b']), config=BuildConfig(force=True))

        assert list(result.outcomes) == ['a', 'b', 'c', 'd']
        assert result.layers == layers

    @pytest.mark.asyncio
    async def test_probe_error_is_fatal(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unreadable package directory aborts the run with an error."""

        def _boom(*args: object, **kwargs: object) -> bool:
            raise BdepError(code=E.PROBE_FAILED, message='Cannot inspect core')

        monkeypatch.setattr('bdep.builder.needs_build', _boom)
        packages = _packages(tmp_path, 'core', 'app')
        builder = FakeBuilder()
        observer = RecordingObserver()

        with pytest.raises(BdepError) as exc_info:
            await build_all([['core'], ['app']], packages, builder, observer=observer)

        assert exc_info.value.code == E.PROBE_FAILED
        assert builder.calls == []
        assert observer.completed == 1

    @pytest.mark.asyncio
    async def test_permission_error_becomes_probe_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A raw OSError from the freshness check is reported as BD-PROBE-FAILED."""

        def _denied(*args: object, **kwargs: object) -> bool:
            raise PermissionError(13, 'Permission denied')

        monkeypatch.setattr('bdep.builder.needs_build', _denied)
        packages = _packages(tmp_path, 'core', 'app')
        builder = FakeBuilder()

        with pytest.raises(BdepError) as exc_info:
            await build_all([['core'], ['app']], packages, builder)

        assert exc_info.value.code == E.PROBE_FAILED
        assert isinstance(exc_info.value.__cause__, PermissionError)
        assert builder.calls == []

    @pytest.mark.asyncio
    async def test_failure_during_check_stops_sibling(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A sibling that fails while another package is still being checked keeps it from building."""

        def _slow_check(path: Path, **kwargs: object) -> bool:
            if path.name == 'slowcheck':
                time.sleep(0.2)
            return True

        monkeypatch.setattr('bdep.builder.needs_build', _slow_check)
        packages = _packages(tmp_path, 'fails', 'slowcheck')
        builder = FakeBuilder(fail=['fails'])
        observer = RecordingObserver()

        result = await build_all(
            [['fails', 'slowcheck']],
            packages,
            builder,
            config=BuildConfig(concurrency=2),
            observer=observer,
        )

        assert builder.calls == ['fails']
        assert result.outcomes['fails'] == BuildOutcome.FAILED
        assert result.outcomes['slowcheck'] == BuildOutcome.NOT_ATTEMPTED
        assert observer.stages_of('slowcheck') == [BuildStage.CHECKING, BuildStage.BLOCKED]

    @pytest.mark.asyncio
    async def test_empty_layers(self, tmp_path: Path) -> None:
        """Nothing to build returns an empty, successful result."""
        result = await build_all([], {}, FakeBuilder())
        assert result.ok
        assert result.outcomes == {}


class TestBuildResult:
    """Tests for BuildResult helpers."""

    def test_summary(self) -> None:
        """Summary counts each outcome that occurred."""
        result = BuildResult(
            outcomes={
                'a': BuildOutcome.BUILT,
                'b': BuildOutcome.BUILT,
                'c': BuildOutcome.SKIPPED_UNCHANGED,
                'd': BuildOutcome.FAILED,
                'e': BuildOutcome.NOT_ATTEMPTED,
            },
        )
        assert result.summary() == '2 built, 1 unchanged, 1 failed, 1 not attempted'
        assert not result.ok

    def test_empty_summary(self) -> None:
        """An empty result says nothing was processed."""
        assert BuildResult().summary() == 'no packages processed'
        assert BuildResult().ok
