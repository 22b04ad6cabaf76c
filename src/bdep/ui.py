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

"""Build progress display.

Architecture::

    builder.py                      ui.py
    ┌──────────────┐    callback    ┌────────────────────┐
    │ _build_one   │───────────────▶│ UI implementations │
    └──────────────┘                └─────────┬──────────┘
                                              │
                          ┌───────────────────┼───────────────────┐
                  ┌───────┴───────┐   ┌───────┴───────┐   ┌───────┴─────┐
                  │ RichProgress  │   │ LogProgress   │   │ NullProgress│
                  │   UI (TTY)    │   │ UI (CI/stdin) │   │  (tests)    │
                  └───────────────┘   └───────────────┘   └─────────────┘

Rich display::

    ╭─ bdep ─────────────────────────────────────────────╮
    │ ■■■■□□□ 4/7  layer 2/3  lib-a, lib-b      12.3s    │
    │ ❌ lib-c  'pnpm run build' failed ...              │
    ╰────────────────────────────────────────────────────╯

Plain display::

    Building layer 1/3: core
      core: unchanged
    Building layer 2/3: lib-a, lib-b
      lib-a: built (3.1s)
      lib-b: built (2.7s)
    Skipped 1 unchanged packages
"""

from __future__ import annotations

import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import TracebackType
from typing import TextIO

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bdep.logging import get_logger
from bdep.observer import TERMINAL_STAGES, BuildObserver, BuildStage

logger = get_logger(__name__)

_STAGE_DISPLAY: dict[BuildStage, tuple[str, str]] = {
    BuildStage.WAITING: ('⏳', 'dim'),
    BuildStage.CHECKING: ('🔍', 'cyan'),
    BuildStage.BUILDING: ('🔨', 'yellow'),
    BuildStage.BUILT: ('✅', 'green'),
    BuildStage.UNCHANGED: ('💤', 'dim'),
    BuildStage.SKIPPED: ('⏭️ ', 'dim'),
    BuildStage.FAILED: ('❌', 'red bold'),
    BuildStage.BLOCKED: ('🚫', 'red dim'),
}

# Stages that count toward completed/total.
_COUNTED_STAGES = frozenset({BuildStage.BUILT, BuildStage.UNCHANGED, BuildStage.FAILED})


@dataclass
class _PackageRow:
    """Internal tracking for one package."""

    name: str
    layer: int
    buildable: bool
    stage: BuildStage = BuildStage.WAITING
    start_time: float | None = None
    end_time: float | None = None
    error: str = ''

    @property
    def elapsed(self) -> float | None:
        """Elapsed time in seconds, or None if not started."""
        if self.start_time is None:
            return None
        end = self.end_time if self.end_time is not None else time.monotonic()
        return end - self.start_time

    @property
    def elapsed_str(self) -> str:
        """Formatted elapsed time string."""
        elapsed = self.elapsed
        if elapsed is None:
            return '-'
        if elapsed < 60:
            return f'{elapsed:.1f}s'
        minutes = int(elapsed // 60)
        seconds = elapsed % 60
        return f'{minutes}m{seconds:.0f}s'

    def advance(self, stage: BuildStage) -> None:
        self.stage = stage
        if stage in {BuildStage.CHECKING, BuildStage.BUILDING} and self.start_time is None:
            self.start_time = time.monotonic()
        if stage in TERMINAL_STAGES:
            self.end_time = time.monotonic()


class NullProgressUI(BuildObserver):
    """No-op observer for tests and library use."""

    def __enter__(self) -> NullProgressUI:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""


@dataclass
class LogProgressUI(BuildObserver):
    """Plain line-per-event output for CI, pipes and ``--stdin`` mode.

    Attributes:
        file: Where progress lines go. Defaults to ``sys.stdout``.
        error_file: Where failure details go. Defaults to ``sys.stderr``.
    """

    file: TextIO | None = None
    error_file: TextIO | None = None
    _packages: dict[str, _PackageRow] = field(default_factory=dict)

    def __enter__(self) -> LogProgressUI:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""

    def _print(self, line: str, *, error: bool = False) -> None:
        if error:
            out = self.error_file or sys.stderr
        else:
            out = self.file or sys.stdout
        print(line, file=out, flush=True)  # noqa: T201 - CLI output

    def init_packages(self, packages: Sequence[tuple[str, int, bool]]) -> None:
        """Register packages."""
        for name, layer, buildable in packages:
            self._packages[name] = _PackageRow(name=name, layer=layer, buildable=buildable)

    def on_layer_start(self, layer: int, total_layers: int, package_names: list[str]) -> None:
        """Announce the layer."""
        self._print(f'Building layer {layer + 1}/{total_layers}: {", ".join(package_names)}')

    def on_stage(self, name: str, stage: BuildStage) -> None:
        """Print terminal transitions of buildable packages."""
        row = self._packages.get(name)
        if row is None:
            return
        row.advance(stage)
        if stage == BuildStage.UNCHANGED:
            self._print(f'  {name}: unchanged')
        elif stage == BuildStage.BUILT:
            self._print(f'  {name}: built ({row.elapsed_str})')
        elif stage == BuildStage.BLOCKED:
            self._print(f'  {name}: not started')

    def on_error(self, name: str, error: str) -> None:
        """Print the failure and its details."""
        row = self._packages.get(name)
        if row is not None:
            row.advance(BuildStage.FAILED)
            row.error = error
        self._print(f'  {name}: failed')
        self._print(f'Error: {name} build failed', error=True)
        if error:
            self._print(error, error=True)

    def on_complete(self) -> None:
        """Print the unchanged count."""
        unchanged = sum(1 for r in self._packages.values() if r.stage == BuildStage.UNCHANGED)
        if unchanged:
            self._print(f'Skipped {unchanged} unchanged packages')


def _build_progress_bar(completed: int, total: int) -> Text:
    """Build a ■□ bar with one cell per buildable package."""
    bar = Text()
    if completed > 0:
        bar.append('■' * completed, style='green')
    if total - completed > 0:
        bar.append('□' * (total - completed), style='dim')
    return bar


@dataclass
class RichProgressUI(BuildObserver):
    """Rich Live panel for interactive terminals.

    Shows a single progress line (bar, completed/total, current layer
    and the packages in flight) plus one line per failure.
    """

    _packages: dict[str, _PackageRow] = field(default_factory=dict)
    _errors: list[tuple[str, str]] = field(default_factory=list)
    _console: Console = field(default_factory=lambda: Console(stderr=True))
    _live: Live | None = field(default=None, repr=False)
    _start_time: float = field(default_factory=time.monotonic)
    _layer: int = 0
    _total_layers: int = 0

    def __enter__(self) -> RichProgressUI:
        """Start the Rich Live display."""
        self._start_time = time.monotonic()
        self._live = Live(
            self._render(),
            console=self._console,
            refresh_per_second=8,
            transient=False,
        )
        self._live.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the Rich Live display with a final render."""
        if self._live is not None:
            self._live.update(self._render())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None

    def init_packages(self, packages: Sequence[tuple[str, int, bool]]) -> None:
        """Register packages."""
        for name, layer, buildable in packages:
            self._packages[name] = _PackageRow(name=name, layer=layer, buildable=buildable)
        self._refresh()

    def on_layer_start(self, layer: int, total_layers: int, package_names: list[str]) -> None:
        """Track the current layer."""
        self._layer = layer
        self._total_layers = total_layers
        self._refresh()

    def on_stage(self, name: str, stage: BuildStage) -> None:
        """Update a package's stage."""
        row = self._packages.get(name)
        if row is None:
            return
        row.advance(stage)
        self._refresh()

    def on_error(self, name: str, error: str) -> None:
        """Record a failure."""
        row = self._packages.get(name)
        if row is not None:
            row.advance(BuildStage.FAILED)
            row.error = error
        self._errors.append((name, error))
        self._refresh()

    def on_complete(self) -> None:
        """Final refresh."""
        self._refresh()

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def _render(self) -> Panel:
        buildable = [r for r in self._packages.values() if r.buildable]
        total = len(buildable)
        completed = sum(1 for r in buildable if r.stage in _COUNTED_STAGES)
        in_flight = [r.name for r in buildable if r.stage in {BuildStage.CHECKING, BuildStage.BUILDING}]
        elapsed = time.monotonic() - self._start_time

        line = Table.grid(expand=True, padding=(0, 1))
        line.add_column(no_wrap=True)
        line.add_column(no_wrap=True)
        line.add_column(ratio=1, overflow='ellipsis', no_wrap=True)
        line.add_column(justify='right', no_wrap=True)
        layer_text = f'layer {self._layer + 1}/{self._total_layers}' if self._total_layers else ''
        line.add_row(
            _build_progress_bar(completed, total),
            Text(f'{completed}/{total}  {layer_text}', style='bold'),
            Text(', '.join(in_flight), style='yellow'),
            Text(f'{elapsed:.1f}s', style='dim'),
        )

        parts: list[Table | Text] = [line]
        for name, error in self._errors:
            emoji, style = _STAGE_DISPLAY[BuildStage.FAILED]
            first_line = error.splitlines()[0] if error else ''
            parts.append(Text(f'{emoji} {name}  {first_line}', style=style))

        return Panel(Group(*parts), title='bdep', title_align='left', border_style='blue')


def create_progress_ui(*, force_tty: bool | None = None, plain: bool = False) -> BuildObserver:
    """Pick the progress display for the current environment.

    Args:
        force_tty: Override TTY detection. ``None`` checks stderr.
        plain: Always use plain lines (``--stdin`` mode).

    Returns:
        :class:`RichProgressUI` for interactive terminals, otherwise
        :class:`LogProgressUI`.
    """
    is_tty = force_tty if force_tty is not None else sys.stderr.isatty()
    if is_tty and not plain:
        return RichProgressUI()
    return LogProgressUI()


__all__ = [
    'LogProgressUI',
    'NullProgressUI',
    'RichProgressUI',
    'create_progress_ui',
]
