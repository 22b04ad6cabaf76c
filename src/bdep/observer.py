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

"""Observer interface and stage enum for build progress.

Shared by the executor and the UI so that neither imports the other::

    observer.py  ← BuildStage, BuildObserver
      ↑              ↑
      │              │
    ui.py        builder.py

Stage indicators::

    ⏳ waiting → 🔍 checking → 🔨 building → ✅ built
                            ↘ 💤 unchanged
    ⏭️  skipped (no build script)   ❌ failed   🚫 blocked (never started)
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from enum import Enum
from types import TracebackType


class BuildStage(str, Enum):
    """Progress stage for a single package."""

    WAITING = 'waiting'
    CHECKING = 'checking'
    BUILDING = 'building'
    BUILT = 'built'
    UNCHANGED = 'unchanged'
    SKIPPED = 'skipped'
    FAILED = 'failed'
    BLOCKED = 'blocked'


TERMINAL_STAGES = frozenset({
    BuildStage.BUILT,
    BuildStage.UNCHANGED,
    BuildStage.SKIPPED,
    BuildStage.FAILED,
    BuildStage.BLOCKED,
})


class BuildObserver(AbstractContextManager['BuildObserver']):
    """Receives build progress updates.

    Every method is a no-op here. Implementations override what they
    display and use the context manager protocol to set up and tear
    down terminal resources.
    """

    def init_packages(self, packages: Sequence[tuple[str, int, bool]]) -> None:
        """Register every package of the run.

        Args:
            packages: ``(name, layer, buildable)`` tuples in layer order.
                ``buildable`` is false for packages without a build
                script.
        """

    def on_layer_start(self, layer: int, total_layers: int, package_names: list[str]) -> None:
        """Notify that a layer is starting.

        Args:
            layer: Zero-based layer index.
            total_layers: Number of layers in the run.
            package_names: Buildable packages in this layer.
        """

    def on_stage(self, name: str, stage: BuildStage) -> None:
        """Notify that a package entered ``stage``."""

    def on_error(self, name: str, error: str) -> None:
        """Notify that a package failed with ``error``."""

    def on_complete(self) -> None:
        """Notify that the run finished, successfully or not."""

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Clean up UI resources."""


__all__ = [
    'TERMINAL_STAGES',
    'BuildObserver',
    'BuildStage',
]
