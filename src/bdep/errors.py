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

"""Structured error system for bdep.

Every error carries a stable ``BD-NAMED-KEY`` code, a message, and an
optional hint.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorCode           │ A readable ID like "BD-GRAPH-CYCLE-DETECTED".  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ BdepError           │ The exception everything raises. Holds the    │
    │                     │ code, message and hint for the renderer.      │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ CycleDetectedError  │ Packages that depend on each other in a loop. │
    │                     │ Nothing gets built when this is raised.       │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ LayeringError       │ The layer builder got stuck. Should never     │
    │                     │ happen on a graph that sorted cleanly.        │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ explain()           │ Looks up a code and prints what it means.     │
    └─────────────────────┴────────────────────────────────────────────────┘

Code categories::

    BD-CONFIG-*       bdep.toml errors
    BD-WORKSPACE-*    Workspace discovery errors
    BD-GRAPH-*        Dependency graph errors
    BD-BUILD-*        Build invocation errors
    BD-INSTALL-*      Package manager install errors
    BD-PROBE-*        Filesystem probe errors

Usage::

    from bdep.errors import BdepError, E

    raise BdepError(
        code=E.WORKSPACE_NOT_FOUND,
        message='No package.json in /repo/apps/web',
        hint='Run bdep from a package directory.',
    )
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """All bdep diagnostic codes."""

    # Configuration
    CONFIG_PARSE_ERROR = 'BD-CONFIG-PARSE-ERROR'
    CONFIG_INVALID_KEY = 'BD-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'BD-CONFIG-INVALID-VALUE'

    # Workspace discovery
    WORKSPACE_NOT_FOUND = 'BD-WORKSPACE-NOT-FOUND'
    WORKSPACE_PARSE_ERROR = 'BD-WORKSPACE-PARSE-ERROR'
    WORKSPACE_DUPLICATE_PACKAGE = 'BD-WORKSPACE-DUPLICATE-PACKAGE'

    # Dependency graph
    GRAPH_CYCLE_DETECTED = 'BD-GRAPH-CYCLE-DETECTED'
    GRAPH_LAYERING_INCONSISTENT = 'BD-GRAPH-LAYERING-INCONSISTENT'

    # Build / install
    BUILD_FAILED = 'BD-BUILD-FAILED'
    INSTALL_FAILED = 'BD-INSTALL-FAILED'

    # Filesystem
    PROBE_FAILED = 'BD-PROBE-FAILED'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``BD-NAMED-KEY`` error code.
        message: What went wrong.
        hint: How to fix it, or empty.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class BdepError(Exception):
    """Base exception for all bdep errors.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


class CycleDetectedError(BdepError):
    """The dependency graph contains at least one cycle.

    Attributes:
        packages: Every package the topological sort could not place.
            This includes the cycle members and anything downstream of
            them.
        cycles: Concrete cycle paths, each closed (first name repeated
            at the end), for display.
    """

    def __init__(self, packages: Iterable[str], cycles: Sequence[list[str]] = ()) -> None:
        """Initialize from the unresolved package names and cycle paths."""
        self.packages = frozenset(packages)
        self.cycles = [list(c) for c in cycles]
        if self.cycles:
            detail = '; '.join(' -> '.join(c) for c in self.cycles)
        else:
            detail = ', '.join(sorted(self.packages))
        super().__init__(
            code=E.GRAPH_CYCLE_DETECTED,
            message=f'Circular dependency detected involving: {detail}',
            hint='Remove one of the "workspace:" dependencies that closes the loop.',
        )


class LayeringError(BdepError):
    """A layering pass assigned no package although some were left.

    Attributes:
        remaining: Names that could not be assigned to a layer.
    """

    def __init__(self, remaining: Iterable[str]) -> None:
        """Initialize from the names left unassigned."""
        self.remaining = sorted(remaining)
        super().__init__(
            code=E.GRAPH_LAYERING_INCONSISTENT,
            message=f'Could not make progress computing build layers: {", ".join(self.remaining)}',
            hint='This is a bug in bdep. Please report it with the output of `bdep graph`.',
        )


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.CONFIG_PARSE_ERROR: ErrorInfo(
        code=E.CONFIG_PARSE_ERROR,
        message='bdep.toml is not valid TOML.',
        hint='Fix the syntax error reported in the message.',
    ),
    E.CONFIG_INVALID_KEY: ErrorInfo(
        code=E.CONFIG_INVALID_KEY,
        message='bdep.toml contains a key bdep does not know.',
        hint='Check the key for typos. Known keys: concurrency, force, output_dir, '
        'build_script, exclude_dirs, package_manager, timeout.',
    ),
    E.CONFIG_INVALID_VALUE: ErrorInfo(
        code=E.CONFIG_INVALID_VALUE,
        message='A bdep.toml value or command-line option has the wrong type or range.',
        hint='For example, concurrency must be an integer of at least 1.',
    ),
    E.WORKSPACE_NOT_FOUND: ErrorInfo(
        code=E.WORKSPACE_NOT_FOUND,
        message='No package.json found in the starting directory.',
        hint='Run bdep from inside a workspace package.',
    ),
    E.WORKSPACE_PARSE_ERROR: ErrorInfo(
        code=E.WORKSPACE_PARSE_ERROR,
        message='A package.json could not be read or is not a JSON object.',
        hint='Validate the file with a JSON linter.',
    ),
    E.WORKSPACE_DUPLICATE_PACKAGE: ErrorInfo(
        code=E.WORKSPACE_DUPLICATE_PACKAGE,
        message='Two workspace members declare the same package name.',
        hint='Rename one of them or exclude it from the workspace patterns.',
    ),
    E.GRAPH_CYCLE_DETECTED: ErrorInfo(
        code=E.GRAPH_CYCLE_DETECTED,
        message='Circular dependency detected among workspace packages.',
        hint="Run 'bdep graph' to see the packages involved.",
    ),
    E.GRAPH_LAYERING_INCONSISTENT: ErrorInfo(
        code=E.GRAPH_LAYERING_INCONSISTENT,
        message='Build layers could not be computed from a sorted graph.',
        hint='This indicates a bug in bdep.',
    ),
    E.BUILD_FAILED: ErrorInfo(
        code=E.BUILD_FAILED,
        message='A package build script exited with a non-zero status or timed out.',
        hint='Run the build script in that package directory to see the full output.',
    ),
    E.INSTALL_FAILED: ErrorInfo(
        code=E.INSTALL_FAILED,
        message='The package manager install step failed.',
        hint='Run the install command by hand and fix the reported problem.',
    ),
    E.PROBE_FAILED: ErrorInfo(
        code=E.PROBE_FAILED,
        message='A file or directory could not be inspected.',
        hint='Check permissions on the package directory.',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"BD-BUILD-FAILED"``.

    Returns:
        A formatted explanation, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def render_error(exc: BdepError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style.

    Output format::

        error[BD-GRAPH-CYCLE-DETECTED]: Circular dependency detected involving: a -> b -> a
          |
          = hint: Remove one of the "workspace:" dependencies that closes the loop.

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    out = file or sys.stderr

    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(exc.info.message)
        console.print(
            f'[bold red]error[/bold red][bold red]\\[{exc.code.value}][/bold red][bold]: {msg}[/bold]',
        )
        if exc.hint:
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {rich_escape(exc.hint)}')
        console.print()
        return

    print(f'error[{exc.code.value}]: {exc.info.message}', file=out)  # noqa: T201 - CLI output
    if exc.hint:
        print('  |', file=out)  # noqa: T201 - CLI output
        print(f'  = hint: {exc.hint}', file=out)  # noqa: T201 - CLI output
    print(file=out)  # noqa: T201 - CLI output


__all__ = [
    'E',
    'ERRORS',
    'BdepError',
    'CycleDetectedError',
    'ErrorCode',
    'ErrorInfo',
    'LayeringError',
    'explain',
    'render_error',
]
