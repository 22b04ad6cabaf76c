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

"""CLI entry point for bdep.

Subcommands::

    bdep [build]    Build the workspace dependencies of this package (default)
    bdep graph      Show the build layers without building
    bdep explain    Explain an error code

Usage::

    # From inside apps/web, build everything it depends on:
    bdep

    # Install first, rebuild everything, at most 2 builds at a time:
    bdep -i -f -p 2

    # Plain output for CI logs:
    bdep --stdin

    # Machine-readable layers:
    bdep graph --format json | jq '.layers'

A package build script that itself runs ``bdep`` would otherwise rebuild
the same dependencies again. The first invocation sets ``BDEP_RUNNING``
in the environment; nested invocations see it and exit immediately.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from rich_argparse import RichHelpFormatter

from bdep import __version__
from bdep.api import install, plan, run_plan
from bdep.builder import BuildOutcome
from bdep.config import load_config
from bdep.errors import BdepError, explain, render_error
from bdep.logging import configure_logging, get_logger
from bdep.ui import create_progress_ui
from bdep.workspace import find_workspace_root

logger = get_logger(__name__)

RUNNING_ENV = 'BDEP_RUNNING'


async def _cmd_build(args: argparse.Namespace) -> int:
    """Handle the ``build`` subcommand."""
    if os.environ.get(RUNNING_ENV):
        logger.debug('nested_invocation_skipped', env=RUNNING_ENV)
        return 0
    os.environ[RUNNING_ENV] = '1'

    start = Path(args.directory).resolve()
    config = load_config(await find_workspace_root(start))

    if args.install:
        await install(start, config=config)

    build_plan = await plan(start, config=config)
    if not build_plan.packages:
        print('No workspace dependencies.')  # noqa: T201 - CLI output
        return 0

    with create_progress_ui(plain=args.stdin) as observer:
        result = await run_plan(
            build_plan,
            force=True if args.force else None,
            concurrency=args.parallel,
            observer=observer,
        )

    if not result.ok:
        failed = ', '.join(result.names(BuildOutcome.FAILED))
        print(f'Error: build failed for {failed} ({result.summary()})', file=sys.stderr)  # noqa: T201 - CLI output
        return 1
    return 0


async def _cmd_graph(args: argparse.Namespace) -> int:
    """Handle the ``graph`` subcommand."""
    build_plan = await plan(Path(args.directory))

    if args.format == 'json':
        payload = {
            'layers': build_plan.layers,
            'edges': build_plan.graph.edges,
        }
        print(json.dumps(payload, indent=2))  # noqa: T201 - CLI output
        return 0

    if not build_plan.layers:
        print('No workspace dependencies.')  # noqa: T201 - CLI output
        return 0
    for index, layer in enumerate(build_plan.layers):
        print(f'Layer {index}: {", ".join(layer)}')  # noqa: T201 - CLI output
    return 0


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        return 1
    print(result)  # noqa: T201 - CLI output
    return 0


def _add_build_options(parser: argparse.ArgumentParser, *, suppress_defaults: bool) -> None:
    # The build subcommand repeats the top-level options. Its defaults are
    # suppressed so `bdep -f build` keeps the top-level value.
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress_defaults else value

    parser.add_argument(
        '--install',
        '-i',
        action='store_true',
        default=default(False),
        help='Run the package manager install step before building.',
    )
    parser.add_argument(
        '--force',
        '-f',
        action='store_true',
        default=default(False),
        help='Build every package even if its output looks current.',
    )
    parser.add_argument(
        '--parallel',
        '-p',
        type=int,
        metavar='N',
        default=default(None),
        help='Maximum builds running at once (default: number of CPUs).',
    )
    parser.add_argument(
        '--stdin',
        action='store_true',
        default=default(False),
        help='Plain line-per-event output instead of the live progress display.',
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured :class:`argparse.ArgumentParser`.
    """
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='bdep',
        description='Build the workspace dependencies of a package in topological order.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}',
    )
    parser.add_argument(
        '--directory',
        '-C',
        metavar='DIR',
        default='.',
        help='Start from DIR instead of the current directory.',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Show debug logs.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only show warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Emit logs as JSON lines on stderr.')
    _add_build_options(parser, suppress_defaults=False)

    subparsers = parser.add_subparsers(dest='command')

    build_parser_ = subparsers.add_parser(
        'build',
        help='Build the workspace dependencies of this package (default).',
        formatter_class=RichHelpFormatter,
    )
    _add_build_options(build_parser_, suppress_defaults=True)

    graph_parser = subparsers.add_parser(
        'graph',
        help='Show the build layers without building.',
        formatter_class=RichHelpFormatter,
    )
    graph_parser.add_argument(
        '--format',
        choices=['levels', 'json'],
        default='levels',
        help='Output format (default: levels).',
    )

    explain_parser = subparsers.add_parser(
        'explain',
        help='Explain an error code.',
        formatter_class=RichHelpFormatter,
    )
    explain_parser.add_argument('code', help='Error code, e.g. BD-GRAPH-CYCLE-DETECTED.')

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 for success, 1 for failure, 130 on interrupt).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or 'build'

    # The live display owns the terminal; info logs would tear it.
    interactive = command == 'build' and not args.stdin and sys.stderr.isatty()
    configure_logging(
        verbose=args.verbose,
        quiet=args.quiet or (interactive and not args.verbose),
        json_log=args.json_log,
    )

    try:
        if command == 'build':
            return asyncio.run(_cmd_build(args))
        if command == 'graph':
            return asyncio.run(_cmd_graph(args))
        if command == 'explain':
            return _cmd_explain(args)
        parser.print_help()
        return 2
    except BdepError as exc:
        render_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.info('interrupted')
        return 130


def _main() -> None:
    """Wrapper for pyproject.toml [project.scripts] entry point."""
    sys.exit(main())


__all__ = [
    'RUNNING_ENV',
    'build_parser',
    'main',
]
