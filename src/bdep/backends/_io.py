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

"""Async manifest reading for workspace discovery."""

from __future__ import annotations

from pathlib import Path

import aiofiles

from bdep.errors import BdepError, E


async def read_file(path: Path) -> str:
    """Read a UTF-8 text file via aiofiles.

    A missing file raises :class:`FileNotFoundError` unchanged so that
    callers can treat absence as "not a package". Any other OS error
    means the file exists but cannot be read.
    """
    try:
        async with aiofiles.open(path, encoding='utf-8') as f:
            return await f.read()
    except FileNotFoundError:
        raise
    except OSError as exc:
        raise BdepError(
            code=E.PROBE_FAILED,
            message=f'Failed to read {path}: {exc}',
            hint=f'Check that {path} is readable.',
        ) from exc


__all__ = [
    'read_file',
]
