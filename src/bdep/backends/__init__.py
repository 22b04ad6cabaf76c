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

"""External tool access for bdep.

- :mod:`bdep.backends._run`: :func:`run_command`, one logged subprocess.
- :mod:`bdep.backends._io`: async manifest reads via aiofiles.
- :mod:`bdep.backends.pm`: package manager detection, ``<pm> run
  <script>`` and ``<pm> install``.

``bdep.backends.pm`` depends on :mod:`bdep.workspace`, which in turn
reads manifests through ``_io``, so this package does not import ``pm``
eagerly.
"""

from bdep.backends._run import CommandResult, run_command

__all__ = [
    'CommandResult',
    'run_command',
]
