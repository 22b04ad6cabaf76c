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

"""Tests for bdep.config."""

from __future__ import annotations

from pathlib import Path

import pytest
from bdep.config import CONFIG_FILENAME, BdepConfig, load_config
from bdep.errors import E, BdepError
from bdep.logging import configure_logging
from bdep.mtime import EXCLUDE_DIRS

configure_logging(quiet=True)


def _write(tmp_path: Path, text: str) -> Path:
    (tmp_path / CONFIG_FILENAME).write_text(text, encoding='utf-8')
    return tmp_path


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        """No bdep.toml means every default."""
        config = load_config(tmp_path)
        assert config == BdepConfig()
        assert config.concurrency is None
        assert config.output_dir == 'dist'
        assert set(config.exclude_dirs) == EXCLUDE_DIRS

    def test_full_file(self, tmp_path: Path) -> None:
        """Every key is read and converted."""
        root = _write(
            tmp_path,
            'concurrency = 3\n'
            'force = true\n'
            'output_dir = "lib"\n'
            'build_script = "compile"\n'
            'exclude_dirs = ["node_modules", "generated"]\n'
            'package_manager = "bun"\n'
            'timeout = 120\n',
        )
        config = load_config(root)
        assert config.concurrency == 3
        assert config.force is True
        assert config.output_dir == 'lib'
        assert config.build_script == 'compile'
        assert config.exclude_dirs == ('node_modules', 'generated')
        assert config.package_manager == 'bun'
        assert config.timeout == 120.0
        assert config.config_path == root / CONFIG_FILENAME

    def test_unknown_key_suggests(self, tmp_path: Path) -> None:
        """A typo gets a did-you-mean hint."""
        root = _write(tmp_path, 'concurency = 2\n')
        with pytest.raises(BdepError) as exc_info:
            load_config(root)
        assert exc_info.value.code == E.CONFIG_INVALID_KEY
        assert "Did you mean 'concurrency'?" in exc_info.value.hint

    def test_parse_error(self, tmp_path: Path) -> None:
        """Invalid TOML is a parse error."""
        root = _write(tmp_path, 'concurrency = = 2\n')
        with pytest.raises(BdepError) as exc_info:
            load_config(root)
        assert exc_info.value.code == E.CONFIG_PARSE_ERROR

    @pytest.mark.parametrize(
        'text',
        [
            'concurrency = 0\n',
            'concurrency = "4"\n',
            'concurrency = true\n',
            'timeout = 0\n',
            'timeout = -1.5\n',
            'force = "yes"\n',
            'package_manager = "deno"\n',
            'output_dir = ""\n',
            'build_script = "  "\n',
            'exclude_dirs = "dist"\n',
            'exclude_dirs = ["dist", 3]\n',
        ],
    )
    def test_invalid_values(self, tmp_path: Path, text: str) -> None:
        """Wrong types and out-of-range values are rejected."""
        root = _write(tmp_path, text)
        with pytest.raises(BdepError) as exc_info:
            load_config(root)
        assert exc_info.value.code == E.CONFIG_INVALID_VALUE, f'{text!r}: {exc_info.value}'

    def test_float_timeout(self, tmp_path: Path) -> None:
        """Fractional timeouts are accepted."""
        config = load_config(_write(tmp_path, 'timeout = 2.5\n'))
        assert config.timeout == 2.5
