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

"""Tests for bdep.mtime freshness checks."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from bdep.errors import E, BdepError
from bdep.logging import configure_logging
from bdep.mtime import iter_files, needs_build, newest_mtime, oldest_mtime

configure_logging(quiet=True)


def _touch(path: Path, mtime: float) -> Path:
    """Create ``path`` (and parents) with a fixed mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text('x', encoding='utf-8')
    os.utime(path, (mtime, mtime))
    return path


class TestIterFiles:
    """Tests for iter_files()."""

    def test_missing_root_yields_nothing(self, tmp_path: Path) -> None:
        """A directory that does not exist has no files."""
        assert list(iter_files(tmp_path / 'nope')) == []

    def test_prunes_excluded_directories(self, tmp_path: Path) -> None:
        """Excluded directory names are not descended into."""
        _touch(tmp_path / 'src' / 'a.ts', 100)
        _touch(tmp_path / 'node_modules' / 'dep' / 'index.js', 100)
        files = {p.relative_to(tmp_path).as_posix() for p in iter_files(tmp_path, {'node_modules'})}
        assert files == {'src/a.ts'}, f'Got {files}'

    def test_excludes_match_directory_names_only(self, tmp_path: Path) -> None:
        """A file named like an excluded directory still counts."""
        _touch(tmp_path / 'build', 100)
        files = [p.name for p in iter_files(tmp_path, {'build'})]
        assert files == ['build']

    def test_symlinks_not_followed(self, tmp_path: Path) -> None:
        """Symlinked files and directories are ignored."""
        outside = tmp_path / 'outside'
        _touch(outside / 'big.ts', 100)
        pkg = tmp_path / 'pkg'
        _touch(pkg / 'index.ts', 100)
        (pkg / 'linked').symlink_to(outside, target_is_directory=True)
        (pkg / 'alias.ts').symlink_to(pkg / 'index.ts')
        assert [p.name for p in iter_files(pkg)] == ['index.ts']


class TestMtimeBounds:
    """Tests for newest_mtime() and oldest_mtime()."""

    def test_bounds(self, tmp_path: Path) -> None:
        """Newest and oldest span the files under the directory."""
        _touch(tmp_path / 'a', 100)
        _touch(tmp_path / 'sub' / 'b', 300)
        _touch(tmp_path / 'sub' / 'deeper' / 'c', 200)
        assert newest_mtime(tmp_path) == 300
        assert oldest_mtime(tmp_path) == 100

    def test_empty_directory(self, tmp_path: Path) -> None:
        """No files means no bound."""
        (tmp_path / 'empty').mkdir()
        assert newest_mtime(tmp_path / 'empty') is None
        assert oldest_mtime(tmp_path / 'empty') is None


class TestNeedsBuild:
    """Tests for needs_build() decision order."""

    def test_output_missing_is_stale(self, tmp_path: Path) -> None:
        """Without dist/ the package must be built."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        assert needs_build(tmp_path) is True

    def test_output_file_instead_of_directory_is_stale(self, tmp_path: Path) -> None:
        """A regular file at the output path does not count as output."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'dist', 200)
        assert needs_build(tmp_path) is True

    def test_no_sources_is_fresh(self, tmp_path: Path) -> None:
        """A package with only excluded content has nothing to build from."""
        (tmp_path / 'dist').mkdir()
        _touch(tmp_path / 'node_modules' / 'x.js', 500)
        assert needs_build(tmp_path) is False

    def test_no_sources_with_empty_output_is_fresh(self, tmp_path: Path) -> None:
        """The no-sources rule is checked before the empty-output rule."""
        (tmp_path / 'dist').mkdir()
        assert needs_build(tmp_path) is False

    def test_empty_output_is_stale(self, tmp_path: Path) -> None:
        """An empty dist/ is never trusted."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        (tmp_path / 'dist').mkdir()
        assert needs_build(tmp_path) is True

    def test_outputs_newer_than_sources_is_fresh(self, tmp_path: Path) -> None:
        """Every output newer than every source skips the build."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'package.json', 90)
        _touch(tmp_path / 'dist' / 'index.js', 200)
        _touch(tmp_path / 'dist' / 'index.d.ts', 210)
        assert needs_build(tmp_path) is False

    def test_equal_times_are_fresh(self, tmp_path: Path) -> None:
        """Only a strictly newer source makes the package stale."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'dist' / 'index.js', 100)
        assert needs_build(tmp_path) is False

    def test_source_newer_than_oldest_output_is_stale(self, tmp_path: Path) -> None:
        """Comparison is newest source against oldest output."""
        _touch(tmp_path / 'src' / 'index.ts', 150)
        _touch(tmp_path / 'dist' / 'index.js', 100)
        _touch(tmp_path / 'dist' / 'index.d.ts', 200)
        assert needs_build(tmp_path) is True

    def test_excluded_dirs_do_not_count_as_sources(self, tmp_path: Path) -> None:
        """Fresh files in node_modules or .next do not trigger a build."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'dist' / 'index.js', 200)
        _touch(tmp_path / 'node_modules' / 'dep' / 'index.js', 900)
        _touch(tmp_path / '.next' / 'cache', 900)
        _touch(tmp_path / 'coverage' / 'lcov.info', 900)
        assert needs_build(tmp_path) is False

    def test_custom_output_dir(self, tmp_path: Path) -> None:
        """A non-default output directory is both checked and pruned."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'lib' / 'index.js', 200)
        assert needs_build(tmp_path, output_dir='lib') is False
        assert needs_build(tmp_path) is True

    def test_custom_exclude_dirs(self, tmp_path: Path) -> None:
        """Only the given directory names are pruned."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'generated' / 'types.ts', 900)
        _touch(tmp_path / 'dist' / 'index.js', 200)
        assert needs_build(tmp_path, exclude_dirs={'generated'}) is False
        assert needs_build(tmp_path) is True

    def test_unreadable_output_is_probe_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A permission error on the output path is reported, not treated as missing."""
        _touch(tmp_path / 'src' / 'index.ts', 100)
        _touch(tmp_path / 'dist' / 'index.js', 200)
        output = tmp_path / 'dist'
        real_stat = os.stat

        def _stat(path: object, *args: object, **kwargs: object) -> os.stat_result:
            if Path(path) == output:  # type: ignore[arg-type]
                raise PermissionError(13, 'Permission denied', str(path))
            return real_stat(path, *args, **kwargs)  # type: ignore[arg-type]

        monkeypatch.setattr(os, 'stat', _stat)

        with pytest.raises(BdepError) as exc_info:
            needs_build(tmp_path)

        assert exc_info.value.code == E.PROBE_FAILED
        assert isinstance(exc_info.value.__cause__, PermissionError)
