"""Tests for artifact collection and the ignore list."""

import pytest

from ghostguard.ingest.ignore_list import IgnoreList
from ghostguard.ingest.source import artifacts_from_files, collect_artifacts
from ghostguard.rule_config import ScanConfig

FP_A = "a" * 64
FP_B = "0123456789abcdef" * 4


class TestCollectArtifacts:
    def test_walks_and_sorts(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "b.py").write_text("b = 1\n")
        (tmp_path / "a.py").write_text("a = 1\n")

        result = collect_artifacts(tmp_path)

        assert [a.path for a in result.artifacts] == ["a.py", "src/b.py"]
        assert result.total_files_discovered == 2
        assert result.total_files_skipped == 0

    def test_skips_binary_and_oversized(self, tmp_path):
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        (tmp_path / "blob.dat").write_bytes(b"abc\x00def")
        (tmp_path / "big.txt").write_text("x" * 100)
        (tmp_path / "ok.txt").write_text("fine")

        result = collect_artifacts(tmp_path, max_bytes=50)

        assert [a.path for a in result.artifacts] == ["ok.txt"]
        assert result.skipped == {"binary": 2, "oversized": 1}

    def test_skip_dirs(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "config").write_text("[core]\n")
        (tmp_path / "node_modules" / "x").mkdir(parents=True)
        (tmp_path / "node_modules" / "x" / "index.js").write_text("x\n")
        (tmp_path / "main.go").write_text("package main\n")

        result = collect_artifacts(tmp_path)

        assert [a.path for a in result.artifacts] == ["main.go"]
        assert result.total_files_discovered == 1

    def test_exclusions(self, tmp_path):
        (tmp_path / "generated").mkdir()
        (tmp_path / "generated" / "api.py").write_text("x = 1\n")
        (tmp_path / "app.min.js").write_text("x\n")
        (tmp_path / "app.js").write_text("x\n")
        cfg = ScanConfig(exclude_paths=["generated/"], exclude_patterns=["*.min.js"])

        result = collect_artifacts(tmp_path, cfg)

        assert [a.path for a in result.artifacts] == ["app.js"]
        assert result.skipped == {"excluded": 2}

    def test_language_detected(self, tmp_path):
        (tmp_path / "config.yaml").write_text("a: 1\n")
        artifact = collect_artifacts(tmp_path).artifacts[0]
        assert artifact.language.value == "yaml"


class TestArtifactsFromFiles:
    def test_relative_to_base(self, tmp_path):
        (tmp_path / "pkg").mkdir()
        path = tmp_path / "pkg" / "settings.py"
        path.write_text("x = 1\n")

        result = artifacts_from_files([path], base=tmp_path)

        assert [a.path for a in result.artifacts] == ["pkg/settings.py"]
        assert result.artifacts[0].content == b"x = 1\n"

    def test_missing_and_duplicate(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("x\n")

        result = artifacts_from_files([path, path, tmp_path / "gone.py"], base=tmp_path)

        assert [a.path for a in result.artifacts] == ["a.py"]
        assert result.skipped == {"missing": 1}


class TestIgnoreList:
    def test_missing_file_is_empty(self, tmp_path):
        ignore = IgnoreList.load(tmp_path / ".ghostguard-ignore")
        assert len(ignore) == 0

    def test_load_skips_comments_and_junk(self, tmp_path, caplog):
        path = tmp_path / ".ghostguard-ignore"
        path.write_text(f"# accepted test keys\n{FP_A}  # fixture key\n\nnot-a-fingerprint\n{FP_B.upper()}\n")

        ignore = IgnoreList.load(path)

        assert len(ignore) == 2
        assert FP_A in ignore
        assert FP_B in ignore
        assert "not a fingerprint" in caplog.text

    def test_add_appends(self, tmp_path):
        path = tmp_path / ".ghostguard-ignore"
        path.write_text(FP_A)  # no trailing newline

        ignore = IgnoreList.load(path)
        assert ignore.add(FP_B, note="sample data") is True
        assert ignore.add(FP_B) is False

        assert path.read_text() == f"{FP_A}\n{FP_B}  # sample data\n"
        assert FP_B in IgnoreList.load(path)

    def test_add_rejects_invalid(self, tmp_path):
        ignore = IgnoreList(tmp_path / ".ghostguard-ignore")
        with pytest.raises(ValueError):
            ignore.add("deadbeef")
