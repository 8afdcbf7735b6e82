"""Tests for the pyduh command-line entry point."""

import os
import sys

import pytest
import pyduh
from pyduh import main


@pytest.fixture
def sample_root(tmp_path):
    (tmp_path / ".gitignore").write_text("build/\n")
    (tmp_path / "keep.txt").write_bytes(b"k" * 4096)
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "out.log").write_bytes(b"o" * 8192)
    return tmp_path


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["pyduh", "-q", *argv])
    main()


def output_paths(out):
    return [line.split(None, 1)[1] for line in out.splitlines() if line.strip()]


class TestMain:
    """Test main function."""

    def test_directories_only(self, monkeypatch, capsys, sample_root):
        run(monkeypatch, "-A", str(sample_root))
        paths = output_paths(capsys.readouterr().out)
        assert paths == [str(sample_root), os.path.join(str(sample_root), "build")]

    def test_show_files(self, monkeypatch, capsys, sample_root):
        run(monkeypatch, "-A", "-a", str(sample_root))
        paths = output_paths(capsys.readouterr().out)
        root = str(sample_root)
        assert paths == [
            root,
            os.path.join(root, "build"),
            os.path.join(root, "build", "out.log"),
            os.path.join(root, "keep.txt"),
        ]

    def test_summarize(self, monkeypatch, capsys, sample_root):
        run(monkeypatch, "-s", str(sample_root))
        assert output_paths(capsys.readouterr().out) == [str(sample_root)]

    def test_ignored_mode_sizes(self, monkeypatch, capsys, sample_root):
        run(monkeypatch, "-A", "-a", "--mode", "ignored", str(sample_root))
        lines = capsys.readouterr().out.splitlines()
        sizes = {line.split(None, 1)[1]: line.split()[0] for line in lines}
        assert sizes[os.path.join(str(sample_root), "build", "out.log")] == "16"
        assert os.path.join(str(sample_root), "keep.txt") not in sizes

    def test_multiple_paths(self, monkeypatch, capsys, sample_root):
        first = sample_root / "build"
        run(monkeypatch, "-s", str(first), str(sample_root))
        assert output_paths(capsys.readouterr().out) == [str(first), str(sample_root)]

    def test_summary_logged(self, monkeypatch, capsys, sample_root):
        run(monkeypatch, str(sample_root))
        err = capsys.readouterr().err
        assert "Mode: 'du'" in err
        assert "Visited 4 files, 2 ignored, 2 not ignored" in err

    def test_missing_path(self, monkeypatch, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            run(monkeypatch, str(tmp_path / "missing"))
        assert excinfo.value.code == 1

    def test_web_with_multiple_paths(self, monkeypatch, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            run(monkeypatch, "--web", str(tmp_path), str(tmp_path))
        assert excinfo.value.code == 1

    def test_summarize_with_depth(self, monkeypatch, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            run(monkeypatch, "-s", "-d", "2", str(tmp_path))
        assert excinfo.value.code == 2

    def test_web_serves_sorted_entries(self, monkeypatch, sample_root):
        served = {}

        def fake_view(entries, open_browser=False):
            served["entries"] = entries
            served["open"] = open_browser

        monkeypatch.setattr(pyduh, "view_in_browser", fake_view)
        run(monkeypatch, "--open", str(sample_root))
        keys = [key for key, _ in served["entries"]]
        assert keys == sorted(keys)
        assert served["open"] is True
