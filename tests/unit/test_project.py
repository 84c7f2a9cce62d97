"""Unit tests for project root resolution."""

from pathlib import Path
from unittest.mock import patch

from ccapprove import project
from ccapprove.project import clear_project_root_cache, resolve_project_root


class TestResolveProjectRoot:
    """Nearest ancestor containing .git, or None."""

    def test_cwd_is_root(self, tmp_path):
        (tmp_path / ".git").mkdir()
        assert resolve_project_root(str(tmp_path)) == str(tmp_path.resolve())

    def test_nested_directory(self, tmp_path):
        (tmp_path / ".git").mkdir()
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        assert resolve_project_root(str(nested)) == str(tmp_path.resolve())

    def test_nearest_marker_wins(self, tmp_path):
        (tmp_path / ".git").mkdir()
        inner = tmp_path / "vendor" / "lib"
        (inner / ".git").mkdir(parents=True)
        assert resolve_project_root(str(inner)) == str(inner.resolve())

    def test_git_file_marks_worktree(self, tmp_path):
        (tmp_path / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n")
        assert resolve_project_root(str(tmp_path)) == str(tmp_path.resolve())

    def test_no_marker(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()
        with patch.object(project, "PROJECT_MARKER", ".no-such-marker"):
            assert resolve_project_root(str(plain)) is None

    def test_none_and_empty(self):
        assert resolve_project_root(None) is None
        assert resolve_project_root("") is None

    def test_memoized_per_process(self, tmp_path):
        (tmp_path / ".git").mkdir()
        first = resolve_project_root(str(tmp_path))
        with patch.object(Path, "exists", side_effect=AssertionError("walked again")):
            assert resolve_project_root(str(tmp_path)) == first

    def test_cache_clear(self, tmp_path):
        assert resolve_project_root(str(tmp_path)) != str(tmp_path.resolve())
        (tmp_path / ".git").mkdir()
        clear_project_root_cache()
        assert resolve_project_root(str(tmp_path)) == str(tmp_path.resolve())
