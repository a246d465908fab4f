"""Unit tests for FileTree."""

from pathlib import PurePosixPath

import pytest

from codeindex.services.tree import FileTree


@pytest.fixture
def tree() -> FileTree:
    return FileTree.from_paths(
        "/repo",
        [
            "/repo/src/pkg/b.py",
            "/repo/README.md",
            "/repo/src/pkg/a.py",
            "/repo/src/main.py",
            "/repo/docs/guide.md",
        ],
    )


class TestFileTree:
    """Tests for building and traversing the arena."""

    def test_files_are_sorted_depth_first(self, tree: FileTree) -> None:
        assert tree.files() == [
            "README.md",
            "docs/guide.md",
            "src/main.py",
            "src/pkg/a.py",
            "src/pkg/b.py",
        ]

    def test_directories_respect_depth(self, tree: FileTree) -> None:
        assert tree.directories() == ["docs", "src", "src/pkg"]
        assert tree.directories(max_depth=1) == ["docs", "src"]

    def test_shared_directories_are_not_duplicated(self, tree: FileTree) -> None:
        # root, README.md, docs, guide.md, src, main.py, pkg, a.py, b.py
        assert len(tree) == 9

    def test_add_returns_existing_node(self, tree: FileTree) -> None:
        node_id = tree.add(PurePosixPath("src/main.py"))

        assert tree.path_of(node_id) == "src/main.py"
        assert len(tree) == 9

    def test_render_indents_by_depth(self) -> None:
        tree = FileTree.from_paths("/repo", ["/repo/src/app.py", "/repo/setup.cfg"])

        assert tree.render() == ["repo/", "  setup.cfg", "  src/", "    app.py"]

    def test_root_path(self, tree: FileTree) -> None:
        assert tree.path_of(FileTree.ROOT) == "."

    def test_path_outside_root_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            FileTree.from_paths("/repo", ["/elsewhere/file.py"])

    def test_empty_tree(self) -> None:
        tree = FileTree.from_paths("/repo", [])

        assert tree.files() == []
        assert tree.render() == ["repo/"]
