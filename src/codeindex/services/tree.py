"""Directory tree reconstructed from indexed file paths."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import PurePath, PurePosixPath


@dataclass
class TreeNode:
    name: str
    parent: int | None
    is_dir: bool
    children: dict[str, int] = field(default_factory=dict)


class FileTree:
    """Arena of directory and file nodes addressed by integer id.

    Node 0 is the root. Children are stored as name → id maps and every
    traversal visits them sorted by name.
    """

    ROOT = 0

    def __init__(self, root_name: str = ".") -> None:
        self._nodes: list[TreeNode] = [TreeNode(name=root_name, parent=None, is_dir=True)]

    @classmethod
    def from_paths(cls, root: str | PurePath, paths: Iterable[str | PurePath]) -> "FileTree":
        """Build a tree from absolute file paths under ``root``.

        Raises:
            ValueError: If a path is not under root.
        """
        root_path = PurePath(root)
        tree = cls(root_name=root_path.name or str(root_path))
        for path in paths:
            tree.add(PurePath(path).relative_to(root_path))
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: int) -> TreeNode:
        return self._nodes[node_id]

    def add(self, relative: PurePath) -> int:
        """Insert a file and any missing parent directories, returning the file's id."""
        parts = relative.parts
        if not parts:
            raise ValueError("cannot add an empty path")

        current = self.ROOT
        for depth, part in enumerate(parts):
            is_dir = depth < len(parts) - 1
            child = self._nodes[current].children.get(part)
            if child is None:
                child = len(self._nodes)
                self._nodes.append(TreeNode(name=part, parent=current, is_dir=is_dir))
                self._nodes[current].children[part] = child
            elif is_dir:
                self._nodes[child].is_dir = True
            current = child
        return current

    def path_of(self, node_id: int) -> str:
        """Root-relative POSIX path of a node."""
        parts: list[str] = []
        current: int | None = node_id
        while current is not None and current != self.ROOT:
            node = self._nodes[current]
            parts.append(node.name)
            current = node.parent
        return str(PurePosixPath(*reversed(parts))) if parts else "."

    def walk(self, node_id: int = ROOT, max_depth: int | None = None) -> Iterator[tuple[int, int]]:
        """Depth-first (node id, depth) pairs below ``node_id`` in name order."""
        stack = [(child, 1) for _, child in sorted(self._nodes[node_id].children.items(), reverse=True)]
        while stack:
            current, depth = stack.pop()
            if max_depth is not None and depth > max_depth:
                continue
            yield current, depth
            children = sorted(self._nodes[current].children.items(), reverse=True)
            stack.extend((child, depth + 1) for _, child in children)

    def files(self) -> list[str]:
        return [self.path_of(node_id) for node_id, _ in self.walk() if not self._nodes[node_id].is_dir]

    def directories(self, max_depth: int | None = None) -> list[str]:
        return [self.path_of(node_id) for node_id, _ in self.walk(max_depth=max_depth) if self._nodes[node_id].is_dir]

    def render(self, max_depth: int | None = None) -> list[str]:
        """Indented lines, directories suffixed with '/'."""
        lines = [f"{self._nodes[self.ROOT].name}/"]
        for node_id, depth in self.walk(max_depth=max_depth):
            node = self._nodes[node_id]
            lines.append(f"{'  ' * depth}{node.name}{'/' if node.is_dir else ''}")
        return lines
