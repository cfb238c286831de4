"""
Browsable tree over EX documents and archives.

Builds the node hierarchy a viewer displays: EX blocks, table rows and
columns, list items, tree children and archive files. EX and FLAT files
found inside an archive are expanded in place. Nodes are read-only views;
call ``close()`` on the root to release nested archives.
"""

import enum
import logging
from typing import List, Optional

from . import ex
from .archive import Archive, ArchiveEntry, open_nested
from .errors import AliceError
from .types import ExDocument, ExField, ExTable, ExType, ExValue

logger = logging.getLogger(__name__)

COLUMNS = ("Name", "Type", "Value")


class NodeType(enum.Enum):
    ROOT = "root"
    EX_KEY = "ex_key"      # named EX value (block, column, tree child)
    EX_INDEX = "ex_index"  # list item
    EX_ROW = "ex_row"      # table row
    FILE = "file"          # archive entry


class FileKind(enum.Enum):
    NORMAL = "normal"
    EX = "ex"
    ARCHIVE = "archive"


class Node:
    def __init__(self, type: NodeType):
        self.type = type
        self.parent: Optional["Node"] = None
        self.children: List["Node"] = []
        self.key = None
        self.value: Optional[ExValue] = None
        self.entry: Optional[ArchiveEntry] = None
        self.file_kind = FileKind.NORMAL
        self.document: Optional[ExDocument] = None
        self.archive: Optional[Archive] = None
        self.warnings: List[str] = []

    def __repr__(self):
        return f"<Node {self.type.value} {self.data(0)!r}>"

    # tree structure ---------------------------------------------------------

    def append_child(self, child: "Node"):
        child.parent = self
        self.children.append(child)

    def child(self, i: int) -> Optional["Node"]:
        if 0 <= i < len(self.children):
            return self.children[i]
        return None

    def row(self) -> int:
        if self.parent is None:
            return 0
        return self.parent.children.index(self)

    def child_count(self) -> int:
        return len(self.children)

    def column_count(self) -> int:
        return len(COLUMNS)

    def data(self, column: int):
        """Display value for Name (0), Type (1) or Value (2)."""
        if self.type == NodeType.ROOT:
            return COLUMNS[column] if 0 <= column < len(COLUMNS) else None
        if column == 0:
            if self.type == NodeType.EX_KEY:
                return self.key
            if self.type in (NodeType.EX_INDEX, NodeType.EX_ROW):
                return f"[{self.key}]"
            if self.type == NodeType.FILE:
                return self.entry.name
        elif column == 1:
            if self.type in (NodeType.EX_KEY, NodeType.EX_INDEX):
                return self.value.type.label
            if self.type == NodeType.EX_ROW:
                return "row"
        elif column == 2:
            if self.type in (NodeType.EX_KEY, NodeType.EX_INDEX) and self.value.is_scalar:
                return self.value.value
        return None

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def close(self):
        """Close nested archives opened while building this subtree."""
        for child in self.children:
            child.close()
        if self.archive is not None and self.file_kind == FileKind.ARCHIVE:
            self.archive.close()
            self.archive = None

    # EX ---------------------------------------------------------------------

    def _append_ex_value_children(self, value: ExValue):
        t = value.type
        if t == ExType.TABLE:
            table = value.value
            for i in range(table.nr_rows):
                self.append_child(_row_node(i, table, table.fields))
        elif t == ExType.LIST:
            for i, item in enumerate(value.value.items):
                self.append_child(_key_value(NodeType.EX_INDEX, i, item))
        elif t == ExType.TREE:
            tree = value.value
            if tree.is_leaf:
                # a leaf stands in for its single named value
                self.key = tree.name
                self.value = tree.value
                self._append_ex_value_children(tree.value)
            else:
                for child in tree.children:
                    self.append_child(_key_value(NodeType.EX_KEY, child.name, child.value))

    def append_ex_children(self, document: ExDocument):
        for block in document.blocks:
            self.append_child(_key_value(NodeType.EX_KEY, block.name, block.value))

    # archives ---------------------------------------------------------------

    def append_archive_children(self, archive: Archive, encoding: Optional[str] = None):
        for entry in archive:
            self.append_child(_file_node(entry, encoding))


def _key_value(type: NodeType, key, value: ExValue) -> Node:
    node = Node(type)
    node.key = key
    node.value = value
    node._append_ex_value_children(value)
    return node


def _row_node(index: int, table: ExTable, fields: List[ExField]) -> Node:
    node = Node(NodeType.EX_ROW)
    node.key = index
    n = len(fields)
    if n != table.nr_columns:
        msg = f"row {index}: {table.nr_columns} columns but {n} fields"
        logger.warning("Field/column count mismatch: %s", msg)
        node.warnings.append(msg)
        n = min(n, table.nr_columns)
    for col in range(n):
        node.append_child(_column_node(table.rows[index][col], fields[col]))
    return node


def _column_node(value: ExValue, f: ExField) -> Node:
    node = Node(NodeType.EX_KEY)
    node.key = f.name
    node.value = value
    if value.type == ExType.TABLE:
        sub = value.value
        for i in range(sub.nr_rows):
            node.append_child(_row_node(i, sub, f.subfields))
    return node


def _file_node(entry: ArchiveEntry, encoding: Optional[str]) -> Node:
    node = Node(NodeType.FILE)
    node.entry = entry.copy()
    ext = entry.extension
    if ext in ("ex", "pactex"):
        try:
            with entry.loaded() as data:
                document = ex.parse(data, encoding)
        except AliceError as e:
            logger.warning("%s: not a readable EX file: %s", entry.name, e)
            return node
        node.file_kind = FileKind.EX
        node.document = document
        node.append_ex_children(document)
    elif ext == "flat":
        try:
            nested = open_nested(entry, encoding)
        except AliceError as e:
            logger.warning("%s: not a readable FLAT file: %s", entry.name, e)
            return node
        node.file_kind = FileKind.ARCHIVE
        node.archive = nested
        node.append_archive_children(nested, encoding)
    return node


def from_ex(document: ExDocument) -> Node:
    root = Node(NodeType.ROOT)
    root.append_ex_children(document)
    return root


def from_archive(archive: Archive, encoding: Optional[str] = None) -> Node:
    root = Node(NodeType.ROOT)
    root.append_archive_children(archive, encoding)
    return root
