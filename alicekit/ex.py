"""
EX document codec.

EX files store structured game data as a list of named blocks. Each block
holds a recursively encoded value:

    "HEAD" u32 0x0C "EXTF" u32 version u32 nr_blocks
    block  := string name, value
    value  := u32 type, payload
    string := i32 byte length, bytes in the document encoding

Tables carry their field schema on the wire, except tables stored in a
table cell: those take their schema from the subfields of the enclosing
column.
"""

import logging
from typing import List, Optional

from . import config
from .errors import FormatError
from .reader import BinaryReader, BinaryWriter
from .types import (
    ExBlock,
    ExDocument,
    ExField,
    ExList,
    ExTable,
    ExTree,
    ExType,
    ExValue,
)

logger = logging.getLogger(__name__)

MAGIC = b"HEAD"
HEADER_SIZE = 0x0C
FORMAT_TAG = b"EXTF"
VERSION = 1

TREE_INTERIOR = 0
TREE_LEAF = 1

# Smallest possible encodings, used to reject impossible counts early
MIN_VALUE_SIZE = 8   # type tag + 4 byte payload
MIN_FIELD_SIZE = 12  # type tag + empty name + subfield count
MIN_NAMED_VALUE_SIZE = 4 + MIN_VALUE_SIZE


class ExParser:
    """Recursive-descent parser producing an ExDocument."""

    def __init__(self, data: bytes, encoding: str):
        self.reader = BinaryReader(data)
        self.encoding = encoding
        self.warnings: List[str] = []

    def parse(self) -> ExDocument:
        r = self.reader
        if r.remaining() < 20 or r.read_bytes(4) != MAGIC:
            raise FormatError("Not an EX document (missing HEAD marker)", offset=0)
        header_size = r.read_uint32()
        if header_size != HEADER_SIZE:
            raise FormatError("Unexpected EX header size", offset=4, header_size=header_size)
        if r.read_bytes(4) != FORMAT_TAG:
            raise FormatError("Not an EX document (missing EXTF marker)", offset=8)
        version = r.read_uint32()
        if version != VERSION:
            raise FormatError("Unsupported EX version", offset=12, version=version)

        nr_blocks = r.read_count(MIN_NAMED_VALUE_SIZE, "blocks")
        blocks = []
        for i in range(nr_blocks):
            name = self._read_string(f"block {i} name")
            path = name or f"block {i}"
            blocks.append(ExBlock(name, self._read_value(path, 0)))

        if r.remaining():
            raise FormatError(
                "Trailing data after last block", offset=r.tell(), remaining=r.remaining()
            )
        return ExDocument(blocks=blocks, encoding=self.encoding, warnings=self.warnings)

    def _read_string(self, path: str) -> str:
        try:
            return self.reader.read_string(self.encoding)
        except FormatError as e:
            e.context.setdefault("path", path)
            raise

    def _read_type(self, path: str) -> ExType:
        start = self.reader.tell()
        tag = self.reader.read_uint32()
        try:
            return ExType(tag)
        except ValueError:
            raise FormatError("Unknown value type", offset=start, tag=tag, path=path) from None

    def _read_value(self, path: str, depth: int, supplied: Optional[List[ExField]] = None) -> ExValue:
        return self._read_payload(self._read_type(path), path, depth, supplied)

    def _read_payload(self, t: ExType, path: str, depth: int,
                      supplied: Optional[List[ExField]] = None) -> ExValue:
        r = self.reader
        if depth > config.MAX_EX_DEPTH:
            raise FormatError("Values nested too deeply", offset=r.tell(), path=path)

        if t == ExType.INT:
            return ExValue(t, r.read_int32())
        elif t == ExType.FLOAT:
            return ExValue(t, r.read_float())
        elif t == ExType.STRING:
            return ExValue(t, self._read_string(path))
        elif t == ExType.TABLE:
            return ExValue(t, self._read_table(path, depth, supplied))
        elif t == ExType.LIST:
            count = r.read_count(MIN_VALUE_SIZE, "list items")
            items = [self._read_value(f"{path}[{i}]", depth + 1) for i in range(count)]
            return ExValue(t, ExList(items))
        elif t == ExType.TREE:
            return ExValue(t, self._read_tree(path, depth))
        raise AssertionError(f"unhandled type {t!r}")

    def _read_field(self, path: str, depth: int) -> ExField:
        start = self.reader.tell()
        t = self._read_type(path)
        name = self._read_string(path)
        nr_subfields = self.reader.read_count(MIN_FIELD_SIZE, "subfields")
        if nr_subfields and t != ExType.TABLE:
            raise FormatError(
                "Subfields on a non-table field", offset=start, field=name, path=path
            )
        if depth > config.MAX_EX_DEPTH:
            raise FormatError("Fields nested too deeply", offset=start, path=path)
        subfields = [self._read_field(f"{path}.{name}", depth + 1) for _ in range(nr_subfields)]
        return ExField(t, name, subfields)

    def _read_table(self, path: str, depth: int, supplied: Optional[List[ExField]]) -> ExTable:
        r = self.reader
        start = r.tell()
        nr_rows = r.read_uint32()
        nr_columns = r.read_uint32()

        if supplied is None:
            nr_fields = r.read_count(MIN_FIELD_SIZE, "fields")
            fields = [self._read_field(path, depth + 1) for _ in range(nr_fields)]
        else:
            fields = supplied

        if nr_rows * nr_columns * MIN_VALUE_SIZE > r.remaining():
            raise FormatError(
                "Table cells exceed remaining data",
                offset=start, rows=nr_rows, columns=nr_columns, path=path,
            )

        warnings = []
        if len(fields) != nr_columns:
            msg = (f"{path}: table has {nr_columns} columns but {len(fields)} fields; "
                   f"using {min(len(fields), nr_columns)}")
            logger.warning(msg)
            warnings.append(msg)
            self.warnings.append(msg)

        rows = []
        for y in range(nr_rows):
            row = []
            for x in range(nr_columns):
                sub = fields[x].subfields if x < len(fields) else []
                label = fields[x].name if x < len(fields) else str(x)
                row.append(self._read_value(f"{path}[{y}].{label}", depth + 1, sub))
            rows.append(row)
        return ExTable(fields=fields, rows=rows, nr_columns=nr_columns, warnings=warnings)

    def _read_tree(self, path: str, depth: int) -> ExTree:
        r = self.reader
        start = r.tell()
        kind = r.read_uint32()
        if kind == TREE_LEAF:
            name = self._read_string(path)
            value = self._read_value(f"{path}/{name}", depth + 1)
            end = r.tell()
            nr_children = r.read_uint32()
            if nr_children != 0:
                raise FormatError(
                    "Tree leaf also declares children",
                    offset=end, children=nr_children, path=path,
                )
            return ExTree.leaf(name, value)
        elif kind == TREE_INTERIOR:
            count = r.read_count(MIN_NAMED_VALUE_SIZE, "tree children")
            children = []
            for _ in range(count):
                name = self._read_string(path)
                children.append((name, self._read_value(f"{path}/{name}", depth + 1)))
            return ExTree.interior(children)
        raise FormatError("Invalid tree node kind", offset=start, kind=kind, path=path)


class ExSerializer:
    """Writes an ExDocument back to its exact wire form."""

    def __init__(self, encoding: str):
        self.writer = BinaryWriter()
        self.encoding = encoding

    def serialize(self, document: ExDocument) -> bytes:
        w = self.writer
        w.write_bytes(MAGIC)
        w.write_uint32(HEADER_SIZE)
        w.write_bytes(FORMAT_TAG)
        w.write_uint32(VERSION)
        w.write_uint32(len(document.blocks))
        for block in document.blocks:
            w.write_string(block.name, self.encoding)
            self._write_value(block.value)
        return w.getvalue()

    def _write_value(self, value: ExValue, in_table: bool = False):
        self.writer.write_uint32(value.type)
        self._write_payload(value, in_table)

    def _write_payload(self, value: ExValue, in_table: bool):
        w = self.writer
        t = value.type
        if t == ExType.INT:
            w.write_int32(value.value)
        elif t == ExType.FLOAT:
            w.write_float(value.value)
        elif t == ExType.STRING:
            w.write_string(value.value, self.encoding)
        elif t == ExType.TABLE:
            self._write_table(value.value, in_table)
        elif t == ExType.LIST:
            w.write_uint32(len(value.value.items))
            for item in value.value.items:
                self._write_value(item)
        elif t == ExType.TREE:
            self._write_tree(value.value)
        else:
            raise AssertionError(f"unhandled type {t!r}")

    def _write_field(self, f: ExField):
        w = self.writer
        w.write_uint32(f.type)
        w.write_string(f.name, self.encoding)
        w.write_uint32(len(f.subfields))
        for sub in f.subfields:
            self._write_field(sub)

    def _write_table(self, table: ExTable, in_table: bool):
        w = self.writer
        w.write_uint32(len(table.rows))
        w.write_uint32(table.nr_columns)
        if not in_table:
            w.write_uint32(len(table.fields))
            for f in table.fields:
                self._write_field(f)
        for row in table.rows:
            for cell in row:
                self._write_value(cell, in_table=True)

    def _write_tree(self, tree: ExTree):
        w = self.writer
        if tree.is_leaf:
            w.write_uint32(TREE_LEAF)
            w.write_string(tree.name, self.encoding)
            self._write_value(tree.value)
            w.write_uint32(0)
        else:
            w.write_uint32(TREE_INTERIOR)
            w.write_uint32(len(tree.children))
            for child in tree.children:
                w.write_string(child.name, self.encoding)
                self._write_value(child.value)


def parse(data: bytes, encoding: Optional[str] = None) -> ExDocument:
    """Parse an EX document.

    Args:
        data: Raw file contents
        encoding: Text encoding of strings in the document (default: config.INPUT_ENCODING)

    Raises:
        FormatError: the document is malformed; ``offset`` points at the problem
    """
    return ExParser(data, encoding or config.INPUT_ENCODING).parse()


def parse_file(path, encoding: Optional[str] = None) -> ExDocument:
    with open(path, "rb") as f:
        return parse(f.read(), encoding)


def serialize(document: ExDocument, encoding: Optional[str] = None) -> bytes:
    """Serialize a document, by default in the encoding it was read with."""
    encoding = encoding or document.encoding or config.INPUT_ENCODING
    return ExSerializer(encoding).serialize(document)


def write_file(path, document: ExDocument, encoding: Optional[str] = None):
    with open(path, "wb") as f:
        f.write(serialize(document, encoding))


def is_ex(data: bytes) -> bool:
    """Cheap signature check used when sniffing archive entries."""
    return data[:4] == MAGIC and data[8:12] == FORMAT_TAG
