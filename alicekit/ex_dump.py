"""
Text projection of EX documents.

Renders a document as nested, human-readable text for inspection and
diffing. The output is deterministic and keeps block/row/child order, but
it is not meant to be parsed back.
"""

import os
import re
from typing import Dict, List, Optional, TextIO

import numpy as np

from .errors import DumpError
from .types import ExDocument, ExField, ExList, ExTable, ExTree, ExType, ExValue

INDENT = "\t"
_IDENT_RE = re.compile(r"^[^\W\d]\w*$")
_UNSAFE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_RESERVED = {"con", "prn", "aux", "nul"} | {f"com{i}" for i in range(1, 10)} | {f"lpt{i}" for i in range(1, 10)}


def quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def format_name(name: str) -> str:
    return name if _IDENT_RE.match(name) else quote(name)


def format_float(f: float) -> str:
    # shortest text that reads back as the same 32-bit float
    return str(np.float32(f))


def format_field(f: ExField) -> str:
    text = f"{f.type.label} {format_name(f.name)}"
    if f.subfields:
        text += " { " + ", ".join(format_field(s) for s in f.subfields) + " }"
    return text


def format_value(value: ExValue, depth: int = 0) -> str:
    t = value.type
    if t == ExType.INT:
        return str(value.value)
    elif t == ExType.FLOAT:
        return format_float(value.value)
    elif t == ExType.STRING:
        return quote(value.value)
    elif t == ExType.TABLE:
        return _format_table(value.value, depth)
    elif t == ExType.LIST:
        return _format_list(value.value, depth)
    elif t == ExType.TREE:
        return _format_tree(value.value, depth)
    raise AssertionError(f"unhandled type {t!r}")


def _format_table(table: ExTable, depth: int) -> str:
    inner = INDENT * (depth + 1)
    lines = ["{"]
    lines.append(inner + "{ " + ", ".join(format_field(f) for f in table.fields) + " },")
    for row in table.rows:
        cells = ", ".join(format_value(cell, depth + 1) for cell in row)
        lines.append(inner + "{ " + cells + " },")
    lines.append(INDENT * depth + "}")
    return "\n".join(lines)


def _format_list(lst: ExList, depth: int) -> str:
    if not lst.items:
        return "[]"
    inner = INDENT * (depth + 1)
    lines = ["["]
    for item in lst.items:
        lines.append(inner + format_value(item, depth + 1) + ",")
    lines.append(INDENT * depth + "]")
    return "\n".join(lines)


def _format_tree(tree: ExTree, depth: int) -> str:
    if tree.is_leaf:
        return f"leaf {format_name(tree.name)} = {format_value(tree.value, depth)}"
    if not tree.children:
        return "{}"
    inner = INDENT * (depth + 1)
    lines = ["{"]
    for child in tree.children:
        lines.append(f"{inner}{format_name(child.name)} = {format_value(child.value, depth + 1)};")
    lines.append(INDENT * depth + "}")
    return "\n".join(lines)


def format_block(name: str, value: ExValue) -> str:
    return f"{value.type.label} {format_name(name)} = {format_value(value)};\n"


def dump(document: ExDocument, out: Optional[TextIO] = None) -> str:
    """Render the whole document; also written to ``out`` when given."""
    text = "".join(format_block(b.name, b.value) for b in document.blocks)
    if out is not None:
        out.write(text)
    return text


def sanitize_name(name: str) -> str:
    """Turn a block name into a file stem that is safe on common filesystems."""
    stem = _UNSAFE_RE.sub("_", name).strip(" .")
    if not stem:
        stem = "_"
    if stem.lower() in _RESERVED:
        stem = "_" + stem
    return stem


def dump_split(document: ExDocument, directory, out: Optional[TextIO] = None) -> str:
    """Write one ``<stem>.x`` file per block into ``directory``.

    Returns the index text (one ``#include`` line per block, in block
    order), which is also written to ``out`` when given.

    Raises:
        DumpError: two blocks map to the same file name. Nothing is written.
    """
    stems: List[str] = []
    seen: Dict[str, str] = {}
    for block in document.blocks:
        stem = sanitize_name(block.name)
        key = stem.lower()
        if key in seen:
            raise DumpError(
                "Block names collide after sanitizing",
                first=seen[key], second=block.name, file=f"{stem}.x",
            )
        seen[key] = block.name
        stems.append(stem)

    try:
        os.makedirs(directory, exist_ok=True)
        for stem, block in zip(stems, document.blocks):
            with open(os.path.join(directory, f"{stem}.x"), "w", encoding="utf-8", newline="\n") as f:
                f.write(format_block(block.name, block.value))
    except OSError as e:
        raise DumpError(f"Could not write split dump: {e}", directory=str(directory)) from e

    index = "".join(f'#include "{stem}.x"\n' for stem in stems)
    if out is not None:
        out.write(index)
    return index
