"""
Value model for EX documents.

An EX value is a tagged variant: ``ExValue.type`` says which payload is
held in ``ExValue.value``. Consumers dispatch on the tag.
"""

import enum
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

import numpy as np


class ExType(enum.IntEnum):
    INT = 1
    FLOAT = 2
    STRING = 3
    TABLE = 4
    LIST = 5
    TREE = 6

    @property
    def label(self) -> str:
        return self.name.lower()


INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


@dataclass
class ExValue:
    """One EX value. Exactly one variant is active, selected by ``type``."""
    type: ExType
    value: Union[int, np.float32, str, "ExTable", "ExList", "ExTree"]

    def __post_init__(self):
        self.type = ExType(self.type)
        expected = _PAYLOAD_TYPES[self.type]
        # bool is an int subclass but never a valid EX payload
        if isinstance(self.value, bool) or not isinstance(self.value, expected):
            raise TypeError(
                f"{self.type.label} value needs {expected}, got {type(self.value).__name__}"
            )
        if self.type == ExType.INT and not INT32_MIN <= self.value <= INT32_MAX:
            raise ValueError(f"int value out of 32-bit range: {self.value}")
        if self.type == ExType.FLOAT and not isinstance(self.value, np.float32):
            self.value = np.float32(self.value)

    @classmethod
    def from_int(cls, i: int) -> "ExValue":
        return cls(ExType.INT, i)

    @classmethod
    def from_float(cls, f: float) -> "ExValue":
        return cls(ExType.FLOAT, f)

    @classmethod
    def from_string(cls, s: str) -> "ExValue":
        return cls(ExType.STRING, s)

    @classmethod
    def from_table(cls, t: "ExTable") -> "ExValue":
        return cls(ExType.TABLE, t)

    @classmethod
    def from_list(cls, items: List["ExValue"]) -> "ExValue":
        return cls(ExType.LIST, ExList(list(items)))

    @classmethod
    def from_tree(cls, t: "ExTree") -> "ExValue":
        return cls(ExType.TREE, t)

    @property
    def is_scalar(self) -> bool:
        return self.type in (ExType.INT, ExType.FLOAT, ExType.STRING)


@dataclass
class ExField:
    """Column descriptor. ``subfields`` describe the columns of a TABLE column."""
    type: ExType
    name: str
    subfields: List["ExField"] = field(default_factory=list)

    def __post_init__(self):
        self.type = ExType(self.type)
        if self.subfields and self.type != ExType.TABLE:
            raise ValueError(f"field {self.name!r} is {self.type.label} but has subfields")


@dataclass
class ExTable:
    """Row-major grid of values.

    ``nr_columns`` is the stored row width and every row has exactly that
    many cells. ``fields`` is the schema, which may disagree with the row
    width in malformed data; ``columns()`` and ``view()`` only expose the
    overlapping part in that case and ``warnings`` says so.
    """
    fields: List[ExField] = field(default_factory=list)
    rows: List[List[ExValue]] = field(default_factory=list)
    nr_columns: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.nr_columns is None:
            self.nr_columns = len(self.rows[0]) if self.rows else len(self.fields)
        for i, row in enumerate(self.rows):
            if len(row) != self.nr_columns:
                raise ValueError(f"row {i} has {len(row)} cells, expected {self.nr_columns}")

    @property
    def nr_rows(self) -> int:
        return len(self.rows)

    @property
    def width_mismatch(self) -> bool:
        return len(self.fields) != self.nr_columns

    def columns(self) -> int:
        """Number of columns usable with the schema: min(fields, row width)."""
        return min(len(self.fields), self.nr_columns)

    def row_items(self, index: int) -> List[Tuple[ExField, ExValue]]:
        """(field, value) pairs of one row, trimmed to ``columns()``."""
        row = self.rows[index]
        return [(self.fields[c], row[c]) for c in range(self.columns())]

    def view(self) -> List[List[Tuple[ExField, ExValue]]]:
        return [self.row_items(i) for i in range(len(self.rows))]


@dataclass
class ExList:
    items: List[ExValue] = field(default_factory=list)

    def __len__(self):
        return len(self.items)

    def __iter__(self) -> Iterator[ExValue]:
        return iter(self.items)

    def __getitem__(self, i) -> ExValue:
        return self.items[i]


class ExTreeChild(NamedTuple):
    name: str
    value: ExValue


@dataclass
class ExTree:
    """Tree node: a named leaf holding one value, or an interior node with children."""
    is_leaf: bool
    name: Optional[str] = None
    value: Optional[ExValue] = None
    children: List[ExTreeChild] = field(default_factory=list)

    def __post_init__(self):
        if self.is_leaf:
            if self.name is None or self.value is None:
                raise ValueError("tree leaf needs a name and a value")
            if self.children:
                raise ValueError("tree leaf cannot have children")
        else:
            if self.value is not None or self.name is not None:
                raise ValueError("interior tree node cannot carry a payload")
        self.children = [ExTreeChild(*c) for c in self.children]

    @classmethod
    def leaf(cls, name: str, value: ExValue) -> "ExTree":
        return cls(is_leaf=True, name=name, value=value)

    @classmethod
    def interior(cls, children: List[Tuple[str, ExValue]]) -> "ExTree":
        return cls(is_leaf=False, children=list(children))

    def child(self, name: str) -> Optional[ExValue]:
        for c in self.children:
            if c.name == name:
                return c.value
        return None


class ExBlock(NamedTuple):
    name: str
    value: ExValue


@dataclass
class ExDocument:
    """A parsed EX file: ordered top-level blocks."""
    blocks: List[ExBlock] = field(default_factory=list)
    encoding: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def __len__(self):
        return len(self.blocks)

    def __iter__(self) -> Iterator[ExBlock]:
        return iter(self.blocks)

    def __getitem__(self, i) -> ExBlock:
        return self.blocks[i]

    def find(self, name: str) -> Optional[ExValue]:
        for block in self.blocks:
            if block.name == name:
                return block.value
        return None


_PAYLOAD_TYPES = {
    ExType.INT: int,
    ExType.FLOAT: (float, int, np.floating),
    ExType.STRING: str,
    ExType.TABLE: ExTable,
    ExType.LIST: ExList,
    ExType.TREE: ExTree,
}
