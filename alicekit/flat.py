"""
FLAT archive driver (flat-concatenated).

A .flat file is a sequence of tagged chunks ``[tag:4][size:4][payload]``.
It must start with ELNA. Files live in two chunks:

    LIBL  u32 count, then per file: u32 name length, name padded to 4,
          u32 type, u32 data length, data padded to 4
    TALT  u32 count, then per image: u32 data length, data padded to 4

FLAT, TMNL and MTLC chunks carry scene data and are skipped. FLAT files
are usually found inside another archive and opened from memory with
``alicekit.archive.open_nested``.
"""

from typing import List, Tuple

from .archive import ArchiveEntry, ArchiveType, BufferArchive
from .errors import CorruptArchiveError
from .reader import BinaryReader, pad4

KNOWN_CHUNKS = {b"ELNA", b"FLAT", b"TMNL", b"MTLC", b"LIBL", b"TALT"}


class FlatFile:
    def __init__(self, name: str, offset: int, size: int, kind: int):
        self.name = name
        self.offset = offset
        self.size = size
        self.kind = kind


def _read_libl(r: BinaryReader, end: int, encoding: str) -> List[FlatFile]:
    files = []
    count = r.read_count(12, "LIBL entries")
    for i in range(count):
        name_len = r.read_uint32()
        raw = r.read_bytes(pad4(name_len))[:name_len]
        try:
            name = raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise CorruptArchiveError(f"LIBL name is not valid {encoding}", index=i) from e
        kind = r.read_uint32()
        size = r.read_uint32()
        offset = r.tell()
        r.read_bytes(pad4(size))
        files.append(FlatFile(name, offset, size, kind))
    if r.tell() > end:
        raise CorruptArchiveError("LIBL entries overrun chunk", offset=r.tell(), end=end)
    return files


def _read_talt(r: BinaryReader, end: int) -> List[FlatFile]:
    files = []
    count = r.read_count(4, "TALT entries")
    for i in range(count):
        size = r.read_uint32()
        offset = r.tell()
        r.read_bytes(pad4(size))
        files.append(FlatFile(f"talt_{i:04d}", offset, size, -1))
    if r.tell() > end:
        raise CorruptArchiveError("TALT entries overrun chunk", offset=r.tell(), end=end)
    return files


def parse_chunks(data: bytes, encoding: str) -> Tuple[List[FlatFile], List[bytes]]:
    """Walk the chunk sequence. Returns the files and the chunk tags seen."""
    r = BinaryReader(data, error=CorruptArchiveError)
    files: List[FlatFile] = []
    tags = []
    while r.remaining():
        start = r.tell()
        tag = r.read_bytes(4)
        size = r.read_uint32()
        if not tags and tag != b"ELNA":
            raise CorruptArchiveError("FLAT file does not start with ELNA", tag=tag)
        if tag not in KNOWN_CHUNKS:
            raise CorruptArchiveError("Unknown FLAT chunk", tag=tag, offset=start)
        r.require(size, f"{tag.decode('ascii')} chunk")
        end = r.tell() + size
        chunk = BinaryReader(data[:end], r.tell(), error=CorruptArchiveError)
        if tag == b"LIBL":
            files += _read_libl(chunk, end, encoding)
        elif tag == b"TALT":
            files += _read_talt(chunk, end)
        tags.append(tag)
        r.seek(end)
    if not tags:
        raise CorruptArchiveError("Empty FLAT file")
    return files, tags


class FlatArchive(BufferArchive):
    type = ArchiveType.FLAT

    @staticmethod
    def sniff(head: bytes, tail: bytes) -> bool:
        return head[:4] == b"ELNA"

    @classmethod
    def open(cls, path, encoding: str) -> "FlatArchive":
        with open(path, "rb") as f:
            data = f.read()
        return cls.from_bytes(data, str(path), encoding)

    @classmethod
    def from_bytes(cls, data: bytes, name: str, encoding: str) -> "FlatArchive":
        files, tags = parse_chunks(data, encoding)
        ar = cls(data, name)
        ar.chunks = tags
        ar.kinds = {}
        for i, f in enumerate(files):
            ar.kinds[i] = f.kind
            ar._add_span(ArchiveEntry(ar, i, f.name, f.size), f.offset)
        return ar
