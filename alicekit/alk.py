"""
ALK archive driver.

"ALK0", u32 count, then count (u32 offset, u32 size) pairs. Files have no
names; each entry is named after its index.
"""

from construct import Array, Const, ConstructError, Int32ul, Struct, this

from .archive import ArchiveEntry, ArchiveType, BufferArchive, FileArchive
from .errors import CorruptArchiveError

AlkHeader = Struct(
    "magic" / Const(b"ALK0"),
    "nr_files" / Int32ul,
)

AlkTable = Struct(
    "nr_files" / Int32ul,
    "files" / Array(this.nr_files, Struct("offset" / Int32ul, "size" / Int32ul)),
)


def _parse_table(head: bytes, read_at, total_size: int):
    try:
        hdr = AlkHeader.parse(head)
    except ConstructError as e:
        raise CorruptArchiveError(f"Bad ALK header: {e}") from e
    table_size = hdr.nr_files * 8
    if AlkHeader.sizeof() + table_size > total_size:
        raise CorruptArchiveError("ALK file table exceeds archive size", nr_files=hdr.nr_files)
    table = AlkTable.parse(Int32ul.build(hdr.nr_files) + read_at(AlkHeader.sizeof(), table_size))
    for i, f in enumerate(table.files):
        if f.offset + f.size > total_size:
            raise CorruptArchiveError("ALK entry extends past end of archive", index=i, offset=f.offset)
    return [(str(i), f.offset, f.size) for i, f in enumerate(table.files)]


class AlkArchive(FileArchive):
    type = ArchiveType.ALK

    @staticmethod
    def sniff(head: bytes, tail: bytes) -> bool:
        return head[:4] == b"ALK0"

    @classmethod
    def open(cls, path, encoding: str) -> "AlkArchive":
        ar = cls(path)
        try:
            def read_at(offset, size):
                ar.file.seek(offset)
                return ar.file.read(size)

            files = _parse_table(read_at(0, AlkHeader.sizeof()), read_at, ar.file_size)
        except Exception:
            ar.close()
            raise
        for i, (name, offset, size) in enumerate(files):
            ar._add_span(ArchiveEntry(ar, i, name, size), offset)
        return ar

    @classmethod
    def from_bytes(cls, data: bytes, name: str, encoding: str) -> "AlkBufferArchive":
        ar = AlkBufferArchive(data, name)
        files = _parse_table(data[:AlkHeader.sizeof()],
                             lambda offset, size: data[offset:offset + size], len(data))
        for i, (fname, offset, size) in enumerate(files):
            ar._add_span(ArchiveEntry(ar, i, fname, size), offset)
        return ar


class AlkBufferArchive(BufferArchive):
    type = ArchiveType.ALK
