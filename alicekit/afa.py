"""
AFA archive driver (index-keyed).

Layout:
    AFAH header, INFO section with a zlib-compressed table of
    (name, offset, size) records, then a DATA section holding the files.
    Offsets in the table are relative to the DATA section start.
"""

import zlib

from construct import Array, Bytes, Const, ConstructError, If, Int32ul, Struct, this

from .archive import ArchiveType, BufferArchive, FileArchive, ArchiveEntry
from .errors import CorruptArchiveError

AfaHeader = Struct(
    "magic" / Const(b"AFAH"),
    "header_size" / Int32ul,
    "archive_magic" / Const(b"AlicArch"),
    "version" / Int32ul,
    "unknown" / Int32ul,
    "data_start" / Int32ul,
    "info_magic" / Const(b"INFO"),
    "compressed_size" / Int32ul,
    "uncompressed_size" / Int32ul,
    "nr_files" / Int32ul,
)

AfaEntry = Struct(
    "name_len" / Int32ul,
    "padded_len" / Int32ul,
    "name" / Bytes(this.padded_len),
    "unknown1" / Int32ul,
    "unknown2" / Int32ul,
    "unknown3" / If(this._.version == 1, Int32ul),
    "offset" / Int32ul,
    "size" / Int32ul,
)

AfaToc = Struct(
    "version" / Int32ul,
    "nr_files" / Int32ul,
    "entries" / Array(this.nr_files, AfaEntry),
)

DataHeader = Struct(
    "magic" / Const(b"DATA"),
    "size" / Int32ul,
)


def _parse_layout(head: bytes, read_at, file_size: int, encoding: str):
    """Parse header and TOC. Returns [(name, absolute offset, size)]."""
    try:
        hdr = AfaHeader.parse(head)
    except ConstructError as e:
        raise CorruptArchiveError(f"Bad AFA header: {e}") from e
    if hdr.version not in (1, 2):
        raise CorruptArchiveError("Unsupported AFA version", version=hdr.version)

    compressed = read_at(AfaHeader.sizeof(), hdr.compressed_size)
    try:
        toc = zlib.decompress(compressed)
    except zlib.error as e:
        raise CorruptArchiveError(f"AFA table of contents does not decompress: {e}") from e
    if len(toc) != hdr.uncompressed_size:
        raise CorruptArchiveError(
            "AFA table of contents has the wrong size",
            expected=hdr.uncompressed_size, actual=len(toc),
        )
    try:
        # version is prepended so entries can see it as this._.version
        parsed = AfaToc.parse(Int32ul.build(hdr.version) + Int32ul.build(hdr.nr_files) + toc)
    except ConstructError as e:
        raise CorruptArchiveError(f"Bad AFA table of contents: {e}") from e

    try:
        DataHeader.parse(read_at(hdr.data_start, DataHeader.sizeof()))
    except ConstructError as e:
        raise CorruptArchiveError("Missing AFA DATA section", offset=hdr.data_start) from e

    files = []
    for i, ent in enumerate(parsed.entries):
        if ent.name_len > ent.padded_len:
            raise CorruptArchiveError("AFA name longer than its padding", index=i)
        try:
            name = ent.name[:ent.name_len].decode(encoding)
        except UnicodeDecodeError as e:
            raise CorruptArchiveError(f"AFA entry name is not valid {encoding}", index=i) from e
        offset = hdr.data_start + ent.offset
        if offset + ent.size > file_size:
            raise CorruptArchiveError(
                "AFA entry extends past end of archive", index=i, name=name, offset=offset
            )
        files.append((name, offset, ent.size))
    return files


class AfaArchive(FileArchive):
    type = ArchiveType.AFA

    @staticmethod
    def sniff(head: bytes, tail: bytes) -> bool:
        return head[:4] == b"AFAH"

    @classmethod
    def open(cls, path, encoding: str) -> "AfaArchive":
        ar = cls(path)
        try:
            def read_at(offset, size):
                ar.file.seek(offset)
                return ar.file.read(size)

            files = _parse_layout(read_at(0, AfaHeader.sizeof()), read_at, ar.file_size, encoding)
        except Exception:
            ar.close()
            raise
        for i, (name, offset, size) in enumerate(files):
            ar._add_span(ArchiveEntry(ar, i, name, size), offset)
        return ar

    @classmethod
    def from_bytes(cls, data: bytes, name: str, encoding: str) -> "AfaBufferArchive":
        ar = AfaBufferArchive(data, name)
        files = _parse_layout(
            data[:AfaHeader.sizeof()],
            lambda offset, size: data[offset:offset + size],
            len(data),
            encoding,
        )
        for i, (fname, offset, size) in enumerate(files):
            ar._add_span(ArchiveEntry(ar, i, fname, size), offset)
        return ar


class AfaBufferArchive(BufferArchive):
    """AFA archive held in memory, e.g. nested inside another archive."""
    type = ArchiveType.AFA
