"""
ALD archive driver (linked volumes).

An ALD archive is split over up to 26 volume files named ``<stem>A.ald``,
``<stem>B.ald``, ... Each volume is a sequence of 256-byte sectors:

    pointer table   3-byte sector numbers; entry 0 is the link map, then
                    one entry per file stored in this volume, 0 terminates
    link map        3-byte records (u8 volume, u16 pointer index);
                    the record position is the archive-wide file index
    file records    u32 header size, u32 size, u64 filetime, NUL-padded
                    name, then the file data
    footer          "NL\\x01\\x00", u8 volume, u8 reserved, u16 nr_files

Loading an entry reads from whichever volume holds it.
"""

import logging
import os
import re
from typing import Dict, List, Tuple

from construct import Bytes, Const, ConstructError, Int8ul, Int16ul, Int32ul, Int64ul, Struct

from .archive import Archive, ArchiveEntry, ArchiveType
from .errors import ArchiveError, CorruptArchiveError
from .reader import BinaryReader

logger = logging.getLogger(__name__)

SECTOR_SIZE = 256
FOOTER_MAGIC = b"NL\x01\x00"

AldFooter = Struct(
    "magic" / Const(FOOTER_MAGIC),
    "volume" / Int8ul,
    "reserved" / Int8ul,
    "nr_files" / Int16ul,
    "padding" / Bytes(8),
)

AldFileHeader = Struct(
    "header_size" / Int32ul,
    "size" / Int32ul,
    "filetime" / Int64ul,
)

_VOLUME_RE = re.compile(r"^(?P<prefix>.*)(?P<letter>[A-Za-z])(?P<ext>\.[^.]*)$")


def volume_paths(path) -> List[str]:
    """All sibling volume files of ``path``, including ``path`` itself."""
    path = str(path)
    directory, filename = os.path.split(path)
    m = _VOLUME_RE.match(filename)
    if not m:
        return [path]
    prefix = m.group("prefix").lower()
    ext = m.group("ext").lower()
    found = []
    for candidate in sorted(os.listdir(directory or ".")):
        c = _VOLUME_RE.match(candidate)
        if c and c.group("prefix").lower() == prefix and c.group("ext").lower() == ext:
            found.append(os.path.join(directory, candidate))
    return found or [path]


class AldVolume:
    """One physical ALD file."""

    def __init__(self, path, encoding: str):
        self.path = str(path)
        self.file = open(self.path, "rb")
        try:
            self._parse(encoding)
        except Exception:
            self.file.close()
            raise

    def _read_at(self, offset: int, size: int) -> bytes:
        self.file.seek(offset)
        data = self.file.read(size)
        if len(data) != size:
            raise CorruptArchiveError(
                "ALD volume truncated", volume=self.path, offset=offset, wanted=size
            )
        return data

    def _parse(self, encoding: str):
        size = os.fstat(self.file.fileno()).st_size
        if size < SECTOR_SIZE + AldFooter.sizeof():
            raise CorruptArchiveError("ALD volume too small", volume=self.path, size=size)
        try:
            footer = AldFooter.parse(self._read_at(size - AldFooter.sizeof(), AldFooter.sizeof()))
        except ConstructError as e:
            raise CorruptArchiveError(f"Bad ALD footer: {e}", volume=self.path) from e
        self.number = footer.volume
        self.data_end = size - AldFooter.sizeof()

        map_sector = int.from_bytes(self._read_at(0, 3), "little")
        if map_sector == 0 or map_sector * SECTOR_SIZE > self.data_end:
            raise CorruptArchiveError("Bad ALD link map pointer", volume=self.path, sector=map_sector)

        r = BinaryReader(self._read_at(0, map_sector * SECTOR_SIZE), error=CorruptArchiveError)
        pointers = []
        while r.remaining() >= 3:
            sector = r.read_uint24()
            if sector == 0:
                break
            pointers.append(sector)
        self.map_start = pointers[0] * SECTOR_SIZE
        self.map_end = pointers[1] * SECTOR_SIZE if len(pointers) > 1 else self.data_end
        if self.map_end < self.map_start:
            raise CorruptArchiveError("ALD link map overlaps file data", volume=self.path)

        # (name, data offset, size) per pointer index
        self.files: List[Tuple[str, int, int]] = []
        for sector in pointers[1:]:
            offset = sector * SECTOR_SIZE
            try:
                hdr = AldFileHeader.parse(self._read_at(offset, AldFileHeader.sizeof()))
            except ConstructError as e:
                raise CorruptArchiveError(f"Bad ALD file header: {e}", volume=self.path, offset=offset) from e
            name_size = hdr.header_size - AldFileHeader.sizeof()
            if name_size < 0:
                raise CorruptArchiveError("Bad ALD file header size", volume=self.path, offset=offset)
            name_reader = BinaryReader(self._read_at(offset + AldFileHeader.sizeof(), name_size),
                                       error=CorruptArchiveError)
            name = name_reader.read_cstring(name_size, encoding)
            data_offset = offset + hdr.header_size
            if data_offset + hdr.size > self.data_end:
                raise CorruptArchiveError(
                    "ALD file extends past end of volume", volume=self.path, name=name
                )
            self.files.append((name, data_offset, hdr.size))
        if len(self.files) != footer.nr_files:
            raise CorruptArchiveError(
                "ALD file count does not match footer",
                volume=self.path, expected=footer.nr_files, actual=len(self.files),
            )

    def link_map(self) -> List[Tuple[int, int]]:
        """(volume, pointer index) per archive-wide file index."""
        r = BinaryReader(self._read_at(self.map_start, self.map_end - self.map_start),
                         error=CorruptArchiveError)
        links = []
        while r.remaining() >= 3:
            volume = r.read_uint8()
            pointer = r.read_uint8() | (r.read_uint8() << 8)
            if volume == 0:
                break
            links.append((volume, pointer))
        return links

    def read(self, offset: int, size: int) -> bytes:
        return self._read_at(offset, size)

    def close(self):
        self.file.close()


class AldArchive(Archive):
    type = ArchiveType.ALD

    def __init__(self, volumes: Dict[int, AldVolume], name: str = ""):
        super().__init__(name)
        self.volumes = volumes
        self._spans: Dict[int, Tuple[int, int]] = {}

    @staticmethod
    def sniff(head: bytes, tail: bytes) -> bool:
        return len(tail) == 16 and tail[:4] == FOOTER_MAGIC and head[:3] != b"\x00\x00\x00"

    @classmethod
    def open(cls, path, encoding: str) -> "AldArchive":
        paths = [p for p in volume_paths(path) if cls._looks_like_volume(p)]
        return cls.open_volumes(paths or [path], encoding)

    @staticmethod
    def _looks_like_volume(path) -> bool:
        try:
            with open(path, "rb") as f:
                f.seek(-16, os.SEEK_END)
                return f.read(4) == FOOTER_MAGIC
        except OSError:
            return False

    @classmethod
    def open_volumes(cls, paths, encoding: str) -> "AldArchive":
        volumes: Dict[int, AldVolume] = {}
        try:
            for p in paths:
                vol = AldVolume(p, encoding)
                if vol.number in volumes:
                    vol.close()
                    raise CorruptArchiveError("Duplicate ALD volume number", volume=p, number=vol.number)
                volumes[vol.number] = vol
            ar = cls(volumes, os.path.basename(str(paths[0])))
            ar._link(volumes[min(volumes)].link_map())
        except Exception:
            for vol in volumes.values():
                vol.close()
            raise
        return ar

    def _link(self, links: List[Tuple[int, int]]):
        missing = {}
        for volume, pointer in links:
            vol = self.volumes.get(volume)
            if vol is None:
                missing[volume] = missing.get(volume, 0) + 1
                continue
            if not 1 <= pointer <= len(vol.files):
                raise CorruptArchiveError(
                    "ALD link map points past volume file table",
                    volume=vol.path, pointer=pointer, files=len(vol.files),
                )
            name, offset, size = vol.files[pointer - 1]
            entry = ArchiveEntry(self, len(self._entries), name, size)
            self._spans[entry.index] = (volume, offset)
            self._add_entry(entry)
        for volume, count in sorted(missing.items()):
            logger.warning("ALD volume %s missing; %d entries unavailable",
                           chr(ord("A") + volume - 1), count)

    def _read_entry(self, entry: ArchiveEntry) -> bytes:
        volume, offset = self._spans[entry.index]
        try:
            return self.volumes[volume].read(offset, entry.size)
        except ValueError as e:
            raise ArchiveError(f"Volume read failed: {e}", entry=entry.name) from e

    def _close(self):
        for vol in self.volumes.values():
            vol.close()
