"""
Archive abstraction.

Every container format is exposed through ``Archive``: an ordered list of
``ArchiveEntry`` descriptors that can be looked up by index or name and
loaded on demand. Callers get an ``Archive`` from ``open_archive`` and
never need to know which driver backs it.
"""

import enum
import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from . import config
from .errors import (
    ArchiveBusyError,
    ArchiveError,
    EntryIndexError,
    EntryNotFoundError,
    UnknownFormatError,
)

logger = logging.getLogger(__name__)


class ArchiveType(enum.Enum):
    AFA = "afa"
    ALD = "ald"
    FLAT = "flat"
    ALK = "alk"


def normalize_name(name: str) -> str:
    return name.replace("\\", "/")


class ArchiveEntry:
    """Descriptor for one file inside an archive.

    Holds metadata only until ``load()`` is called; the bytes are then kept
    in ``data`` until ``release()``.
    """

    def __init__(self, archive: "Archive", index: int, name: str, size: int):
        self.archive = archive
        self.index = index
        self.name = normalize_name(name)
        self.size = size
        self.data: Optional[bytes] = None
        self._pins = 0

    def __repr__(self):
        state = "loaded" if self.data is not None else "unloaded"
        return f"<ArchiveEntry {self.index} {self.name!r} {self.size} bytes {state}>"

    @property
    def is_loaded(self) -> bool:
        return self.data is not None

    @property
    def extension(self) -> Optional[str]:
        ext = os.path.splitext(self.name)[1]
        return ext[1:].lower() if ext else None

    def load(self) -> bytes:
        """Load the entry's bytes. Does nothing if already loaded."""
        if self.data is None:
            self.data = self.archive.load_entry(self)
        return self.data

    def release(self):
        """Drop the loaded bytes. Releasing an unloaded entry is a no-op."""
        if self._pins:
            raise ArchiveBusyError(
                "Entry is backing an open nested archive", name=self.name, index=self.index
            )
        self.data = None

    @contextmanager
    def loaded(self) -> Iterator[bytes]:
        """Scoped load: the bytes are released on exit if this call loaded them."""
        was_loaded = self.is_loaded
        data = self.load()
        try:
            yield data
        finally:
            if not was_loaded and not self._pins:
                self.release()

    def copy(self) -> "ArchiveEntry":
        """Unloaded duplicate of this descriptor."""
        dup = self.__class__.__new__(self.__class__)
        dup.__dict__.update(self.__dict__)
        dup.data = None
        dup._pins = 0
        return dup

    def pin(self):
        self._pins += 1

    def unpin(self):
        if self._pins:
            self._pins -= 1


class Archive(ABC):
    """Container-format agnostic archive handle."""

    type: ArchiveType

    def __init__(self, name: str = ""):
        self.name = name
        self.closed = False
        self._entries: List[ArchiveEntry] = []
        self._by_name: Dict[str, ArchiveEntry] = {}
        self._by_folded: Dict[str, ArchiveEntry] = {}

    def _add_entry(self, entry: ArchiveEntry):
        self._entries.append(entry)
        # first entry wins on duplicate names
        self._by_name.setdefault(entry.name, entry)
        self._by_folded.setdefault(entry.name.casefold(), entry)

    def entries(self) -> List[ArchiveEntry]:
        """All descriptors, in storage order."""
        return list(self._entries)

    def __iter__(self) -> Iterator[ArchiveEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, index: int) -> ArchiveEntry:
        if not 0 <= index < len(self._entries):
            raise EntryIndexError("Entry index out of range", index=index, count=len(self._entries))
        return self._entries[index]

    def find(self, name: str, case_sensitive: Optional[bool] = None) -> ArchiveEntry:
        if case_sensitive is None:
            case_sensitive = config.TOC_CASE_SENSITIVE
        name = normalize_name(name)
        # an exact match wins even when names differ only by case
        entry = self._by_name.get(name)
        if entry is None and not case_sensitive:
            entry = self._by_folded.get(name.casefold())
        if entry is None:
            raise EntryNotFoundError("No such entry", name=name)
        return entry

    def exists(self, name: str, case_sensitive: Optional[bool] = None) -> bool:
        try:
            self.find(name, case_sensitive)
        except EntryNotFoundError:
            return False
        return True

    def load_entry(self, entry: ArchiveEntry) -> bytes:
        if self.closed:
            raise ArchiveError("Archive is closed", archive=self.name, entry=entry.name)
        return self._read_entry(entry)

    @abstractmethod
    def _read_entry(self, entry: ArchiveEntry) -> bytes:
        """Read the bytes of ``entry`` from the underlying storage."""

    def _close(self):
        pass

    def close(self):
        if self.closed:
            return
        for entry in self._entries:
            entry.data = None
        self._close()
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class BufferArchive(Archive):
    """Archive whose entries are slices of one in-memory buffer."""

    def __init__(self, data: bytes, name: str = ""):
        super().__init__(name)
        self.data = data
        self._spans: Dict[int, Tuple[int, int]] = {}
        self.owner: Optional[ArchiveEntry] = None

    def _add_span(self, entry: ArchiveEntry, offset: int):
        self._spans[entry.index] = (offset, entry.size)
        self._add_entry(entry)

    def _read_entry(self, entry: ArchiveEntry) -> bytes:
        offset, size = self._spans[entry.index]
        return bytes(self.data[offset:offset + size])

    def _close(self):
        if self.owner is not None:
            self.owner.unpin()
            self.owner.release()
            self.owner = None


class FileArchive(Archive):
    """Archive whose entries are read from an open file on demand."""

    def __init__(self, path, name: str = ""):
        super().__init__(name or os.path.basename(path))
        self.path = path
        self.file = open(path, "rb")
        self.file_size = os.fstat(self.file.fileno()).st_size
        self._spans: Dict[int, Tuple[int, int]] = {}

    def _add_span(self, entry: ArchiveEntry, offset: int):
        self._spans[entry.index] = (offset, entry.size)
        self._add_entry(entry)

    def _read_entry(self, entry: ArchiveEntry) -> bytes:
        offset, size = self._spans[entry.index]
        self.file.seek(offset)
        data = self.file.read(size)
        if len(data) != size:
            raise ArchiveError("Short read", archive=self.name, entry=entry.name, offset=offset)
        return data

    def _close(self):
        self.file.close()


def _drivers():
    from . import afa, ald, alk, flat
    return (afa.AfaArchive, alk.AlkArchive, flat.FlatArchive, ald.AldArchive)


def open_archive(path, encoding: Optional[str] = None) -> Tuple[Archive, ArchiveType]:
    """Open an archive file, detecting its format from its contents.

    Raises:
        UnknownFormatError: no driver recognizes the file
        CorruptArchiveError: recognized, but the structure is inconsistent
        OSError: the file cannot be read
    """
    encoding = encoding or config.INPUT_ENCODING
    with open(path, "rb") as f:
        head = f.read(64)
        f.seek(0, os.SEEK_END)
        size = f.tell()
        f.seek(max(0, size - 16))
        tail = f.read(16)

    for driver in _drivers():
        if driver.sniff(head, tail):
            ar = driver.open(path, encoding)
            logger.debug("Opened %s as %s (%d entries)", path, driver.type.value, len(ar))
            return ar, driver.type
    raise UnknownFormatError("Unrecognized archive format", path=str(path))


def open_archive_bytes(data: bytes, name: str = "", encoding: Optional[str] = None) -> Tuple[Archive, ArchiveType]:
    """Open an archive held in memory (AFA, ALK or FLAT)."""
    encoding = encoding or config.INPUT_ENCODING
    for driver in _drivers():
        if getattr(driver, "from_bytes", None) and driver.sniff(data[:64], data[-16:]):
            return driver.from_bytes(data, name, encoding), driver.type
    raise UnknownFormatError("Unrecognized archive format", name=name)


def open_nested(entry: ArchiveEntry, encoding: Optional[str] = None) -> Archive:
    """Open an archive stored inside another archive's entry.

    The nested archive owns a pinned copy of the entry, so the outer
    descriptor can be released freely while the nested handle holds its
    own reference to the bytes. The copy is released when the nested
    archive is closed.
    """
    owned = entry.copy()
    owned.data = entry.data if entry.is_loaded else None
    owned.load()
    ar, _ = open_archive_bytes(owned.data, entry.name, encoding)
    owned.pin()
    ar.owner = owned
    return ar
