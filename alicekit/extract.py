"""
Archive extraction.

``extract_one`` writes a single entry; ``extract_all`` writes every entry
(or the ones listed in a TOC file, in TOC order) and reports an outcome
for each instead of stopping at the first problem.

Engine-native images (QNT etc.) are transcoded to PNG or WEBP unless
``raw`` is set. Entries are loaded one at a time and released as soon as
they are written.
"""

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

from . import cg, config
from .archive import Archive, ArchiveEntry
from .errors import AliceError, ArchiveError, CgError, ExtractError

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    EXTRACTED = "extracted"
    SKIPPED = "skipped"      # filtered out by TOC or images-only; not an error
    CONFLICT = "conflict"    # output exists and force is off
    FAILED = "failed"        # write or transcode failure
    UNMATCHED = "unmatched"  # TOC name with no entry


@dataclass
class EntryResult:
    name: str
    index: Optional[int]
    outcome: Outcome
    path: Optional[str] = None
    message: str = ""


@dataclass
class ExtractResult:
    results: List[EntryResult] = field(default_factory=list)
    fatal: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fatal is None

    @property
    def extracted(self) -> int:
        return sum(1 for r in self.results if r.outcome == Outcome.EXTRACTED)

    def by_outcome(self, outcome: Outcome) -> List[EntryResult]:
        return [r for r in self.results if r.outcome == outcome]

    def names(self, outcome: Outcome) -> List[str]:
        return [r.name for r in self.by_outcome(outcome)]


def _default_image_format() -> cg.ImageFormat:
    return cg.ImageFormat.parse(config.IMAGE_FORMAT)


@dataclass
class ExtractOptions:
    force: bool = False
    images_only: bool = False
    raw: bool = False
    image_format: Union[cg.ImageFormat, str] = field(default_factory=_default_image_format)
    case_sensitive: bool = field(default_factory=lambda: config.TOC_CASE_SENSITIVE)

    def __post_init__(self):
        if not isinstance(self.image_format, cg.ImageFormat):
            try:
                self.image_format = cg.ImageFormat.parse(str(self.image_format))
            except CgError as e:
                raise ExtractError(e.message, image_format=self.image_format) from e


def read_toc(path, encoding: str = "utf-8-sig") -> List[str]:
    """Read a TOC file: one entry name per line, blank lines ignored.

    Accepts \\n, \\r\\n and \\r line endings.
    """
    with open(path, "r", encoding=encoding, newline="") as f:
        text = f.read()
    return [line.strip() for line in text.splitlines() if line.strip()]


def output_name(name: str, extension: Optional[str]) -> str:
    """Entry name with its extension replaced (or added) when transcoding."""
    if not extension:
        return name
    base, _ = os.path.splitext(name)
    return f"{base}.{extension}"


def _check_safe(name: str):
    parts = name.split("/")
    if os.path.isabs(name) or name.startswith("/") or ".." in parts or (parts and ":" in parts[0]):
        raise ExtractError("Unsafe entry name", name=name)


def _write(path: str, data: bytes, force: bool) -> bool:
    """Write ``data`` to ``path``. Returns False when it exists and force is off."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    try:
        # "x" makes the existence check and the create a single step
        with open(path, "wb" if force else "xb") as f:
            f.write(data)
    except FileExistsError:
        return False
    return True


def _extract_entry(entry: ArchiveEntry, path_for: Callable[[Optional[str]], str],
                   options: ExtractOptions) -> EntryResult:
    """Extract one entry. Write errors propagate as ExtractError."""
    with entry.loaded() as data:
        kind = cg.cg_type(data)
        if options.images_only and kind is None:
            return EntryResult(entry.name, entry.index, Outcome.SKIPPED, message="not an image")

        transcode = cg.is_native(kind) and not options.raw
        path = path_for(options.image_format.extension if transcode else None)

        if not options.force and os.path.exists(path):
            return EntryResult(entry.name, entry.index, Outcome.CONFLICT, path,
                               "output exists (use force to overwrite)")

        out = data
        if transcode:
            try:
                out = cg.convert(data, options.image_format)
            except CgError as e:
                logger.warning("%s: transcode failed: %s", entry.name, e)
                return EntryResult(entry.name, entry.index, Outcome.FAILED, path,
                                   f"transcode failed: {e}")

        try:
            written = _write(path, out, options.force)
        except OSError as e:
            raise ExtractError(f"Could not write output: {e.strerror or e}",
                               name=entry.name, path=path) from e
        if not written:
            return EntryResult(entry.name, entry.index, Outcome.CONFLICT, path,
                               "output exists (use force to overwrite)")
        logger.debug("Extracted %s -> %s", entry.name, path)
        return EntryResult(entry.name, entry.index, Outcome.EXTRACTED, path)


def extract_one(archive: Archive, selector: Union[int, str], output=None,
                options: Optional[ExtractOptions] = None) -> EntryResult:
    """Extract a single entry selected by index or name.

    Args:
        archive: Open archive
        selector: Entry index (int) or logical name (str)
        output: Output file path; defaults to the entry name in the current directory

    Raises:
        ArchiveError: no such entry
        ExtractError: the output could not be written
    """
    options = options or ExtractOptions()
    if isinstance(selector, int) and not isinstance(selector, bool):
        entry = archive.get(selector)
    else:
        entry = archive.find(str(selector), options.case_sensitive)

    if output is not None:
        def path_for(ext):
            return str(output)
    else:
        _check_safe(entry.name)

        def path_for(ext):
            return os.path.join(os.getcwd(), output_name(entry.name, ext))

    return _extract_entry(entry, path_for, options)


def _plan(archive: Archive, toc: Optional[Sequence[str]], case_sensitive: bool):
    """Entries to extract, entries to skip, and TOC names with no entry."""
    if toc is None:
        return archive.entries(), [], []
    selected, unmatched, seen = [], [], set()
    for name in toc:
        try:
            entry = archive.find(name, case_sensitive)
        except ArchiveError:
            unmatched.append(name)
            continue
        if entry.index not in seen:
            seen.add(entry.index)
            selected.append(entry)
    skipped = [e for e in archive if e.index not in seen]
    return selected, skipped, unmatched


def extract_all(archive: Archive, directory, options: Optional[ExtractOptions] = None,
                toc: Optional[Sequence[str]] = None) -> ExtractResult:
    """Extract every entry (or the TOC-listed ones) into ``directory``.

    Per-entry problems are recorded in the result and never stop the batch.
    ``result.fatal`` is set only when the output directory is unusable.
    """
    options = options or ExtractOptions()
    result = ExtractResult()
    directory = str(directory)
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        result.fatal = f"Could not create output directory {directory}: {e.strerror or e}"
        return result

    selected, skipped, unmatched = _plan(archive, toc, options.case_sensitive)

    for entry in selected:
        def path_for(ext, entry=entry):
            return os.path.join(directory, *output_name(entry.name, ext).split("/"))

        try:
            _check_safe(entry.name)
            res = _extract_entry(entry, path_for, options)
        except AliceError as e:
            logger.warning("%s: %s", entry.name, e)
            res = EntryResult(entry.name, entry.index, Outcome.FAILED, message=str(e))
        result.results.append(res)

    for entry in skipped:
        result.results.append(EntryResult(entry.name, entry.index, Outcome.SKIPPED,
                                          message="not listed in TOC"))
    for name in unmatched:
        logger.warning("TOC entry %r not found in archive", name)
        result.results.append(EntryResult(name, None, Outcome.UNMATCHED,
                                          message="no such entry in archive"))
    return result
