"""Error definitions for alicekit."""

from typing import Any, Dict


class AliceError(Exception):
    """Base exception for all alicekit errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class FormatError(AliceError):
    """Malformed EX document: bad marker, truncation, unknown tag, bad tree node."""

    @property
    def offset(self):
        return self.context.get("offset")


class ArchiveError(AliceError):
    """Base exception for archive open/lookup/load errors."""
    pass


class UnknownFormatError(ArchiveError):
    """No driver recognizes the container signature."""
    pass


class CorruptArchiveError(ArchiveError):
    """Signature recognized but the container structure is inconsistent."""
    pass


class EntryIndexError(ArchiveError):
    """Entry index outside the archive."""
    pass


class EntryNotFoundError(ArchiveError):
    """No entry with the requested name."""
    pass


class ArchiveBusyError(ArchiveError):
    """Entry buffer is still backing an open nested archive."""
    pass


class ExtractError(AliceError):
    """Writing an extracted entry failed, or the requested output is unsupported."""
    pass


class CgError(AliceError):
    """Image payload could not be decoded or encoded."""
    pass


class DumpError(AliceError):
    """Text projection could not be written."""
    pass
