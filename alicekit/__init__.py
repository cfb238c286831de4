"""
alicekit

Readers and extractors for AliceSoft System4 game data: EX documents and
the AFA, ALD, FLAT and ALK archive containers.
"""

from .archive import Archive, ArchiveEntry, ArchiveType, open_archive, open_nested
from .errors import AliceError, ArchiveError, CgError, FormatError, ExtractError
from .ex import parse, parse_file, serialize
from .extract import ExtractOptions, Outcome, extract_all, extract_one
from .types import ExDocument, ExField, ExList, ExTable, ExTree, ExType, ExValue

__version__ = "0.1.0"

__all__ = [
    'Archive',
    'ArchiveEntry',
    'ArchiveType',
    'open_archive',
    'open_nested',
    'AliceError',
    'ArchiveError',
    'CgError',
    'FormatError',
    'ExtractError',
    'parse',
    'parse_file',
    'serialize',
    'ExtractOptions',
    'Outcome',
    'extract_all',
    'extract_one',
    'ExDocument',
    'ExField',
    'ExList',
    'ExTable',
    'ExTree',
    'ExType',
    'ExValue',
]
