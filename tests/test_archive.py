"""Tests for the archive abstraction and its drivers."""

import logging

import pytest

import builders
from alicekit.ald import AldArchive, volume_paths
from alicekit.archive import ArchiveType, open_archive, open_archive_bytes, open_nested
from alicekit.errors import (
    ArchiveBusyError,
    ArchiveError,
    CorruptArchiveError,
    EntryIndexError,
    EntryNotFoundError,
    UnknownFormatError,
)


def contents(ar):
    result = []
    for entry in ar:
        with entry.loaded() as data:
            result.append((entry.name, data))
    return result


class TestDrivers:
    """Each driver exposes the same entries it was built with."""

    @pytest.mark.parametrize("version", [1, 2])
    def test_afa(self, write_file, sample_files, version):
        path = write_file("test.afa", builders.afa(sample_files, version=version))
        ar, kind = open_archive(path)
        with ar:
            assert kind == ArchiveType.AFA
            assert contents(ar) == sample_files

    def test_afa_backslash_names(self, write_file):
        path = write_file("test.afa", builders.afa([("cg\\title.qnt", b"x")]))
        ar, _ = open_archive(path)
        with ar:
            assert ar.get(0).name == "cg/title.qnt"
            assert ar.find("cg\\title.qnt") is ar.get(0)

    def test_alk(self, write_file):
        path = write_file("test.alk", builders.alk([b"one", b"", b"three"]))
        ar, kind = open_archive(path)
        with ar:
            assert kind == ArchiveType.ALK
            assert contents(ar) == [("0", b"one"), ("1", b""), ("2", b"three")]

    def test_flat(self, write_file):
        data = builders.flat(libl=[("bg.qnt", 1, b"abcde"), ("se.ogg", 2, b"xy")],
                             talt=[b"img0", b"img1!"])
        path = write_file("test.flat", data)
        ar, kind = open_archive(path)
        with ar:
            assert kind == ArchiveType.FLAT
            assert contents(ar) == [
                ("bg.qnt", b"abcde"), ("se.ogg", b"xy"),
                ("talt_0000", b"img0"), ("talt_0001", b"img1!"),
            ]
            assert ar.kinds[1] == 2

    def test_ald_single_volume(self, write_file, sample_files):
        vols = builders.ald(sample_files)
        path = write_file("gameA.ald", vols[1])
        ar, kind = open_archive(path)
        with ar:
            assert kind == ArchiveType.ALD
            assert contents(ar) == sample_files

    def test_ald_linked_volumes(self, write_file, sample_files):
        vols = builders.ald(sample_files, volume_of=[1, 2, 1])
        path = write_file("gameA.ald", vols[1])
        write_file("gameB.ald", vols[2])
        ar, _ = open_archive(path)
        with ar:
            # link map order, not volume order
            assert contents(ar) == sample_files

    def test_ald_missing_volume(self, write_file, sample_files, caplog):
        vols = builders.ald(sample_files, volume_of=[1, 2, 1])
        path = write_file("gameA.ald", vols[1])
        with caplog.at_level(logging.WARNING):
            ar, _ = open_archive(path)
        with ar:
            assert [e.name for e in ar] == ["a.txt", "c.txt"]
            assert [e.index for e in ar] == [0, 1]
        assert "volume B missing" in caplog.text

    def test_volume_paths(self, tmp_path):
        for name in ("dataA.ald", "DATAB.ALD", "other.ald", "dataA.txt"):
            (tmp_path / name).write_bytes(b"")
        found = sorted(p.rsplit("/", 1)[-1] for p in volume_paths(tmp_path / "dataA.ald"))
        assert found == ["DATAB.ALD", "dataA.ald"]

    def test_ald_explicit_volumes(self, write_file, sample_files):
        vols = builders.ald(sample_files, volume_of=[2, 2, 1])
        paths = [write_file("x1.ald", vols[1]), write_file("x2.ald", vols[2])]
        with AldArchive.open_volumes(paths, "cp932") as ar:
            assert contents(ar) == sample_files


class TestOpenErrors:
    """Detection and validation failures."""

    def test_unknown_format(self, write_file):
        path = write_file("junk.bin", b"this is not an archive at all")
        with pytest.raises(UnknownFormatError):
            open_archive(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            open_archive(tmp_path / "nope.afa")

    def test_truncated_afa(self, write_file, sample_files):
        data = builders.afa(sample_files)
        path = write_file("bad.afa", data[:-3])
        with pytest.raises(CorruptArchiveError, match="past end"):
            open_archive(path)

    def test_afa_bad_toc(self, write_file):
        data = bytearray(builders.afa([("a", b"x")]))
        data[44] ^= 0xFF  # first byte of the compressed table
        path = write_file("bad.afa", bytes(data))
        with pytest.raises(CorruptArchiveError):
            open_archive(path)

    def test_alk_table_too_big(self, write_file):
        data = b"ALK0" + (1000).to_bytes(4, "little") + b"\x00" * 16
        path = write_file("bad.alk", data)
        with pytest.raises(CorruptArchiveError):
            open_archive(path)

    def test_flat_unknown_chunk(self, write_file):
        data = builders.flat() + builders.flat_chunk(b"ZZZZ", b"")
        path = write_file("bad.flat", data)
        with pytest.raises(CorruptArchiveError, match="Unknown FLAT chunk"):
            open_archive(path)

    def test_corrupt_is_an_archive_error(self):
        assert issubclass(CorruptArchiveError, ArchiveError)
        assert issubclass(UnknownFormatError, ArchiveError)


CASE_FILES = [("A.txt", b"upper"), ("a.txt", b"lower"), ("dir/b.bin", b"\x00\x01")]


def open_afa(write_file):
    return open_archive(write_file("sym.afa", builders.afa(CASE_FILES)))[0]


def open_ald_linked(write_file):
    vols = builders.ald(CASE_FILES, volume_of=[2, 1, 2])
    write_file("symB.ald", vols[2])
    return open_archive(write_file("symA.ald", vols[1]))[0]


def open_flat(write_file):
    data = builders.flat(libl=[(n, 0, d) for n, d in CASE_FILES], talt=[b"t0", b"t1"])
    return open_archive(write_file("sym.flat", data))[0]


def open_alk(write_file):
    return open_archive(write_file("sym.alk", builders.alk([d for _, d in CASE_FILES])))[0]


def open_nested_flat(write_file):
    inner = builders.flat(libl=[(n, 0, d) for n, d in CASE_FILES], talt=[b"t0"])
    outer = open_archive(write_file("outer.afa", builders.afa([("scene.flat", inner)])))[0]
    nested = open_nested(outer.get(0))
    outer.close()
    return nested


@pytest.mark.parametrize("opener", [open_afa, open_ald_linked, open_flat, open_alk, open_nested_flat],
                         ids=["afa", "ald", "flat", "alk", "nested-flat"])
def test_lookup_symmetry(write_file, opener):
    """get(i) and find(name) lead back to the same enumerated entry on every driver."""
    ar = opener(write_file)
    with ar:
        entries = ar.entries()
        assert len(entries) >= 3
        for i, entry in enumerate(entries):
            assert ar.get(i).name == entry.name
            assert ar.find(entry.name).index == i
            assert ar.get(i).load() == entry.load()


class TestLookup:
    """Index and name lookup."""

    @pytest.fixture
    def archive(self, write_file, sample_files):
        ar, _ = open_archive(write_file("test.afa", builders.afa(sample_files)))
        yield ar
        ar.close()

    def test_exact_name_beats_case_folded(self, write_file):
        files = [("A.txt", b"upper"), ("a.txt", b"lower")]
        ar, _ = open_archive(write_file("case.afa", builders.afa(files)))
        with ar:
            assert ar.find("A.txt").index == 0
            assert ar.find("a.txt").index == 1
            # no exact match: first entry by folded name
            assert ar.find("A.TXT").index == 0
            assert ar.find("a.txt", case_sensitive=True).index == 1

    def test_index_out_of_range(self, archive):
        with pytest.raises(EntryIndexError):
            archive.get(3)
        with pytest.raises(EntryIndexError):
            archive.get(-1)

    def test_name_not_found(self, archive):
        with pytest.raises(EntryNotFoundError):
            archive.find("missing.txt")
        assert not archive.exists("missing.txt")

    def test_case_insensitive_by_default(self, archive):
        assert archive.find("DIR/B.BIN").index == 1
        with pytest.raises(EntryNotFoundError):
            archive.find("DIR/B.BIN", case_sensitive=True)

    def test_entries_in_storage_order(self, archive):
        assert [e.index for e in archive.entries()] == [0, 1, 2]
        assert len(archive) == 3

    def test_extension(self, archive):
        assert archive.get(0).extension == "txt"


class TestLoadRelease:
    """Entry data lifetime."""

    @pytest.fixture
    def archive(self, write_file, sample_files):
        ar, _ = open_archive(write_file("test.afa", builders.afa(sample_files)))
        yield ar
        ar.close()

    def test_load_is_idempotent(self, archive):
        entry = archive.get(0)
        first = entry.load()
        assert entry.load() is first
        assert entry.is_loaded

    def test_release(self, archive):
        entry = archive.get(0)
        entry.load()
        entry.release()
        assert not entry.is_loaded
        # releasing again is a no-op
        entry.release()
        assert entry.load() == b"alpha"

    def test_scoped_load_restores_state(self, archive):
        entry = archive.get(0)
        with entry.loaded() as data:
            assert data == b"alpha"
        assert not entry.is_loaded

        entry.load()
        with entry.loaded():
            pass
        assert entry.is_loaded

    def test_copy_is_unloaded(self, archive):
        entry = archive.get(2)
        entry.load()
        dup = entry.copy()
        assert not dup.is_loaded
        assert (dup.name, dup.index, dup.size) == (entry.name, entry.index, entry.size)
        assert dup.load() == b"gamma gamma"

    def test_load_after_close(self, write_file, sample_files):
        ar, _ = open_archive(write_file("test.afa", builders.afa(sample_files)))
        ar.close()
        with pytest.raises(ArchiveError, match="closed"):
            ar.get(0).load()


class TestNested:
    """Archives opened from another archive's entry."""

    @pytest.fixture
    def outer(self, write_file):
        inner = builders.flat(libl=[("inner.txt", 0, b"nested data")])
        ar, _ = open_archive(write_file("outer.afa", builders.afa([("scene.flat", inner)])))
        yield ar
        ar.close()

    def test_open_nested(self, outer):
        entry = outer.find("scene.flat")
        nested = open_nested(entry)
        assert nested.type == ArchiveType.FLAT
        assert contents(nested) == [("inner.txt", b"nested data")]
        nested.close()

    def test_outer_release_keeps_nested_usable(self, outer):
        entry = outer.find("scene.flat")
        entry.load()
        nested = open_nested(entry)
        entry.release()
        assert nested.get(0).load() == b"nested data"
        nested.close()

    def test_owner_busy_until_nested_closed(self, outer):
        nested = open_nested(outer.find("scene.flat"))
        owner = nested.owner
        with pytest.raises(ArchiveBusyError):
            owner.release()
        assert owner.is_loaded
        nested.close()
        assert not owner.is_loaded
        assert nested.owner is None

    def test_nested_not_an_archive(self, outer, write_file):
        ar, _ = open_archive(write_file("plain.afa", builders.afa([("a.txt", b"text")])))
        with ar:
            with pytest.raises(UnknownFormatError):
                open_nested(ar.get(0))

    def test_open_bytes(self):
        ar, kind = open_archive_bytes(builders.alk([b"q"]), "mem.alk")
        assert kind == ArchiveType.ALK
        assert ar.get(0).load() == b"q"
