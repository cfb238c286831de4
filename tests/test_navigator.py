"""Tests for the browsable node tree."""

import builders
from alicekit import ex
from alicekit.archive import open_archive
from alicekit.navigator import FileKind, NodeType, from_archive, from_ex
from builders import INT, STRING, TABLE, ex_document, ex_field, ex_int, ex_leaf, ex_list, ex_str, ex_table, ex_tree


def document():
    inner = ex_table([], [[ex_int(7)]], nested=True)
    fields = [ex_field(STRING, "name"), ex_field(TABLE, "stats", [ex_field(INT, "hp")])]
    return ex_document([
        ("chars", ex_table(fields, [[ex_str("alice"), inner], [ex_str("bob"), inner]])),
        ("items", ex_list([ex_int(1), ex_str("two")])),
        ("tree", ex_tree([("k", ex_int(5)), ("l", ex_leaf("inner", ex_int(6)))])),
    ])


class TestFromEx:
    """Tests for nodes built from an EX document."""

    def test_blocks(self):
        root = from_ex(ex.parse(document()))
        assert root.type == NodeType.ROOT
        assert [root.data(c) for c in range(3)] == ["Name", "Type", "Value"]
        assert [c.data(0) for c in root.children] == ["chars", "items", "tree"]
        assert [c.data(1) for c in root.children] == ["table", "list", "tree"]

    def test_table_rows_and_columns(self):
        chars = from_ex(ex.parse(document())).child(0)
        assert chars.child_count() == 2
        row = chars.child(1)
        assert row.type == NodeType.EX_ROW
        assert (row.data(0), row.data(1)) == ("[1]", "row")
        assert row.child(0).data(0) == "name"
        assert row.child(0).data(2) == "bob"

        stats = row.child(1)
        assert stats.data(1) == "table"
        assert stats.data(2) is None
        # nested table uses the column's subfields
        assert stats.child(0).child(0).data(0) == "hp"
        assert stats.child(0).child(0).data(2) == 7

    def test_list_items(self):
        items = from_ex(ex.parse(document())).child(1)
        assert [(c.type, c.data(0), c.data(2)) for c in items.children] == [
            (NodeType.EX_INDEX, "[0]", 1),
            (NodeType.EX_INDEX, "[1]", "two"),
        ]

    def test_tree_children(self):
        tree = from_ex(ex.parse(document())).child(2)
        # a leaf shows its own name and value in place of the child's
        assert [c.data(0) for c in tree.children] == ["k", "inner"]
        leaf = tree.child(1)
        assert leaf.data(1) == "int"
        assert leaf.data(2) == 6

    def test_navigation(self):
        root = from_ex(ex.parse(document()))
        row = root.child(0).child(1)
        assert row.parent.parent is root
        assert row.row() == 1
        assert root.child(99) is None
        assert sum(1 for _ in root.walk()) > 10

    def test_width_mismatch_trims_columns(self, caplog):
        fields = [ex_field(INT, "a")]
        data = ex_document([("t", ex_table(fields, [[ex_int(1), ex_int(2)]]))])
        row = from_ex(ex.parse(data)).child(0).child(0)
        assert row.child_count() == 1
        assert row.warnings
        assert "mismatch" in caplog.text


class TestFromArchive:
    """Tests for nodes built from an archive."""

    def test_files_and_expansion(self, write_file):
        flat = builders.flat(libl=[("inside.txt", 0, b"hi")])
        files = [
            ("data.ex", document()),
            ("scene.flat", flat),
            ("readme.txt", b"plain"),
            ("broken.ex", b"HEAD junk"),
        ]
        ar, _ = open_archive(write_file("test.afa", builders.afa(files)))
        with ar:
            root = from_archive(ar)
            kinds = [c.file_kind for c in root.children]
            assert kinds == [FileKind.EX, FileKind.ARCHIVE, FileKind.NORMAL, FileKind.NORMAL]
            assert [c.data(0) for c in root.children] == ["data.ex", "scene.flat", "readme.txt", "broken.ex"]

            ex_node = root.child(0)
            assert ex_node.child(0).data(0) == "chars"

            flat_node = root.child(1)
            assert flat_node.child(0).data(0) == "inside.txt"
            assert flat_node.child(0).entry.load() == b"hi"

            # the outer entries are not left loaded
            assert not any(e.is_loaded for e in ar)
            root.close()
            assert flat_node.archive is None
