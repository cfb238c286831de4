"""Byte-level builders for test fixtures.

Everything here is assembled with struct/zlib directly so the tests do not
depend on the code they exercise to produce their inputs.
"""

import struct
import zlib

ENC = "cp932"

# -----------------------------------------------------------------------------
# EX
# -----------------------------------------------------------------------------

INT, FLOAT, STRING, TABLE, LIST, TREE = 1, 2, 3, 4, 5, 6


def ex_string(text, encoding=ENC):
    raw = text.encode(encoding)
    return struct.pack("<i", len(raw)) + raw


def ex_int(i):
    return struct.pack("<Ii", INT, i)


def ex_float(f):
    return struct.pack("<If", FLOAT, f)


def ex_str(text, encoding=ENC):
    return struct.pack("<I", STRING) + ex_string(text, encoding)


def ex_field(type, name, subfields=(), encoding=ENC):
    return (struct.pack("<I", type) + ex_string(name, encoding)
            + struct.pack("<I", len(subfields)) + b"".join(subfields))


def ex_table(fields, rows, nr_columns=None, nested=False):
    """``fields`` and cells are already-encoded bytes. Nested tables omit the schema."""
    if nr_columns is None:
        nr_columns = len(rows[0]) if rows else len(fields)
    out = struct.pack("<III", TABLE, len(rows), nr_columns)
    if not nested:
        out += struct.pack("<I", len(fields)) + b"".join(fields)
    for row in rows:
        out += b"".join(row)
    return out


def ex_list(items):
    return struct.pack("<II", LIST, len(items)) + b"".join(items)


def ex_leaf(name, value, nr_children=0, encoding=ENC):
    return struct.pack("<II", TREE, 1) + ex_string(name, encoding) + value + struct.pack("<I", nr_children)


def ex_tree(children, encoding=ENC):
    out = struct.pack("<III", TREE, 0, len(children))
    for name, value in children:
        out += ex_string(name, encoding) + value
    return out


def ex_document(blocks, encoding=ENC):
    out = b"HEAD" + struct.pack("<I", 0x0C) + b"EXTF" + struct.pack("<II", 1, len(blocks))
    for name, value in blocks:
        out += ex_string(name, encoding) + value
    return out


# -----------------------------------------------------------------------------
# Archives
# -----------------------------------------------------------------------------

def _pad(data, n):
    return data + b"\x00" * (-len(data) % n)


def afa(files, version=2, encoding=ENC):
    """AFA archive with ``files`` = [(name, bytes)]."""
    toc = b""
    data = b""
    for name, payload in files:
        raw = name.encode(encoding)
        padded = _pad(raw, 4) if len(raw) % 4 else raw + b"\x00" * 4
        toc += struct.pack("<II", len(raw), len(padded)) + padded
        toc += struct.pack("<II", 0, 0)
        if version == 1:
            toc += struct.pack("<I", 0)
        toc += struct.pack("<II", 8 + len(data), len(payload))
        data += payload
    compressed = zlib.compress(toc)
    header_size = 44
    data_start = header_size + len(compressed)
    header = (b"AFAH" + struct.pack("<I", 0x1C) + b"AlicArch"
              + struct.pack("<III", version, 1, data_start)
              + b"INFO" + struct.pack("<III", len(compressed), len(toc), len(files)))
    return header + compressed + b"DATA" + struct.pack("<I", 8 + len(data)) + data


def alk(files):
    """ALK archive with ``files`` = [bytes]."""
    table = b""
    offset = 8 + 8 * len(files)
    for payload in files:
        table += struct.pack("<II", offset, len(payload))
        offset += len(payload)
    return b"ALK0" + struct.pack("<I", len(files)) + table + b"".join(files)


def flat_chunk(tag, payload):
    return tag + struct.pack("<I", len(payload)) + payload


def flat(libl=(), talt=(), encoding=ENC):
    """FLAT file with LIBL ``libl`` = [(name, type, bytes)] and TALT ``talt`` = [bytes]."""
    out = flat_chunk(b"ELNA", b"")
    out += flat_chunk(b"FLAT", b"\x00" * 8)
    if libl:
        body = struct.pack("<I", len(libl))
        for name, kind, payload in libl:
            raw = name.encode(encoding)
            body += struct.pack("<I", len(raw)) + _pad(raw, 4)
            body += struct.pack("<II", kind, len(payload)) + _pad(payload, 4)
        out += flat_chunk(b"LIBL", body)
    if talt:
        body = struct.pack("<I", len(talt))
        for payload in talt:
            body += struct.pack("<I", len(payload)) + _pad(payload, 4)
        out += flat_chunk(b"TALT", body)
    return out


SECTOR = 256


def _sectors(n):
    return max(1, -(-n // SECTOR))


def ald(files, volume_of=None, encoding=ENC):
    """ALD volumes for ``files`` = [(name, bytes)].

    ``volume_of`` gives the 1-based volume of each file (default: all in
    volume 1). Returns {volume number: volume bytes}.
    """
    if volume_of is None:
        volume_of = [1] * len(files)
    volumes = sorted(set(volume_of)) or [1]

    # pointer index of each file within its volume
    links = []
    per_volume = {v: [] for v in volumes}
    for (name, payload), vol in zip(files, volume_of):
        per_volume[vol].append((name, payload))
        links.append((vol, len(per_volume[vol])))

    link_map = b"".join(struct.pack("<BH", v, p) for v, p in links) + b"\x00\x00\x00"

    out = {}
    for vol in volumes:
        records = []
        for name, payload in per_volume[vol]:
            raw = name.encode(encoding) + b"\x00"
            raw = _pad(raw, 16)
            header = struct.pack("<IIQ", 16 + len(raw), len(payload), 0) + raw
            records.append(_pad(header + payload, SECTOR))

        ptr_sectors = _sectors(3 * (len(records) + 2))
        map_sector = ptr_sectors
        sector = map_sector + _sectors(len(link_map))
        pointers = [map_sector]
        for rec in records:
            pointers.append(sector)
            sector += len(rec) // SECTOR
        ptr_table = b"".join(p.to_bytes(3, "little") for p in pointers)

        body = _pad(ptr_table, SECTOR)
        body += _pad(link_map, SECTOR)
        body += b"".join(records)
        footer = b"NL\x01\x00" + struct.pack("<BBH", vol, 0, len(records)) + b"\x00" * 8
        out[vol] = body + footer
    return out


# -----------------------------------------------------------------------------
# Images
# -----------------------------------------------------------------------------

def qnt_solid(width, height, rgb, alpha=None):
    """QNT image of one solid color.

    After the delta filter a solid plane is its value at (0, 0) followed
    by zeros, in both the block and row-major layouts.
    """
    w2, h2 = width + (width & 1), height + (height & 1)
    plane = lambda v: bytes([v]) + b"\x00" * (w2 * h2 - 1)
    r, g, b = rgb
    pixels = zlib.compress(plane(b) + plane(g) + plane(r))
    alpha_data = zlib.compress(plane(alpha)) if alpha is not None else b""
    header = b"QNT\x00" + struct.pack(
        "<IIIIIIIIII", 1, 0x44, 0, 0, width, height, 24, 1 if alpha is not None else 0,
        len(pixels), len(alpha_data),
    )
    return _pad(header, 0x44) + pixels + alpha_data
