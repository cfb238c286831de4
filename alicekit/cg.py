"""
Image payload handling.

Recognizes the engine's image formats by signature and converts between
them and Pillow images. Only QNT has a native codec here; PNG and WEBP go
through Pillow. AJP, PMS, DCF and PCF are recognized (so they count as
images when filtering) but cannot be decoded.

QNT layout:
    header  "QNT\\0", u32 version, [u32 header size if version > 0],
            x, y, width, height, bpp, reserved, pixel size, alpha size
    pixels  zlib stream of three planes (B, G, R). Each plane is stored in
            2x2 blocks over the even-padded image, in the order
            (x, y), (x, y+1), (x+1, y), (x+1, y+1).
    alpha   optional zlib stream, one row-major plane over the padded image
Both planes are delta filtered: the first row and column against their
previous pixel, the rest against the mean of the pixels above and left.
"""

import enum
import io
import zlib
from typing import Optional

import numpy as np
from construct import Computed, Const, ConstructError, IfThenElse, Int32ul, Struct, this
from PIL import Image, UnidentifiedImageError

from . import config
from .errors import CgError


class CgType(enum.Enum):
    QNT = "qnt"
    AJP = "ajp"
    PMS = "pms"
    DCF = "dcf"
    PCF = "pcf"
    PNG = "png"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return self.value


NATIVE_TYPES = {CgType.QNT, CgType.AJP, CgType.PMS, CgType.DCF, CgType.PCF}


class ImageFormat(enum.Enum):
    """Target encodings for transcoding."""
    PNG = "png"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> "ImageFormat":
        try:
            return cls(name.lower())
        except ValueError:
            raise CgError(f"Unsupported image format: {name!r}") from None


def cg_type(data: bytes) -> Optional[CgType]:
    """Identify an image payload from its leading bytes."""
    if data[:4] == b"QNT\x00":
        return CgType.QNT
    if data[:4] == b"AJP\x00":
        return CgType.AJP
    if data[:2] == b"PM" and len(data) >= 4 and data[2:4] in (b"\x01\x00", b"\x02\x00"):
        return CgType.PMS
    if data[:4] == b"dcf ":
        return CgType.DCF
    if data[:4] == b"pcf ":
        return CgType.PCF
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return CgType.PNG
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return CgType.WEBP
    return None


def is_native(kind: Optional[CgType]) -> bool:
    return kind in NATIVE_TYPES


# -----------------------------------------------------------------------------
# QNT
# -----------------------------------------------------------------------------

QNT_HEADER_SIZE = 0x44

QntHeader = Struct(
    "magic" / Const(b"QNT\x00"),
    "version" / Int32ul,
    "header_size" / IfThenElse(this.version == 0, Computed(48), Int32ul),
    "x" / Int32ul,
    "y" / Int32ul,
    "width" / Int32ul,
    "height" / Int32ul,
    "bpp" / Int32ul,
    "rsv" / Int32ul,
    "pixel_size" / Int32ul,
    "alpha_size" / Int32ul,
)


def _padded(n: int) -> int:
    return (n + 1) & ~1


def _unfilter(d: np.ndarray) -> np.ndarray:
    """Undo the QNT delta filter. ``d`` is (h, w, channels) uint8."""
    h, w, channels = d.shape
    out = np.empty((h, w, channels), np.uint8)
    # each pixel depends on its left neighbour, so rows are rebuilt with
    # plain ints one channel at a time
    for c in range(channels):
        deltas = d[:, :, c].tolist()
        above = None
        for y, delta in enumerate(deltas):
            row = [0] * w
            v = delta[0] if above is None else (above[0] - delta[0]) & 0xFF
            row[0] = v
            if above is None:
                for x in range(1, w):
                    v = (v - delta[x]) & 0xFF
                    row[x] = v
            else:
                for x in range(1, w):
                    v = (((above[x] + v) >> 1) - delta[x]) & 0xFF
                    row[x] = v
            out[y, :, c] = row
            above = row
    return out


def _filter(px: np.ndarray) -> np.ndarray:
    """Apply the QNT delta filter. ``px`` is (h, w, channels) uint8."""
    p = px.astype(np.int32)
    out = p.copy()
    out[0, 1:] = p[0, :-1] - p[0, 1:]
    out[1:, 0] = p[:-1, 0] - p[1:, 0]
    out[1:, 1:] = ((p[:-1, 1:] + p[1:, :-1]) >> 1) - p[1:, 1:]
    return (out & 0xFF).astype(np.uint8)


def _decompress(data: bytes, offset: int, size: int, expected: int, what: str) -> bytes:
    if offset + size > len(data):
        raise CgError(f"QNT {what} data truncated", offset=offset, size=size)
    try:
        raw = zlib.decompress(data[offset:offset + size])
    except zlib.error as e:
        raise CgError(f"QNT {what} data does not decompress: {e}") from e
    if len(raw) < expected:
        raise CgError(f"QNT {what} data too short", expected=expected, actual=len(raw))
    return raw


def qnt_decode(data: bytes) -> Image.Image:
    """Decode a QNT image to an RGB or RGBA Pillow image."""
    try:
        hdr = QntHeader.parse(data)
    except ConstructError as e:
        raise CgError(f"Bad QNT header: {e}") from e
    w, h = hdr.width, hdr.height
    if w == 0 or h == 0:
        raise CgError("QNT image has no pixels", width=w, height=h)
    w2, h2 = _padded(w), _padded(h)

    rgb = np.zeros((h, w, 3), np.uint8)
    if hdr.pixel_size:
        raw = _decompress(data, hdr.header_size, hdr.pixel_size, w2 * h2 * 3, "pixel")
        planes = np.frombuffer(raw, np.uint8, w2 * h2 * 3).reshape(3, h2 // 2, w2 // 2, 2, 2)
        planes = planes.transpose(0, 1, 4, 2, 3).reshape(3, h2, w2)[:, :h, :w]
        # stored B, G, R
        rgb = _unfilter(np.ascontiguousarray(planes[::-1].transpose(1, 2, 0)))

    if not hdr.alpha_size:
        return Image.fromarray(rgb)

    raw = _decompress(data, hdr.header_size + hdr.pixel_size, hdr.alpha_size, w2 * h2, "alpha")
    alpha = np.frombuffer(raw, np.uint8, w2 * h2).reshape(h2, w2)[:h, :w]
    alpha = _unfilter(np.ascontiguousarray(alpha)[:, :, None])
    return Image.fromarray(np.concatenate([rgb, alpha], axis=2))


def qnt_encode(image: Image.Image) -> bytes:
    """Encode a Pillow image as QNT (version 1, with alpha if the image has it)."""
    has_alpha = image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
    px = np.asarray(image.convert("RGBA" if has_alpha else "RGB"), dtype=np.uint8)
    h, w = px.shape[:2]
    w2, h2 = _padded(w), _padded(h)

    filtered = _filter(px[:, :, :3])
    planes = np.zeros((3, h2, w2), np.uint8)
    planes[:, :h, :w] = filtered.transpose(2, 0, 1)[::-1]
    blocks = planes.reshape(3, h2 // 2, 2, w2 // 2, 2).transpose(0, 1, 3, 4, 2)
    pixel_data = zlib.compress(blocks.tobytes())

    alpha_data = b""
    if has_alpha:
        alpha = np.zeros((h2, w2), np.uint8)
        alpha[:h, :w] = _filter(px[:, :, 3:])[:, :, 0]
        alpha_data = zlib.compress(alpha.tobytes())

    header = QntHeader.build(dict(
        version=1, header_size=QNT_HEADER_SIZE, x=0, y=0, width=w, height=h,
        bpp=24, rsv=1 if has_alpha else 0,
        pixel_size=len(pixel_data), alpha_size=len(alpha_data),
    ))
    header = header.ljust(QNT_HEADER_SIZE, b"\x00")
    return header + pixel_data + alpha_data


# -----------------------------------------------------------------------------
# Generic decode / encode
# -----------------------------------------------------------------------------

def decode(data: bytes) -> Image.Image:
    """Decode any supported image payload.

    Raises:
        CgError: unrecognized or unsupported format, or corrupt data
    """
    kind = cg_type(data)
    if kind == CgType.QNT:
        return qnt_decode(data)
    if kind in (CgType.PNG, CgType.WEBP):
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CgError(f"Could not decode {kind.value} image: {e}") from e
        return image
    if kind is None:
        raise CgError("Not an image")
    raise CgError(f"No decoder for {kind.value.upper()} images")


def encode(image: Image.Image, fmt: ImageFormat) -> bytes:
    buf = io.BytesIO()
    try:
        if fmt == ImageFormat.PNG:
            image.save(buf, format="PNG")
        elif fmt == ImageFormat.WEBP:
            image.save(buf, format="WEBP", quality=config.WEBP_QUALITY)
        else:
            raise CgError(f"Unsupported image format: {fmt!r}")
    except (OSError, ValueError, KeyError) as e:
        raise CgError(f"Could not encode {fmt.value} image: {e}") from e
    return buf.getvalue()


def convert(data: bytes, fmt: ImageFormat) -> bytes:
    """Decode an image payload and re-encode it in ``fmt``."""
    return encode(decode(data), fmt)
