import numpy as np

from ditherlabel.imaging.raster import is_bw, levels_to_bw


def pack_bits(bw: np.ndarray) -> bytes:
    """Pack a BW image into 1-bit rows, leftmost pixel in the MSB.

    A set bit is a black (burnt) dot, so the image's black=0 convention is
    inverted here. The width must be a multiple of 8.
    """
    if not is_bw(bw):
        raise ValueError("Image must be black/white RGBA")
    height, width = bw.shape[:2]
    if width % 8 != 0:
        raise ValueError(f"Image width {width} is not a multiple of 8")
    ink = bw[..., 0] == 0
    return np.packbits(ink, axis=1).tobytes()


def unpack_bits(data: bytes, width: int) -> np.ndarray:
    if width <= 0 or width % 8 != 0:
        raise ValueError(f"Image width {width} is not a multiple of 8")
    row_bytes = width // 8
    if len(data) % row_bytes != 0:
        raise ValueError("Data length is not a whole number of rows")
    packed = np.frombuffer(data, dtype=np.uint8).reshape(-1, row_bytes)
    ink = np.unpackbits(packed, axis=1).astype(bool)
    return levels_to_bw(np.where(ink, 0, 255).astype(np.uint8))
