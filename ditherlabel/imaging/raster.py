import numpy as np
from PIL import Image


def to_rgba(img: Image.Image) -> np.ndarray:
    """Return an owned ``(height, width, 4)`` uint8 RGBA buffer for ``img``."""
    return np.array(img.convert("RGBA"), dtype=np.uint8)


def levels_to_bw(levels: np.ndarray) -> np.ndarray:
    """Expand a 2-D array of 0/255 levels into a BW RGBA buffer."""
    height, width = levels.shape
    bw = np.empty((height, width, 4), dtype=np.uint8)
    bw[..., :3] = levels[..., None]
    bw[..., 3] = 255
    return bw


def is_bw(rgba: np.ndarray) -> bool:
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        return False
    r, g, b, a = (rgba[..., i] for i in range(4))
    return bool(
        np.all((r == 0) | (r == 255))
        and np.array_equal(r, g)
        and np.array_equal(r, b)
        and np.all(a == 255)
    )


def bw_to_image(bw: np.ndarray) -> Image.Image:
    gray = Image.fromarray(np.ascontiguousarray(bw[..., 0]))
    return gray.convert("1", dither=Image.Dither.NONE)
