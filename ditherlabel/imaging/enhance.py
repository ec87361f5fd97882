"""Optional pre-dither quality passes on RGBA buffers.

Every function takes a ``(height, width, 4)`` uint8 array and returns a new
one (or a separate edge map); inputs are never modified. Intermediate
results are rounded back to 8 bits, matching an 8-bit working canvas.
"""
import math

import numpy as np

from ditherlabel.imaging.tone import luminance


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def gaussian_kernel(sigma: float) -> np.ndarray:
    radius = math.ceil(sigma * 3)
    x = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(x * x) / (2 * sigma * sigma))
    return kernel / kernel.sum()


def _convolve_axis(rgb: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
    radius = len(kernel) // 2
    pad = [(0, 0)] * rgb.ndim
    pad[axis] = (radius, radius)
    # Clamp-to-edge borders
    padded = np.pad(rgb, pad, mode="edge")
    n = rgb.shape[axis]
    out = np.zeros(rgb.shape, dtype=np.float64)
    window = [slice(None)] * rgb.ndim
    for i, weight in enumerate(kernel):
        window[axis] = slice(i, i + n)
        out += weight * padded[tuple(window)]
    return out


def gaussian_blur(rgba: np.ndarray, sigma: float = 0.5) -> np.ndarray:
    """Separable Gaussian blur of the colour channels.

    Horizontal pass first, then vertical, each rounded to 8 bits. A
    non-positive ``sigma`` returns an unmodified copy.
    """
    out = rgba.copy()
    if sigma <= 0:
        return out
    kernel = gaussian_kernel(sigma)
    rgb = rgba[..., :3].astype(np.float64)
    rgb = _to_uint8(_convolve_axis(rgb, kernel, axis=1)).astype(np.float64)
    out[..., :3] = _to_uint8(_convolve_axis(rgb, kernel, axis=0))
    return out


def unsharp_mask(rgba: np.ndarray, radius: float = 1.0, amount: float = 0.8) -> np.ndarray:
    """Sharpen with ``original + amount * (original - blurred)``.

    ``radius`` is used as the sigma of the blur; ``amount`` is usually
    between 0.5 and 2.0.
    """
    blurred = gaussian_blur(rgba, radius)[..., :3].astype(np.float64)
    original = rgba[..., :3].astype(np.float64)
    out = rgba.copy()
    out[..., :3] = _to_uint8(original + amount * (original - blurred))
    return out


def clahe(rgba: np.ndarray, tile_size: int = 16, clip_limit: float = 2.0) -> np.ndarray:
    """Contrast limited adaptive histogram equalisation on hard tiles.

    Each ``tile_size`` square (clipped at the image border) is equalised on
    its own; there is no blending between tiles. Bins above
    ``clip_limit * pixels / 256`` are cut down and everything cut off is
    spread evenly over all 256 bins. Colour is rescaled by the ratio of
    new to old gray.
    """
    height, width = rgba.shape[:2]
    lum = luminance(rgba)
    gray = lum.astype(np.uint8)
    processed = gray.copy()

    for y1 in range(0, height, tile_size):
        for x1 in range(0, width, tile_size):
            tile = gray[y1:y1 + tile_size, x1:x1 + tile_size]
            count = tile.size
            hist = np.bincount(tile.ravel(), minlength=256).astype(np.float64)
            limit = clip_limit * count / 256
            clipped = np.minimum(hist, limit)
            excess = (hist - clipped).sum()
            hist = clipped + excess / 256
            cdf = np.cumsum(hist)
            mapping = np.clip(np.floor(cdf / count * 255 + 0.5), 0, 255).astype(np.uint8)
            processed[y1:y1 + tile_size, x1:x1 + tile_size] = mapping[tile]

    safe = np.where(lum > 0, lum, 1.0)
    ratio = np.where(lum > 0, processed / safe, 1.0)
    out = rgba.copy()
    scaled = rgba[..., :3].astype(np.float64) * ratio[..., None]
    out[..., :3] = _to_uint8(np.minimum(255, scaled))
    return out


def detect_edges(rgba: np.ndarray) -> np.ndarray:
    """Sobel edge strength (0-255) of the luminance.

    Only interior pixels are computed; the one-pixel border stays 0.
    """
    height, width = rgba.shape[:2]
    edges = np.zeros((height, width), dtype=np.uint8)
    if height < 3 or width < 3:
        return edges
    lum = luminance(rgba)
    gx = (lum[:-2, 2:] + 2 * lum[1:-1, 2:] + lum[2:, 2:]) - (
        lum[:-2, :-2] + 2 * lum[1:-1, :-2] + lum[2:, :-2]
    )
    gy = (lum[2:, :-2] + 2 * lum[2:, 1:-1] + lum[2:, 2:]) - (
        lum[:-2, :-2] + 2 * lum[:-2, 1:-1] + lum[:-2, 2:]
    )
    edges[1:-1, 1:-1] = np.minimum(255, np.sqrt(gx * gx + gy * gy)).astype(np.uint8)
    return edges
