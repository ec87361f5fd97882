"""Reduce a gray field to a strict black/white image.

Twelve algorithms are available through :class:`Algorithm`: a plain
threshold, three Bayer matrices, a blue-noise map, six error-diffusion
kernels and a two-phase ordered + Floyd-Steinberg hybrid. All of them accept
an optional edge map that lowers the threshold near edges so thin lines and
text survive.
"""
from enum import Enum
from functools import lru_cache
import logging
from typing import Optional

import numpy as np

from ditherlabel.imaging.raster import levels_to_bw

logger = logging.getLogger(__name__)


class Algorithm(str, Enum):
    threshold = "threshold"
    ordered2 = "ordered2"
    ordered4 = "ordered4"
    ordered8 = "ordered8"
    blue_noise = "blue_noise"
    floyd = "floyd"
    atkinson = "atkinson"
    stucki = "stucki"
    jarvis = "jarvis"
    sierra = "sierra"
    burkes = "burkes"
    two_phase = "two_phase"

    @classmethod
    def parse(cls, name: Optional[str]) -> "Algorithm":
        """Resolve a user supplied name, defaulting to ``floyd``.

        Unknown or empty names are not an error: they fall back to
        Floyd-Steinberg and a warning is logged.
        """
        if isinstance(name, cls):
            return name
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            logger.warning("Unknown dither algorithm %r, using floyd", name)
            return cls.floyd

    @property
    def is_error_diffusion(self) -> bool:
        return self in DIFFUSION_KERNELS


BAYER_MATRICES = {
    2: np.array(
        [
            [0, 2],
            [3, 1],
        ]
    ),
    4: np.array(
        [
            [0, 8, 2, 10],
            [12, 4, 14, 6],
            [3, 11, 1, 9],
            [15, 7, 13, 5],
        ]
    ),
    8: np.array(
        [
            [0, 32, 8, 40, 2, 34, 10, 42],
            [48, 16, 56, 24, 50, 18, 58, 26],
            [12, 44, 4, 36, 14, 46, 6, 38],
            [60, 28, 52, 20, 62, 30, 54, 22],
            [3, 35, 11, 43, 1, 33, 9, 41],
            [51, 19, 59, 27, 49, 17, 57, 25],
            [15, 47, 7, 39, 13, 45, 5, 37],
            [63, 31, 55, 23, 61, 29, 53, 21],
        ]
    ),
}

# (dx, dy, weight); dx is mirrored on right-to-left rows
DIFFUSION_KERNELS = {
    Algorithm.floyd: (
        (1, 0, 7 / 16),
        (-1, 1, 3 / 16),
        (0, 1, 5 / 16),
        (1, 1, 1 / 16),
    ),
    Algorithm.atkinson: (
        (1, 0, 1 / 8),
        (2, 0, 1 / 8),
        (-1, 1, 1 / 8),
        (0, 1, 1 / 8),
        (1, 1, 1 / 8),
        (0, 2, 1 / 8),
    ),
    Algorithm.stucki: (
        (1, 0, 8 / 42),
        (2, 0, 4 / 42),
        (-2, 1, 2 / 42),
        (-1, 1, 4 / 42),
        (0, 1, 8 / 42),
        (1, 1, 4 / 42),
        (2, 1, 2 / 42),
        (-2, 2, 1 / 42),
        (-1, 2, 2 / 42),
        (0, 2, 4 / 42),
        (1, 2, 2 / 42),
        (2, 2, 1 / 42),
    ),
    Algorithm.jarvis: (
        (1, 0, 7 / 48),
        (2, 0, 5 / 48),
        (-2, 1, 3 / 48),
        (-1, 1, 5 / 48),
        (0, 1, 7 / 48),
        (1, 1, 5 / 48),
        (2, 1, 3 / 48),
        (-2, 2, 1 / 48),
        (-1, 2, 3 / 48),
        (0, 2, 5 / 48),
        (1, 2, 3 / 48),
        (2, 2, 1 / 48),
    ),
    Algorithm.sierra: (
        (1, 0, 5 / 32),
        (2, 0, 3 / 32),
        (-2, 1, 2 / 32),
        (-1, 1, 4 / 32),
        (0, 1, 5 / 32),
        (1, 1, 4 / 32),
        (2, 1, 2 / 32),
        (-1, 2, 2 / 32),
        (0, 2, 3 / 32),
        (1, 2, 2 / 32),
    ),
    Algorithm.burkes: (
        (1, 0, 8 / 32),
        (2, 0, 4 / 32),
        (-2, 1, 2 / 32),
        (-1, 1, 4 / 32),
        (0, 1, 8 / 32),
        (1, 1, 4 / 32),
        (2, 1, 2 / 32),
    ),
}

# How far full edge strength (255) pulls the threshold down
EDGE_REDUCTION = {
    "threshold": 30,
    "ordered": 40,
    "blue_noise": 40,
    "diffusion": 20,
}

BLUE_NOISE_SIZE = 64
BLUE_NOISE_CANDIDATES = 100
TWO_PHASE_THRESHOLD_BOOST = 10


@lru_cache(maxsize=None)
def blue_noise_map(size: int = BLUE_NOISE_SIZE, seed: int = 0) -> np.ndarray:
    """Build a ``size`` x ``size`` threshold map with Mitchell's best candidate.

    Cells are placed one at a time. For each rank up to 100 random unused
    cells are tried and the one farthest (Euclidean, no wrap-around) from
    every cell placed so far wins; it gets the threshold
    ``floor(rank / size**2 * 256)``. The result is cached, so the map is
    generated once per process for a given seed.
    """
    total = size * size
    rng = np.random.default_rng(seed)
    ys, xs = np.divmod(np.arange(total), size)
    min_dist = np.full(total, np.inf)
    unused = np.ones(total, dtype=bool)
    thresholds = np.zeros(total, dtype=np.uint8)

    for rank in range(total):
        free = np.flatnonzero(unused)
        count = min(BLUE_NOISE_CANDIDATES, len(free))
        candidates = rng.choice(free, size=count, replace=False)
        best = candidates[np.argmax(min_dist[candidates])]
        unused[best] = False
        thresholds[best] = (rank * 256) // total
        dist = np.sqrt((xs - xs[best]) ** 2 + (ys - ys[best]) ** 2)
        np.minimum(min_dist, dist, out=min_dist)

    result = thresholds.reshape(size, size)
    result.flags.writeable = False
    return result


def _edge_strength(edge_map: Optional[np.ndarray], shape) -> np.ndarray:
    if edge_map is None:
        return np.zeros(shape)
    if edge_map.shape != shape:
        raise ValueError(f"Edge map shape {edge_map.shape} does not match image {shape}")
    return edge_map.astype(np.float64) / 255


def _tile(matrix: np.ndarray, shape) -> np.ndarray:
    height, width = shape
    n_y, n_x = matrix.shape
    rows = np.arange(height) % n_y
    cols = np.arange(width) % n_x
    return matrix[np.ix_(rows, cols)]


def _threshold_levels(gray, threshold, edge_map):
    limit = threshold - _edge_strength(edge_map, gray.shape) * EDGE_REDUCTION["threshold"]
    return np.where(gray < limit, 0, 255).astype(np.uint8)


def _ordered_levels(gray, n, edge_map):
    matrix = BAYER_MATRICES[n]
    limit = (_tile(matrix, gray.shape) + 0.5) * (255 / (n * n))
    limit = limit - _edge_strength(edge_map, gray.shape) * EDGE_REDUCTION["ordered"]
    return np.where(gray < limit, 0, 255).astype(np.uint8)


def _blue_noise_levels(gray, edge_map):
    limit = _tile(blue_noise_map(), gray.shape).astype(np.float64)
    limit = limit - _edge_strength(edge_map, gray.shape) * EDGE_REDUCTION["blue_noise"]
    return np.where(gray < limit, 0, 255).astype(np.uint8)


def _diffuse_levels(gray, kernel, threshold, serpentine, edge_map):
    height, width = gray.shape
    field = gray.astype(np.float64).tolist()
    limits = (
        threshold - _edge_strength(edge_map, gray.shape) * EDGE_REDUCTION["diffusion"]
    ).tolist()
    levels = np.zeros((height, width), dtype=np.uint8)

    for y in range(height):
        direction = -1 if serpentine and y % 2 == 1 else 1
        xs = range(width - 1, -1, -1) if direction == -1 else range(width)
        row = field[y]
        row_limits = limits[y]
        for x in xs:
            old = row[x]
            new = 0 if old < row_limits[x] else 255
            row[x] = new
            levels[y, x] = new
            err = old - new
            if err == 0:
                continue
            # Error that would land outside the image is dropped
            for dx, dy, weight in kernel:
                nx = x + dx * direction
                ny = y + dy
                if 0 <= nx < width and ny < height:
                    field[ny][nx] += err * weight
    return levels


def _two_phase_levels(gray, threshold, edge_map):
    coarse = _ordered_levels(gray.copy(), 4, None)
    return _diffuse_levels(
        coarse.astype(np.float64),
        DIFFUSION_KERNELS[Algorithm.floyd],
        threshold + TWO_PHASE_THRESHOLD_BOOST,
        True,
        edge_map,
    )


def dither(
    gray: np.ndarray,
    algorithm: Algorithm = Algorithm.floyd,
    threshold: float = 128,
    serpentine: bool = True,
    edge_map: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Dither a gray field into a BW RGBA image.

    ``threshold`` applies to the threshold and error-diffusion algorithms;
    ordered and blue-noise dithering bring their own per-pixel thresholds.
    ``serpentine`` only affects error diffusion: odd rows are scanned right to
    left with the kernel mirrored. Gray values are not clamped before
    quantisation.
    """
    if not isinstance(algorithm, Algorithm):
        raise TypeError(f"algorithm must be an Algorithm, not {type(algorithm).__name__}")
    gray = np.asarray(gray, dtype=np.float64)

    if algorithm is Algorithm.threshold:
        levels = _threshold_levels(gray, threshold, edge_map)
    elif algorithm is Algorithm.ordered2:
        levels = _ordered_levels(gray, 2, edge_map)
    elif algorithm is Algorithm.ordered4:
        levels = _ordered_levels(gray, 4, edge_map)
    elif algorithm is Algorithm.ordered8:
        levels = _ordered_levels(gray, 8, edge_map)
    elif algorithm is Algorithm.blue_noise:
        levels = _blue_noise_levels(gray, edge_map)
    elif algorithm is Algorithm.two_phase:
        levels = _two_phase_levels(gray, threshold, edge_map)
    else:
        kernel = DIFFUSION_KERNELS[algorithm]
        levels = _diffuse_levels(gray, kernel, threshold, serpentine, edge_map)
    return levels_to_bw(levels)
