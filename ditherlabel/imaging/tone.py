from typing import Optional

import numpy as np

LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def gamma_lut(gamma: float = 2.2) -> np.ndarray:
    i = np.arange(256, dtype=np.float64)
    # round half up
    return np.floor(255 * (i / 255) ** gamma + 0.5).astype(np.uint8)


def apply_gamma(rgba: np.ndarray, gamma: float = 2.2) -> np.ndarray:
    """Map R, G and B through a precomputed gamma table; alpha is untouched."""
    lut = gamma_lut(gamma)
    out = rgba.copy()
    out[..., :3] = lut[rgba[..., :3]]
    return out


def luminance(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    r, g, b = LUMA_WEIGHTS
    return r * rgb[..., 0] + g * rgb[..., 1] + b * rgb[..., 2]


def contrast_factor(contrast: float) -> float:
    return (259 * (contrast + 255)) / (255 * (259 - contrast))


def adjust_tone(
    rgba: np.ndarray,
    brightness: float = 0,
    contrast: float = 0,
    noise: float = 0,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Apply brightness, contrast and noise and collapse to a gray field.

    ``brightness`` and ``contrast`` are in [-100, 100] and are applied to each
    colour channel before the Rec. 601 luminance is taken. ``noise`` in
    [0, 50] adds uniform noise of amplitude ``noise * 2.55`` to the result.
    The returned field is float64 so error diffusion can run on it directly.
    """
    offset = brightness * 2.55
    factor = contrast_factor(contrast)
    rgb = rgba[..., :3].astype(np.float64)
    adjusted = np.clip(factor * (rgb - 128) + 128 + offset, 0, 255)
    r, g, b = LUMA_WEIGHTS
    gray = r * adjusted[..., 0] + g * adjusted[..., 1] + b * adjusted[..., 2]
    if noise > 0:
        rng = rng or np.random.default_rng()
        jitter = (rng.random(gray.shape) - 0.5) * (noise * 2.55)
        gray = np.clip(gray + jitter, 0, 255)
    return gray
