from dataclasses import dataclass, field
import io
import math
from typing import Callable, List, Optional, Tuple

import numpy as np
from PIL import Image, ImageOps

from ditherlabel.imaging.cleanup import hardware_cleanup
from ditherlabel.imaging.dither import Algorithm, dither
from ditherlabel.imaging.enhance import clahe, detect_edges, gaussian_blur, unsharp_mask
from ditherlabel.imaging.geometry import (
    RESAMPLING,
    apply_offset,
    flatten,
    rotate,
    scale_to_exact_resolution,
)
from ditherlabel.imaging.raster import bw_to_image, to_rgba
from ditherlabel.imaging.tone import adjust_tone, apply_gamma

DOTS_PER_MM = 8
# Header width (in bytes) and row count are 16-bit fields
MAX_WIDTH_BYTES = 0xFFFF
MAX_ROWS = 0xFFFF

Stage = Tuple[str, Callable[[np.ndarray], np.ndarray]]


class ConfigError(ValueError):
    """Invalid numeric configuration, detected before any processing."""


def _finite(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise ConfigError(f"{name} must be a finite number")


def _in_range(name: str, value: float, lo: float, hi: float) -> None:
    _finite(name, value)
    if not lo <= value <= hi:
        raise ConfigError(f"{name} must be between {lo} and {hi}")


def label_canvas_size(width_mm: float, height_mm: float) -> Tuple[int, int]:
    """Return the printer canvas ``(width, height)`` in dots for a label.

    Labels feed sideways, so the canvas width comes from the label height and
    the canvas height from the label width. The canvas width must land on a
    whole number of bytes and both dimensions must fit the print header.
    """
    _finite("label width", width_mm)
    _finite("label height", height_mm)
    if width_mm <= 0 or height_mm <= 0:
        raise ConfigError("Label size must be positive")
    canvas_w = int(round(height_mm * DOTS_PER_MM))
    canvas_h = int(round(width_mm * DOTS_PER_MM))
    if canvas_w % 8 != 0:
        raise ConfigError(f"Canvas width {canvas_w} dots is not a multiple of 8")
    if canvas_w // 8 > MAX_WIDTH_BYTES or canvas_h > MAX_ROWS:
        raise ConfigError(f"Label size {width_mm} x {height_mm} mm is too large for the printer")
    return canvas_w, canvas_h


@dataclass
class ProcessingOptions:
    """Everything one print or preview request needs to render its image."""

    algorithm: Algorithm = Algorithm.floyd
    threshold: float = 128
    brightness: float = 0
    contrast: float = 0
    noise: float = 0
    serpentine: bool = True
    rotation: float = 0
    use_gamma: bool = False
    gamma: float = 2.2
    use_clahe: bool = False
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 16
    use_prefilter: bool = False
    blur_sigma: float = 0.5
    unsharp_radius: float = 1.0
    unsharp_amount: float = 0.8
    edge_aware: bool = False
    hardware_cleanup: bool = False
    target_size: Optional[Tuple[int, int]] = None
    scaling_method: str = "lanczos"
    offset: Tuple[int, int] = (0, 0)
    seed: Optional[int] = field(default=None, compare=False)

    def validate(self) -> "ProcessingOptions":
        if not isinstance(self.algorithm, Algorithm):
            raise ConfigError("algorithm must be an Algorithm")
        _in_range("threshold", self.threshold, 0, 255)
        _in_range("brightness", self.brightness, -100, 100)
        _in_range("contrast", self.contrast, -100, 100)
        _in_range("noise", self.noise, 0, 50)
        _finite("rotation", self.rotation)
        _finite("gamma", self.gamma)
        if self.gamma <= 0:
            raise ConfigError("gamma must be positive")
        _finite("blur sigma", self.blur_sigma)
        if self.blur_sigma < 0:
            raise ConfigError("blur sigma must be >= 0")
        _finite("unsharp radius", self.unsharp_radius)
        _finite("unsharp amount", self.unsharp_amount)
        _finite("CLAHE clip limit", self.clahe_clip_limit)
        if self.clahe_clip_limit <= 0:
            raise ConfigError("CLAHE clip limit must be positive")
        if not isinstance(self.clahe_tile_size, int) or self.clahe_tile_size < 1:
            raise ConfigError("CLAHE tile size must be a positive integer")
        if self.scaling_method not in RESAMPLING:
            raise ConfigError(f"Unknown scaling method: {self.scaling_method}")
        if self.target_size is not None:
            w, h = self.target_size
            if int(w) <= 0 or int(h) <= 0:
                raise ConfigError("Target size must be positive")
            if int(w) // 8 > MAX_WIDTH_BYTES or int(h) > MAX_ROWS:
                raise ConfigError("Target size is too large for the printer")
        return self

    def stages(self) -> List[Stage]:
        """Enabled enhancement stages, always in gamma, CLAHE, blur order."""
        stages: List[Stage] = []
        if self.use_gamma:
            stages.append(("gamma", lambda rgba: apply_gamma(rgba, self.gamma)))
        if self.use_clahe:
            stages.append(
                ("clahe", lambda rgba: clahe(rgba, self.clahe_tile_size, self.clahe_clip_limit))
            )
        if self.use_prefilter:
            stages.append(("blur", lambda rgba: gaussian_blur(rgba, self.blur_sigma)))
            stages.append(
                ("unsharp", lambda rgba: unsharp_mask(rgba, self.unsharp_radius, self.unsharp_amount))
            )
        return stages


def prepare(img: Image.Image, options: ProcessingOptions) -> np.ndarray:
    """Apply the geometric steps and return the RGBA buffer to be dithered."""
    img = rotate(img, options.rotation) if options.rotation else flatten(img)
    if options.target_size is not None:
        width, height = options.target_size
        img = scale_to_exact_resolution(img, width, height, options.scaling_method)
    dx, dy = options.offset
    if dx or dy:
        img = apply_offset(img, dx, dy)
    return to_rgba(img)


def process(img: Image.Image, options: ProcessingOptions) -> np.ndarray:
    """Run the full pipeline on a decoded image and return a BW RGBA buffer."""
    options.validate()
    rgba = prepare(img, options)
    for _name, stage in options.stages():
        rgba = stage(rgba)
    edge_map = detect_edges(rgba) if options.edge_aware else None
    rng = np.random.default_rng(options.seed) if options.noise > 0 else None
    gray = adjust_tone(rgba, options.brightness, options.contrast, options.noise, rng=rng)
    bw = dither(gray, options.algorithm, options.threshold, options.serpentine, edge_map)
    if options.hardware_cleanup:
        bw = hardware_cleanup(bw)
    return bw


def load_image(img_bytes: bytes) -> Image.Image:
    with Image.open(io.BytesIO(img_bytes)) as img:
        img = ImageOps.exif_transpose(img)
        img.load()
        return img.copy()


def to_bw(img_bytes: bytes, options: ProcessingOptions) -> np.ndarray:
    """Decode image bytes (applying EXIF orientation) and run the pipeline."""
    return process(load_image(img_bytes), options)


def to_1bit(img_bytes: bytes, options: ProcessingOptions) -> Image.Image:
    """Like :func:`to_bw` but returns a mode ``"1"`` Pillow image for previews."""
    return bw_to_image(to_bw(img_bytes, options))
