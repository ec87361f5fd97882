from PIL import Image

WHITE = (255, 255, 255, 255)

RESAMPLING = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "lanczos": Image.Resampling.LANCZOS,
}


def flatten(img: Image.Image) -> Image.Image:
    """Composite ``img`` over white so transparency prints as paper."""
    rgba = img.convert("RGBA")
    canvas = Image.new("RGBA", rgba.size, WHITE)
    canvas.alpha_composite(rgba)
    return canvas


def normalize_angle(degrees: float) -> float:
    return ((degrees % 360) + 360) % 360


def rotate(img: Image.Image, degrees: float) -> Image.Image:
    """Rotate clockwise about the image centre onto a white canvas.

    Quarter turns swap width and height; any other angle keeps the source
    canvas size and crops the corners.
    """
    angle = normalize_angle(degrees)
    img = flatten(img)
    if angle == 0:
        return img
    if angle == 90:
        return img.transpose(Image.Transpose.ROTATE_270)
    if angle == 180:
        return img.transpose(Image.Transpose.ROTATE_180)
    if angle == 270:
        return img.transpose(Image.Transpose.ROTATE_90)
    # Pillow rotates counter-clockwise
    return img.rotate(
        -angle,
        resample=Image.Resampling.BICUBIC,
        expand=False,
        fillcolor=WHITE,
    )


def scale_to_exact_resolution(
    img: Image.Image,
    target_width: int,
    target_height: int,
    method: str = "lanczos",
) -> Image.Image:
    """Fit ``img`` inside the target box, centred on white.

    Aspect ratio is preserved with ``scale = min(tw / w, th / h)``, so the
    result never spills out of the box; the remainder is white padding.
    """
    if method not in RESAMPLING:
        raise ValueError(f"Unknown scaling method: {method}")
    img = flatten(img)
    scale = min(target_width / img.width, target_height / img.height)
    new_w = max(1, min(target_width, int(round(img.width * scale))))
    new_h = max(1, min(target_height, int(round(img.height * scale))))
    resized = img.resize((new_w, new_h), RESAMPLING[method])
    canvas = Image.new("RGBA", (target_width, target_height), WHITE)
    canvas.paste(resized, ((target_width - new_w) // 2, (target_height - new_h) // 2))
    return canvas


def apply_offset(img: Image.Image, dx: int, dy: int) -> Image.Image:
    """Shift content by ``dx``/``dy`` dots on a same-size white canvas."""
    img = flatten(img)
    if dx == 0 and dy == 0:
        return img
    canvas = Image.new("RGBA", img.size, WHITE)
    canvas.paste(img, (dx, dy))
    return canvas
