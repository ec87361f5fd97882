import numpy as np

from ditherlabel.imaging.raster import levels_to_bw


def hardware_cleanup(bw: np.ndarray) -> np.ndarray:
    """Remove speckles and bridge 1px line gaps the print head would drop.

    One pass over the interior pixels, reading from ``bw`` and writing to a
    copy:

    * a black pixel with no black 8-neighbour turns white;
    * a white pixel turns black when its left and right neighbours are black
      and top and bottom are white, or the other way round.
    """
    levels = bw[..., 0]
    out = levels.copy()
    height, width = levels.shape
    if height < 3 or width < 3:
        return levels_to_bw(out)

    black = levels == 0
    white = levels == 255
    center = (slice(1, -1), slice(1, -1))

    def shifted(mask, dy, dx):
        return mask[1 + dy:height - 1 + dy, 1 + dx:width - 1 + dx]

    neighbours = sum(
        shifted(black, dy, dx).astype(np.uint8)
        for dy in (-1, 0, 1)
        for dx in (-1, 0, 1)
        if (dy, dx) != (0, 0)
    )
    isolated = black[center] & (neighbours == 0)

    left, right = shifted(black, 0, -1), shifted(black, 0, 1)
    top, bottom = shifted(black, -1, 0), shifted(black, 1, 0)
    left_w, right_w = shifted(white, 0, -1), shifted(white, 0, 1)
    top_w, bottom_w = shifted(white, -1, 0), shifted(white, 1, 0)
    gap = white[center] & (
        (left & right & top_w & bottom_w) | (top & bottom & left_w & right_w)
    )

    inner = out[center]
    inner[isolated] = 255
    inner[gap] = 0
    return levels_to_bw(out)
