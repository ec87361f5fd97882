import math

import numpy as np

from ditherlabel.imaging.enhance import (
    clahe,
    detect_edges,
    gaussian_blur,
    gaussian_kernel,
    unsharp_mask,
)


def gray_image(values, alpha=255):
    values = np.asarray(values, dtype=np.uint8)
    img = np.empty(values.shape + (4,), dtype=np.uint8)
    img[..., :3] = values[..., None]
    img[..., 3] = alpha
    return img


def test_gaussian_kernel_shape_and_sum():
    for sigma in (0.5, 1.0, 2.3):
        kernel = gaussian_kernel(sigma)
        assert len(kernel) == 2 * math.ceil(sigma * 3) + 1
        assert abs(kernel.sum() - 1) < 1e-12
        assert np.argmax(kernel) == len(kernel) // 2


def test_blur_sigma_zero_is_identity():
    rng = np.random.default_rng(0)
    img = rng.integers(0, 256, size=(7, 9, 4), dtype=np.uint8)
    out = gaussian_blur(img, 0)
    assert out is not img
    assert np.array_equal(out, img)
    assert np.array_equal(gaussian_blur(img, -1), img)


def test_blur_keeps_uniform_image():
    img = gray_image(np.full((6, 6), 137), alpha=200)
    assert np.array_equal(gaussian_blur(img, 1.5), img)


def test_blur_spreads_single_dot_and_keeps_alpha():
    values = np.zeros((9, 9))
    values[4, 4] = 255
    img = gray_image(values, alpha=90)
    out = gaussian_blur(img, 1.0)
    assert out[4, 4, 0] < 255
    assert out[4, 5, 0] > 0
    assert out[5, 4, 0] > 0
    assert out[4, 4, 0] == out.max()
    assert np.all(out[..., 3] == 90)


def test_unsharp_uniform_unchanged():
    img = gray_image(np.full((5, 5), 90))
    assert np.array_equal(unsharp_mask(img, 1.0, 1.5), img)


def test_unsharp_increases_edge_contrast():
    values = np.zeros((6, 8))
    values[:, :4] = 80
    values[:, 4:] = 160
    out = unsharp_mask(gray_image(values), 1.0, 1.0)
    assert out[2, 3, 0] < 80
    assert out[2, 4, 0] > 160
    # far from the edge nothing changes
    assert out[2, 0, 0] == 80


def test_clahe_keeps_shape_and_alpha():
    rng = np.random.default_rng(1)
    img = rng.integers(0, 256, size=(20, 37, 4), dtype=np.uint8)
    img[..., 3] = 123
    out = clahe(img, tile_size=16, clip_limit=2.0)
    assert out.shape == img.shape
    assert np.all(out[..., 3] == 123)


def test_clahe_stretches_low_contrast_tile():
    values = np.full((16, 16), 100)
    values[:, 8:] = 110
    out = clahe(gray_image(values), tile_size=16, clip_limit=40)
    low = int(out[0, 0, 0])
    high = int(out[0, 15, 0])
    assert high - low > 30


def test_clahe_clips_and_spreads_total_excess():
    values = np.full((16, 16), 40)
    values[5:11] = 120
    values[11:] = 200
    out = clahe(gray_image(values), tile_size=16, clip_limit=2.0)
    # each bin is cut to 2 and the 250 counts removed are shared by all
    # 256 bins, not only the tallest bin's excess
    assert [int(out[0, 0, 0]), int(out[5, 0, 0]), int(out[11, 0, 0])] == [42, 122, 201]
    assert np.all(out[:5, :, :3] == 42)
    assert np.all(out[5:11, :, :3] == 122)
    assert np.all(out[11:, :, :3] == 201)


def test_clahe_black_pixels_stay_black():
    out = clahe(gray_image(np.zeros((8, 8))), tile_size=4)
    assert np.all(out[..., :3] == 0)


def test_detect_edges_uniform_is_zero():
    edges = detect_edges(gray_image(np.full((5, 5), 200)))
    assert edges.shape == (5, 5)
    assert not edges.any()


def test_detect_edges_step_and_border():
    values = np.full((5, 6), 255)
    values[:, :2] = 0
    edges = detect_edges(gray_image(values))
    assert edges[2, 2] == 255
    assert edges[2, 1] == 255
    assert edges[2, 4] == 0
    assert not edges[0, :].any()
    assert not edges[-1, :].any()
    assert not edges[:, 0].any()
    assert not edges[:, -1].any()


def test_detect_edges_tiny_image():
    assert not detect_edges(gray_image(np.zeros((2, 2)))).any()
