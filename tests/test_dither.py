import logging

import numpy as np
import pytest

from ditherlabel.imaging.dither import (
    Algorithm,
    BAYER_MATRICES,
    DIFFUSION_KERNELS,
    blue_noise_map,
    dither,
)
from ditherlabel.imaging.raster import is_bw

ERROR_DIFFUSION = [a for a in Algorithm if a.is_error_diffusion]


def black_count(bw):
    return int((bw[..., 0] == 0).sum())


def test_ordered4_matrix_is_exact():
    assert BAYER_MATRICES[4].tolist() == [
        [0, 8, 2, 10],
        [12, 4, 14, 6],
        [3, 11, 1, 9],
        [15, 7, 13, 5],
    ]


@pytest.mark.parametrize("n", [2, 4, 8])
def test_bayer_matrices_are_permutations(n):
    matrix = BAYER_MATRICES[n]
    assert matrix.shape == (n, n)
    assert sorted(matrix.ravel().tolist()) == list(range(n * n))


def test_diffusion_kernels_sum_to_one_and_point_forward():
    assert set(DIFFUSION_KERNELS) == {
        Algorithm.floyd,
        Algorithm.atkinson,
        Algorithm.stucki,
        Algorithm.jarvis,
        Algorithm.sierra,
        Algorithm.burkes,
    }
    for kernel in DIFFUSION_KERNELS.values():
        assert sum(w for _, _, w in kernel) == pytest.approx(1.0)
        for dx, dy, _ in kernel:
            assert dy > 0 or (dy == 0 and dx > 0)


def test_floyd_kernel_weights():
    assert DIFFUSION_KERNELS[Algorithm.floyd] == (
        (1, 0, 7 / 16),
        (-1, 1, 3 / 16),
        (0, 1, 5 / 16),
        (1, 1, 1 / 16),
    )


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_output_is_strict_bw(algorithm):
    rng = np.random.default_rng(5)
    gray = rng.uniform(0, 255, size=(12, 16))
    bw = dither(gray, algorithm)
    assert bw.shape == (12, 16, 4)
    assert bw.dtype == np.uint8
    assert is_bw(bw)


def test_threshold_is_idempotent():
    rng = np.random.default_rng(7)
    gray = rng.uniform(0, 255, size=(10, 10))
    first = dither(gray, Algorithm.threshold, threshold=100)
    second = dither(first[..., 0].astype(float), Algorithm.threshold, threshold=100)
    assert np.array_equal(first, second)


def test_threshold_edge_map_lowers_threshold():
    gray = np.full((1, 2), 110.0)
    edges = np.array([[0, 255]], dtype=np.uint8)
    bw = dither(gray, Algorithm.threshold, threshold=128, edge_map=edges)
    assert bw[0, :, 0].tolist() == [0, 255]


def test_edge_map_shape_mismatch():
    with pytest.raises(ValueError):
        dither(np.zeros((2, 2)), Algorithm.threshold, edge_map=np.zeros((3, 3), dtype=np.uint8))


@pytest.mark.parametrize("algorithm", ERROR_DIFFUSION + [Algorithm.two_phase])
def test_error_diffusion_extremes(algorithm):
    white = dither(np.full((16, 16), 255.0), algorithm)
    black = dither(np.full((16, 16), 0.0), algorithm)
    assert black_count(white) == 0
    assert black_count(black) == 16 * 16


@pytest.mark.parametrize("algorithm", ERROR_DIFFUSION)
def test_ink_tracks_mean_gray(algorithm):
    counts = [black_count(dither(np.full((24, 24), level), algorithm)) for level in (32.0, 96.0, 160.0, 224.0)]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] > counts[-1]


def test_serpentine_mirrors_kernel_on_odd_rows():
    gray = np.array([[255.0, 255.0], [120.0, 120.0]])
    serp = dither(gray, Algorithm.floyd, serpentine=True)
    plain = dither(gray, Algorithm.floyd, serpentine=False)
    # right-to-left: the error of the right pixel lands on its left neighbour
    assert serp[1, :, 0].tolist() == [255, 0]
    assert plain[1, :, 0].tolist() == [0, 255]


def test_border_error_is_dropped_not_renormalised():
    gray = np.array([[100.0, 50.0]])
    bw = dither(gray, Algorithm.floyd)
    # 50 + 100 * 7/16 stays below 128; renormalised weights would reach 150
    assert bw[0, :, 0].tolist() == [0, 0]


def test_diffusion_does_not_clamp_accumulated_error():
    gray = np.array([[-100.0, 150.0]])
    bw = dither(gray, Algorithm.floyd)
    # -100 carries -43.75 forward; clamping to 0 first would leave 150 white
    assert bw[0, :, 0].tolist() == [0, 0]


def test_ordered_uses_matrix_thresholds():
    gray = np.full((4, 4), 100.0)
    bw = dither(gray, Algorithm.ordered4)
    limits = (BAYER_MATRICES[4] + 0.5) * 255 / 16
    expected = np.where(100.0 < limits, 0, 255)
    assert np.array_equal(bw[..., 0], expected)


def test_ordered_edge_reduction():
    gray = np.full((2, 2), 60.0)
    edges = np.full((2, 2), 255, dtype=np.uint8)
    plain = dither(gray, Algorithm.ordered2)
    aware = dither(gray, Algorithm.ordered2, edge_map=edges)
    assert black_count(aware) < black_count(plain)


def test_two_phase_without_edges_matches_ordered4():
    rng = np.random.default_rng(11)
    gray = rng.uniform(0, 255, size=(9, 13))
    assert np.array_equal(dither(gray, Algorithm.two_phase), dither(gray, Algorithm.ordered4))


def test_blue_noise_map_ranks():
    noise = blue_noise_map()
    assert noise.shape == (64, 64)
    assert noise.dtype == np.uint8
    # 4096 ranks mapped onto 256 levels
    assert np.bincount(noise.ravel(), minlength=256).tolist() == [16] * 256
    assert blue_noise_map() is noise


def test_blue_noise_mid_gray_is_half_ink():
    bw = dither(np.full((64, 64), 128.0), Algorithm.blue_noise)
    ratio = black_count(bw) / (64 * 64)
    assert 0.45 < ratio < 0.55


def test_parse_known_and_unknown_names(caplog):
    assert Algorithm.parse("ordered4") is Algorithm.ordered4
    assert Algorithm.parse(" Blue_Noise ") is Algorithm.blue_noise
    assert Algorithm.parse(Algorithm.stucki) is Algorithm.stucki
    with caplog.at_level(logging.WARNING):
        assert Algorithm.parse("riemersma") is Algorithm.floyd
    assert "riemersma" in caplog.text
    assert Algorithm.parse(None) is Algorithm.floyd


def test_dither_rejects_plain_strings():
    with pytest.raises(TypeError):
        dither(np.zeros((2, 2)), "floyd")
