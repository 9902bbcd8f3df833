import math
import numpy as np
import pytest

from simpeaks.descriptors import PeakDescriptor
from simpeaks.kernels import (Shape1D, Shape2D, evaluate_1d, evaluate_2d, pseudo_voigt_eta, resolve_shape_1d,
                              resolve_shape_2d, zero_check)


def test_zero_check():
    assert zero_check(0.0) == 1.0
    assert zero_check(5e-13) == 1.0
    assert zero_check(-5e-13) == 1.0
    assert zero_check(2e-12) == 2e-12
    assert zero_check(-3.0) == -3.0


def test_resolve_shape_tags():
    assert resolve_shape_1d("gaussian") == Shape1D.GAUSSIAN
    assert resolve_shape_1d("Pseudo-Voigt") == Shape1D.PSEUDO_VOIGT
    assert resolve_shape_1d(3) == Shape1D.GAUSSIAN
    assert resolve_shape_1d("3") == Shape1D.GAUSSIAN
    assert resolve_shape_1d("banana") == Shape1D.NONE
    assert resolve_shape_1d(99) == Shape1D.NONE
    # triangle is 1D only
    assert resolve_shape_2d("triangle") == Shape2D.NONE
    assert resolve_shape_2d(Shape1D.TRIANGLE) == Shape2D.NONE
    assert resolve_shape_2d(Shape1D.GAUSSIAN) == Shape2D.GAUSSIAN
    assert resolve_shape_2d("cone") == Shape2D.CONE


@pytest.mark.parametrize("shape", ["gaussian", "lorentz", "pseudo_voigt", "laplace", "moffat"])
def test_unimodal_1d_peaks_at_position(shape):
    peak = PeakDescriptor(shape=shape, pos_x=10.0, fwhm_x=4.0, p1=2.5)
    center = evaluate_1d(peak, 10.0)
    for d in (0.5, 1.0, 3.0, 7.0):
        assert center >= evaluate_1d(peak, 10.0 + d)
        assert center >= evaluate_1d(peak, 10.0 - d)


@pytest.mark.parametrize("shape", ["gaussian", "lorentz", "pseudo_voigt", "laplace", "moffat", "cone", "pyramid"])
def test_unimodal_2d_peaks_at_position(shape):
    peak = PeakDescriptor(shape=shape, pos_x=5.0, pos_y=5.0, fwhm_x=3.0, fwhm_y=4.0, p1=2.5)
    center = evaluate_2d(peak, 5.0, 5.0)
    for dx, dy in ((1, 0), (0, 1), (-1, -1), (2, -3)):
        assert center >= evaluate_2d(peak, 5.0 + dx, 5.0 + dy)


@pytest.mark.parametrize("shape", ["gaussian", "lorentz", "laplace"])
def test_half_maximum_at_half_width(shape):
    peak = PeakDescriptor(shape=shape, pos_x=0.0, fwhm_x=6.0)
    center = evaluate_1d(peak, 0.0)
    assert evaluate_1d(peak, 3.0) == pytest.approx(center / 2.0)
    assert evaluate_1d(peak, -3.0) == pytest.approx(center / 2.0)


def test_gaussian_center_is_normalized_density():
    peak = PeakDescriptor(shape="gaussian", pos_x=0.0, fwhm_x=10.0)
    sigma = 10.0 / (2.0 * math.sqrt(2.0 * math.log(2.0)))
    assert evaluate_1d(peak, 0.0) == pytest.approx(1.0 / (sigma * math.sqrt(2.0 * math.pi)))


def test_width_is_clamped_to_one_bin():
    narrow = PeakDescriptor(shape="gaussian", pos_x=0.0, fwhm_x=0.0)
    unit = PeakDescriptor(shape="gaussian", pos_x=0.0, fwhm_x=1.0)
    negative = PeakDescriptor(shape="gaussian", pos_x=0.0, fwhm_x=-5.0)
    for x in (0.0, 0.5, 2.0):
        assert evaluate_1d(narrow, x) == evaluate_1d(unit, x)
        assert evaluate_1d(negative, x) == evaluate_1d(unit, x)


def test_unknown_shape_contributes_zero():
    peak = PeakDescriptor(shape="banana", pos_x=3.0, fwhm_x=2.0)
    assert evaluate_1d(peak, 3.0) == 0.0
    assert evaluate_2d(peak, 3.0, 0.0) == 0.0
    out = evaluate_1d(peak, np.arange(5))
    assert out.shape == (5,)
    assert not out.any()


def test_square_1d_boundaries():
    peak = PeakDescriptor(shape="square", pos_x=5.0, fwhm_x=4.0)
    values = evaluate_1d(peak, np.arange(10))
    # trunc(3) < x <= trunc(7)
    assert values.tolist() == [0, 0, 0, 0, 1, 1, 1, 1, 0, 0]


def test_triangle_1d():
    peak = PeakDescriptor(shape="triangle", pos_x=10.0, fwhm_x=4.0)
    assert evaluate_1d(peak, 10.0) == pytest.approx(1.0)
    assert evaluate_1d(peak, 8.0) == pytest.approx(0.5)
    assert evaluate_1d(peak, 12.0) == pytest.approx(0.5)
    assert evaluate_1d(peak, 14.0) == 0.0
    assert evaluate_1d(peak, 30.0) == 0.0


def test_smoothstep_1d_edges():
    peak = PeakDescriptor(shape="smoothstep", pos_x=10.0, fwhm_x=4.0)
    assert evaluate_1d(peak, 0.0) == 0.0
    assert evaluate_1d(peak, 10.0) == pytest.approx(0.5)
    assert evaluate_1d(peak, 20.0) == 1.0


def test_cone_height_and_base():
    peak = PeakDescriptor(shape="cone", pos_x=5.0, pos_y=5.0, fwhm_x=4.0, fwhm_y=6.0)
    assert evaluate_2d(peak, 5.0, 5.0) == pytest.approx(10.0)
    # base ellipse radius along x is fwhm_x
    assert evaluate_2d(peak, 9.0, 5.0) == pytest.approx(0.0, abs=1e-9)
    assert evaluate_2d(peak, 20.0, 20.0) == 0.0


def test_gaussian_2d_correlation_tilts_the_peak():
    peak = PeakDescriptor(shape="gaussian", pos_x=0.0, pos_y=0.0, fwhm_x=3.0, fwhm_y=3.0, correlation=0.5)
    assert evaluate_2d(peak, 1.0, 1.0) > evaluate_2d(peak, 1.0, -1.0)
    flat = PeakDescriptor(shape="gaussian", pos_x=0.0, pos_y=0.0, fwhm_x=3.0, fwhm_y=3.0)
    assert evaluate_2d(flat, 1.0, 1.0) == pytest.approx(evaluate_2d(flat, 1.0, -1.0))


def test_pseudo_voigt_eta_equal_widths():
    # eta only depends on the width ratio
    assert pseudo_voigt_eta(1.0, 1.0) == pytest.approx(0.6825, abs=1e-3)
    assert pseudo_voigt_eta(7.0, 7.0) == pytest.approx(pseudo_voigt_eta(1.0, 1.0))


def test_vectorized_matches_scalar():
    peak = PeakDescriptor(shape="lorentz", pos_x=4.2, fwhm_x=3.0)
    xs = np.arange(10)
    values = evaluate_1d(peak, xs)
    assert values.dtype == np.float64
    for x, v in zip(xs, values):
        assert v == pytest.approx(evaluate_1d(peak, float(x)))

    peak2 = PeakDescriptor(shape="pyramid", pos_x=3.0, pos_y=2.0, fwhm_x=3.0, fwhm_y=2.0)
    yy, xx = np.mgrid[0:5, 0:6]
    grid = evaluate_2d(peak2, xx, yy)
    assert grid.shape == (5, 6)
    assert grid[2, 3] == pytest.approx(evaluate_2d(peak2, 3.0, 2.0))


def test_degenerate_inputs_do_not_raise():
    cases_1d = [
        PeakDescriptor(shape="moffat", pos_x=0.0, fwhm_x=2.0, p1=-1.0),
        PeakDescriptor(shape="gaussian", pos_x=float("nan"), fwhm_x=2.0),
        PeakDescriptor(shape="pseudo_voigt", pos_x=0.0, fwhm_x=1e308),
    ]
    for peak in cases_1d:
        evaluate_1d(peak, np.arange(4))
        evaluate_1d(peak, 0.0)
    cases_2d = [
        PeakDescriptor(shape="gaussian", fwhm_x=2.0, fwhm_y=2.0, correlation=1.0),
        PeakDescriptor(shape="laplace", fwhm_x=2.0, fwhm_y=2.0, correlation=-5.0),
        PeakDescriptor(shape="moffat", fwhm_x=2.0, p1=0.0),
        PeakDescriptor(shape="cone", fwhm_x=0.0, fwhm_y=0.0),
    ]
    for peak in cases_2d:
        evaluate_2d(peak, np.arange(4), np.arange(4))
        evaluate_2d(peak, 0.0, 0.0)


def test_moffat_beta_one_is_flat_zero():
    # beta == 1 zeroes the normalization term
    peak = PeakDescriptor(shape="moffat", pos_x=0.0, fwhm_x=2.0, p1=0.0)
    assert evaluate_1d(peak, 0.0) == 0.0
