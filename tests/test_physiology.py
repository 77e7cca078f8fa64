import numpy as np
import pytest
from scipy.optimize import brentq

import oxybal.physiology as physiology
from oxybal.errors import ConfigError, InversionError
from oxybal.numerics import RootResult, RootStatus
from oxybal.physiology import (
    BloodGasParams, blood_conc, blood_conc_array, blood_conc_slope,
    blood_conc_slope_array, blood_state, dissociation_curve, inverse_blood_conc,
)


@pytest.mark.parametrize("p", [-5.0, 0.0, 0.05, 1.0, 26.0, 99.0, 150.0])
def test_round_trip(params, hd, p):
    c = blood_conc(p, hd, params)
    state = inverse_blood_conc(c, hd, params)
    assert state.pressure == pytest.approx(p, abs=1e-3)
    assert state.concentration == c


def test_round_trip_slope_matches_forward(params, hd):
    for p in [0.05, 1.0, 26.0, 150.0]:
        state = inverse_blood_conc(blood_conc(p, hd, params), hd, params)
        assert state.slope == pytest.approx(blood_conc_slope(state.pressure, hd, params), rel=1e-3)


def test_derived_factors_make_curve_continuous(params, hd):
    eps = 1e-10
    for pb in (params.plow, params.phigh):
        below = blood_conc(pb - eps, hd, params)
        above = blood_conc(pb + eps, hd, params)
        assert below == pytest.approx(above, abs=1e-9)


def test_slope_continuous_at_phigh(params, hd):
    eps = 1e-9
    below = blood_conc_slope(params.phigh - eps, hd, params)
    above = blood_conc_slope(params.phigh + eps, hd, params)
    assert below == pytest.approx(above, rel=1e-6)


def test_monotonic(params, hd):
    p = np.linspace(-10.0, 200.0, 2101)
    c = blood_conc_array(p, hd, params)
    assert np.all(np.diff(c) > 0.0)


def test_half_saturation_at_p50(params, hd):
    c = blood_conc(params.p50, hd, params)
    assert c == pytest.approx(0.5 * params.cs * hd + params.alphab * params.p50)


@pytest.mark.parametrize("p", [0.05, 5.0, 26.0, 60.0, 120.0])
def test_slope_matches_finite_difference(params, hd, p):
    dp = 1e-6
    fd = (blood_conc(p + dp, hd, params) - blood_conc(p - dp, hd, params)) / (2 * dp)
    assert blood_conc_slope(p, hd, params) == pytest.approx(fd, rel=1e-4)


def test_zero_hematocrit_is_plasma(params):
    for p in [-3.0, 0.05, 40.0, 130.0]:
        assert blood_conc(p, 0.0, params) == pytest.approx(params.alphab * p, rel=1e-12)
        assert blood_conc(p, 1e-9, params) == pytest.approx(params.alphab * p, rel=1e-3)

    c = 0.002
    state = inverse_blood_conc(c, 0.0, params)
    assert state.pressure == c / params.alphab
    assert state.slope == params.alphab


def test_negative_content_inverts_linearly(params, hd):
    state = inverse_blood_conc(-1e-4, hd, params)
    assert state.pressure == pytest.approx(-1e-4 / params.alphab)
    assert state.slope == params.alphab


def test_inversion_matches_brentq(params, hd):
    clow = params.clowfac * hd + params.alphab * params.plow
    chigh = params.chighfac * hd + params.alphab * params.phigh
    for c in np.linspace(1.01 * clow, 0.999 * chigh, 25):
        expected = brentq(lambda p: blood_conc(p, hd, params) - c, 0.0, 200.0, xtol=1e-10)
        state = inverse_blood_conc(c, hd, params, tol=1e-6)
        assert state.pressure == pytest.approx(expected, abs=1e-4)


def test_inversion_continuous_across_branches(params, hd):
    chigh = params.chighfac * hd + params.alphab * params.phigh
    below = inverse_blood_conc(chigh * (1 - 1e-9), hd, params, tol=1e-6)
    above = inverse_blood_conc(chigh, hd, params)
    assert below.pressure == pytest.approx(params.phigh, abs=1e-3)
    assert above.pressure == pytest.approx(params.phigh)


def test_round_trip_dense_grid(params, hd):
    worst = 0.0
    for p in np.linspace(0.0, 160.0, 3201):
        state = inverse_blood_conc(blood_conc(p, hd, params), hd, params)
        worst = max(worst, abs(state.pressure - p))
    assert worst < 1e-4


def test_inversion_continuous_at_clow(params, hd):
    clow = params.clowfac * hd + params.alphab * params.plow
    below = inverse_blood_conc(clow * (1 - 1e-9), hd, params)
    above = inverse_blood_conc(clow, hd, params)
    assert below.pressure == pytest.approx(params.plow, abs=1e-6)
    assert above.pressure == pytest.approx(params.plow, abs=1e-5)
    assert above.pressure == pytest.approx(below.pressure, abs=1e-5)


def test_inversion_failure_is_raised(params, hd, monkeypatch):
    def failing(func, x1, x2, tol, max_iter, on_fallback=None):
        return RootResult(RootStatus.MAX_ITERATIONS, method="bisection", x1=x1, x2=x2)

    monkeypatch.setattr(physiology, "solve_bracketed", failing)
    with pytest.raises(InversionError) as info:
        inverse_blood_conc(blood_conc(30.0, hd, params), hd, params)
    assert info.value.details["reason"] == "max_iterations"


def test_array_kernels_match_scalar(params, hd):
    p = np.array([-2.0, 0.0, 0.07, 0.1, 13.0, 26.0, 99.99, 100.0, 180.0])
    c = blood_conc_array(p, hd, params)
    dcdp = blood_conc_slope_array(p, hd, params)
    for i, pi in enumerate(p):
        assert c[i] == pytest.approx(blood_conc(pi, hd, params), rel=1e-12)
        assert dcdp[i] == pytest.approx(blood_conc_slope(pi, hd, params), rel=1e-12)


def test_blood_state(params, hd):
    state = blood_state(40.0, hd, params)
    assert state.pressure == 40.0
    assert state.concentration == blood_conc(40.0, hd, params)
    assert state.slope == blood_conc_slope(40.0, hd, params)


def test_dissociation_curve(params, hd):
    df = dissociation_curve(params, hd)
    assert list(df.columns) == ["po2", "conc", "dcdp"]
    assert len(df) == 301
    assert df["conc"].is_monotonic_increasing


def test_updated_rederives_factors(params, hd):
    shifted = params.updated(p50=30.0)
    assert shifted.p50 == 30.0
    assert shifted.chighfac != params.chighfac
    eps = 1e-10
    assert blood_conc(shifted.phigh - eps, hd, shifted) == pytest.approx(
        blood_conc(shifted.phigh + eps, hd, shifted), abs=1e-9)


def test_explicit_factors_must_match_curve(params):
    same = BloodGasParams(clowfac=params.clowfac, chighfac=params.chighfac,
                          pphighfac=params.pphighfac)
    assert same == params

    with pytest.raises(ConfigError) as info:
        BloodGasParams(chighfac=0.19)
    assert info.value.details["name"] == "chighfac"
    with pytest.raises(ConfigError):
        BloodGasParams(pphighfac=params.pphighfac * 1.01)
