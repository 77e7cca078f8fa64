import math

import numpy as np
import pandas as pd
import structlog
from dataclasses import dataclass
from typing import Optional

from oxybal.errors import ConfigError, InversionError
from oxybal.numerics import (
    ROOT_MAX_ITER, ROOT_TOLERANCE, RootResult,
    blood_conc_jit, blood_conc_slope_jit, solve_bracketed,
)

logger = structlog.get_logger()

# Below this hematocrit the blood is treated as plasma only
HD_MIN = 1.e-6


def _hill_saturation(p: float, fn: float, p50: float) -> float:
    return 1.0 - 1.0 / (1.0 + (p / p50) ** fn)


def _hill_slope(p: float, fn: float, p50: float) -> float:
    x = p / p50
    return fn / p50 * x ** (fn - 1.0) / (1.0 + x ** fn) ** 2


@dataclass(frozen=True)
class BloodGasParams:
    """
    Oxygen dissociation curve: a Hill curve between plow and phigh,
    joined to linear segments below plow and above phigh.

    clowfac, chighfac and pphighfac are the Hill saturation term at plow,
    at phigh and its slope at phigh. Left as None they are derived; explicit
    values must agree with the derived ones so the curve stays continuous
    at both breakpoints.
    """
    fn: float = 2.7          # Hill exponent
    p50: float = 26.0        # Half-saturation PO2 (mmHg)
    alphab: float = 3.1e-5   # O2 solubility in blood (cm3 O2/cm3/mmHg)
    cs: float = 0.2          # O2 binding capacity of red cells (cm3 O2/cm3)
    plow: float = 0.1        # Lower breakpoint (mmHg)
    phigh: float = 100.0     # Upper breakpoint (mmHg)
    clowfac: Optional[float] = None
    chighfac: Optional[float] = None
    pphighfac: Optional[float] = None

    def __post_init__(self):
        derived = {
            "clowfac": self.cs * _hill_saturation(self.plow, self.fn, self.p50),
            "chighfac": self.cs * _hill_saturation(self.phigh, self.fn, self.p50),
            "pphighfac": self.cs * _hill_slope(self.phigh, self.fn, self.p50),
        }
        for name, value in derived.items():
            given = getattr(self, name)
            if given is None:
                object.__setattr__(self, name, value)
            elif not math.isclose(given, value, rel_tol=1e-9, abs_tol=1e-15):
                raise ConfigError(f"{name} = {given} does not match the Hill curve ({value})",
                                  {"name": name, "given": given, "derived": value})

    @classmethod
    def from_hill(cls, fn: float, p50: float, alphab: float, cs: float,
                  plow: float, phigh: float) -> "BloodGasParams":
        return cls(fn=fn, p50=p50, alphab=alphab, cs=cs, plow=plow, phigh=phigh)

    def updated(self, **changes) -> "BloodGasParams":
        """
        Copy with some fields changed. The blend factors are derived again
        unless given explicitly, so the copy stays continuous.
        """
        fields = {name: getattr(self, name) for name in ("fn", "p50", "alphab", "cs", "plow", "phigh")}
        fields.update(changes)
        return BloodGasParams(**fields)

    def kernel_args(self):
        return (self.fn, self.alphab, self.p50, self.cs, self.plow, self.phigh,
                self.clowfac, self.chighfac, self.pphighfac)


@dataclass(frozen=True)
class GasState:
    pressure: float       # PO2 (mmHg)
    concentration: float  # O2 content (cm3 O2/cm3)
    slope: float          # dc/dp at pressure


def blood_conc(p: float, h: float, params: BloodGasParams) -> float:
    """O2 content of blood at PO2 `p` and discharge hematocrit `h`."""
    if p < 0.0:
        # Linear for p < 0, keeps iterates that overshoot well behaved
        return params.alphab * p
    if p < params.plow:
        return params.clowfac * h * p / params.plow + params.alphab * p
    if p < params.phigh:
        return params.cs * h * _hill_saturation(p, params.fn, params.p50) + params.alphab * p
    return (params.chighfac + (p - params.phigh) * params.pphighfac) * h + params.alphab * p


def blood_conc_slope(p: float, h: float, params: BloodGasParams) -> float:
    """dc/dp of blood_conc, branch by branch."""
    if p < 0.0:
        return params.alphab
    if p < params.plow:
        return params.clowfac * h / params.plow + params.alphab
    if p < params.phigh:
        return params.cs * h * _hill_slope(p, params.fn, params.p50) + params.alphab
    return params.pphighfac * h + params.alphab


def blood_state(p: float, h: float, params: BloodGasParams) -> GasState:
    return GasState(p, blood_conc(p, h, params), blood_conc_slope(p, h, params))


def inverse_blood_conc(c: float, h: float, params: BloodGasParams,
                       tol: float = ROOT_TOLERANCE, max_iter: int = ROOT_MAX_ITER) -> GasState:
    """
    PO2 and dc/dp for blood with O2 content `c` and hematocrit `h`.

    The linear segments are inverted directly. On the Hill segment the root is
    bracketed from the Hill relation (ignoring dissolved O2, which can only
    move the root down) and found by regula falsi, then bisection if needed.

    Raises:
        InversionError: both root searches failed.
    """
    alphab = params.alphab
    if h < HD_MIN or c < 0.0:
        # Plasma only, or severe hypoxia
        return GasState(c / alphab, c, alphab)

    clow = params.clowfac * h + alphab * params.plow
    if c < clow:
        return GasState(c * params.plow / clow, c, clow / params.plow)

    chigh = params.chighfac * h + alphab * params.phigh
    if c < chigh:
        sat = c / h / params.cs
        if sat < 1.0:
            # c < chigh puts the root below phigh
            ph = min((sat / (1.0 - sat)) ** (1.0 / params.fn) * params.p50, params.phigh)
            pl = 0.0
        else:
            ph = params.phigh
            pl = params.plow

        def residual(p):
            return blood_conc(p, h, params) - c

        def log_fallback(failed: RootResult):
            logger.debug("regula_falsi_failed", status=failed.status.value,
                         conc=c, hd=h, pl=pl, ph=ph)

        result = solve_bracketed(residual, pl, ph, tol, max_iter, on_fallback=log_fallback)
        if not result.ok:
            raise InversionError(
                f"Could not invert O2 content {c} at hematocrit {h}",
                {"conc": c, "hd": h, "pl": pl, "ph": ph, "reason": result.status.value})
        p = result.root
        return GasState(p, c, params.cs * h * _hill_slope(p, params.fn, params.p50) + alphab)

    pphigh = params.pphighfac * h + alphab
    return GasState(params.phigh + (c - chigh) / pphigh, c, pphigh)


# ---------------------------------------------------------------------------
# Array evaluation
# ---------------------------------------------------------------------------

def blood_conc_array(p, h: float, params: BloodGasParams) -> np.ndarray:
    p = np.ascontiguousarray(p, dtype=np.float64)
    return blood_conc_jit(p, float(h), *params.kernel_args())


def blood_conc_slope_array(p, h: float, params: BloodGasParams) -> np.ndarray:
    p = np.ascontiguousarray(p, dtype=np.float64)
    return blood_conc_slope_jit(p, float(h), *params.kernel_args())


def dissociation_curve(params: BloodGasParams, h: float, p_grid=None) -> pd.DataFrame:
    """Tabulated curve (po2, conc, dcdp) for reports."""
    if p_grid is None:
        p_grid = np.linspace(0.0, 150.0, 301)
    p_grid = np.asarray(p_grid, dtype=np.float64)
    return pd.DataFrame({
        "po2": p_grid,
        "conc": blood_conc_array(p_grid, h, params),
        "dcdp": blood_conc_slope_array(p_grid, h, params),
    })
