from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np
from numba import jit

from oxybal.errors import MaxIterationsExceededError, NotBracketedError

# ---------------------------------------------------------------------------
# Bracketed Root Finding
# ---------------------------------------------------------------------------

ROOT_MAX_ITER = 30
ROOT_TOLERANCE = 1e-6


class RootStatus(Enum):
    CONVERGED = "converged"
    NOT_BRACKETED = "not_bracketed"
    MAX_ITERATIONS = "max_iterations"


@dataclass(frozen=True)
class RootResult:
    """
    Outcome of a bracketed root search.
    `root` is only set when the search converged.
    """
    status: RootStatus
    root: Optional[float] = None
    iterations: int = 0
    method: str = ""
    x1: float = 0.0
    x2: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is RootStatus.CONVERGED

    def unwrap(self) -> float:
        """Return the root or raise the typed failure."""
        if self.ok:
            return self.root
        details = {"method": self.method, "x1": self.x1, "x2": self.x2,
                   "iterations": self.iterations}
        if self.status is RootStatus.NOT_BRACKETED:
            raise NotBracketedError(
                f"Root must be bracketed in {self.method} [{self.x1}, {self.x2}]", details)
        raise MaxIterationsExceededError(
            f"Maximum number of iterations exceeded in {self.method} [{self.x1}, {self.x2}]", details)


def regula_falsi(func: Callable[[float], float], x1: float, x2: float,
                 tol: float = ROOT_TOLERANCE, max_iter: int = ROOT_MAX_ITER) -> RootResult:
    """
    False position search for a root of `func` known to lie between x1 and x2.
    The root is refined until the last step is smaller than `tol`.
    """
    fl = func(x1)
    fh = func(x2)
    if fl * fh > 0.0:
        return RootResult(RootStatus.NOT_BRACKETED, method="regula_falsi", x1=x1, x2=x2)

    # xl always holds the end with negative function value
    if fl < 0.0:
        xl, xh = x1, x2
    else:
        xl, xh = x2, x1
        fl, fh = fh, fl

    dx = xh - xl
    for j in range(1, max_iter + 1):
        rtf = xl + dx * fl / (fl - fh)
        f = func(rtf)
        if f < 0.0:
            delta = xl - rtf
            xl = rtf
            fl = f
        else:
            delta = xh - rtf
            xh = rtf
            fh = f
        dx = xh - xl
        if abs(delta) < tol or f == 0.0:
            return RootResult(RootStatus.CONVERGED, rtf, j, "regula_falsi", x1, x2)

    return RootResult(RootStatus.MAX_ITERATIONS, None, max_iter, "regula_falsi", x1, x2)


def bisection(func: Callable[[float], float], x1: float, x2: float,
              tol: float = ROOT_TOLERANCE, max_iter: int = ROOT_MAX_ITER) -> RootResult:
    """
    Interval halving between x1 and x2. Slower than regula_falsi but
    converges whenever the bracket is valid.
    """
    f = func(x1)
    fmid = func(x2)
    if f * fmid >= 0.0:
        return RootResult(RootStatus.NOT_BRACKETED, method="bisection", x1=x1, x2=x2)

    # Step from the end with negative function value
    if f < 0.0:
        rtb, dx = x1, x2 - x1
    else:
        rtb, dx = x2, x1 - x2

    for j in range(1, max_iter + 1):
        dx *= 0.5
        xmid = rtb + dx
        fmid = func(xmid)
        if fmid <= 0.0:
            rtb = xmid
        if abs(dx) < tol or fmid == 0.0:
            return RootResult(RootStatus.CONVERGED, rtb, j, "bisection", x1, x2)

    return RootResult(RootStatus.MAX_ITERATIONS, None, max_iter, "bisection", x1, x2)


def solve_bracketed(func: Callable[[float], float], x1: float, x2: float,
                    tol: float = ROOT_TOLERANCE, max_iter: int = ROOT_MAX_ITER,
                    on_fallback: Optional[Callable[[RootResult], None]] = None) -> RootResult:
    """
    Regula falsi first; on any failure retry with bisection over the same bracket.
    Returns the bisection result (possibly a failure) when the first attempt fails.
    """
    first = regula_falsi(func, x1, x2, tol, max_iter)
    if first.ok:
        return first
    if on_fallback is not None:
        on_fallback(first)
    return bisection(func, x1, x2, tol, max_iter)


# ---------------------------------------------------------------------------
# JIT-Compilable Blood Content Kernels (No objects, scalars/arrays only)
# ---------------------------------------------------------------------------

@jit(nopython=True)
def blood_conc_jit(p, h, fn, alphab, p50, cs, plow, phigh, clowfac, chighfac, pphighfac):
    n = len(p)
    c = np.empty(n)
    for i in range(n):
        pi = p[i]
        if pi < 0.0:
            c[i] = alphab * pi
        elif pi < plow:
            c[i] = clowfac * h * pi / plow + alphab * pi
        elif pi < phigh:
            c[i] = cs * h * (1.0 - 1.0 / (1.0 + (pi / p50) ** fn)) + alphab * pi
        else:
            c[i] = (chighfac + (pi - phigh) * pphighfac) * h + alphab * pi
    return c


@jit(nopython=True)
def blood_conc_slope_jit(p, h, fn, alphab, p50, cs, plow, phigh, clowfac, chighfac, pphighfac):
    n = len(p)
    dcdp = np.empty(n)
    for i in range(n):
        pi = p[i]
        if pi < 0.0:
            dcdp[i] = alphab
        elif pi < plow:
            dcdp[i] = clowfac * h / plow + alphab
        elif pi < phigh:
            x = pi / p50
            dcdp[i] = cs * h * fn / p50 * x ** (fn - 1.0) / (1.0 + x ** fn) ** 2 + alphab
        else:
            dcdp[i] = pphighfac * h + alphab
    return dcdp
