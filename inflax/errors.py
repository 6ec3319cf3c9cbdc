"""Exception hierarchy for inflax.

Every failure aborts the spectrum computation. Exceptions carry the field
value, iteration count or tolerance involved so that a misconfigured model
can be told apart from a precision problem.

Jitted evolution loops cannot raise, so they report a ``Status`` code that
the host-side wrappers translate into one of the exceptions below.
"""

from __future__ import annotations

import enum
from typing import Optional


class Status(enum.IntEnum):
    """Exit codes of the jitted evolution loops."""

    OK = 0
    UNPHYSICAL_VALUE = 1
    UNPHYSICAL_SLOPE = 2
    INFLATION_BROKEN = 3
    STEP_SIZE_COLLAPSE = 4
    INTEGRATION_FAILED = 5
    TOO_MANY_STEPS = 6


class PrimordialError(Exception):
    """Base class for all errors raised while building a primordial spectrum."""


class ConfigurationError(PrimordialError, ValueError):
    """Inconsistent or incomplete spectrum configuration."""


class OutOfRangeError(PrimordialError, ValueError):
    """Wavenumber query outside the tabulated range of a numerical spectrum."""

    def __init__(self, k: float, k_min: float, k_max: float, message: Optional[str] = None):
        self.k = k
        self.k_min = k_min
        self.k_max = k_max
        if message is None:
            message = f"k={k:.6e} out of range [{k_min:.6e} : {k_max:.6e}]"
        super().__init__(message)


class UnphysicalPotential(PrimordialError):
    """V(phi) <= 0 (or H(phi) < 0) at a point the evolution had to visit."""

    def __init__(
        self,
        phi: float,
        value: float,
        quantity: str = "V",
        message: Optional[str] = None,
    ):
        self.phi = phi
        self.value = value
        self.quantity = quantity
        if message is None:
            message = (
                f"{quantity}(phi)={value:.6e} is not positive at phi={phi:.6e}, "
                f"before the end of observable inflation"
            )
        super().__init__(message)


class UnphysicalSlope(PrimordialError):
    """dV/dphi >= 0 (or dH/dphi > 0): the field would not roll towards larger phi."""

    def __init__(
        self,
        phi: float,
        slope: float,
        quantity: str = "V",
        message: Optional[str] = None,
    ):
        self.phi = phi
        self.slope = slope
        self.quantity = quantity
        if message is None:
            message = (
                f"d{quantity}/dphi={slope:.6e} at phi={phi:.6e}; only models with "
                f"d{quantity}/dphi<0 can be treated"
            )
        super().__init__(message)


class InflationBroken(PrimordialError):
    """epsilon crossed 1 from below while inflation was required to hold."""

    def __init__(self, phi: float, epsilon: Optional[float] = None, message: Optional[str] = None):
        self.phi = phi
        self.epsilon = epsilon
        if message is None:
            message = (
                f"inflaton evolution crosses the border from epsilon<1 to epsilon>1 "
                f"at phi={phi:.6e}: inflation disrupted during the observable e-folds"
            )
        super().__init__(message)


class StepSizeCollapse(PrimordialError):
    """Relative conformal time step fell below machine precision.

    During inflation the conformal time is tau ~ -1/aH, so the relative
    change of tau over a step is |dtau| aH.
    """

    def __init__(self, dtau: float, aH: float, phi: Optional[float] = None):
        self.dtau = dtau
        self.aH = aH
        self.phi = phi
        ratio = abs(dtau) * aH
        phi_str = f" at phi={phi:.6e}" if phi is not None else ""
        super().__init__(
            f"integration step: relative change in time {ratio:.3e} below machine "
            f"precision{phi_str}, leads to numerical error or infinite loop"
        )


class IntegrationError(PrimordialError):
    """The adaptive integrator failed on a segment, or a target was never reached."""

    def __init__(self, t0: float, t1: float, message: Optional[str] = None):
        self.t0 = t0
        self.t1 = t1
        if message is None:
            message = f"adaptive integration failed between tau={t0:.6e} and tau={t1:.6e}"
        super().__init__(message)


class AttractorNotFound(PrimordialError):
    """Field velocity at phi did not converge within the iteration budget."""

    def __init__(self, phi: float, iterations: int, precision: float):
        self.phi = phi
        self.iterations = iterations
        self.precision = precision
        super().__init__(
            f"could not converge after {iterations} iterations: no attractor solution "
            f"near phi={phi:.6e}. Potential probably too steep in this region, or "
            f"precision={precision:.3e} too small"
        )


class NoSufficientInflation(PrimordialError):
    """Required e-folds before or after the pivot could not be reached."""

    def __init__(self, iterations: int, detail: str = ""):
        self.iterations = iterations
        self.detail = detail
        message = f"not enough inflation after {iterations} iterations"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NegativeSpectrum(PrimordialError):
    """A computed power spectrum came out non-positive."""

    def __init__(self, k: float, mode: str, value: float):
        self.k = k
        self.mode = mode
        self.value = value
        super().__init__(f"non-positive {mode} spectrum P={value:.6e} at k={k:.6e}")


class ExternalSpectrumError(PrimordialError):
    """External spectrum command failed or produced an unusable table."""
