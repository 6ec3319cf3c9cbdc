"""Pivot and end-of-inflation searches for inflax.

Two ways of anchoring the inflationary trajectory to observable scales:

(a) phi_pivot is given. The attractor (potential mode) or H(phi) (Hubble
    mode) fixes H_pivot, and the scale factor is normalised so that k_pivot
    crosses the horizon there, a_pivot = k_pivot / H_pivot. Inflation must
    then last long enough after the pivot for k_max, and have started early
    enough before it for k_min.

(b) phi_end is given instead. The field value where inflation ends is
    bisected, the number of e-folds from a point of small epsilon to the end
    is measured, and the trajectory is shot backward by the requested
    ln(aH_end/aH_pivot) to locate phi_pivot. Then (a) applies.

The inflaton rolls towards larger phi, so earlier times mean smaller phi.

References:
    CLASS source: primordial.c (primordial_inflation_solve_inflation,
    primordial_find_phi_stop, primordial_find_phi_pivot)
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple, Optional

from inflax.attractor import find_attractor
from inflax.background import evolve_background
from inflax.errors import NoSufficientInflation
from inflax.models import InflatonModel
from inflax.params import PrecisionParams, SpectrumConfig, SpectrumType
from inflax.states import AttractorPoint, BackgroundState, Direction, Target

logger = logging.getLogger(__name__)

_MAX_BRACKET_STEPS = 64
_MAX_BISECTIONS = 200


class InitialConditions(NamedTuple):
    """Background state from which every wavenumber is integrated."""

    phi_pivot: float
    H_pivot: float
    a_pivot: float
    y_ini: BackgroundState


# ---------------------------------------------------------------------------
# (a) Given phi_pivot
# ---------------------------------------------------------------------------

def initial_conditions_at_pivot(
    model: InflatonModel,
    phi_pivot: float,
    k_pivot: float,
    k_min: float,
    k_max: float,
    prec: PrecisionParams = PrecisionParams(),
) -> InitialConditions:
    """Check that inflation covers [k_min, k_max] and find the initial state.

    Args:
        model: inflaton model
        phi_pivot: field value at horizon crossing of k_pivot
        k_pivot, k_min, k_max: wavenumbers in Mpc^-1
        prec: precision parameters (static)

    Returns:
        InitialConditions with y_ini such that aH <= k_min / ratio_min

    Raises:
        NoSufficientInflation: no early enough starting point within phi_ini_maxit tries
        InflationBroken: epsilon reaches 1 before k_max exits the horizon
    """
    phi_pivot = float(phi_pivot)
    if model.has_velocity:
        logger.debug("search attractor at pivot")
        pivot = find_attractor(model, phi_pivot, prec.attractor_precision_pivot, prec)
        H_pivot, dphidt_pivot = pivot.H, pivot.dphidt
    else:
        H_pivot = model.check(phi_pivot)[0]
        dphidt_pivot = None

    a_pivot = k_pivot / H_pivot

    logger.debug(f"check inflation duration after phi_pivot={phi_pivot:.6e}")
    y = BackgroundState(
        a=a_pivot,
        phi=phi_pivot,
        dphi=a_pivot * dphidt_pivot if model.has_velocity else None,
    )
    evolve_background(
        model, y, Target.AH, k_max / prec.ratio_max,
        check_epsilon=True, direction=Direction.FORWARD, prec=prec,
    )

    logger.debug("check inflation duration before pivot")
    aH_ini = k_min / prec.ratio_min
    if model.has_velocity:
        y_ini = _early_state_on_attractor(model, phi_pivot, a_pivot, aH_ini, prec)
    else:
        # Hubble mode integrates backward exactly
        y, _ = evolve_background(
            model, BackgroundState(a=a_pivot, phi=phi_pivot), Target.AH, aH_ini,
            check_epsilon=True, direction=Direction.BACKWARD, prec=prec,
        )
        y_ini = BackgroundState(a=float(y.a), phi=float(y.phi))

    return InitialConditions(
        phi_pivot=phi_pivot,
        H_pivot=float(H_pivot),
        a_pivot=float(a_pivot),
        y_ini=y_ini,
    )


def _early_state_on_attractor(
    model: InflatonModel,
    phi_pivot: float,
    a_pivot: float,
    aH_ini: float,
    prec: PrecisionParams,
) -> BackgroundState:
    """Attractor state early enough that aH <= aH_ini, normalised to a_pivot.

    The slow-roll backward evolution proposes phi_try; the exact attractor
    at phi_try, evolved forward to phi_pivot, tells which scale factor
    phi_try really corresponds to. If aH is still too large there, the
    backward evolution continues from phi_try.
    """
    y = BackgroundState(a=a_pivot, phi=phi_pivot)
    for iteration in range(1, prec.phi_ini_maxit + 1):
        y, _ = evolve_background(
            model, y, Target.AH, aH_ini * prec.aH_ini_target,
            check_epsilon=True, direction=Direction.BACKWARD, prec=prec,
        )
        phi_try = float(y.phi)

        attractor = find_attractor(model, phi_try, prec.attractor_precision_initial, prec)

        # Evolve from a = 1, then rescale so that a = a_pivot at phi_pivot
        y, _ = evolve_background(
            model, BackgroundState(a=1.0, phi=phi_try, dphi=attractor.dphidt),
            Target.PHI, phi_pivot,
            check_epsilon=True, direction=Direction.FORWARD, prec=prec,
        )
        a_try = a_pivot / float(y.a)
        if a_try * attractor.H <= aH_ini:
            break
        y = BackgroundState(a=a_try, phi=phi_try)
    else:
        raise NoSufficientInflation(
            prec.phi_ini_maxit,
            "the potential does not allow enough inflationary e-folds before "
            "reaching the pivot scale",
        )

    logger.debug(f"initial field value phi_ini={phi_try:.6e} after {iteration} iterations")
    return BackgroundState(a=a_try, phi=phi_try, dphi=a_try * attractor.dphidt)


def observable_field_range(
    model: InflatonModel,
    y_ini: BackgroundState,
    k_min: float,
    k_max: float,
    prec: PrecisionParams = PrecisionParams(),
):
    """Field values (phi_min, phi_max) at horizon crossing of k_min and k_max."""
    y, _ = evolve_background(
        model, y_ini, Target.AH, k_min,
        check_epsilon=False, direction=Direction.FORWARD, prec=prec,
    )
    phi_min = float(y.phi)
    y, _ = evolve_background(
        model, y, Target.AH, k_max,
        check_epsilon=False, direction=Direction.FORWARD, prec=prec,
    )
    phi_max = float(y.phi)
    logger.debug(f"observable power spectrum goes from phi={phi_min:.6e} to phi={phi_max:.6e}")
    return phi_min, phi_max


# ---------------------------------------------------------------------------
# (b) Given phi_end
# ---------------------------------------------------------------------------

def find_phi_stop(
    model: InflatonModel,
    phi_end: float,
    prec: PrecisionParams = PrecisionParams(),
) -> float:
    """Field value where inflation stops, at or before phi_end.

    epsilon is never evaluated exactly at phi_end, where some potentials are
    singular, but end_dphi below it. If epsilon < 1 there, inflation is
    taken to end abruptly at phi_end (as in hybrid inflation). Otherwise
    the epsilon = 1 crossing is bracketed with steps growing by end_logstep
    and bisected to relative precision end_phi_stop_precision.
    """
    dphi = prec.end_dphi
    if float(model.epsilon(phi_end - dphi)) < 1.0:
        logger.debug("inflation takes place till phi_end, like in hybrid inflation")
        return phi_end - dphi

    for _ in range(_MAX_BRACKET_STEPS):
        dphi *= prec.end_logstep
        if float(model.epsilon(phi_end - dphi)) <= 1.0:
            break
    else:
        raise NoSufficientInflation(
            _MAX_BRACKET_STEPS, f"epsilon stays above 1 for all phi < phi_end={phi_end:.6e}"
        )

    phi_left = phi_end - dphi
    phi_right = phi_end - dphi / prec.end_logstep
    phi_stop = _bisect_epsilon(model, phi_left, phi_right, 1.0, prec.end_phi_stop_precision)
    logger.debug(f"inflation stops when phi={phi_stop:.6e}")
    return phi_stop


def _bisect_epsilon(
    model: InflatonModel,
    phi_left: float,
    phi_right: float,
    epsilon_target: float,
    precision: float,
    epsilon_tolerance: Optional[float] = None,
) -> float:
    """Bisect epsilon(phi) = epsilon_target, with epsilon growing towards phi_right.

    Stops once the bracket is narrower than precision (relative to phi, or
    absolute for |phi| < 1), or
    once epsilon is within epsilon_tolerance of the target if one is given.
    """
    phi_mid = 0.5 * (phi_left + phi_right)
    for _ in range(_MAX_BISECTIONS):
        phi_mid = 0.5 * (phi_left + phi_right)
        epsilon = float(model.epsilon(phi_mid))
        if epsilon < epsilon_target:
            phi_left = phi_mid
        else:
            phi_right = phi_mid
        if epsilon_tolerance is not None and abs(epsilon - epsilon_target) <= epsilon_tolerance:
            break
        if abs(phi_right - phi_left) <= precision * max(abs(phi_mid), 1.0):
            break
    return phi_mid


def _find_small_epsilon(model: InflatonModel, phi_stop: float, prec: PrecisionParams) -> float:
    """Latest field value before phi_stop where epsilon = end_small_epsilon."""
    target = prec.end_small_epsilon
    if float(model.epsilon(phi_stop)) <= target:
        return phi_stop

    dphi = prec.end_dphi
    for _ in range(_MAX_BRACKET_STEPS):
        dphi *= prec.end_logstep
        if float(model.epsilon(phi_stop - dphi)) < target:
            break
    else:
        raise NoSufficientInflation(
            _MAX_BRACKET_STEPS, f"epsilon never drops below {target} before phi_stop={phi_stop:.6e}"
        )
    return _bisect_epsilon(
        model, phi_stop - dphi, phi_stop - dphi / prec.end_logstep, target,
        prec.end_phi_stop_precision, epsilon_tolerance=0.1 * target,
    )


def _expansion_till_end(
    model: InflatonModel,
    attractor: AttractorPoint,
    phi_stop: float,
    natural_end: bool,
    prec: PrecisionParams,
) -> float:
    """aH at the end of inflation over aH at attractor.phi (where a = 1)."""
    y = BackgroundState(a=1.0, phi=attractor.phi, dphi=attractor.dphidt)
    if natural_end:
        y, dy = evolve_background(
            model, y, Target.END_OF_INFLATION, 0.0,
            check_epsilon=False, direction=Direction.FORWARD, prec=prec,
        )
    else:
        y, dy = evolve_background(
            model, y, Target.PHI, phi_stop,
            check_epsilon=False, direction=Direction.FORWARD, prec=prec,
        )
    return float(dy.a / y.a) / attractor.H


def find_phi_pivot(
    model: InflatonModel,
    phi_end: float,
    ln_aH_ratio: float,
    prec: PrecisionParams = PrecisionParams(),
) -> float:
    """Field value at which aH is exp(ln_aH_ratio) times smaller than at the end of inflation.

    Args:
        model: potential model (expanded around phi = 0)
        phi_end: field value beyond which inflation cannot continue
        ln_aH_ratio: ln(aH_end / aH_pivot)
        prec: precision parameters (static)

    Returns:
        phi_pivot

    Raises:
        NoSufficientInflation: the potential does not provide ln_aH_ratio
            e-folds before the end within phi_ini_maxit tries
    """
    phi_stop = find_phi_stop(model, phi_end, prec)
    # False when inflation ends abruptly at phi_stop, as in hybrid inflation
    natural_end = float(model.epsilon(phi_end - prec.end_dphi)) >= 1.0
    phi_small = _find_small_epsilon(model, phi_stop, prec)
    logger.debug(f"epsilon={prec.end_small_epsilon} reached at phi={phi_small:.6e}")

    attractor = find_attractor(model, phi_small, prec.attractor_precision_initial, prec)
    ratio_small = _expansion_till_end(model, attractor, phi_stop, natural_end, prec)

    # Slow-roll guess, deliberately a few e-folds too early
    y, _ = evolve_background(
        model, BackgroundState(a=1.0, phi=phi_small), Target.AH,
        attractor.H * ratio_small / math.exp(ln_aH_ratio + prec.end_extra_efolds),
        check_epsilon=True, direction=Direction.BACKWARD, prec=prec,
    )
    phi_try = float(y.phi)

    for iteration in range(1, prec.phi_ini_maxit + 1):
        attractor = find_attractor(model, phi_try, prec.attractor_precision_initial, prec)
        ratio_try = _expansion_till_end(model, attractor, phi_stop, natural_end, prec)
        if math.log(ratio_try) >= ln_aH_ratio:
            break
        # Still too late: one more e-fold back
        y, _ = evolve_background(
            model, BackgroundState(a=1.0, phi=phi_try), Target.AH, attractor.H / math.e,
            check_epsilon=True, direction=Direction.BACKWARD, prec=prec,
        )
        phi_try = float(y.phi)
    else:
        raise NoSufficientInflation(
            prec.phi_ini_maxit,
            f"cannot find ln(aH_end/aH_pivot)={ln_aH_ratio} before the end of inflation",
        )

    y, _ = evolve_background(
        model, BackgroundState(a=1.0, phi=phi_try, dphi=attractor.dphidt), Target.AH,
        attractor.H * ratio_try / math.exp(ln_aH_ratio),
        check_epsilon=False, direction=Direction.FORWARD, prec=prec,
    )
    phi_pivot = float(y.phi)
    logger.debug(f"reached phi_pivot={phi_pivot:.6e} after {iteration} iterations")
    return phi_pivot


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def solve_initial_conditions(
    model: InflatonModel,
    config: SpectrumConfig,
    prec: PrecisionParams = PrecisionParams(),
    k_min: Optional[float] = None,
    k_max: Optional[float] = None,
) -> InitialConditions:
    """Initial conditions for the inflation simulation selected by config.

    k_min and k_max default to the configured range; pass the edges of the
    wavenumber grid to make sure every tabulated k is covered.
    """
    k_min = config.k_min if k_min is None else k_min
    k_max = config.k_max if k_max is None else k_max
    spectrum_type = SpectrumType(config.spectrum_type)
    if spectrum_type is SpectrumType.INFLATION_V_END:
        phi_pivot = find_phi_pivot(model, config.phi_end, config.ln_aH_ratio, prec)
    elif spectrum_type is SpectrumType.INFLATION_H:
        # H(phi) is expanded around the pivot
        phi_pivot = 0.0
    else:
        phi_pivot = config.phi_pivot
    return initial_conditions_at_pivot(model, phi_pivot, config.k_pivot, k_min, k_max, prec)
