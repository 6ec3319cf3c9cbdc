"""Attractor search for potential-driven inflation.

The velocity phi' of the inflationary attractor at a given phi_0 is found by
starting the exact background evolution further and further back, roughly
one e-fold per iteration, each time from the slow-roll velocity, and
integrating forward to phi_0. Once the velocity reached at phi_0 no longer
depends on the starting point, the trajectory has converged onto the
attractor.

References:
    CLASS source: primordial.c (primordial_inflation_find_attractor)
"""

from __future__ import annotations

import logging
import math

from inflax.background import evolve_background
from inflax.errors import AttractorNotFound, ConfigurationError
from inflax.models import InflatonModel
from inflax.params import PrecisionParams
from inflax.states import AttractorPoint, BackgroundState, Direction, Target

logger = logging.getLogger(__name__)


def find_attractor(
    model: InflatonModel,
    phi_0: float,
    precision: float,
    prec: PrecisionParams = PrecisionParams(),
) -> AttractorPoint:
    """Attractor solution (H, dphi/dt) at phi_0.

    Iteration n starts at phi_n = phi_{n-1} + V'(phi_{n-1})/V(phi_{n-1})/(16 pi),
    which is smaller than phi_{n-1} since V' < 0, i.e. earlier in time.
    The loop always runs at least once and stops when two consecutive
    velocities at phi_0 agree to the relative precision.

    Args:
        model: potential model
        phi_0: field value where the attractor is wanted
        precision: relative tolerance on dphi/dt at phi_0
        prec: precision parameters (static)

    Returns:
        AttractorPoint(phi_0, H_0, dphidt_0)

    Raises:
        AttractorNotFound: no convergence within prec.attractor_maxit iterations
        UnphysicalPotential, UnphysicalSlope, InflationBroken: from the evolutions
    """
    if not model.has_velocity:
        raise ConfigurationError("attractor search only applies to potential models")

    phi_0 = float(phi_0)
    V, dV, _ = model.check(phi_0)
    dphidt_new = float(model.slow_roll_dphidt(phi_0))

    phi = phi_0
    for iteration in range(1, prec.attractor_maxit + 1):
        dphidt_old = dphidt_new

        # One more e-fold of inflation, roughly
        phi = phi + dV / V / 16.0 / math.pi
        V, dV, _ = model.check(phi)

        a = 1.0
        dphidt = float(model.slow_roll_dphidt(phi))
        y = BackgroundState(a=a, phi=phi, dphi=a * dphidt)
        y, _ = evolve_background(
            model, y, Target.PHI, phi_0,
            check_epsilon=True, direction=Direction.FORWARD, prec=prec,
        )
        dphidt_new = float(y.dphi / y.a)

        if abs(dphidt_new / dphidt_old - 1.0) < precision:
            break
    else:
        raise AttractorNotFound(phi_0, prec.attractor_maxit, precision)

    H_0 = float(model.hubble(phi_0, dphidt_new))
    logger.debug(
        f"attractor found in phi={phi_0:.6e} with phi'={dphidt_new:.6e}, "
        f"H={H_0:.6e} after {iteration} iterations"
    )
    return AttractorPoint(phi=phi_0, H=H_0, dphidt=dphidt_new)
