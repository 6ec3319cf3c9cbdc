"""Inflationary background evolver for inflax.

Drives the inflaton background (a, phi[, phi']) forward or backward in
conformal time until a target is met:

    Target.AH                aH reaches a given value
    Target.PHI               phi reaches a given value (landed on exactly)
    Target.END_OF_INFLATION  a'' = 0, i.e. epsilon = 1 (forward potential mode)

Each conformal time step is a fixed fraction bg_stepsize of the shorter of
1/aH and the field time scale |phi'/phi''| (forward potential mode), or of
1/aH alone (Hubble mode, backward mode). Before every step the target
quantity is extrapolated to first order; once the extrapolation overshoots,
stepping stops and one explicit corrective step lands on the target.

The step loop runs as a jax.lax.while_loop under jit: static arguments are
the target, the direction and the precision parameters; the model is a
pytree argument, so a new set of coefficients does not recompile. Failures
leave the loop with a Status code that evolve_background turns into an
exception on the host.

References:
    CLASS source: primordial.c (primordial_inflation_evolve_background)
"""

from __future__ import annotations

import functools
import logging
from typing import NamedTuple

import jax
import jax.numpy as jnp
from jaxtyping import Array, Bool, Float, Int

from inflax import ode
from inflax.constants import four_pi
from inflax.errors import (
    ConfigurationError,
    InflationBroken,
    IntegrationError,
    PrimordialError,
    Status,
    StepSizeCollapse,
)
from inflax.models import InflatonModel
from inflax.params import PrecisionParams
from inflax.states import BackgroundState, Direction, Target

logger = logging.getLogger(__name__)


class EvolutionCarry(NamedTuple):
    """Loop state of one background evolution."""

    y: BackgroundState
    dy: BackgroundState
    tau: Float[Array, ""]
    dtau: Float[Array, ""]
    quantity: Float[Array, ""]
    epsilon: Float[Array, ""]
    n_steps: Int[Array, ""]
    status: Int[Array, ""]


# ---------------------------------------------------------------------------
# ODE right-hand sides (direction is fixed per function, the model is args)
# ---------------------------------------------------------------------------

def _forward_field(tau, y, model):
    return model.derivs(y, Direction.FORWARD)[0]


def _backward_field(tau, y, model):
    return model.derivs(y, Direction.BACKWARD)[0]


VECTOR_FIELDS = {
    Direction.FORWARD: _forward_field,
    Direction.BACKWARD: _backward_field,
}


# ---------------------------------------------------------------------------
# Step size and target extrapolation
# ---------------------------------------------------------------------------

def _uses_velocity(model: InflatonModel, direction: Direction) -> bool:
    return model.has_velocity and direction == Direction.FORWARD


def step_size(model, y, dy, direction: Direction, stepsize: float):
    """Next conformal time step, negative when integrating backward."""
    aH = dy.a / y.a
    if _uses_velocity(model, direction):
        return stepsize * jnp.minimum(1.0 / aH, jnp.abs(y.dphi / dy.dphi))
    return int(direction) * stepsize / aH


def end_of_inflation_quantity(y, dy):
    """-a''/a / a^2 = (-aH^2 + 4 pi phi'^2) / a^2, negative while inflating."""
    aH = dy.a / y.a
    return (-aH * aH + four_pi * y.dphi * y.dphi) / (y.a * y.a)


def _predicted_quantity(target: Target, y, dy, dtau):
    aH = dy.a / y.a
    if target is Target.AH:
        return aH + aH * aH * dtau
    if target is Target.PHI:
        return y.phi + dy.phi * dtau
    # End of inflation: current value, the corrective step may go backward
    return end_of_inflation_quantity(y, dy)


def _corrective_step(target: Target, y, dy, stop):
    """Explicit step landing on the target to first order (exactly for phi)."""
    aH = dy.a / y.a
    if target is Target.AH:
        return (stop / aH - 1.0) / aH
    if target is Target.PHI:
        return (stop - y.phi) / dy.phi
    # d(quantity)/dtau = 8 pi phi' phi'' / a^2 holds exactly
    quantity = end_of_inflation_quantity(y, dy)
    return -quantity / (8.0 * jnp.pi / (y.a * y.a) * dy.phi * dy.dphi)


def _status(code) -> Int[Array, ""]:
    return jnp.asarray(int(code), dtype=jnp.int32)


# ---------------------------------------------------------------------------
# Jitted evolution loop
# ---------------------------------------------------------------------------

@functools.partial(jax.jit, static_argnums=(3, 4, 6))
def _evolve(
    model: InflatonModel,
    y0: BackgroundState,
    stop: Float[Array, ""],
    target: Target,
    direction: Direction,
    check_epsilon: Bool[Array, ""],
    prec: PrecisionParams,
) -> EvolutionCarry:
    sign = float(int(direction))
    vector_field = VECTOR_FIELDS[direction]

    def derivatives(y):
        return model.derivs(y, direction)[0]

    dy0 = derivatives(y0)
    dtau0 = step_size(model, y0, dy0, direction, prec.bg_stepsize)
    init = EvolutionCarry(
        y=y0,
        dy=dy0,
        tau=jnp.zeros((), dtype=jnp.float64),
        dtau=dtau0,
        quantity=_predicted_quantity(target, y0, dy0, dtau0),
        epsilon=model.epsilon(y0.phi),
        n_steps=jnp.zeros((), dtype=jnp.int32),
        status=_status(Status.OK),
    )

    def cond_fn(c):
        return (c.status == int(Status.OK)) & (sign * (c.quantity - stop) < 0.0)

    def take_step(c):
        # Autonomous equations: every segment runs over [0, dtau]
        y1, success = ode.solve_segment(
            vector_field, jnp.zeros_like(c.dtau), c.dtau, c.y, args=model,
            rtol=prec.tol_integration, atol=prec.atol_integration,
            max_steps=prec.ode_max_steps,
        )
        epsilon = model.epsilon(y1.phi)
        broken = check_epsilon & (epsilon > 1.0) & (c.epsilon <= 1.0)
        dy1 = derivatives(y1)
        dtau1 = step_size(model, y1, dy1, direction, prec.bg_stepsize)
        status = jnp.where(
            ~success,
            int(Status.INTEGRATION_FAILED),
            jnp.where(broken, int(Status.INFLATION_BROKEN), int(Status.OK)),
        )
        n_steps = c.n_steps + 1
        status = jnp.where(
            (status == int(Status.OK)) & (n_steps >= prec.max_evolution_steps),
            int(Status.TOO_MANY_STEPS),
            status,
        )
        return EvolutionCarry(
            y=y1,
            dy=dy1,
            tau=c.tau + c.dtau,
            dtau=dtau1,
            quantity=_predicted_quantity(target, y1, dy1, dtau1),
            epsilon=epsilon,
            n_steps=n_steps,
            status=status.astype(jnp.int32),
        )

    def halt(c):
        return c

    def body_fn(c):
        # V(phi) or H(phi) must stay physical wherever a step starts
        violation = model.violation(c.y.phi)
        # tau ~ -1/aH: the relative change of conformal time is |dtau| aH
        collapse = jnp.abs(c.dtau * c.dy.a / c.y.a) < prec.smallest_allowed_variation
        status = jnp.where(
            violation != int(Status.OK),
            violation,
            jnp.where(collapse, int(Status.STEP_SIZE_COLLAPSE), int(Status.OK)),
        ).astype(jnp.int32)
        return jax.lax.cond(
            status == int(Status.OK),
            take_step,
            halt,
            c._replace(status=status),
        )

    final = jax.lax.while_loop(cond_fn, body_fn, init)

    # Last explicit step onto the target
    y, dy = final.y, final.dy
    dtau = _corrective_step(target, y, dy, stop)
    y_new = jax.tree_util.tree_map(lambda v, dv: v + dv * dtau, y, dy)
    dy_new = derivatives(y_new)

    ok = final.status == int(Status.OK)
    status = final.status
    if target is Target.END_OF_INFLATION:
        violation = model.violation(y.phi)
        status = jnp.where(ok & (violation != int(Status.OK)), violation, status)
        status = status.astype(jnp.int32)
        ok = status == int(Status.OK)

    def select(new, old):
        return jnp.where(ok, new, old)

    return final._replace(
        y=jax.tree_util.tree_map(select, y_new, y),
        dy=jax.tree_util.tree_map(select, dy_new, dy),
        status=status,
    )


# ---------------------------------------------------------------------------
# Host-side entry point
# ---------------------------------------------------------------------------

def _as_state(y: BackgroundState, keep_velocity: bool) -> BackgroundState:
    def f64(v):
        return jnp.asarray(v, dtype=jnp.float64)

    dphi = f64(y.dphi) if keep_velocity else None
    return BackgroundState(a=f64(y.a), phi=f64(y.phi), dphi=dphi)


def raise_for_status(model: InflatonModel, carry: EvolutionCarry) -> None:
    """Translate a non-zero Status code of an evolution loop into an exception."""
    status = Status(int(carry.status))
    if status == Status.OK:
        return
    phi = float(carry.y.phi)
    tau = float(carry.tau)
    dtau = float(carry.dtau)
    if status in (Status.UNPHYSICAL_VALUE, Status.UNPHYSICAL_SLOPE):
        model.check(phi)
    elif status == Status.INFLATION_BROKEN:
        raise InflationBroken(phi, float(carry.epsilon))
    elif status == Status.STEP_SIZE_COLLAPSE:
        raise StepSizeCollapse(dtau, float(carry.dy.a / carry.y.a), phi)
    elif status == Status.INTEGRATION_FAILED:
        raise IntegrationError(tau, tau + dtau)
    elif status == Status.TOO_MANY_STEPS:
        raise IntegrationError(
            0.0, tau,
            f"target not reached after {int(carry.n_steps)} steps (phi={phi:.6e})",
        )
    raise PrimordialError(f"evolution stopped with status {status.name} at phi={phi:.6e}")


def evolve_background(
    model: InflatonModel,
    y: BackgroundState,
    target: Target,
    stop: float,
    check_epsilon: bool,
    direction: Direction,
    prec: PrecisionParams = PrecisionParams(),
):
    """Evolve the background until target reaches stop.

    Backward integration of a potential model uses the slow-roll attractor
    phi' = -a^2 V'/(3 aH) and drops the field velocity: the returned state
    has dphi=None. Such a state only seeds later exact forward integrations.

    Args:
        model: inflaton model
        y: initial state; dphi is required for forward potential integration
        target: quantity that stops the evolution
        stop: target value of aH or phi (ignored for END_OF_INFLATION, which stops at 0)
        check_epsilon: require epsilon to stay below 1 along the way
        direction: forward or backward in conformal time
        prec: precision parameters (static)

    Returns:
        (y, dy): final state and its conformal time derivatives;
        aH = dy.a / y.a

    Raises:
        UnphysicalPotential, UnphysicalSlope: the evolution met an invalid point
        InflationBroken: epsilon crossed 1 with check_epsilon set
        StepSizeCollapse: relative time step below smallest_allowed_variation
        IntegrationError: a segment failed, or the target was never reached
        ConfigurationError: target or initial state not supported by the model
    """
    direction = Direction(direction)
    keep_velocity = _uses_velocity(model, direction)
    if target is Target.END_OF_INFLATION:
        if not keep_velocity:
            raise ConfigurationError(
                "the end-of-inflation target needs forward integration of a potential model"
            )
        stop = 0.0
    if keep_velocity and y.dphi is None:
        raise ConfigurationError("forward integration of a potential model needs phi'")

    y0 = _as_state(y, keep_velocity)
    carry = _evolve(
        model, y0, jnp.asarray(stop, dtype=jnp.float64), target, direction,
        jnp.asarray(check_epsilon), prec,
    )
    raise_for_status(model, carry)
    logger.debug(
        f"evolved {direction.name.lower()} to {target.value}: phi={float(carry.y.phi):.6e}, "
        f"aH={float(carry.dy.a / carry.y.a):.6e} in {int(carry.n_steps)} steps"
    )
    return carry.y, carry.dy
