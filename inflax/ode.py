"""Adaptive ODE integration around Diffrax for inflax.

The inflation simulator chooses its own conformal time steps (a fraction
of 1/aH or of the mode period) and hands each step to an embedded
explicit Runge-Kutta integrator with local error control. Every call
builds its solver state afresh, so nothing is shared between steps or
between shooting passes.

solve_segment is traceable and reports failure as a boolean, for use
inside jitted evolution loops. integrate is the host-side entry point
that raises IntegrationError instead.

References:
    Diffrax docs: https://docs.kidger.site/diffrax/
    CLASS source: tools/evolver_rkck.c (generic_integrator)
"""

import diffrax
import jax
from jaxtyping import Array, Bool

from inflax.errors import IntegrationError


def solve_segment(
    rhs_fn,
    t0,
    t1,
    y0,
    args=None,
    rtol: float = 1e-3,
    atol: float = 1e-14,
    max_steps: int = 4096,
):
    """Integrate y' = rhs_fn(t, y, args) from t0 to t1 with Tsit5 (explicit RK4/5).

    Works forward (t1 > t0) and backward (t1 < t0) in time, on any pytree
    state (here the NamedTuple records of inflax.states).

    Args:
        rhs_fn: callable (t, y, args) -> dy, the ODE right-hand side
        t0: initial time
        t1: final time
        y0: initial state pytree
        args: additional arguments passed to rhs_fn
        rtol: relative tolerance
        atol: absolute tolerance
        max_steps: maximum number of internal solver steps

    Returns:
        (y1, success): state at t1 and a boolean array, False when the
        solver hit max_steps or failed to converge
    """
    sol = diffrax.diffeqsolve(
        diffrax.ODETerm(rhs_fn),
        solver=diffrax.Tsit5(),
        t0=t0,
        t1=t1,
        dt0=None,
        y0=y0,
        args=args,
        saveat=diffrax.SaveAt(t1=True),
        stepsize_controller=diffrax.PIDController(rtol=rtol, atol=atol),
        max_steps=max_steps,
        throw=False,
    )
    y1 = jax.tree_util.tree_map(lambda x: x[-1], sol.ys)
    return y1, _succeeded(sol)


def _succeeded(sol) -> Bool[Array, ""]:
    return sol.result == diffrax.RESULTS.successful


def integrate(
    rhs_fn,
    t0: float,
    t1: float,
    y0,
    args=None,
    rtol: float = 1e-3,
    atol: float = 1e-14,
    max_steps: int = 4096,
):
    """Integrate from t0 to t1 and return the state at t1.

    Same arguments as solve_segment.

    Raises:
        IntegrationError: the adaptive solver did not reach t1
    """
    y1, success = solve_segment(rhs_fn, t0, t1, y0, args, rtol, atol, max_steps)
    if not bool(success):
        raise IntegrationError(float(t0), float(t1))
    return y1
