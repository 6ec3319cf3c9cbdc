"""Scalar and tensor perturbations during inflation.

For each wavenumber, the background is first evolved until the mode is well
inside the Hubble radius (aH = k / ratio_min). From there the Mukhanov
variable xi = z R and the tensor amplitude a h are integrated from
Bunch-Davies initial conditions together with the background:

    xi'' + (k^2 - z''/z) xi = 0,        (a h)'' + (k^2 - a''/a) (a h) = 0

until the mode is far outside (k/aH < ratio_max) and the curvature
spectrum has frozen, |d ln P_R / d ln a| <= tol_curvature. Then

    P_R(k) = k^3 / (2 pi^2) |xi|^2 / z^2,   z = a phi' / aH
    P_h(k) = 32 k^3 / pi |a h|^2 / a^2

The conformal time step is a fraction pt_stepsize of the shortest
oscillation period, 2 pi / max(sqrt|k^2 - z''/z|, k).

References:
    CLASS source: primordial.c (primordial_inflation_spectra,
    primordial_inflation_one_k)
    Mukhanov, Feldman & Brandenberger, Phys. Rept. 215, 203 (1992)
"""

from __future__ import annotations

import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float, Int

from inflax import ode
from inflax.background import evolve_background
from inflax.errors import IntegrationError, NegativeSpectrum, Status, StepSizeCollapse
from inflax.models import InflatonModel
from inflax.params import PrecisionParams
from inflax.states import (
    BackgroundState,
    Direction,
    InflationState,
    PerturbationState,
    Target,
)

logger = logging.getLogger(__name__)


class ModeCarry(NamedTuple):
    """Loop state of the integration of one wavenumber."""

    state: InflationState
    tau: Float[Array, ""]
    dtau: Float[Array, ""]
    aH: Float[Array, ""]
    curvature: Float[Array, ""]
    dlnPdN: Float[Array, ""]
    n_steps: Int[Array, ""]
    status: Int[Array, ""]


# ---------------------------------------------------------------------------
# Equations
# ---------------------------------------------------------------------------

def mode_derivatives(model: InflatonModel, state: InflationState, k):
    """Derivatives of background plus perturbations, and the kinematics."""
    dbg, kin = model.derivs(state.bg, Direction.FORWARD)
    pt = state.pt
    k2 = k * k
    dpt = PerturbationState(
        ksi_re=pt.dksi_re,
        ksi_im=pt.dksi_im,
        dksi_re=-(k2 - kin.zpp_over_z) * pt.ksi_re,
        dksi_im=-(k2 - kin.zpp_over_z) * pt.ksi_im,
        ah_re=pt.dah_re,
        ah_im=pt.dah_im,
        dah_re=-(k2 - kin.app_over_a) * pt.ah_re,
        dah_im=-(k2 - kin.app_over_a) * pt.ah_im,
    )
    return InflationState(bg=dbg, pt=dpt), kin


def _mode_field(tau, state, args):
    model, k = args
    return mode_derivatives(model, state, k)[0]


def bunch_davies(k) -> PerturbationState:
    """Positive-frequency vacuum e^{-ik tau}/sqrt(2k) deep inside the horizon."""
    amplitude = 1.0 / jnp.sqrt(2.0 * k)
    return PerturbationState(
        ksi_re=amplitude,
        ksi_im=jnp.zeros_like(amplitude),
        dksi_re=jnp.zeros_like(amplitude),
        dksi_im=-k * amplitude,
        ah_re=amplitude,
        ah_im=jnp.zeros_like(amplitude),
        dah_re=jnp.zeros_like(amplitude),
        dah_im=-k * amplitude,
    )


def _mode_step(kin, k, stepsize: float):
    return stepsize * 2.0 * jnp.pi / jnp.maximum(jnp.sqrt(jnp.abs(k * k - kin.zpp_over_z)), k)


def curvature_spectrum(state: InflationState, dstate: InflationState, k):
    aH = dstate.bg.a / state.bg.a
    z = state.bg.a * dstate.bg.phi / aH
    ksi2 = state.pt.ksi_re**2 + state.pt.ksi_im**2
    return k**3 / 2.0 / jnp.pi**2 * ksi2 / z**2


def tensor_spectrum(state: InflationState, k):
    ah2 = state.pt.ah_re**2 + state.pt.ah_im**2
    return 32.0 * k**3 / jnp.pi * ah2 / state.bg.a**2


# ---------------------------------------------------------------------------
# Jitted integration of one wavenumber
# ---------------------------------------------------------------------------

@functools.partial(jax.jit, static_argnums=(3,))
def _one_k(
    model: InflatonModel,
    bg: BackgroundState,
    k: Float[Array, ""],
    prec: PrecisionParams,
):
    state0 = InflationState(bg=bg, pt=bunch_davies(k))
    _, kin0 = mode_derivatives(model, state0, k)
    init = ModeCarry(
        state=state0,
        tau=jnp.zeros((), dtype=jnp.float64),
        dtau=_mode_step(kin0, k, prec.pt_stepsize),
        aH=kin0.aH,
        curvature=jnp.asarray(jnp.inf, dtype=jnp.float64),
        dlnPdN=jnp.asarray(jnp.inf, dtype=jnp.float64),
        n_steps=jnp.zeros((), dtype=jnp.int32),
        status=jnp.asarray(int(Status.OK), dtype=jnp.int32),
    )

    def cond_fn(c):
        unfrozen = (k / c.aH >= prec.ratio_max) | (jnp.abs(c.dlnPdN) > prec.tol_curvature)
        return (c.status == int(Status.OK)) & unfrozen

    def take_step(c):
        state1, success = ode.solve_segment(
            _mode_field, jnp.zeros_like(c.dtau), c.dtau, c.state, args=(model, k),
            rtol=prec.tol_integration, atol=prec.atol_integration,
            max_steps=prec.ode_max_steps,
        )
        dstate1, kin1 = mode_derivatives(model, state1, k)
        curvature = curvature_spectrum(state1, dstate1, k)
        # Per e-fold, over the step just taken
        dlnPdN = (curvature - c.curvature) / c.dtau / kin1.aH / curvature
        n_steps = c.n_steps + 1
        status = jnp.where(
            ~success,
            int(Status.INTEGRATION_FAILED),
            jnp.where(n_steps >= prec.max_evolution_steps, int(Status.TOO_MANY_STEPS), int(Status.OK)),
        )
        return ModeCarry(
            state=state1,
            tau=c.tau + c.dtau,
            dtau=_mode_step(kin1, k, prec.pt_stepsize),
            aH=kin1.aH,
            curvature=curvature,
            dlnPdN=dlnPdN,
            n_steps=n_steps,
            status=status.astype(jnp.int32),
        )

    def halt(c):
        return c

    def body_fn(c):
        # tau ~ -1/aH: the relative change of conformal time is dtau aH
        collapse = c.dtau * c.aH < prec.smallest_allowed_variation
        status = jnp.where(collapse, int(Status.STEP_SIZE_COLLAPSE), int(Status.OK)).astype(jnp.int32)
        return jax.lax.cond(status == int(Status.OK), take_step, halt, c._replace(status=status))

    final = jax.lax.while_loop(cond_fn, body_fn, init)
    return final, tensor_spectrum(final.state, k)


def integrate_one_k(
    model: InflatonModel,
    bg: BackgroundState,
    k: float,
    prec: PrecisionParams = PrecisionParams(),
):
    """Curvature and tensor spectra of one wavenumber.

    Args:
        model: inflaton model
        bg: background state with aH well below k (sub-Hubble mode)
        k: wavenumber in Mpc^-1, in units where a_pivot H_pivot = k_pivot
        prec: precision parameters (static)

    Returns:
        (curvature, tensor): P_R(k) and P_h(k) as floats

    Raises:
        StepSizeCollapse: relative time step below smallest_allowed_variation
        IntegrationError: a segment failed, or the spectrum never froze
    """
    y = BackgroundState(
        a=jnp.asarray(bg.a, dtype=jnp.float64),
        phi=jnp.asarray(bg.phi, dtype=jnp.float64),
        dphi=None if bg.dphi is None else jnp.asarray(bg.dphi, dtype=jnp.float64),
    )
    carry, tensor = _one_k(model, y, jnp.asarray(k, dtype=jnp.float64), prec)

    status = Status(int(carry.status))
    tau, dtau = float(carry.tau), float(carry.dtau)
    if status == Status.STEP_SIZE_COLLAPSE:
        raise StepSizeCollapse(dtau, float(carry.aH), float(carry.state.bg.phi))
    if status == Status.INTEGRATION_FAILED:
        raise IntegrationError(tau, tau + dtau, f"perturbation integration failed for k={k:.6e}")
    if status == Status.TOO_MANY_STEPS:
        raise IntegrationError(
            0.0, tau,
            f"spectrum for k={k:.6e} not frozen after {int(carry.n_steps)} steps "
            f"(k/aH={k / float(carry.aH):.3e}, dlnP/dN={float(carry.dlnPdN):.3e})",
        )
    return float(carry.curvature), float(tensor)


# ---------------------------------------------------------------------------
# Loop over wavenumbers
# ---------------------------------------------------------------------------

def spectra_at_k(
    model: InflatonModel,
    y_ini: BackgroundState,
    k: float,
    prec: PrecisionParams = PrecisionParams(),
):
    """Evolve from y_ini to aH = k / ratio_min, then integrate the mode.

    Raises:
        NegativeSpectrum: P_R or P_h is not positive
    """
    y, _ = evolve_background(
        model, y_ini, Target.AH, k / prec.ratio_min,
        check_epsilon=False, direction=Direction.FORWARD, prec=prec,
    )
    curvature, tensor = integrate_one_k(model, y, k, prec)
    if not curvature > 0.0:
        raise NegativeSpectrum(k, "scalars", curvature)
    if not tensor > 0.0:
        raise NegativeSpectrum(k, "tensors", tensor)
    logger.debug(f"k={k:.6e}: P_R={curvature:.6e}, P_h={tensor:.6e}")
    return curvature, tensor


def compute_inflation_spectra(
    model: InflatonModel,
    y_ini: BackgroundState,
    lnk: Float[Array, "Nk"],
    prec: PrecisionParams = PrecisionParams(),
):
    """ln P_R and ln P_h on the wavenumber grid.

    Every wavenumber restarts from y_ini, so the tasks are independent; with
    prec.n_workers > 1 they run on a thread pool.

    Returns:
        (lnpk_scalars, lnpk_tensors): numpy arrays of shape (Nk,)
    """
    ks = [float(k) for k in np.exp(np.asarray(lnk))]

    def solve_k(k):
        return spectra_at_k(model, y_ini, k, prec)

    if prec.n_workers > 1:
        with ThreadPoolExecutor(max_workers=prec.n_workers) as pool:
            results = list(pool.map(solve_k, ks))
    else:
        results = [solve_k(k) for k in ks]

    curvature = np.array([r[0] for r in results])
    tensors = np.array([r[1] for r in results])
    return np.log(curvature), np.log(tensors)
