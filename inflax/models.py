"""Inflaton models: V(phi) or H(phi), validity checks and background derivatives.

Three variants share one interface, so that the rest of the simulator never
switches on the parametrization:

    PotentialModel      V(phi) as a quartic Taylor series around phi_pivot,
                        or natural inflation V0 (1 + cos(phi/V1))
    PotentialEndModel   same, expanded around phi = 0 (phi_pivot is an output)
    HubbleModel         H(phi) as a quartic polynomial in phi

Each model is a frozen dataclass registered as a JAX pytree: coefficients
are leaves, the potential shape is static auxiliary data. The field rolls
towards larger phi, hence dV/dphi < 0 (dH/dphi < 0) is required wherever
the evolution goes.

Equations are written in conformal time with G = 1:

    potential, forward:   aH = sqrt(8pi/3 (phi'^2/2 + a^2 V)),  a' = a aH,
                          phi'' = -2 aH phi' - a^2 V'
    potential, backward:  aH = sqrt(8pi/3 a^2 V),  phi' = -a^2 V' / (3 aH)
                          (slow-roll attractor, used only as a seed)
    Hubble:               a' = a^2 H,  phi' = -a H' / (4 pi)

References:
    CLASS source: primordial.c (primordial_inflation_derivs)
    Lidsey et al., Rev. Mod. Phys. 69, 373 (1997)
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import ClassVar

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from inflax.constants import eight_pi_over_3, four_pi
from inflax.errors import ConfigurationError, Status, UnphysicalPotential, UnphysicalSlope
from inflax.params import PotentialShape, SpectrumConfig, SpectrumType
from inflax.states import BackgroundState, Direction, Kinematics


class InflatonModel(abc.ABC):
    """Common interface of the inflaton parametrizations."""

    quantity: ClassVar[str]
    """Name of the parametrized function, used in error messages."""

    has_velocity: ClassVar[bool]
    """Whether forward integration carries the field velocity phi'."""

    @abc.abstractmethod
    def values(self, phi):
        """Function and derivatives at phi: (V, V', V'') or (H, H', H'', H''')."""

    @abc.abstractmethod
    def epsilon(self, phi):
        """First slow-roll parameter."""

    @abc.abstractmethod
    def violation(self, phi):
        """Status code of the validity check at phi (traceable)."""

    @abc.abstractmethod
    def derivs(self, y: BackgroundState, direction: Direction):
        """Background derivatives dy/dtau and the kinematic auxiliaries."""

    def check(self, phi: float) -> tuple:
        """Host-side validity check. Returns the model values at phi.

        Raises:
            UnphysicalPotential: V <= 0 (H < 0)
            UnphysicalSlope: V' >= 0 (H' > 0)
        """
        values = tuple(float(v) for v in self.values(phi))
        status = Status(int(self.violation(phi)))
        if status == Status.UNPHYSICAL_VALUE:
            raise UnphysicalPotential(float(phi), values[0], self.quantity)
        if status == Status.UNPHYSICAL_SLOPE:
            raise UnphysicalSlope(float(phi), values[1], self.quantity)
        return values


def _status(code) -> Array:
    return jnp.asarray(code, dtype=jnp.int32)


# ---------------------------------------------------------------------------
# V(phi)
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class PotentialModel(InflatonModel):
    """Inflaton potential, Taylor-expanded around phi_pivot or natural inflation."""

    V0: float
    V1: float
    V2: float = 0.0
    V3: float = 0.0
    V4: float = 0.0
    phi_pivot: float = 0.0
    shape: PotentialShape = PotentialShape.POLYNOMIAL

    quantity: ClassVar[str] = "V"
    has_velocity: ClassVar[bool] = True

    def values(self, phi):
        if self.shape == PotentialShape.NATURAL:
            # V = Lambda^4 (1 + cos(phi/f)) with Lambda^4 = V0, f = V1
            x = phi / self.V1
            V = self.V0 * (1.0 + jnp.cos(x))
            dV = -self.V0 / self.V1 * jnp.sin(x)
            ddV = -self.V0 / self.V1**2 * jnp.cos(x)
            return V, dV, ddV

        dphi = phi - self.phi_pivot
        V = (self.V0 + dphi * self.V1 + dphi**2 / 2.0 * self.V2
             + dphi**3 / 6.0 * self.V3 + dphi**4 / 24.0 * self.V4)
        dV = self.V1 + dphi * self.V2 + dphi**2 / 2.0 * self.V3 + dphi**3 / 6.0 * self.V4
        ddV = self.V2 + dphi * self.V3 + dphi**2 / 2.0 * self.V4
        return V, dV, ddV

    def epsilon(self, phi):
        V, dV, _ = self.values(jnp.asarray(phi, dtype=jnp.float64))
        return (dV / V) ** 2 / (16.0 * jnp.pi)

    def violation(self, phi):
        V, dV, _ = self.values(phi)
        return _status(jnp.where(
            V <= 0.0,
            int(Status.UNPHYSICAL_VALUE),
            jnp.where(dV >= 0.0, int(Status.UNPHYSICAL_SLOPE), int(Status.OK)),
        ))

    def slow_roll_dphidt(self, phi):
        """Slow-roll velocity dphi/dt = -V'/(3H) with H^2 = 8pi/3 V."""
        V, dV, _ = self.values(phi)
        return -dV / 3.0 / jnp.sqrt(eight_pi_over_3 * V)

    def hubble(self, phi, dphidt):
        """Friedmann equation in cosmic time."""
        V, _, _ = self.values(phi)
        return jnp.sqrt(eight_pi_over_3 * (0.5 * dphidt**2 + V))

    def derivs(self, y: BackgroundState, direction: Direction):
        a2 = y.a * y.a
        V, dV, ddV = self.values(y.phi)

        if direction == Direction.BACKWARD:
            # Kinetic energy neglected against V, phi'' against 2 aH phi'
            aH = jnp.sqrt(eight_pi_over_3 * a2 * V)
            dy = BackgroundState(a=y.a * aH, phi=-a2 * dV / 3.0 / aH)
            return dy, Kinematics(aH=aH)

        dphi = y.dphi
        aH = jnp.sqrt(eight_pi_over_3 * (0.5 * dphi * dphi + a2 * V))
        dy = BackgroundState(
            a=y.a * aH,
            phi=dphi,
            dphi=-2.0 * aH * dphi - a2 * dV,
        )
        zpp_over_z = (
            2.0 * aH * aH
            - a2 * ddV
            - 4.0 * jnp.pi * (7.0 * dphi * dphi + 4.0 * dphi / aH * a2 * dV)
            + 32.0 * jnp.pi**2 * dphi**4 / aH**2
        )
        app_over_a = 2.0 * aH * aH - four_pi * dphi * dphi
        return dy, Kinematics(aH=aH, zpp_over_z=zpp_over_z, app_over_a=app_over_a)

    # --- JAX pytree registration ---

    def tree_flatten(self):
        children = (self.V0, self.V1, self.V2, self.V3, self.V4, self.phi_pivot)
        return children, self.shape

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children, shape=aux_data)


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class PotentialEndModel(PotentialModel):
    """Potential whose Taylor expansion point is phi = 0.

    Used when phi_pivot is not an input but follows from the end of
    inflation and the number of e-folds between pivot crossing and the end.
    """


# ---------------------------------------------------------------------------
# H(phi)
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class HubbleModel(InflatonModel):
    """Hubble rate as a polynomial in phi (Hamilton-Jacobi formulation).

    Velocity is algebraic, phi' = -a H'/(4 pi), so forward and backward
    integrations are both exact.
    """

    H0: float
    H1: float
    H2: float = 0.0
    H3: float = 0.0
    H4: float = 0.0

    quantity: ClassVar[str] = "H"
    has_velocity: ClassVar[bool] = False

    def values(self, phi):
        H = (self.H0 + phi * self.H1 + phi**2 / 2.0 * self.H2
             + phi**3 / 6.0 * self.H3 + phi**4 / 24.0 * self.H4)
        dH = self.H1 + phi * self.H2 + phi**2 / 2.0 * self.H3 + phi**3 / 6.0 * self.H4
        ddH = self.H2 + phi * self.H3 + phi**2 / 2.0 * self.H4
        dddH = self.H3 + phi * self.H4
        return H, dH, ddH, dddH

    def epsilon(self, phi):
        H, dH, _, _ = self.values(jnp.asarray(phi, dtype=jnp.float64))
        return (dH / H) ** 2 / four_pi

    def violation(self, phi):
        H, dH, _, _ = self.values(phi)
        return _status(jnp.where(
            H < 0.0,
            int(Status.UNPHYSICAL_VALUE),
            jnp.where(dH > 0.0, int(Status.UNPHYSICAL_SLOPE), int(Status.OK)),
        ))

    def derivs(self, y: BackgroundState, direction: Direction):
        a2 = y.a * y.a
        H, dH, ddH, dddH = self.values(y.phi)
        pi = jnp.pi

        dy = BackgroundState(a=a2 * H, phi=-y.a * dH / four_pi)
        zpp_over_z = (
            2.0 * a2 * H * H
            - 3.0 / 4.0 / pi * a2 * H * ddH
            + 1.0 / 16.0 / pi**2 * a2 * ddH * ddH
            + 1.0 / 16.0 / pi**2 * a2 * dH * dddH
            - 1.0 / 4.0 / pi**2 * a2 * dH * dH * ddH / H
            + 1.0 / 2.0 / pi * a2 * dH * dH
            + 1.0 / 8.0 / pi**2 * a2 * dH**4 / H**2
        )
        app_over_a = 2.0 * a2 * H * H - four_pi * dy.phi * dy.phi
        return dy, Kinematics(aH=y.a * H, zpp_over_z=zpp_over_z, app_over_a=app_over_a)

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.H0, self.H1, self.H2, self.H3, self.H4), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def model_from_config(config: SpectrumConfig) -> InflatonModel:
    """Build the inflaton model selected by config.spectrum_type."""
    kind = SpectrumType(config.spectrum_type)
    coeffs = (config.V0, config.V1, config.V2, config.V3, config.V4)
    shape = PotentialShape(config.potential)
    if kind is SpectrumType.INFLATION_V:
        return PotentialModel(*coeffs, phi_pivot=config.phi_pivot, shape=shape)
    if kind is SpectrumType.INFLATION_V_END:
        return PotentialEndModel(*coeffs, phi_pivot=0.0, shape=shape)
    if kind is SpectrumType.INFLATION_H:
        return HubbleModel(config.H0, config.H1, config.H2, config.H3, config.H4)
    raise ConfigurationError(f"spectrum type {kind.value} has no inflaton model")
