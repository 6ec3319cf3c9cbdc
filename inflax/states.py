"""State records integrated by the inflation simulator.

All records are NamedTuples, hence JAX pytrees that Diffrax integrates
directly. A field set to None is an empty subtree: the field velocity is
absent in Hubble mode and during slow-roll backward integration, and the
perturbation layer only exists while a given wavenumber is integrated.

Time variable is conformal time tau; primes denote d/dtau.
"""

from __future__ import annotations

import enum
from typing import NamedTuple, Optional

from jaxtyping import Array, Float


class Direction(enum.IntEnum):
    """Sign of the conformal time step."""

    FORWARD = 1
    BACKWARD = -1


class Target(enum.Enum):
    """Condition that stops a background evolution."""

    AH = "aH"
    PHI = "phi"
    END_OF_INFLATION = "end_of_inflation"


class BackgroundState(NamedTuple):
    a: Float[Array, ""]
    phi: Float[Array, ""]
    dphi: Optional[Float[Array, ""]] = None  # phi' = a dphi/dt


class PerturbationState(NamedTuple):
    """Mukhanov variable xi and tensor amplitude a*h, real and imaginary parts."""

    ksi_re: Float[Array, ""]
    ksi_im: Float[Array, ""]
    dksi_re: Float[Array, ""]
    dksi_im: Float[Array, ""]
    ah_re: Float[Array, ""]
    ah_im: Float[Array, ""]
    dah_re: Float[Array, ""]
    dah_im: Float[Array, ""]


class InflationState(NamedTuple):
    bg: BackgroundState
    pt: Optional[PerturbationState] = None


class Kinematics(NamedTuple):
    """Auxiliary quantities returned with the background derivatives.

    zpp_over_z and app_over_a drive the scalar and tensor mode equations;
    they are None in the slow-roll backward approximation.
    """

    aH: Float[Array, ""]
    zpp_over_z: Optional[Float[Array, ""]] = None
    app_over_a: Optional[Float[Array, ""]] = None


class AttractorPoint(NamedTuple):
    """Attractor solution at phi: Hubble rate and cosmic-time field velocity dphi/dt."""

    phi: float
    H: float
    dphidt: float
