"""Numerical and bookkeeping constants for inflax.

Inflation is simulated in reduced units with G = 1 (field values in Planck
masses), while wavenumbers keep the Mpc^-1 units of the enclosing Boltzmann
code. Only the normalisation of the scale factor ties the two together.

References:
    CLASS source: include/primordial.h
    CLASS source: include/common.h
"""

import math
import sys

# --- Gravitational prefactors (G = 1) ---
eight_pi_over_3 = 8.0 * math.pi / 3.0
"""Friedmann prefactor: H^2 = (8 pi / 3) rho."""

four_pi = 4.0 * math.pi
"""Prefactor of the kinetic term in a''/a and in the end-of-inflation criterion."""

# --- Sampling ---
ln10 = math.log(10.0)

K_PER_DECADE_PRIMORDIAL_MIN = 1.0
"""Sparsest allowed sampling of the tabulated spectrum (points per decade)."""

MAX_CUSTOM_ARGUMENTS = 10
"""Number of numerical arguments handed to an external spectrum command."""

# --- Floating point ---
DBL_EPSILON = sys.float_info.epsilon
"""Smallest relative time step before an evolution is declared stuck."""

# --- Initial-condition labels ---
SCALAR_ICS = ("ad", "bi", "cdi", "nid", "niv")
"""Adiabatic mode followed by the four isocurvature modes, in table order."""

TENSOR_ICS = ("ten",)
