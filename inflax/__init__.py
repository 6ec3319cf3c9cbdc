"""inflax: primordial power spectra from analytic power laws or numerical inflation, in JAX.

Usage:
    import inflax

    config = inflax.SpectrumConfig(
        spectrum_type="inflation_V",
        V0=1.25e-13, V1=-1.12e-14, V2=-6.95e-14,
        k_min=1e-4, k_max=1.0, has_tensors=True,
    )
    table = inflax.primordial_solve(config)
    print(table.derived.n_s, table.derived.r)

    # P_R at k = 0.01 / Mpc
    pk = inflax.spectrum_at_k(table, "scalars", 0.01)
"""

import jax
jax.config.update("jax_enable_x64", True)

from inflax.constants import *  # noqa: F401,F403
from inflax.errors import (  # noqa: F401
    AttractorNotFound,
    ConfigurationError,
    ExternalSpectrumError,
    InflationBroken,
    IntegrationError,
    NegativeSpectrum,
    NoSufficientInflation,
    OutOfRangeError,
    PrimordialError,
    StepSizeCollapse,
    UnphysicalPotential,
    UnphysicalSlope,
)
from inflax.params import (  # noqa: F401
    Correlation,
    IsocurvatureMode,
    PotentialShape,
    PrecisionParams,
    SpectrumConfig,
    SpectrumType,
)
from inflax.states import AttractorPoint, BackgroundState, Direction, Target  # noqa: F401
from inflax.models import HubbleModel, PotentialEndModel, PotentialModel, model_from_config  # noqa: F401
from inflax.background import evolve_background  # noqa: F401
from inflax.attractor import find_attractor  # noqa: F401
from inflax.pivot import find_phi_pivot, find_phi_stop, solve_initial_conditions  # noqa: F401
from inflax.perturbations import compute_inflation_spectra, integrate_one_k  # noqa: F401
from inflax.analytic import AnalyticSpectrum  # noqa: F401
from inflax.external import load_external_spectrum  # noqa: F401
from inflax.primordial import (  # noqa: F401
    DerivedParameters,
    Scale,
    SpectrumTable,
    primordial_solve,
    spectrum_at_k,
    wavenumber_grid,
)
