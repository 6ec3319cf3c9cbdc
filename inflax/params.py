"""Parameter containers for inflax.

SpectrumConfig: which primordial spectrum to build and its physical inputs.
PrecisionParams: numerical precision settings, static (hashable, used as a
    jit static argument).

Both are frozen dataclasses, read-only once constructed.

References:
    CLASS source: include/primordial.h (struct primordial)
    CLASS source: include/precisions.h (primordial_inflation_*)
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, fields

from inflax.constants import (
    DBL_EPSILON,
    K_PER_DECADE_PRIMORDIAL_MIN,
    MAX_CUSTOM_ARGUMENTS,
    SCALAR_ICS,
)
from inflax.errors import ConfigurationError


class SpectrumType(str, enum.Enum):
    """Parametrization of the primordial spectrum."""

    ANALYTIC = "analytic_Pk"
    INFLATION_V = "inflation_V"
    INFLATION_H = "inflation_H"
    INFLATION_V_END = "inflation_V_end"
    EXTERNAL = "external_Pk"

    @property
    def is_inflation(self) -> bool:
        return self in (
            SpectrumType.INFLATION_V,
            SpectrumType.INFLATION_H,
            SpectrumType.INFLATION_V_END,
        )


class PotentialShape(str, enum.Enum):
    """Functional form of V(phi)."""

    POLYNOMIAL = "polynomial"
    NATURAL = "natural"


# ---------------------------------------------------------------------------
# Analytic-spectrum building blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IsocurvatureMode:
    """Amplitude ratio f = sqrt(P_iso/P_ad), tilt and running of one isocurvature mode."""

    name: str
    f: float = 1.0
    n: float = 1.0
    alpha: float = 0.0


@dataclass(frozen=True)
class Correlation:
    """Cross-correlation between two initial conditions.

    c is the cosine of the correlation angle at k_pivot; n and alpha are
    added to the mean tilt and running of the two auto-spectra.
    """

    ic1: str
    ic2: str
    c: float = 0.0
    n: float = 0.0
    alpha: float = 0.0


# ---------------------------------------------------------------------------
# SpectrumConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpectrumConfig:
    """Input of the primordial module.

    Units:
        - k_pivot, k_min, k_max: Mpc^-1
        - V0..V4: Planck units (V in M_P^4, derivatives per power of M_P)
        - H0..H4: Planck units
        - phi_pivot, phi_end: M_P
        - ln_aH_ratio: ln(aH_end / aH_pivot), inflation_V_end only
    """

    spectrum_type: SpectrumType = SpectrumType.ANALYTIC

    # Wavenumbers (k_min, k_max requested by the perturbation module)
    k_pivot: float = 0.05
    k_min: float = 1e-6
    k_max: float = 1.0
    has_scalars: bool = True
    has_tensors: bool = False

    # Analytic power laws
    A_s: float = 2.1e-9
    n_s: float = 0.9649
    alpha_s: float = 0.0
    r: float = 1.0
    n_t: float = 0.0
    alpha_t: float = 0.0
    isocurvature: tuple = ()      # tuple of IsocurvatureMode
    correlations: tuple = ()      # tuple of Correlation

    # Inflaton potential V(phi), Taylor coefficients or natural-inflation (V0, V1=f)
    potential: PotentialShape = PotentialShape.POLYNOMIAL
    V0: float = 1.25e-13
    V1: float = -1.12e-14
    V2: float = -6.95e-14
    V3: float = 0.0
    V4: float = 0.0

    # Hubble rate H(phi), polynomial in phi
    H0: float = 3.69e-6
    H1: float = -5.84e-7
    H2: float = 0.0
    H3: float = 0.0
    H4: float = 0.0

    phi_pivot: float = 0.0
    phi_end: float = 0.0
    ln_aH_ratio: float = 50.0

    # External command
    command: str = ""
    custom: tuple = ()            # up to ten numbers appended to the command

    def replace(self, **kwargs) -> SpectrumConfig:
        """Return a new SpectrumConfig with specified fields replaced."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return SpectrumConfig(**current)

    def validate(self) -> None:
        """Raise ConfigurationError if the configuration cannot be computed."""
        if self.k_min <= 0.0:
            raise ConfigurationError(f"k_min={self.k_min:.6e} negative or null")
        if self.k_max <= 0.0:
            raise ConfigurationError(f"k_max={self.k_max:.6e} negative or null")
        if self.k_max <= self.k_min:
            raise ConfigurationError(
                f"inconsistent values of k_min={self.k_min:.6e}, k_max={self.k_max:.6e}"
            )
        if self.k_pivot <= 0.0:
            raise ConfigurationError(f"k_pivot={self.k_pivot:.6e} negative or null")

        kind = SpectrumType(self.spectrum_type)
        if kind.is_inflation:
            if not self.has_scalars:
                raise ConfigurationError("inflationary spectra require scalar modes")
            if self.isocurvature:
                raise ConfigurationError("inflationary spectra cannot carry isocurvature modes")
            if kind is not SpectrumType.INFLATION_H:
                if PotentialShape(self.potential) is PotentialShape.NATURAL and self.V1 == 0.0:
                    raise ConfigurationError("natural inflation needs a non-zero scale f=V1")
            if kind is SpectrumType.INFLATION_V_END and self.ln_aH_ratio <= 0.0:
                raise ConfigurationError(
                    f"ln_aH_ratio={self.ln_aH_ratio} must be positive"
                )
        elif kind is SpectrumType.ANALYTIC:
            self._validate_analytic()
        elif kind is SpectrumType.EXTERNAL:
            if not self.command.strip():
                raise ConfigurationError("external spectrum requested without a command")
            if not self.has_scalars:
                raise ConfigurationError("external spectra require scalar modes")
            if self.isocurvature:
                raise ConfigurationError("external spectra cannot carry isocurvature modes")
            if len(self.custom) > MAX_CUSTOM_ARGUMENTS:
                raise ConfigurationError(
                    f"at most {MAX_CUSTOM_ARGUMENTS} custom arguments, got {len(self.custom)}"
                )

    def _validate_analytic(self) -> None:
        if self.has_scalars and self.A_s <= 0.0:
            raise ConfigurationError(f"inconsistent scalar amplitude A_s={self.A_s:.6e}")
        if self.has_tensors and self.A_s * self.r <= 0.0:
            raise ConfigurationError(
                f"inconsistent tensor amplitude A_s*r={self.A_s * self.r:.6e}"
            )
        names = {"ad"}
        for mode in self.isocurvature:
            if mode.name not in SCALAR_ICS[1:]:
                raise ConfigurationError(f"unknown isocurvature mode '{mode.name}'")
            if mode.name in names:
                raise ConfigurationError(f"isocurvature mode '{mode.name}' given twice")
            if self.A_s * mode.f**2 <= 0.0:
                raise ConfigurationError(
                    f"inconsistent amplitude for isocurvature mode '{mode.name}'"
                )
            names.add(mode.name)
        for corr in self.correlations:
            if corr.ic1 not in names or corr.ic2 not in names or corr.ic1 == corr.ic2:
                raise ConfigurationError(
                    f"correlation between '{corr.ic1}' and '{corr.ic2}' refers to "
                    f"modes that are not switched on"
                )
            if not -1.0 <= corr.c <= 1.0 or math.isnan(corr.c):
                raise ConfigurationError(
                    f"inconsistent cross-correlation c={corr.c} between "
                    f"'{corr.ic1}' and '{corr.ic2}'"
                )


# ---------------------------------------------------------------------------
# PrecisionParams: NOT traced by JAX (static, hashable)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrecisionParams:
    """Numerical precision parameters of the primordial module.

    They enter jitted loops as static arguments, so changing any of them
    triggers a recompilation.
    """

    # Tabulation
    k_per_decade_primordial: float = 10.0

    # Adaptive integrator (one call per conformal time step)
    tol_integration: float = 1e-3       # relative tolerance
    atol_integration: float = 1e-14
    ode_max_steps: int = 4096           # internal steps per segment
    max_evolution_steps: int = 2_000_000  # outer steps per evolution call
    smallest_allowed_variation: float = DBL_EPSILON

    # Attractor search
    attractor_precision_pivot: float = 1e-3
    attractor_precision_initial: float = 0.1
    attractor_maxit: int = 10
    phi_ini_maxit: int = 10000

    # Conformal time steps (fractions of 1/aH and of the mode period)
    bg_stepsize: float = 5e-3
    pt_stepsize: float = 1e-2

    # Horizon crossing window: k/aH from ratio_min down to ratio_max
    ratio_min: float = 100.0
    ratio_max: float = 1.0 / 50.0
    aH_ini_target: float = 0.9
    tol_curvature: float = 1e-3         # |dlnP/dN| at which the spectrum is frozen

    # End of inflation
    end_dphi: float = 1e-10
    end_logstep: float = 10.0
    end_phi_stop_precision: float = 1e-5
    end_small_epsilon: float = 0.1
    end_extra_efolds: float = 2.0

    # Wavenumbers integrated concurrently (1 = sequential)
    n_workers: int = 1

    def validate(self) -> None:
        if self.k_per_decade_primordial <= K_PER_DECADE_PRIMORDIAL_MIN:
            raise ConfigurationError(
                f"k_per_decade_primordial={self.k_per_decade_primordial}: such a sparse "
                f"sampling of the primordial spectrum is probably a mistake"
            )
        if not 0.0 < self.ratio_max < 1.0 < self.ratio_min:
            raise ConfigurationError(
                f"horizon crossing window needs ratio_max < 1 < ratio_min, got "
                f"[{self.ratio_max}, {self.ratio_min}]"
            )
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers={self.n_workers} must be at least 1")

    @staticmethod
    def fast():
        """Coarse preset for tests and quick parameter scans.

        Bunch-Davies vacuum set 50 times inside the horizon and a sparser
        wavenumber table; spectral amplitudes good to about a percent.
        """
        return PrecisionParams(
            k_per_decade_primordial=5.0,
            bg_stepsize=1e-2,
            pt_stepsize=2e-2,
            ratio_min=50.0,
            ratio_max=1.0 / 30.0,
            tol_curvature=1e-3,
            attractor_precision_pivot=1e-3,
            attractor_precision_initial=0.1,
        )
