"""Primordial power spectra for inflax.

primordial_solve builds a SpectrumTable from a SpectrumConfig:

    analytic_Pk      power laws per initial condition pair, tabulated
    inflation_V      numerical inflation with V(phi) expanded around phi_pivot
    inflation_H      numerical inflation with H(phi)
    inflation_V_end  numerical inflation with V(phi) given up to phi_end
    external_Pk      table produced by an external command

The table stores, per mode ("scalars", "tensors") and per packed pair of
initial conditions, ln P on the diagonal and the correlation cosine
P_12 / sqrt(P_11 P_22) off the diagonal, on a grid in ln k, together with
cubic splines through each column. spectrum_at_k interpolates it.

For numerical spectra, A_s, n_s, alpha_s, beta_s, r, n_t and alpha_t are
measured at k_pivot by finite differences of the interpolated ln P.

References:
    CLASS source: primordial.c (primordial_init, primordial_spectrum_at_k,
    primordial_get_lnk_list)
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from inflax.analytic import SCALARS, TENSORS, AnalyticSpectrum, packed_pairs, symmetric_index
from inflax.constants import TENSOR_ICS, ln10
from inflax.errors import ConfigurationError, OutOfRangeError
from inflax.external import load_external_spectrum
from inflax.interpolation import CubicSpline
from inflax.models import model_from_config
from inflax.params import PrecisionParams, SpectrumConfig, SpectrumType
from inflax.perturbations import compute_inflation_spectra
from inflax.pivot import observable_field_range, solve_initial_conditions

logger = logging.getLogger(__name__)


class Scale(enum.Enum):
    """Meaning of the argument and result of spectrum_at_k."""

    LINEAR = "linear"
    LOGARITHMIC = "logarithmic"


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DerivedParameters:
    """Spectral parameters at k_pivot. None where they could not be measured."""

    A_s: Optional[float] = None
    n_s: Optional[float] = None
    alpha_s: Optional[float] = None
    beta_s: Optional[float] = None
    r: Optional[float] = None
    n_t: Optional[float] = None
    alpha_t: Optional[float] = None


@dataclass(frozen=True)
class ModeTable:
    """Tabulated spectrum of one mode.

    Attributes:
        ic_names: initial conditions, e.g. ("ad", "cdi") or ("ten",)
        table: shape (Nk, Npairs), ln P on diagonal pairs, cosines elsewhere
        splines: one CubicSpline in ln k per packed pair
        is_non_zero: per packed pair, False for identically zero cross-spectra
    """

    ic_names: Tuple[str, ...]
    table: Float[Array, "Nk Npairs"]
    splines: Tuple[CubicSpline, ...]
    is_non_zero: Tuple[bool, ...]

    @property
    def ic_size(self) -> int:
        return len(self.ic_names)


@dataclass(frozen=True)
class SpectrumTable:
    """Primordial spectra, ready for interpolation."""

    spectrum_type: SpectrumType
    k_pivot: float
    lnk: Float[Array, "Nk"]
    modes: Dict[str, ModeTable]
    derived: DerivedParameters
    analytic: Optional[AnalyticSpectrum] = None
    phi_min: Optional[float] = None
    phi_max: Optional[float] = None
    phi_pivot: Optional[float] = None

    @property
    def k_min(self) -> float:
        return float(jnp.exp(self.lnk[0]))

    @property
    def k_max(self) -> float:
        return float(jnp.exp(self.lnk[-1]))


# ---------------------------------------------------------------------------
# Wavenumber grid
# ---------------------------------------------------------------------------

def wavenumber_grid(k_min: float, k_max: float, k_per_decade: float) -> Float[Array, "Nk"]:
    """ln k with k_per_decade points per decade, from k_min to just beyond k_max."""
    if k_min <= 0.0:
        raise ConfigurationError(f"k_min={k_min:.6e} negative or null")
    if k_max <= k_min:
        raise ConfigurationError(f"inconsistent values of k_min={k_min:.6e}, k_max={k_max:.6e}")
    size = int(math.log10(k_max / k_min) * k_per_decade) + 2
    if size < 3:
        raise ConfigurationError(
            f"[{k_min:.6e}, {k_max:.6e}] spans {size} points at {k_per_decade} "
            f"per decade, at least 3 are needed for the splines"
        )
    return math.log(k_min) + jnp.arange(size, dtype=jnp.float64) * ln10 / k_per_decade


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def _mode_table(ic_names, lnk, table, is_non_zero) -> ModeTable:
    table = jnp.asarray(table, dtype=jnp.float64).reshape(lnk.shape[0], -1)
    splines = tuple(
        CubicSpline(lnk, table[:, index], boundary="estimated")
        for index in range(table.shape[1])
    )
    return ModeTable(
        ic_names=tuple(ic_names),
        table=table,
        splines=splines,
        is_non_zero=tuple(is_non_zero),
    )


def primordial_solve(
    config: SpectrumConfig,
    prec: PrecisionParams = PrecisionParams(),
) -> SpectrumTable:
    """Compute the primordial spectra requested by config.

    Args:
        config: spectrum configuration
        prec: precision parameters (static)

    Returns:
        SpectrumTable

    Raises:
        ConfigurationError: invalid configuration
        PrimordialError: any failure of the inflation simulation or of the
            external command (see inflax.errors)
    """
    config.validate()
    prec.validate()
    spectrum_type = SpectrumType(config.spectrum_type)

    if not (config.has_scalars or config.has_tensors):
        logger.info("No perturbations requested. Primordial module skipped.")
        return SpectrumTable(
            spectrum_type=spectrum_type,
            k_pivot=config.k_pivot,
            lnk=jnp.zeros(0),
            modes={},
            derived=DerivedParameters(),
        )

    logger.info("Computing primordial spectra")

    if spectrum_type is SpectrumType.ANALYTIC:
        return _solve_analytic(config, prec)

    if spectrum_type.is_inflation:
        lnk = wavenumber_grid(config.k_min, config.k_max, prec.k_per_decade_primordial)
        model = model_from_config(config)
        ics = solve_initial_conditions(
            model, config, prec, k_min=float(jnp.exp(lnk[0])), k_max=float(jnp.exp(lnk[-1]))
        )
        phi_min, phi_max = observable_field_range(
            model, ics.y_ini, config.k_min, config.k_max, prec
        )
        logger.info(f"computing {lnk.shape[0]} wavenumbers from {config.k_min:.3e} to {config.k_max:.3e}")
        lnpk_scalars, lnpk_tensors = compute_inflation_spectra(model, ics.y_ini, lnk, prec)
        modes = {SCALARS: _mode_table(("ad",), lnk, lnpk_scalars, (True,))}
        if config.has_tensors:
            modes[TENSORS] = _mode_table(TENSOR_ICS, lnk, lnpk_tensors, (True,))
        table = SpectrumTable(
            spectrum_type=spectrum_type,
            k_pivot=config.k_pivot,
            lnk=lnk,
            modes=modes,
            derived=DerivedParameters(),
            phi_min=phi_min,
            phi_max=phi_max,
            phi_pivot=ics.phi_pivot,
        )
        return _with_derived_parameters(table, prec)

    # External command
    external = load_external_spectrum(config)
    lnk = jnp.asarray(external.lnk)
    modes = {SCALARS: _mode_table(("ad",), lnk, external.lnpk_scalars, (True,))}
    if config.has_tensors:
        modes[TENSORS] = _mode_table(TENSOR_ICS, lnk, external.lnpk_tensors, (True,))
    table = SpectrumTable(
        spectrum_type=spectrum_type,
        k_pivot=config.k_pivot,
        lnk=lnk,
        modes=modes,
        derived=DerivedParameters(),
    )
    return _with_derived_parameters(table, prec)


def _solve_analytic(config: SpectrumConfig, prec: PrecisionParams) -> SpectrumTable:
    lnk = wavenumber_grid(config.k_min, config.k_max, prec.k_per_decade_primordial)
    analytic = AnalyticSpectrum.from_config(config)
    modes = {
        name: _mode_table(coeffs.ic_names, lnk, analytic.log_table(name, lnk), coeffs.is_non_zero)
        for name, coeffs in analytic.modes.items()
    }
    derived = DerivedParameters(
        A_s=config.A_s,
        n_s=config.n_s,
        alpha_s=config.alpha_s,
        beta_s=0.0,
        r=config.r if config.has_tensors else None,
        n_t=config.n_t if config.has_tensors else None,
        alpha_t=config.alpha_t if config.has_tensors else None,
    )
    return SpectrumTable(
        spectrum_type=SpectrumType.ANALYTIC,
        k_pivot=config.k_pivot,
        lnk=lnk,
        modes=modes,
        derived=derived,
        analytic=analytic,
    )


def _with_derived_parameters(table: SpectrumTable, prec: PrecisionParams) -> SpectrumTable:
    """Finite-difference spectral parameters around k_pivot (5-point stencil)."""
    dlnk = ln10 / prec.k_per_decade_primordial
    lnk_pivot = math.log(table.k_pivot)
    lnk_lo, lnk_hi = float(table.lnk[0]), float(table.lnk[-1])

    def lnpk(mode, shift):
        return float(table.modes[mode].splines[0].evaluate(lnk_pivot + shift * dlnk))

    if not (lnk_lo <= lnk_pivot - 2.0 * dlnk and lnk_pivot + 2.0 * dlnk <= lnk_hi):
        logger.warning(
            f"k_pivot={table.k_pivot:.3e} too close to the edges of the table "
            f"[{table.k_min:.3e}, {table.k_max:.3e}]: spectral parameters not computed"
        )
        return table

    p0, p1, m1 = lnpk(SCALARS, 0), lnpk(SCALARS, 1), lnpk(SCALARS, -1)
    p2, m2 = lnpk(SCALARS, 2), lnpk(SCALARS, -2)
    values = dict(
        A_s=math.exp(p0),
        n_s=(p1 - m1) / (2.0 * dlnk) + 1.0,
        alpha_s=(p1 - 2.0 * p0 + m1) / dlnk**2,
        beta_s=(p2 - 2.0 * p1 + 2.0 * m1 - m2) / (2.0 * dlnk**3),
    )
    logger.info(f"A_s={values['A_s']:g}  n_s={values['n_s']:g}  alpha_s={values['alpha_s']:g}")

    if TENSORS in table.modes:
        t0, t1, tm1 = lnpk(TENSORS, 0), lnpk(TENSORS, 1), lnpk(TENSORS, -1)
        values.update(
            r=math.exp(t0) / values["A_s"],
            n_t=(t1 - tm1) / (2.0 * dlnk),
            alpha_t=(t1 - 2.0 * t0 + tm1) / dlnk**2,
        )
        logger.info(f"r={values['r']:g}  n_t={values['n_t']:g}  alpha_t={values['alpha_t']:g}")

    return SpectrumTable(
        spectrum_type=table.spectrum_type,
        k_pivot=table.k_pivot,
        lnk=table.lnk,
        modes=table.modes,
        derived=DerivedParameters(**values),
        analytic=table.analytic,
        phi_min=table.phi_min,
        phi_max=table.phi_max,
        phi_pivot=table.phi_pivot,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def spectrum_at_k(
    table: SpectrumTable,
    mode: str,
    value: float,
    scale: Scale = Scale.LINEAR,
) -> np.ndarray:
    """Primordial spectrum of one mode at one wavenumber.

    Args:
        table: result of primordial_solve
        mode: "scalars" or "tensors"
        value: k in Mpc^-1 (Scale.LINEAR) or ln k (Scale.LOGARITHMIC)
        scale: linear or logarithmic argument and result

    Returns:
        Array over packed ic pairs. Linear: P_11, P_12, ..., with zero for
        uncorrelated pairs. Logarithmic: ln P on the diagonal, correlation
        cosines off the diagonal.

    Raises:
        ConfigurationError: mode not computed
        OutOfRangeError: k <= 0, or k outside the table of a non-analytic spectrum
    """
    if mode not in table.modes:
        raise ConfigurationError(f"mode '{mode}' was not computed")
    scale = Scale(scale)
    mode_table = table.modes[mode]

    if scale is Scale.LINEAR:
        if value <= 0.0:
            raise OutOfRangeError(value, table.k_min, table.k_max, f"k={value:.6e} negative or null")
        lnk = math.log(value)
    else:
        lnk = float(value)

    if not float(table.lnk[0]) <= lnk <= float(table.lnk[-1]):
        if table.analytic is None:
            raise OutOfRangeError(math.exp(lnk), table.k_min, table.k_max)
        return _analytic_at_k(table.analytic, mode, lnk, scale)

    log_values = np.array([float(spline.evaluate(lnk)) for spline in mode_table.splines])
    if scale is Scale.LOGARITHMIC:
        return log_values

    n = mode_table.ic_size
    pk = np.zeros_like(log_values)
    for index, (i1, i2) in enumerate(packed_pairs(n)):
        if i1 == i2:
            pk[index] = math.exp(log_values[index])
    for index, (i1, i2) in enumerate(packed_pairs(n)):
        if i1 != i2 and mode_table.is_non_zero[index]:
            pk[index] = log_values[index] * math.sqrt(
                pk[symmetric_index(i1, i1, n)] * pk[symmetric_index(i2, i2, n)]
            )
    return pk


def _analytic_at_k(analytic: AnalyticSpectrum, mode: str, lnk: float, scale: Scale) -> np.ndarray:
    """Direct evaluation of the power laws outside the tabulated range."""
    pk = np.asarray(analytic.evaluate(mode, math.exp(lnk)))
    if scale is Scale.LINEAR:
        return pk

    coeffs = analytic.modes[mode]
    n = coeffs.ic_size
    out = np.zeros_like(pk)
    for index, (i1, i2) in enumerate(packed_pairs(n)):
        if i1 == i2:
            out[index] = math.log(pk[index])
        elif coeffs.is_non_zero[index]:
            out[index] = pk[index] / math.sqrt(
                pk[symmetric_index(i1, i1, n)] * pk[symmetric_index(i2, i2, n)]
            )
    return out
