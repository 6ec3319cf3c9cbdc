"""Analytic power-law primordial spectra for inflax.

Each auto- or cross-spectrum between two initial conditions is

    P(k) = A * exp((n - 1) ln(k/k_pivot) + alpha/2 ln^2(k/k_pivot))

Scalar initial conditions are the adiabatic mode (A_s, n_s, alpha_s) and
the switched-on isocurvature modes (A_s f^2, n, alpha). Tensors have a
single initial condition with amplitude A_s r, tilt n_t + 1 (so that n_t
keeps its usual meaning) and running alpha_t. A cross-spectrum with
correlation c has amplitude sqrt(A_1 A_2) c, the mean tilt and running of
the two auto-spectra plus its own offsets, and vanishes identically when
c = 0.

Spectra for several initial conditions are stored as packed symmetric
matrices, row by row: (1,1), (1,2), ..., (1,N), (2,2), ...

References:
    CLASS source: primordial.c (primordial_analytic_spectrum_init,
    primordial_analytic_spectrum)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from inflax.constants import SCALAR_ICS, TENSOR_ICS
from inflax.errors import ConfigurationError
from inflax.params import SpectrumConfig

SCALARS = "scalars"
TENSORS = "tensors"


def symmetric_index(i1: int, i2: int, n: int) -> int:
    """Position of entry (i1, i2) in a packed symmetric n x n matrix."""
    if i1 > i2:
        i1, i2 = i2, i1
    return i1 * n + i2 - i1 * (i1 + 1) // 2


def packed_pairs(n: int):
    """(i1, i2) pairs with i1 <= i2, in packed order."""
    return [(i1, i2) for i1 in range(n) for i2 in range(i1, n)]


@dataclass(frozen=True)
class ModeCoefficients:
    """Power-law coefficients of one mode, one entry per packed ic pair."""

    ic_names: Tuple[str, ...]
    amplitude: Tuple[float, ...]
    tilt: Tuple[float, ...]
    running: Tuple[float, ...]
    is_non_zero: Tuple[bool, ...]

    @property
    def ic_size(self) -> int:
        return len(self.ic_names)


@dataclass(frozen=True)
class AnalyticSpectrum:
    """Amplitudes, tilts and runnings for every mode and initial condition pair."""

    k_pivot: float
    modes: Dict[str, ModeCoefficients]

    @classmethod
    def from_config(cls, config: SpectrumConfig) -> AnalyticSpectrum:
        """Collect the power laws switched on in config.

        Raises:
            ConfigurationError: non-positive amplitude or correlation outside [-1, 1]
        """
        modes = {}
        if config.has_scalars:
            diagonal = [("ad", config.A_s, config.n_s, config.alpha_s)]
            order = {name: i for i, name in enumerate(SCALAR_ICS)}
            for mode in sorted(config.isocurvature, key=lambda m: order[m.name]):
                diagonal.append((mode.name, config.A_s * mode.f**2, mode.n, mode.alpha))
            correlations = {
                frozenset((c.ic1, c.ic2)): (c.c, c.n, c.alpha) for c in config.correlations
            }
            modes[SCALARS] = _mode_coefficients(diagonal, correlations)
        if config.has_tensors:
            diagonal = [(TENSOR_ICS[0], config.A_s * config.r, config.n_t + 1.0, config.alpha_t)]
            modes[TENSORS] = _mode_coefficients(diagonal, {})
        return cls(k_pivot=config.k_pivot, modes=modes)

    def evaluate(self, mode: str, k: Float[Array, "..."]) -> Float[Array, "... Npairs"]:
        """P(k) for every packed ic pair; zero where the pair is uncorrelated."""
        coeffs = self.modes[mode]
        lnk = jnp.log(jnp.asarray(k, dtype=jnp.float64) / self.k_pivot)[..., None]
        amplitude = jnp.asarray(coeffs.amplitude)
        tilt = jnp.asarray(coeffs.tilt)
        running = jnp.asarray(coeffs.running)
        pk = amplitude * jnp.exp((tilt - 1.0) * lnk + 0.5 * running * lnk**2)
        return jnp.where(jnp.asarray(coeffs.is_non_zero), pk, 0.0)

    def log_table(self, mode: str, lnk: Float[Array, "Nk"]) -> np.ndarray:
        """Tabulated form on ln k: ln P on the diagonal, correlation cosines elsewhere.

        Cosines are clipped to [-1, 1] against round-off.
        """
        coeffs = self.modes[mode]
        pk = np.asarray(self.evaluate(mode, jnp.exp(jnp.asarray(lnk))))
        table = np.zeros_like(pk)
        n = coeffs.ic_size
        for index, (i1, i2) in enumerate(packed_pairs(n)):
            if i1 == i2:
                table[:, index] = np.log(pk[:, index])
            elif coeffs.is_non_zero[index]:
                p11 = pk[:, symmetric_index(i1, i1, n)]
                p22 = pk[:, symmetric_index(i2, i2, n)]
                table[:, index] = np.clip(pk[:, index] / np.sqrt(p11 * p22), -1.0, 1.0)
        return table


def _mode_coefficients(diagonal, correlations) -> ModeCoefficients:
    n = len(diagonal)
    names = tuple(d[0] for d in diagonal)
    amplitude, tilt, running, is_non_zero = [], [], [], []
    for i1, i2 in packed_pairs(n):
        name1, A1, n1, alpha1 = diagonal[i1]
        if i1 == i2:
            if A1 <= 0.0:
                raise ConfigurationError(
                    f"inconsistent input for primordial amplitude: {A1:g} for ic '{name1}'"
                )
            amplitude.append(A1)
            tilt.append(n1)
            running.append(alpha1)
            is_non_zero.append(True)
            continue

        name2, A2, n2, alpha2 = diagonal[i2]
        c, dn, dalpha = correlations.get(frozenset((name1, name2)), (0.0, 0.0, 0.0))
        if not -1.0 <= c <= 1.0:
            raise ConfigurationError(
                f"inconsistent cross-correlation c={c} between '{name1}' and '{name2}'"
            )
        if c == 0.0:
            amplitude.append(0.0)
            tilt.append(0.0)
            running.append(0.0)
            is_non_zero.append(False)
        else:
            amplitude.append(float(np.sqrt(A1 * A2)) * c)
            tilt.append(0.5 * (n1 + n2) + dn)
            running.append(0.5 * (alpha1 + alpha2) + dalpha)
            is_non_zero.append(True)

    return ModeCoefficients(
        ic_names=names,
        amplitude=tuple(amplitude),
        tilt=tuple(tilt),
        running=tuple(running),
        is_non_zero=tuple(is_non_zero),
    )
