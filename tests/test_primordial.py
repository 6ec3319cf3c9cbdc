"""End-to-end tests of primordial_solve and spectrum_at_k.

Analytic and external spectra are checked against the power laws that
generated them. Numerical inflation is checked against slow roll: for
V = m^2 phi^2 / 2 (G = 1, epsilon = 1 / (4 pi phi^2)),

    n_s - 1 = -4 epsilon,   r = 16 epsilon,   n_t = -2 epsilon,
    A_s = H^2 / (pi epsilon)
"""

import logging
import math

import numpy as np
import pytest

from inflax.analytic import SCALARS, TENSORS
from inflax.errors import ConfigurationError, OutOfRangeError
from inflax.params import Correlation, IsocurvatureMode, SpectrumConfig, SpectrumType
from inflax.primordial import Scale, primordial_solve, spectrum_at_k
from tests.conftest import M2, PHI_PIVOT, PREC, assert_close


# ---------------------------------------------------------------------------
# Analytic
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def analytic_table():
    config = SpectrumConfig(
        spectrum_type="analytic_Pk",
        k_pivot=0.05,
        k_min=1e-4,
        k_max=1.0,
        A_s=2.1e-9,
        n_s=0.965,
        alpha_s=-0.004,
        has_tensors=True,
        r=0.05,
        n_t=-0.00625,
        isocurvature=(IsocurvatureMode("cdi", f=0.2, n=1.1),),
        correlations=(Correlation("ad", "cdi", c=0.4),),
    )
    return primordial_solve(config, PREC)


class TestAnalytic:

    def test_table_layout(self, analytic_table):
        assert analytic_table.spectrum_type is SpectrumType.ANALYTIC
        assert set(analytic_table.modes) == {SCALARS, TENSORS}
        assert analytic_table.modes[SCALARS].table.shape[1] == 3
        assert analytic_table.k_min == pytest.approx(1e-4)
        assert analytic_table.k_max >= 1.0

    def test_derived_parameters_are_inputs(self, analytic_table):
        derived = analytic_table.derived
        assert derived.A_s == 2.1e-9 and derived.n_s == 0.965
        assert derived.beta_s == 0.0
        assert derived.r == 0.05 and derived.n_t == -0.00625

    def test_linear_at_pivot(self, analytic_table):
        pk = spectrum_at_k(analytic_table, SCALARS, 0.05)
        assert_close(pk[0], 2.1e-9, rtol=1e-6, name="P_ad(k_pivot)")
        assert_close(pk[2], 2.1e-9 * 0.04, rtol=1e-6, name="P_cdi(k_pivot)")
        assert_close(pk[1], 0.4 * math.sqrt(pk[0] * pk[2]), rtol=1e-3, name="P_ad,cdi(k_pivot)")

    def test_interpolation_matches_power_law(self, analytic_table):
        k = np.array([2e-4, 3e-3, 0.2, 0.9])
        computed = np.array([spectrum_at_k(analytic_table, SCALARS, ki)[0] for ki in k])
        lnk = np.log(k / 0.05)
        expected = 2.1e-9 * np.exp(-0.035 * lnk - 0.002 * lnk**2)
        assert_close(computed, expected, rtol=1e-6, name="P_ad", coordinate=k)

    def test_logarithmic_scale(self, analytic_table):
        log_pk = spectrum_at_k(analytic_table, SCALARS, math.log(0.05), scale=Scale.LOGARITHMIC)
        assert np.isclose(log_pk[0], math.log(2.1e-9), rtol=1e-8)
        assert np.isclose(log_pk[1], 0.4, rtol=1e-3), "off-diagonal entries are cosines"

    def test_knots_and_midpoints(self, analytic_table):
        """Knots return the stored ln P; midpoints stay between their neighbours."""
        lnk = np.asarray(analytic_table.lnk)
        stored = np.asarray(analytic_table.modes[SCALARS].table[:, 0])
        for i in (0, 5, lnk.size - 1):
            value = spectrum_at_k(analytic_table, SCALARS, lnk[i], scale=Scale.LOGARITHMIC)[0]
            assert np.isclose(value, stored[i], rtol=1e-12), f"knot {i}: {value} != {stored[i]}"
        for i in (1, 7, lnk.size - 2):
            mid = 0.5 * (lnk[i] + lnk[i + 1])
            value = spectrum_at_k(analytic_table, SCALARS, mid, scale=Scale.LOGARITHMIC)[0]
            lo, hi = sorted((stored[i], stored[i + 1]))
            assert lo - 1e-10 <= value <= hi + 1e-10, f"midpoint {i}: {value} outside [{lo}, {hi}]"

    def test_tensors(self, analytic_table):
        pk = spectrum_at_k(analytic_table, TENSORS, 0.5)
        expected = 0.05 * 2.1e-9 * 10.0 ** -0.00625
        assert_close(pk[0], expected, rtol=1e-6, name="P_h(0.5)")

    def test_outside_table_evaluates_power_law(self, analytic_table):
        """Analytic spectra have no range limit."""
        pk = spectrum_at_k(analytic_table, SCALARS, 10.0)
        lnk = math.log(10.0 / 0.05)
        expected = 2.1e-9 * math.exp(-0.035 * lnk - 0.002 * lnk**2)
        assert_close(pk[0], expected, rtol=1e-12, name="P_ad(10)")
        log_pk = spectrum_at_k(analytic_table, SCALARS, math.log(10.0), scale="logarithmic")
        assert np.isclose(log_pk[0], math.log(expected), rtol=1e-12)
        assert -1.0 <= log_pk[1] <= 1.0

    def test_bad_queries(self, analytic_table):
        with pytest.raises(OutOfRangeError, match="negative or null"):
            spectrum_at_k(analytic_table, SCALARS, 0.0)
        with pytest.raises(ConfigurationError):
            spectrum_at_k(analytic_table, "vectors", 0.05)

    def test_no_perturbations(self):
        config = SpectrumConfig(has_scalars=False, has_tensors=False)
        table = primordial_solve(config, PREC)
        assert table.modes == {}
        assert table.derived.A_s is None


# ---------------------------------------------------------------------------
# External
# ---------------------------------------------------------------------------

@pytest.fixture
def external_config(tmp_path):
    k = np.logspace(-5, 1, 31)
    pks = 2e-9 * (k / 0.05) ** (0.965 - 1.0)
    pkt = 1e-10 * (k / 0.05) ** -0.01
    path = tmp_path / "spectrum.dat"
    np.savetxt(path, np.column_stack([k, pks, pkt]), header="k P_s P_t")
    return SpectrumConfig(
        spectrum_type="external_Pk",
        command=f"cat {path}",
        k_pivot=0.05,
        k_min=1e-4,
        k_max=1.0,
        has_tensors=True,
    )


class TestExternal:

    def test_derived_parameters(self, external_config):
        derived = primordial_solve(external_config, PREC).derived
        assert np.isclose(derived.A_s, 2e-9, rtol=1e-6)
        assert np.isclose(derived.n_s, 0.965, rtol=1e-6)
        assert abs(derived.alpha_s) < 1e-6
        assert abs(derived.beta_s) < 1e-5
        assert np.isclose(derived.r, 0.05, rtol=1e-6)
        assert np.isclose(derived.n_t, -0.01, rtol=1e-4)

    def test_range_is_the_table(self, external_config):
        table = primordial_solve(external_config, PREC)
        assert table.k_min == pytest.approx(1e-5)
        assert table.k_max == pytest.approx(10.0)
        pk = spectrum_at_k(table, SCALARS, 1e-5 * 1.0000001)
        assert pk[0] > 0.0
        with pytest.raises(OutOfRangeError):
            spectrum_at_k(table, SCALARS, 20.0)
        with pytest.raises(OutOfRangeError):
            spectrum_at_k(table, TENSORS, 1e-6)

    def test_pivot_near_edge_skips_derived(self, external_config, caplog):
        config = external_config.replace(k_pivot=5.0)
        with caplog.at_level(logging.WARNING, logger="inflax.primordial"):
            table = primordial_solve(config, PREC)
        assert table.derived.n_s is None
        assert "too close to the edges" in caplog.text


# ---------------------------------------------------------------------------
# Numerical inflation
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def quadratic_table(quadratic_config, fast_mode):
    if fast_mode:
        quadratic_config = quadratic_config.replace(k_min=3e-3, k_max=3e-2)
    return primordial_solve(quadratic_config, PREC)


@pytest.mark.slow
class TestInflationV:

    def test_amplitude(self, quadratic_table):
        eps = 1.0 / (4.0 * math.pi * PHI_PIVOT**2)
        H2 = 8.0 * math.pi / 3.0 * 0.5 * M2 * PHI_PIVOT**2
        assert_close(quadratic_table.derived.A_s, H2 / (math.pi * eps), rtol=0.03, name="A_s")

    def test_scalar_tilt(self, quadratic_table):
        eps = 1.0 / (4.0 * math.pi * PHI_PIVOT**2)
        n_s = quadratic_table.derived.n_s
        assert abs(n_s - (1.0 - 4.0 * eps)) < 1e-3, f"n_s={n_s:.6f}, slow roll {1.0 - 4.0 * eps:.6f}"

    def test_tensors(self, quadratic_table):
        eps = 1.0 / (4.0 * math.pi * PHI_PIVOT**2)
        derived = quadratic_table.derived
        assert_close(derived.r, 16.0 * eps, rtol=0.05, name="r")
        assert abs(derived.n_t + 2.0 * eps) < 1e-3, f"n_t={derived.n_t:.6f}"

    def test_field_range(self, quadratic_table):
        table = quadratic_table
        assert table.phi_pivot == PHI_PIVOT
        assert table.phi_min < table.phi_pivot < table.phi_max

    def test_spectrum_in_table(self, quadratic_table):
        pk = spectrum_at_k(quadratic_table, SCALARS, 0.01)
        assert_close(pk[0], quadratic_table.derived.A_s, rtol=1e-8, name="P_R(k_pivot)")
        with pytest.raises(OutOfRangeError):
            spectrum_at_k(quadratic_table, SCALARS, 10.0)


@pytest.mark.slow
class TestOtherModels:

    def test_linear_potential_nearly_scale_invariant(self, quadratic_config):
        """V = V0 (1 - 0.05 phi): epsilon ~ 5e-5, eta = 0."""
        V0 = 2.8e-13
        config = quadratic_config.replace(
            V0=V0, V1=-0.05 * V0, V2=0.0, phi_pivot=0.0, has_tensors=False
        )
        table = primordial_solve(config, PREC)
        assert abs(table.derived.n_s - 1.0) < 1e-3, f"n_s={table.derived.n_s:.6f}"
        assert TENSORS not in table.modes
        assert table.derived.r is None

    def test_hubble_flow(self, hubble_config):
        """H = H0 + H1 phi: epsilon = (H1 / H0)^2 / (4 pi) at the pivot."""
        table = primordial_solve(hubble_config, PREC)
        eps = (hubble_config.H1 / hubble_config.H0) ** 2 / (4.0 * math.pi)
        assert_close(table.derived.r, 16.0 * eps, rtol=0.05, name="r")
        assert_close(
            table.derived.A_s, hubble_config.H0**2 / (math.pi * eps), rtol=0.03, name="A_s"
        )
        assert table.phi_pivot == 0.0
