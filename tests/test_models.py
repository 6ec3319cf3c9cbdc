"""Test inflaton models: values, slow-roll parameters, validity checks and derivatives."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from inflax.constants import eight_pi_over_3, four_pi
from inflax.errors import ConfigurationError, Status, UnphysicalPotential, UnphysicalSlope
from inflax.models import HubbleModel, PotentialEndModel, PotentialModel, model_from_config
from inflax.params import PotentialShape, SpectrumConfig
from inflax.states import BackgroundState, Direction
from tests.conftest import M2, PHI_PIVOT, QUADRATIC


@pytest.fixture
def quadratic():
    return PotentialModel(**QUADRATIC, phi_pivot=PHI_PIVOT)


class TestPotentialValues:

    def test_taylor_expansion_reproduces_quadratic(self, quadratic):
        """Taylor coefficients around -15 give back m^2 phi^2 / 2 everywhere."""
        for phi in (-20.0, -15.0, -3.0, -0.5):
            V, dV, ddV = quadratic.values(phi)
            assert np.isclose(float(V), 0.5 * M2 * phi**2, rtol=1e-12), f"V({phi})={float(V):.6e}"
            assert np.isclose(float(dV), M2 * phi, rtol=1e-12), f"V'({phi})={float(dV):.6e}"
            assert np.isclose(float(ddV), M2, rtol=1e-12), f"V''({phi})={float(ddV):.6e}"

    def test_epsilon_quadratic(self, quadratic):
        """epsilon = (V'/V)^2 / (16 pi) = 1 / (4 pi phi^2) for a quadratic potential."""
        phi = -15.0
        eps = float(quadratic.epsilon(phi))
        expected = 1.0 / (4.0 * np.pi * phi**2)
        assert np.isclose(eps, expected, rtol=1e-10), f"epsilon: got {eps:.6e}, expected {expected:.6e}"

    def test_natural_inflation(self):
        model = PotentialModel(V0=1e-12, V1=5.0, shape=PotentialShape.NATURAL)
        phi = 2.0
        V, dV, ddV = model.values(phi)
        assert np.isclose(float(V), 1e-12 * (1.0 + np.cos(0.4)))
        assert np.isclose(float(dV), -1e-12 / 5.0 * np.sin(0.4))
        assert np.isclose(float(ddV), -1e-12 / 25.0 * np.cos(0.4))

    def test_slopes_match_finite_differences(self):
        """V' and V'' agree with central differences of V to O(h^2)."""
        model = PotentialModel(
            V0=1.2e-13, V1=-1.1e-14, V2=-7e-15, V3=3e-15, V4=-1e-15, phi_pivot=0.3
        )
        h = 1e-4
        for phi in (-1.0, 0.3, 0.8):
            V_minus, V_0, V_plus = (float(model.values(phi + s * h)[0]) for s in (-1, 0, 1))
            _, dV, ddV = model.values(phi)
            fd_slope = (V_plus - V_minus) / (2.0 * h)
            fd_curvature = (V_plus - 2.0 * V_0 + V_minus) / h**2
            assert np.isclose(float(dV), fd_slope, rtol=1e-6), f"V'({phi})={float(dV):.6e} vs {fd_slope:.6e}"
            assert np.isclose(float(ddV), fd_curvature, rtol=1e-3), (
                f"V''({phi})={float(ddV):.6e} vs {fd_curvature:.6e}"
            )

    def test_epsilon_where_potential_vanishes(self):
        """Host floats give an infinite epsilon at V = 0 instead of raising."""
        model = PotentialEndModel(V0=0.0, V1=-M2)
        assert np.isinf(float(model.epsilon(0.0)))
        assert np.isinf(float(HubbleModel(H0=0.0, H1=-1e-8).epsilon(0.0)))

    def test_end_model_expands_around_zero(self):
        model = PotentialEndModel(V0=0.0, V1=0.0, V2=M2)
        V, dV, _ = model.values(-2.0)
        assert np.isclose(float(V), 2.0 * M2)
        assert np.isclose(float(dV), -2.0 * M2)


class TestChecks:

    def test_check_returns_values(self, quadratic):
        V, dV, ddV = quadratic.check(-15.0)
        assert isinstance(V, float)
        assert V > 0 and dV < 0

    def test_negative_potential(self):
        model = PotentialModel(V0=1e-13, V1=-1e-13)
        with pytest.raises(UnphysicalPotential) as info:
            model.check(2.0)
        assert info.value.phi == 2.0
        assert int(model.violation(2.0)) == Status.UNPHYSICAL_VALUE

    def test_wrong_slope(self, quadratic):
        """Beyond the minimum at phi = 0 the field would roll backward."""
        with pytest.raises(UnphysicalSlope):
            quadratic.check(1.0)
        assert int(quadratic.violation(1.0)) == Status.UNPHYSICAL_SLOPE

    def test_hubble_checks(self):
        model = HubbleModel(H0=1e-6, H1=-1e-8)
        assert int(model.violation(0.0)) == Status.OK
        with pytest.raises(UnphysicalPotential):
            model.check(200.0)
        with pytest.raises(UnphysicalSlope):
            HubbleModel(H0=1e-6, H1=1e-8).check(0.0)


class TestDerivatives:

    def test_forward_friedmann(self, quadratic):
        a, phi, dphi = 2.0, -15.0, 1e-8
        dy, kin = quadratic.derivs(BackgroundState(a=a, phi=phi, dphi=dphi), Direction.FORWARD)
        V, dV, _ = quadratic.values(phi)
        aH = np.sqrt(eight_pi_over_3 * (0.5 * dphi**2 + a**2 * float(V)))
        assert np.isclose(float(kin.aH), aH, rtol=1e-12)
        assert np.isclose(float(dy.a), a * aH, rtol=1e-12)
        assert np.isclose(float(dy.phi), dphi)
        assert np.isclose(float(dy.dphi), -2.0 * aH * dphi - a**2 * float(dV), rtol=1e-12)
        assert np.isclose(float(kin.app_over_a), 2.0 * aH**2 - four_pi * dphi**2, rtol=1e-12)

    def test_backward_drops_velocity(self, quadratic):
        dy, kin = quadratic.derivs(BackgroundState(a=1.0, phi=-15.0), Direction.BACKWARD)
        assert dy.dphi is None
        assert kin.zpp_over_z is None
        # slow-roll attractor: phi' = -a^2 V' / (3 aH) > 0
        assert float(dy.phi) > 0

    def test_de_sitter_limit(self):
        """With V' -> 0, z''/z and a''/a both approach 2 (aH)^2."""
        model = PotentialModel(V0=1e-13, V1=-1e-20)
        y = BackgroundState(a=1.0, phi=0.0, dphi=float(model.slow_roll_dphidt(0.0)))
        _, kin = model.derivs(y, Direction.FORWARD)
        aH2 = float(kin.aH) ** 2
        assert np.isclose(float(kin.zpp_over_z), 2.0 * aH2, rtol=1e-6)
        assert np.isclose(float(kin.app_over_a), 2.0 * aH2, rtol=1e-6)

    def test_hubble_velocity(self):
        model = HubbleModel(H0=1e-6, H1=-1e-8)
        dy, kin = model.derivs(BackgroundState(a=3.0, phi=0.0), Direction.FORWARD)
        assert np.isclose(float(dy.a), 9.0 * 1e-6)
        assert np.isclose(float(dy.phi), 3.0 * 1e-8 / four_pi)
        assert np.isclose(float(kin.aH), 3.0e-6)

    def test_epsilon_hubble(self):
        model = HubbleModel(H0=1e-6, H1=-1e-8)
        assert np.isclose(float(model.epsilon(0.0)), 1e-4 / four_pi)

    def test_model_is_pytree(self, quadratic):
        leaves, treedef = jax.tree_util.tree_flatten(quadratic)
        rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
        assert rebuilt == quadratic

        eps = jax.jit(lambda m: m.epsilon(jnp.asarray(-15.0)))(quadratic)
        assert np.isclose(float(eps), float(quadratic.epsilon(-15.0)))


class TestModelFromConfig:

    def test_dispatch(self):
        assert isinstance(model_from_config(SpectrumConfig(spectrum_type="inflation_V")), PotentialModel)
        assert isinstance(model_from_config(SpectrumConfig(spectrum_type="inflation_H")), HubbleModel)
        end = model_from_config(SpectrumConfig(spectrum_type="inflation_V_end", phi_pivot=3.0))
        assert isinstance(end, PotentialEndModel)
        assert end.phi_pivot == 0.0

    def test_analytic_has_no_model(self):
        with pytest.raises(ConfigurationError):
            model_from_config(SpectrumConfig(spectrum_type="analytic_Pk"))
