"""Test the attractor search."""

import numpy as np
import pytest

from inflax.attractor import find_attractor
from inflax.errors import AttractorNotFound, ConfigurationError
from inflax.models import HubbleModel, PotentialModel
from inflax.params import PrecisionParams
from tests.conftest import PHI_PIVOT, PREC, QUADRATIC


@pytest.fixture(scope="module")
def quadratic():
    return PotentialModel(**QUADRATIC, phi_pivot=PHI_PIVOT)


class TestAttractor:

    def test_close_to_slow_roll(self, quadratic):
        """Deep in slow roll, phi_dot = -V'/(3H) up to O(epsilon) corrections."""
        point = find_attractor(quadratic, -15.0, 1e-4, PREC)
        slow_roll = float(quadratic.slow_roll_dphidt(-15.0))
        assert point.phi == -15.0
        assert point.dphidt > 0.0, "the field rolls towards larger phi"
        assert np.isclose(point.dphidt, slow_roll, rtol=2e-3), (
            f"dphi/dt={point.dphidt:.6e}, slow roll {slow_roll:.6e}"
        )

    def test_hubble_from_friedmann(self, quadratic):
        point = find_attractor(quadratic, -15.0, 1e-4, PREC)
        V = quadratic.check(-15.0)[0]
        H = np.sqrt(8.0 * np.pi / 3.0 * (0.5 * point.dphidt**2 + V))
        assert np.isclose(point.H, H, rtol=1e-12)

    def test_converged_velocity_is_stable(self, quadratic):
        """A tighter precision changes the result by less than the looser one allows."""
        loose = find_attractor(quadratic, -15.0, 1e-2, PREC)
        tight = find_attractor(quadratic, -15.0, 1e-5, PREC)
        assert np.isclose(loose.dphidt, tight.dphidt, rtol=1e-2)

    def test_no_convergence(self, quadratic):
        """With a single iteration and zero tolerance the search must give up."""
        prec = PrecisionParams(attractor_maxit=1, bg_stepsize=PREC.bg_stepsize)
        with pytest.raises(AttractorNotFound) as info:
            find_attractor(quadratic, -15.0, 0.0, prec)
        assert info.value.iterations == 1

    def test_hubble_model_rejected(self):
        with pytest.raises(ConfigurationError):
            find_attractor(HubbleModel(H0=1e-6, H1=-1e-8), 0.0, 1e-3, PREC)
