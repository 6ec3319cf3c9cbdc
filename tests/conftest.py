"""Test fixtures for the inflax test suite.

Provides:
- Toy inflaton models with known slow-roll predictions
- Coarse PrecisionParams shared by the integration tests
- --fast flag for quick regression checks
"""

# Enable 64-bit JAX (inflaton coefficients span ~30 orders of magnitude)
import jax
jax.config.update("jax_enable_x64", True)

import numpy as np
import pytest

from inflax.params import PrecisionParams, SpectrumConfig


PREC = PrecisionParams.fast()

# Quadratic potential V = m^2 phi^2 / 2, Taylor-expanded around phi_pivot = -15
M2 = 2.5e-15
PHI_PIVOT = -15.0
QUADRATIC = dict(
    V0=0.5 * M2 * PHI_PIVOT**2,
    V1=M2 * PHI_PIVOT,
    V2=M2,
    V3=0.0,
    V4=0.0,
)


def pytest_addoption(parser):
    parser.addoption(
        "--fast", action="store_true", default=False,
        help="Run fast subset of tests (fewer wavenumbers)"
    )


@pytest.fixture(scope="session")
def fast_mode(request):
    return request.config.getoption("--fast")


@pytest.fixture(scope="session")
def quadratic_config():
    """Chaotic inflation with V = m^2 phi^2 / 2, 225*2pi e-folds before phi = 0."""
    return SpectrumConfig(
        spectrum_type="inflation_V",
        k_pivot=0.01,
        k_min=1e-3,
        k_max=1e-1,
        has_tensors=True,
        phi_pivot=PHI_PIVOT,
        **QUADRATIC,
    )


@pytest.fixture(scope="session")
def hubble_config():
    """Nearly constant H(phi) = H0 + H1 phi."""
    return SpectrumConfig(
        spectrum_type="inflation_H",
        k_pivot=0.01,
        k_min=1e-3,
        k_max=1e-1,
        has_tensors=True,
        H0=1e-6,
        H1=-1e-8,
    )


def relative_error(computed, reference, eps=1e-30):
    """Compute relative error, avoiding division by zero."""
    return np.abs(computed - reference) / (np.abs(reference) + eps)


def max_relative_error(computed, reference, eps=1e-30):
    """Return (max_rel_err, index_of_max)."""
    rel = np.atleast_1d(relative_error(np.asarray(computed), np.asarray(reference), eps))
    idx = np.argmax(rel)
    return float(rel[idx]), int(idx)


def assert_close(computed, reference, rtol, name="quantity", coordinate=None):
    """Assert computed matches reference within rtol, with clear error message."""
    computed = np.atleast_1d(np.asarray(computed, dtype=float))
    reference = np.broadcast_to(np.atleast_1d(np.asarray(reference, dtype=float)), computed.shape)
    max_err, idx = max_relative_error(computed, reference)
    if max_err > rtol:
        coord_str = f" at index {idx}"
        if coordinate is not None:
            coord_str = f" at {coordinate[idx]:.6g}"
        msg = (
            f"{name}: max rel error {max_err:.4%}{coord_str}"
            f" (expected {reference[idx]:.6e}, got {computed[idx]:.6e})"
            f" -- tolerance {rtol:.4%}"
        )
        raise AssertionError(msg)
