"""Cubic spline interpolation for inflax.

Provides a cubic spline class registered as a JAX pytree, so it can live
inside the spectrum table and flow through jit/vmap.

Two boundary conditions are available:
- "natural": S''(x[0]) = S''(x[-1]) = 0
- "estimated": S'(x[0]) and S'(x[-1]) fixed to the slope of the parabola
  through the three outermost knots (CLASS _SPLINE_EST_DERIV_). This is
  what the tabulated log-spectra use, since ln P(ln k) has no reason to
  be straight at the table edges.

The tridiagonal system for the knot second derivatives is solved with the
Thomas algorithm, written as two jax.lax.scan sweeps.

References:
    CLASS: tools/arrays.c (array_spline_table_lines)
    Numerical Recipes, 3rd ed., section 3.3
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

_BOUNDARIES = ("natural", "estimated")


@jax.tree_util.register_pytree_node_class
class CubicSpline:
    """Cubic spline interpolation, registered as a JAX pytree.

    Attributes:
        x: knot positions, shape (N,), strictly increasing
        y: knot values, shape (N,)
        d2y: second derivatives at knots, shape (N,), from tridiagonal solve
    """

    def __init__(
        self,
        x: Float[Array, "N"],
        y: Float[Array, "N"],
        boundary: str = "natural",
    ):
        """Build cubic spline from knot positions and values.

        Args:
            x: knot positions, shape (N,), must be strictly increasing
            y: knot values, shape (N,)
            boundary: "natural" or "estimated" (needs N >= 3)
        """
        if boundary not in _BOUNDARIES:
            raise ValueError(f"Unknown spline boundary condition: {boundary}")
        self.x = jnp.asarray(x, dtype=jnp.float64)
        self.y = jnp.asarray(y, dtype=jnp.float64)
        if self.x.shape[0] < (3 if boundary == "estimated" else 2):
            raise ValueError(
                f"{self.x.shape[0]} knots are too few for a '{boundary}' spline"
            )
        self.d2y = _compute_spline_coeffs(self.x, self.y, boundary)

    def _locate(self, x_eval):
        x_eval = jnp.asarray(x_eval)
        x_clamped = jnp.clip(x_eval, self.x[0], self.x[-1])
        idx = jnp.searchsorted(self.x, x_clamped, side="right") - 1
        idx = jnp.clip(idx, 0, len(self.x) - 2)
        h = self.x[idx + 1] - self.x[idx]
        A = (self.x[idx + 1] - x_clamped) / h
        B = (x_clamped - self.x[idx]) / h
        return idx, h, A, B

    def evaluate(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the spline at given points (clamped to the knot range).

        S(x) = A*y_i + B*y_{i+1} + (A^3 - A)*d2y_i*h^2/6 + (B^3 - B)*d2y_{i+1}*h^2/6
        where A = (x_{i+1} - x) / h, B = (x - x_i) / h, h = x_{i+1} - x_i.
        """
        idx, h, A, B = self._locate(x_eval)
        return (
            A * self.y[idx]
            + B * self.y[idx + 1]
            + ((A**3 - A) * self.d2y[idx] + (B**3 - B) * self.d2y[idx + 1])
            * h**2
            / 6.0
        )

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.x, self.y, self.d2y), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.x, obj.y, obj.d2y = children
        return obj


def estimated_end_slopes(x: Float[Array, "N"], y: Float[Array, "N"]):
    """Slopes at both ends from the parabola through the three outermost knots."""
    h1 = x[1] - x[0]
    h2 = x[2] - x[0]
    dy_first = (h2**2 * (y[1] - y[0]) - h1**2 * (y[2] - y[0])) / (h2 * h1 * (h2 - h1))

    h1 = x[-2] - x[-1]
    h2 = x[-3] - x[-1]
    dy_last = (h2**2 * (y[-2] - y[-1]) - h1**2 * (y[-3] - y[-1])) / (h2 * h1 * (h2 - h1))
    return dy_first, dy_last


def _compute_spline_coeffs(
    x: Float[Array, "N"], y: Float[Array, "N"], boundary: str
) -> Float[Array, "N"]:
    """Second derivatives at the knots.

    Interior rows of the tridiagonal system:
        h_{i-1} * d2y_{i-1} + 2(h_{i-1} + h_i) * d2y_i + h_i * d2y_{i+1} = rhs_i
    with h_i = x_{i+1} - x_i and rhs_i = 6 * [(y_{i+1}-y_i)/h_i - (y_i-y_{i-1})/h_{i-1}].
    Boundary rows either pin d2y to zero or impose the end slopes.
    """
    h = x[1:] - x[:-1]
    slope = (y[1:] - y[:-1]) / h

    lower = jnp.concatenate([jnp.zeros(1), h[:-1], h[-1:]])
    diag = jnp.concatenate([jnp.zeros(1), 2.0 * (h[:-1] + h[1:]), jnp.zeros(1)])
    upper = jnp.concatenate([h[:1], h[1:], jnp.zeros(1)])
    rhs = jnp.concatenate([jnp.zeros(1), 6.0 * (slope[1:] - slope[:-1]), jnp.zeros(1)])

    if boundary == "natural":
        diag = diag.at[0].set(1.0).at[-1].set(1.0)
        upper = upper.at[0].set(0.0)
        lower = lower.at[-1].set(0.0)
    else:
        dy_first, dy_last = estimated_end_slopes(x, y)
        diag = diag.at[0].set(2.0 * h[0]).at[-1].set(2.0 * h[-1])
        rhs = rhs.at[0].set(6.0 * (slope[0] - dy_first))
        rhs = rhs.at[-1].set(6.0 * (dy_last - slope[-1]))

    return _solve_tridiagonal(lower, diag, upper, rhs)


def _solve_tridiagonal(lower, diag, upper, rhs):
    """Thomas algorithm; lower[0] and upper[-1] are ignored."""

    def forward_step(carry, row):
        c_prev, d_prev = carry
        l, b, u, r = row
        m = b - l * c_prev
        c = u / m
        d = (r - l * d_prev) / m
        return (c, d), (c, d)

    first = (upper[0] / diag[0], rhs[0] / diag[0])
    _, (c_rest, d_rest) = jax.lax.scan(
        forward_step, first, (lower[1:], diag[1:], upper[1:], rhs[1:])
    )
    c = jnp.concatenate([first[0][None], c_rest])
    d = jnp.concatenate([first[1][None], d_rest])

    def backward_step(x_next, row):
        c_i, d_i = row
        x_i = d_i - c_i * x_next
        return x_i, x_i

    _, x_head = jax.lax.scan(backward_step, d[-1], (c[:-1], d[:-1]), reverse=True)
    return jnp.concatenate([x_head, d[-1:]])
