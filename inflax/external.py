"""Primordial spectrum produced by an external command.

The command writes one line per wavenumber on standard output,

    k  P_s(k)  [P_t(k)]

with k in Mpc^-1, strictly increasing. The tensor column is read only when
tensors are requested. Unless the command is a plain "cat <file>", the ten
custom parameters are appended as arguments (missing ones as 0), so that a
generator script can be steered from the configuration.

The table must extend at least two rows beyond both ends of [k_min, k_max]
for the splines to be safe there.

References:
    CLASS source: primordial.c (primordial_external_spectrum_init)
    CLASS: external/external_Pk/generate_Pk_example.py
"""

from __future__ import annotations

import logging
import subprocess
from typing import NamedTuple, Optional

import numpy as np

from inflax.constants import MAX_CUSTOM_ARGUMENTS
from inflax.errors import ExternalSpectrumError
from inflax.params import SpectrumConfig

logger = logging.getLogger(__name__)


class ExternalSpectrum(NamedTuple):
    lnk: np.ndarray
    lnpk_scalars: np.ndarray
    lnpk_tensors: Optional[np.ndarray] = None


def build_command(command: str, custom=()) -> str:
    """Full shell command line, with the custom arguments unless it is a cat."""
    if command.startswith("cat "):
        return command
    values = list(custom) + [0.0] * (MAX_CUSTOM_ARGUMENTS - len(custom))
    return command + " " + " ".join(f"{float(v):g}" for v in values)


def parse_spectrum(text: str, has_tensors: bool):
    """Parse the columns k, P_s[, P_t] from the command output.

    Blank lines and lines starting with '#' are skipped.

    Returns:
        (k, pks, pkt) numpy arrays, pkt None without tensors
    """
    n_columns = 3 if has_tensors else 2
    rows = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        words = stripped.split()
        if len(words) < n_columns:
            raise ExternalSpectrumError(
                f"line {line_number} has {len(words)} columns, expected {n_columns}: {stripped!r}"
            )
        try:
            rows.append([float(w) for w in words[:n_columns]])
        except ValueError as err:
            raise ExternalSpectrumError(
                f"line {line_number} is not numeric: {stripped!r}"
            ) from err
        if len(rows) > 1 and rows[-1][0] <= rows[-2][0]:
            raise ExternalSpectrumError(
                "The k's are not strictly sorted in ascending order, as it is "
                "required for the calculation of the splines"
            )

    data = np.array(rows, dtype=np.float64).reshape(-1, n_columns)
    pkt = data[:, 2] if has_tensors else None
    return data[:, 0], data[:, 1], pkt


def load_external_spectrum(
    config: SpectrumConfig,
    k_min: Optional[float] = None,
    k_max: Optional[float] = None,
) -> ExternalSpectrum:
    """Run config.command and tabulate ln P against ln k.

    Raises:
        ExternalSpectrumError: non-zero exit status, malformed or unsorted
            output, non-positive spectrum, or a table that does not cover
            [k_min, k_max] with two rows to spare on each side
    """
    k_min = config.k_min if k_min is None else k_min
    k_max = config.k_max if k_max is None else k_max

    command = build_command(config.command, config.custom)
    logger.info(f"running: {command}")
    result = subprocess.run(command, shell=True, capture_output=True, text=True)
    if result.returncode != 0:
        raise ExternalSpectrumError(
            f"The attempt to launch the external command was unsuccessful "
            f"(exit status {result.returncode}): {result.stderr.strip()}"
        )

    k, pks, pkt = parse_spectrum(result.stdout, config.has_tensors)
    if k.size < 2 or k[1] > k_min:
        raise ExternalSpectrumError(
            f"Your table for the primordial spectrum does not have at least 2 "
            f"points before the minimum value of k: {k_min:e}"
        )
    if k[-2] < k_max:
        raise ExternalSpectrumError(
            f"Your table for the primordial spectrum does not have at least 2 "
            f"points after the maximum value of k: {k_max:e}"
        )
    if np.any(k <= 0.0) or np.any(pks <= 0.0) or (pkt is not None and np.any(pkt <= 0.0)):
        raise ExternalSpectrumError("wavenumbers and spectra must be positive")

    logger.debug(f"read {k.size} rows from k={k[0]:.6e} to k={k[-1]:.6e}")
    return ExternalSpectrum(
        lnk=np.log(k),
        lnpk_scalars=np.log(pks),
        lnpk_tensors=None if pkt is None else np.log(pkt),
    )
