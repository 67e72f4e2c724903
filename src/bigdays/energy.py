# src/bigdays/energy.py
"""
Module: energy.py
Responsibilities:
- Hold the EF-scale wind-speed classes (thresholds and midpoints, m/s)
- Hold the empirical distribution of path area across EF classes by rating
- Compute tornado energy dissipation from rating and path area
"""
import logging

import numpy as np

logger = logging.getLogger(__name__)

# Lower wind-speed bound (m/s) of EF0..EF5
EF_THRESHOLDS_MS = np.array([29.06, 38.45, 49.62, 60.8, 74.21, 89.41])

# Representative speed of each class; EF5 is open-ended so 7.5 m/s is added to its bound
EF_MIDPOINTS_MS = np.append(
    EF_THRESHOLDS_MS[:-1] + np.diff(EF_THRESHOLDS_MS) / 2.0,
    EF_THRESHOLDS_MS[-1] + 7.5
)

# Row k: fraction of the damage path experiencing EF0..EF5 winds when the
# tornado is rated EF k. Rows sum to one up to rounding.
EF_AREA_FRACTIONS = np.array([
    [1.000, 0.000, 0.000, 0.000, 0.000, 0.000],
    [0.772, 0.228, 0.000, 0.000, 0.000, 0.000],
    [0.616, 0.268, 0.115, 0.000, 0.000, 0.000],
    [0.529, 0.271, 0.133, 0.067, 0.000, 0.000],
    [0.543, 0.238, 0.131, 0.056, 0.032, 0.000],
    [0.538, 0.223, 0.119, 0.070, 0.033, 0.017],
])

DEFAULT_AIR_DENSITY = 1.0  # kg m^-3


def mean_cubed_speed(magnitude) -> np.ndarray:
    """
    Area-weighted mean of v^3 over the damage path for each EF rating.

    Parameters
    ----------
    magnitude : array-like of int
        EF (or F) rating 0..5

    Returns
    -------
    np.ndarray
        Sum_j f_kj * v_j^3 in m^3 s^-3

    Raises
    ------
    ValueError
        If any rating is outside 0..5 or not an integer
    """
    mag = np.atleast_1d(np.asarray(magnitude, dtype=float))
    if np.isnan(mag).any():
        raise ValueError("Magnitude contains missing values")
    if ((mag < 0) | (mag > 5) | (mag != np.round(mag))).any():
        bad = np.unique(mag[(mag < 0) | (mag > 5) | (mag != np.round(mag))])
        raise ValueError(f"Magnitude must be an integer rating 0-5, got {bad.tolist()}")

    return EF_AREA_FRACTIONS[mag.astype(int)] @ EF_MIDPOINTS_MS ** 3


def energy_dissipation(magnitude, path_area_m2, air_density: float = DEFAULT_AIR_DENSITY) -> np.ndarray:
    """
    Energy dissipation rate of tornadoes.

    E = rho * A_p * sum_j f_kj v_j^3

    where A_p is the path area (length x width), f_kj the fraction of the path
    rated EF j for a tornado rated EF k, and v_j the class midpoint speed.

    Parameters
    ----------
    magnitude : array-like of int
        EF rating of each tornado
    path_area_m2 : array-like of float
        Damage path area in square metres
    air_density : float, default=1.0
        Air density in kg m^-3

    Returns
    -------
    np.ndarray
        Energy dissipation in watts

    Raises
    ------
    ValueError
        If shapes differ, ratings are invalid or any path area is negative
    """
    area = np.atleast_1d(np.asarray(path_area_m2, dtype=float))
    v3 = mean_cubed_speed(magnitude)

    if area.shape != v3.shape:
        raise ValueError(f"magnitude and path_area_m2 have different shapes: {v3.shape} vs {area.shape}")
    if (area < 0).any():
        raise ValueError("Path area must be non-negative")
    if air_density <= 0:
        raise ValueError(f"air_density must be positive, got {air_density}")

    return air_density * area * v3


def power_gw(energy) -> np.ndarray:
    """Convert energy dissipation in W to GW."""
    return np.asarray(energy, dtype=float) / 1e9
