"""
Load and PV Profile Construction
================================

This module builds the load and PV time series attached to user buses:

- Read libraries of daily profiles from CSV files (one profile per column)
- Draw one daily profile per user at random (reproducible with a seed)
- Pick which users host a PV installation
- Aggregate profiles to a coarser time step
- Select representative time steps to keep the planning model tractable

Load libraries are expressed in kW and converted to MW when drawn. PV
libraries hold capacity factors between 0 and 1.

Usage Example
-------------
>>> from dnep.core.profiles import ProfileLoader, build_profiles, process_time_steps
>>>
>>> loader = ProfileLoader('data/profiles')
>>> load_lib = loader.load_load_library('load_15min.csv')
>>> pv_lib = loader.load_pv_library('pv_15min.csv')
>>> load, pv, pv_users = build_profiles(load_lib, pv_lib, nb_users=4,
>>>                                     pv_share=0.5, seed=42)
>>> load = process_time_steps(load, delta_t_in=15, delta_t_out=60)
"""
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Columns describing the time axis rather than a profile
TIME_COLUMNS = {'Year', 'Month', 'Day', 'Period', 'time', 'Time', 'step', 'timestamp'}


class ProfileLoader:
    """
    Read libraries of daily profiles from CSV files.

    Attributes
    ----------
    data_dir : str
        Directory holding the profile CSV files
    load_library : pd.DataFrame, optional
        Load profiles (kW) after load_load_library()
    pv_library : pd.DataFrame, optional
        PV capacity factors after load_pv_library()
    """

    def __init__(self, data_dir: str = 'data/profiles'):
        if not os.path.isabs(data_dir):
            project_root = Path(__file__).resolve().parents[2]
            data_path = project_root / data_dir
            self.data_dir = str(data_path) if data_path.exists() else data_dir
        else:
            self.data_dir = data_dir

        self.load_library = None
        self.pv_library = None

    def _read_library(self, filename: str) -> pd.DataFrame:
        path = filename if os.path.isabs(filename) else os.path.join(self.data_dir, filename)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Profile file not found: {path}")

        df = pd.read_csv(path)
        profile_cols = [c for c in df.columns if c not in TIME_COLUMNS]
        library = df[profile_cols].apply(pd.to_numeric, errors='coerce')
        bad = [c for c in profile_cols if library[c].isna().any()]
        if bad:
            logger.warning("Dropping %d non-numeric or incomplete profile columns from %s: %s",
                           len(bad), path, bad[:5])
            library = library.drop(columns=bad)
        if library.shape[1] == 0:
            raise ValueError(f"No usable profile column in {path}")
        logger.info("Read %d profiles of %d steps from %s", library.shape[1], library.shape[0], path)
        return library

    def load_load_library(self, filename: str) -> pd.DataFrame:
        """Read a library of daily load profiles in kW."""
        self.load_library = self._read_library(filename)
        if (self.load_library < 0).any().any():
            raise ValueError(f"Load library {filename} contains negative values")
        return self.load_library

    def load_pv_library(self, filename: str) -> pd.DataFrame:
        """Read a library of daily PV capacity factors."""
        self.pv_library = self._read_library(filename)
        values = self.pv_library.to_numpy()
        if (values < 0).any() or (values > 1).any():
            raise ValueError(f"PV library {filename} must hold capacity factors in [0, 1]")
        return self.pv_library


def _draw_columns(library: pd.DataFrame, n: int, rng: np.random.Generator) -> np.ndarray:
    if n < 0:
        raise ValueError(f"Number of profiles must be non-negative, got {n}")
    if n == 0:
        return np.zeros((len(library), 0))
    idx = rng.integers(0, library.shape[1], size=n)
    return library.to_numpy(dtype=float)[:, idx]


def build_daily_load_profiles(library: pd.DataFrame, nb_users: int,
                              seed: Optional[int] = None, scale: float = 1e-3) -> np.ndarray:
    """
    Draw one daily load profile per user.

    Parameters
    ----------
    library : pd.DataFrame
        Load profiles in kW, one per column
    nb_users : int
        Number of user buses
    seed : int, optional
        Seed of the random draw
    scale : float, optional
        Unit conversion applied to the library, kW -> MW by default

    Returns
    -------
    np.ndarray
        Matrix of shape (steps, nb_users) in MW
    """
    rng = np.random.default_rng(seed)
    return _draw_columns(library, nb_users, rng) * scale


def build_daily_pv_profiles(library: pd.DataFrame, nb_pv: int,
                            seed: Optional[int] = None) -> np.ndarray:
    """Draw one daily PV capacity-factor profile per PV installation."""
    rng = np.random.default_rng(seed)
    return _draw_columns(library, nb_pv, rng)


def build_profiles(load_library: pd.DataFrame, pv_library: Optional[pd.DataFrame],
                   nb_users: int, pv_share: float = 0.0,
                   seed: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, List[int]]:
    """
    Build load profiles for every user and PV profiles for a random subset.

    Returns
    -------
    tuple
        (load_profiles, pv_profiles, id_pv_users) where id_pv_users holds
        sorted 0-based user positions, one per PV column
    """
    if not 0.0 <= pv_share <= 1.0:
        raise ValueError(f"PV share must be in [0, 1], got {pv_share}")

    rng = np.random.default_rng(seed)
    load = _draw_columns(load_library, nb_users, rng) * 1e-3

    nb_pv = int(round(pv_share * nb_users))
    if nb_pv == 0 or pv_library is None:
        return load, np.zeros((load.shape[0], 0)), []

    if len(pv_library) != len(load_library):
        raise ValueError(f"PV library has {len(pv_library)} steps, "
                         f"load library has {len(load_library)}")

    id_users = sorted(int(u) for u in rng.choice(nb_users, size=nb_pv, replace=False))
    pv = _draw_columns(pv_library, nb_pv, rng)
    return load, pv, id_users


def process_time_steps(profiles: np.ndarray, delta_t_in: int, delta_t_out: int) -> np.ndarray:
    """
    Aggregate profiles to a coarser time step by averaging consecutive steps.

    ``delta_t_out`` must be a multiple of ``delta_t_in`` and the horizon
    must contain a whole number of output steps.
    """
    profiles = np.asarray(profiles, dtype=float)
    squeeze = profiles.ndim == 1
    if squeeze:
        profiles = profiles[:, None]

    if delta_t_in <= 0 or delta_t_out <= 0:
        raise ValueError("Time steps must be positive")
    if delta_t_out % delta_t_in != 0:
        raise ValueError(f"Output step {delta_t_out} min is not a multiple of {delta_t_in} min")

    ratio = delta_t_out // delta_t_in
    n_steps = profiles.shape[0]
    if n_steps % ratio != 0:
        raise ValueError(f"Horizon of {n_steps} steps cannot be split in blocks of {ratio}")

    out = profiles.reshape(n_steps // ratio, ratio, profiles.shape[1]).mean(axis=1)
    return out[:, 0] if squeeze else out


def select_representative_steps(profiles: np.ndarray, n_steps: int,
                                method: str = 'peak_avg_low') -> List[int]:
    """
    Select representative time steps of a load profile matrix.

    Parameters
    ----------
    profiles : np.ndarray
        Matrix of shape (steps, users)
    n_steps : int
        Number of steps to keep
    method : str, optional
        - 'peak_avg_low': a quarter of the steps from the highest total
          load, a quarter from the lowest, the rest around the median
        - 'kmeans': cluster total loads with k-means and keep the step
          closest to each centroid
        - 'all': keep every step

    Returns
    -------
    list
        Sorted 0-based step indices
    """
    profiles = np.asarray(profiles, dtype=float)
    total = profiles.sum(axis=1) if profiles.ndim == 2 else profiles
    horizon = len(total)

    if method == 'all' or n_steps >= horizon:
        return list(range(horizon))
    if n_steps <= 0:
        raise ValueError(f"Number of steps must be positive, got {n_steps}")

    if method == 'peak_avg_low':
        order = [int(i) for i in np.argsort(-total, kind='stable')]

        n_peak = max(1, n_steps // 4)
        n_low = n_peak if n_steps > n_peak else 0
        n_avg = n_steps - n_peak - n_low

        peak = order[:n_peak]
        low = order[horizon - n_low:] if n_low else []
        mid_start = max(n_peak, (horizon - n_avg) // 2)
        avg = order[mid_start:mid_start + n_avg]

        return sorted(set(peak + avg + low))[:n_steps]

    if method == 'kmeans':
        from sklearn.cluster import KMeans

        loads = total.reshape(-1, 1)
        kmeans = KMeans(n_clusters=n_steps, random_state=42, n_init=10)
        kmeans.fit(loads)

        selected = []
        for c in range(n_steps):
            members = np.flatnonzero(kmeans.labels_ == c)
            if len(members) == 0:
                continue
            centroid = kmeans.cluster_centers_[c][0]
            selected.append(int(members[np.argmin(np.abs(total[members] - centroid))]))
        if len(selected) < n_steps:
            logger.warning("k-means kept %d of %d requested steps (too few distinct load levels)",
                           len(selected), n_steps)
        return sorted(selected)

    raise ValueError(f"Unknown selection method: {method}")
