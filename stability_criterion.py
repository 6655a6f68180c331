"""
Stability Criterion Module for Bottle Thaw Model

This module calculates the maximum stable time step for the explicit
scheme based on the Courant-Friedrichs-Lewy (CFL) condition for diffusion
problems, and plans how a requested tick is split to respect it.
"""

import logging
import math

import numpy as np

from errors import NumericalInstability

logger = logging.getLogger(__name__)


def calculate_max_stable_dt(cell_spacing, density, specific_heat, conductivity, safety_factor=0.5):
    """
    Calculate maximum stable time step for explicit methods using CFL condition.

    For explicit diffusion schemes, the stability criterion is:
        dt <= C * (dx^2) / alpha

    where:
        dx = cell spacing
        alpha = thermal diffusivity = k / (rho * cp)
        C = safety factor (0.5 for a 1-D chain, 0.25 for a 2-D square grid)

    Parameters
    ----------
    cell_spacing : float
        Smallest distance between cell centres [m]
    density : float
        Density [kg/m³]
    specific_heat : float
        Specific heat [J/(kg·K)]
    conductivity : float
        Effective thermal conductivity [W/(m·K)]
    safety_factor : float, optional
        Default: 0.5

    Returns
    -------
    float
        Maximum stable time step [s]
    """
    alpha = conductivity / (density * specific_heat)
    return safety_factor * cell_spacing**2 / alpha


def grid_max_stable_dt(capacity, edge_sum, wall_sum):
    """
    Maximum stable time step of the whole grid.

    A cell's explicit update is T_i' = T_i (1 - dt * ΣG_i / C_i) + ..., which
    keeps non-negative weights (no oscillation) while

        dt <= C_i / ΣG_i

    ΣG_i sums the conductances of all edges and wall faces of cell i. On a
    uniform square grid this reduces to dx² rho c / (4 k). The most
    restrictive cell sets the bound.

    Parameters
    ----------
    capacity : numpy.ndarray
        Heat capacity per cell [J/K]
    edge_sum : numpy.ndarray
        Edge conductance attached to each cell [W/K]
    wall_sum : numpy.ndarray
        Wall conductance of each cell [W/K]

    Returns
    -------
    float
        Maximum stable time step [s]; inf if no cell exchanges heat
    """
    total = edge_sum + wall_sum
    active = total > 0
    if not np.any(active):
        return math.inf
    return float(np.min(capacity[active] / total[active]))


def plan_timestep(requested_dt, dt_stable, mode='substep'):
    """
    Fit a requested tick duration to the stable time step.

    Parameters
    ----------
    requested_dt : float
        Duration the caller wants to advance [s]
    dt_stable : float
        Largest stable sub-step (safety factor applied) [s]
    mode : str
        'substep' splits the tick into equal stable sub-steps, 'clamp'
        shortens the tick to dt_stable, 'strict' raises

    Returns
    -------
    tuple
        (dt, n_substeps, limited): sub-step length [s], number of sub-steps,
        and whether the request exceeded the stable step

    Raises
    ------
    NumericalInstability
        In 'strict' mode when requested_dt > dt_stable.
    """
    if requested_dt <= dt_stable:
        return requested_dt, 1, False

    if mode == 'strict':
        raise NumericalInstability(
            f"Requested time step {requested_dt:.4g} s exceeds the stable limit {dt_stable:.4g} s"
        )
    if mode == 'clamp':
        logger.warning("Time step %.4g s clamped to stable limit %.4g s", requested_dt, dt_stable)
        return dt_stable, 1, True

    n_substeps = int(math.ceil(requested_dt / dt_stable))
    logger.debug("Time step %.4g s split into %d sub-steps (limit %.4g s)",
                 requested_dt, n_substeps, dt_stable)
    return requested_dt / n_substeps, n_substeps, True
