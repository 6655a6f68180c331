"""
Conduction Solver Module for Bottle Thaw Model

Explicit (forward-time, centered-space) diffusive exchange between
adjacent cells. The flux of every edge is computed once and applied with
opposite signs to its two cells, so internal conduction conserves energy.
"""

import numpy as np


def harmonic_mean(k_a, k_b):
    """
    Harmonic mean of two conductivities.

    Equivalent to the two half-cell resistances in series:
    2 / (1/k_a + 1/k_b)
    """
    return 2.0 * k_a * k_b / (k_a + k_b)


def edge_conductance(grid, k_eff):
    """
    Thermal conductance of every edge.

    G_ab = A_ab * k_harm(k_a, k_b) / d_ab

    Parameters
    ----------
    grid : BottleGrid
        Grid providing edges, face areas and centre distances
    k_eff : numpy.ndarray
        Effective conductivity per cell [W/(m·K)]

    Returns
    -------
    numpy.ndarray
        Conductance per edge [W/K]
    """
    a = grid.edges[:, 0]
    b = grid.edges[:, 1]
    return grid.edge_area * harmonic_mean(k_eff[a], k_eff[b]) / grid.edge_distance


def edge_heat_flow(grid, temperature, conductance):
    """
    Heat flow along every edge from cell a to cell b [W].

    q_ab = G_ab * (T_a - T_b)
    """
    return conductance * (grid.incidence @ temperature)


def conduction_energy(grid, temperature, k_eff, dt):
    """
    Net conductive energy received by every cell during dt.

    Parameters
    ----------
    grid : BottleGrid
        Grid topology
    temperature : numpy.ndarray
        Cell temperatures at the start of the step [°C]
    k_eff : numpy.ndarray
        Effective conductivity per cell [W/(m·K)]
    dt : float
        Time step [s]

    Returns
    -------
    numpy.ndarray
        Energy delta per cell [J]; sums to zero up to rounding
    """
    if len(grid.edges) == 0:
        return np.zeros(grid.n_cells)

    G = edge_conductance(grid, k_eff)
    q = edge_heat_flow(grid, temperature, G)

    # Cell a loses q*dt, cell b gains q*dt
    return -(grid.incidence.T @ (q * dt))


def conductance_sum(grid, conductance):
    """Total edge conductance attached to every cell [W/K]."""
    return abs(grid.incidence).T @ conductance
