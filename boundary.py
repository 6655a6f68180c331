"""
Boundary Condition Module for Bottle Thaw Model

Convective exchange between wall cells and the fixed ambient temperature.
This is the only energy source or sink of the model.

Each wall face sees the film resistance of the bottle wall in series with
conduction through half of the wall cell:

    R_total = 1 / h + (d / 2) / k_eff
    Q = A * (T_ambient - T) / R_total
"""

import numpy as np


def wall_face_conductance(grid, k_eff, h_conv):
    """
    Conductance of every wall face to the ambient [W/K].

    Written as A * h * k / (k + h * d/2) so that h = 0 gives an adiabatic wall.
    """
    k = k_eff[grid.wall_cell]
    return grid.wall_area * h_conv * k / (k + h_conv * grid.wall_half_distance)


def wall_conductance(grid, k_eff, h_conv):
    """
    Total wall conductance per cell [W/K]; zero for interior cells.

    Parameters
    ----------
    grid : BottleGrid
        Grid providing the wall faces
    k_eff : numpy.ndarray
        Effective conductivity per cell [W/(m·K)]
    h_conv : float
        Wall heat transfer coefficient [W/(m²·K)]
    """
    return np.bincount(
        grid.wall_cell,
        weights=wall_face_conductance(grid, k_eff, h_conv),
        minlength=grid.n_cells,
    )


def boundary_energy(grid, temperature, k_eff, config, dt):
    """
    Energy received from the ambient by every cell during dt.

    Parameters
    ----------
    grid : BottleGrid
        Grid providing the wall faces
    temperature : numpy.ndarray
        Cell temperatures at the start of the step [°C]
    k_eff : numpy.ndarray
        Effective conductivity per cell [W/(m·K)]
    config : SimulationConfig
        Provides ambient temperature and wall coefficient
    dt : float
        Time step [s]

    Returns
    -------
    numpy.ndarray
        Energy delta per cell [J]; positive when the ambient is warmer
    """
    G_wall = wall_conductance(grid, k_eff, config.wall_heat_transfer_coefficient)
    return G_wall * (config.ambient_temperature - temperature) * dt
