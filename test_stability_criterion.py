"""
Tests for the CFL bound and timestep planning.
"""

import math

import numpy as np
import pytest

from conduction import conductance_sum, edge_conductance
from convection import effective_conductivity
from errors import NumericalInstability
from materials import Phase, property_table
from model_init import initialize_model
from phase_change import heat_capacity
from sim_config import Region, SimulationConfig
from stability_criterion import calculate_max_stable_dt, grid_max_stable_dt, plan_timestep


def test_scalar_bound():
    # dt = C dx² rho c / k
    dt = calculate_max_stable_dt(0.01, 1000.0, 4186.0, 0.6, safety_factor=0.5)
    assert np.isclose(dt, 0.5 * 1e-4 * 1000.0 * 4186.0 / 0.6)


def test_grid_bound_matches_scalar_form():
    """Interior cell of an adiabatic square grid: dx² rho c / (4 k)."""
    config = SimulationConfig(
        shape='rectangular',
        width=0.03,
        height=0.03,
        depth=0.01,
        resolution=(3, 3),
        regions=[Region(Phase.WATER, 5.0, 0.0, 0.03, 0.0, 0.03)],
        ambient_temperature=20.0,
        wall_heat_transfer_coefficient=0.0,
    )
    grid = initialize_model(config)
    k_eff = effective_conductivity(grid.phase, config)
    capacity = heat_capacity(grid, grid.phase, property_table())
    G = edge_conductance(grid, k_eff)

    dt_max = grid_max_stable_dt(capacity, conductance_sum(grid, G), np.zeros(grid.n_cells))

    expected = calculate_max_stable_dt(0.01, 1000.0, 4186.0, 0.6 * 8.0, safety_factor=0.25)
    assert np.isclose(dt_max, expected)


def test_grid_bound_without_exchange():
    assert math.isinf(grid_max_stable_dt(np.ones(3), np.zeros(3), np.zeros(3)))


def test_wall_tightens_bound():
    capacity = np.array([10.0, 10.0])
    edges = np.array([1.0, 1.0])

    assert grid_max_stable_dt(capacity, edges, np.array([0.0, 1.0])) == 5.0
    assert grid_max_stable_dt(capacity, edges, np.zeros(2)) == 10.0


def test_plan_within_bound():
    assert plan_timestep(2.0, 5.0, 'strict') == (2.0, 1, False)


def test_plan_substep():
    dt, n, limited = plan_timestep(10.0, 3.0, 'substep')

    assert n == 4
    assert np.isclose(dt, 2.5)
    assert limited


def test_plan_clamp():
    assert plan_timestep(10.0, 3.0, 'clamp') == (3.0, 1, True)


def test_plan_strict_raises():
    with pytest.raises(NumericalInstability, match='exceeds the stable limit'):
        plan_timestep(10.0, 3.0, 'strict')
