"""
Convergence Test for cfl_safety_factor

Runs the same melt with different fractions of the maximum stable time
step. The melt completion time should not depend on the step size beyond
the first-order time discretization error.
"""

import numpy as np
import pytest

from materials import Phase
from sim_config import Region, SimulationConfig
from solver import BottleSolver


def run_simulation(cfl_safety_factor):
    """
    Run a single melt simulation with a given cfl_safety_factor.

    Parameters
    ----------
    cfl_safety_factor : float
        Fraction of the maximum stable time step (0 < C <= 1.0)

    Returns
    -------
    results : dict
        Simulation results
    """
    config = SimulationConfig(
        shape='rectangular',
        width=0.1,
        height=0.02,
        depth=0.01,
        resolution=(10, 2),
        regions=[
            Region(Phase.ICE, -5.0, 0.0, 0.1, 0.0, 0.01),
            Region(Phase.WATER, 5.0, 0.0, 0.1, 0.01, 0.02),
        ],
        ambient_temperature=20.0,
        wall_heat_transfer_coefficient=25.0,
        cfl_safety_factor=cfl_safety_factor,
    )
    solver = BottleSolver(config, verbose=False)
    return solver.solve(duration=6 * 3600.0, save_history=False, stop_when_melted=True)


@pytest.mark.parametrize('cfl_safety_factor', [0.45, 0.2])
def test_melt_time_converges(cfl_safety_factor):
    reference = run_simulation(0.9)
    refined = run_simulation(cfl_safety_factor)

    assert reference['melt_complete_time'] is not None
    assert refined['melt_complete_time'] is not None
    assert refined['n_ticks'] > reference['n_ticks']

    relative_change = abs(refined['melt_complete_time'] - reference['melt_complete_time']) \
        / reference['melt_complete_time']
    assert relative_change < 0.03


def test_final_state_converges():
    """Temperatures at a fixed time agree between step sizes."""
    results = {}
    for cfl_safety_factor in (0.9, 0.3):
        config = SimulationConfig(
            shape='cylindrical',
            width=0.02,
            height=0.04,
            resolution=(4, 8),
            regions=[
                Region(Phase.ICE, -2.0, 0.0, 0.01, 0.0, 0.02),
                Region(Phase.WATER, 5.0, 0.01, 0.02, 0.0, 0.04),
                Region(Phase.WATER, 5.0, 0.0, 0.01, 0.02, 0.04),
            ],
            ambient_temperature=20.0,
            wall_heat_transfer_coefficient=10.0,
            cfl_safety_factor=cfl_safety_factor,
        )
        solver = BottleSolver(config, verbose=False)
        solver.step(dt=600.0)
        results[cfl_safety_factor] = solver.grid.temperature.copy()

    assert np.allclose(results[0.9], results[0.3], atol=0.2)
