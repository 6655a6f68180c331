"""
Bottle Thaw Model - Main Script

2-D model of an ice-filled bottle thawing in a warm room: conduction,
effective-conductivity convection, enthalpy-method melting and convective
wall forcing.
"""

import logging
from datetime import datetime
from pathlib import Path

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend to avoid X11 errors
import matplotlib.pyplot as plt

from materials import Phase
from sim_config import SimulationConfig
from solver import BottleSolver
from stability_criterion import calculate_max_stable_dt

# Create figure directory if it doesn't exist
figure_dir = Path("figure")
figure_dir.mkdir(exist_ok=True)


def setup_logging(save_log=True):
    """Log to the console and, optionally, to a timestamped file under log/."""
    handlers = [logging.StreamHandler()]
    if save_log:
        log_dir = Path("log")
        log_dir.mkdir(exist_ok=True)
        log_filepath = log_dir / f"bottle_thaw_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.insert(0, logging.FileHandler(log_filepath, mode='w'))

    logging.basicConfig(
        level=logging.INFO,
        format='%(message)s',
        handlers=handlers,
    )


def plot_temperature_field(snapshot, title, figure_path):
    """Save a colour map of the temperature field with the ice outlined."""
    nx, nz = snapshot.resolution
    field = snapshot.temperature_field()
    ice = (snapshot.phase_map() == Phase.ICE).astype(float)
    x = snapshot.positions[:nx, 0] * 1000
    z = snapshot.positions[::nx, 1] * 1000

    plt.figure(figsize=(5, 8))
    mesh = plt.pcolormesh(x, z, field, cmap='coolwarm', shading='nearest')
    plt.colorbar(mesh, label='Temperature [°C]')
    if np.any(ice) and not np.all(ice):
        plt.contour(x, z, ice, levels=[0.5], colors='k', linewidths=1.5)
    plt.xlabel('r [mm]' if snapshot.shape == 'cylindrical' else 'x [mm]', fontsize=12)
    plt.ylabel('z [mm]', fontsize=12)
    plt.title(title, fontsize=14, fontweight='bold')
    plt.tight_layout()
    plt.savefig(figure_path, dpi=150, bbox_inches='tight')
    print(f"Plot saved to '{figure_path}'")
    plt.close()


def plot_history(results, figure_path):
    """Save ice mass and mean temperature against time."""
    time_min = results['time'] / 60.0
    grid = results['grid']
    mean_T = results['temperature'] @ grid.volume / grid.volume.sum()

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 8), sharex=True)

    ax1.plot(time_min, results['ice_mass'] * 1000, 'b-', linewidth=2, label='Ice')
    ax1.plot(time_min, results['water_mass'] * 1000, 'c--', linewidth=2, label='Water')
    ax1.set_ylabel('Mass [g]', fontsize=12)
    ax1.set_title('Ice and Water Mass vs Time', fontsize=14, fontweight='bold')
    ax1.grid(True, alpha=0.3)
    ax1.legend(fontsize=11)

    ax2.plot(time_min, mean_T, 'r-', linewidth=2, label='Mean (volume-weighted)')
    ax2.plot(time_min, np.min(results['temperature'], axis=1), 'k:', linewidth=1, label='Min')
    ax2.plot(time_min, np.max(results['temperature'], axis=1), 'k-.', linewidth=1, label='Max')
    ax2.set_xlabel('Time [min]', fontsize=12)
    ax2.set_ylabel('Temperature [°C]', fontsize=12)
    ax2.grid(True, alpha=0.3)
    ax2.legend(fontsize=11)

    plt.tight_layout()
    plt.savefig(figure_path, dpi=150, bbox_inches='tight')
    print(f"Plot saved to '{figure_path}'")
    plt.close()


def main():
    """Main entry point for the bottle thaw model."""
    # ===== User Parameters =====
    duration = 4 * 3600.0           # Simulated time [s]
    ambient_temperature = 25.0      # [°C]
    h_wall = 5.0                    # Still air around the bottle [W/(m²·K)]
    resolution = (7, 40)
    dt_safety_factor = 0.9
    # ===========================

    setup_logging()

    config = SimulationConfig(
        shape='cylindrical',
        width=0.035,
        height=0.2,
        resolution=resolution,
        ambient_temperature=ambient_temperature,
        wall_heat_transfer_coefficient=h_wall,
        cfl_safety_factor=dt_safety_factor,
    )
    print(f"\n{config}")

    solver = BottleSolver(config, verbose=True)
    print(f"\n{solver.grid}")

    water = config.material_properties(Phase.WATER)
    dx_min = min(solver.grid.dx, solver.grid.dz)
    dt_max = calculate_max_stable_dt(
        dx_min, water['density'], water['specific_heat'],
        water['conductivity'] * config.convection_multiplier(Phase.WATER),
        safety_factor=0.25,
    )
    print(f"\nStability Analysis (Explicit Method):")
    print(f"  Cell size: {solver.grid.dx*1000:.3f} x {solver.grid.dz*1000:.3f} mm")
    print(f"  Maximum stable dt (water, square-grid estimate): {dt_max:.3f} s")
    print(f"  Safety factor: {dt_safety_factor*100:.0f}% of the per-cell maximum")

    start = solver.summary()
    H_start = solver.total_enthalpy()
    plot_temperature_field(solver.snapshot(), 'Initial Temperature Field',
                           figure_dir / 'bottle_temperature_initial.png')

    print(f"\nSolving thaw problem...")
    print(f"  Duration: {duration:.0f} s")
    results = solver.solve(duration=duration, save_history=True, history_save_interval=30.0)

    end = solver.summary()
    H_end = solver.total_enthalpy()
    print(f"\nSolution completed!")
    print(f"  Ticks: {results['n_ticks']} ({results['cfl_limited_ticks']} CFL-limited, "
          f"{results['clamped_ticks']} clamped)")
    print(f"  Ice mass: {start['ice_mass']*1000:.1f} g -> {end['ice_mass']*1000:.1f} g "
          f"({end['melt_fraction']*100:.1f}% of ice cells melted)")
    print(f"  Mean temperature: {start['mean_temperature']:.2f}°C -> {end['mean_temperature']:.2f}°C")
    print(f"  System temperature equivalent: {end['system_temperature']:.2f}°C")
    if results['melt_complete_time'] is not None:
        print(f"  All ice melted after {results['melt_complete_time']/60:.1f} min")
    else:
        print(f"  Ice remaining at end of simulation")

    # Energy budget: enthalpy gain equals energy through the wall
    energy_in = solver.grid.boundary_energy_in
    residual = (H_end - H_start) - energy_in
    print(f"\nEnergy budget:")
    print(f"  Energy through the wall: {energy_in/1000:.3f} kJ")
    print(f"  Enthalpy change: {(H_end - H_start)/1000:.3f} kJ")
    print(f"  Residual: {residual:.3e} J")

    plot_temperature_field(solver.snapshot(), f'Temperature Field at t = {solver.grid.time/60:.0f} min',
                           figure_dir / 'bottle_temperature_final.png')
    plot_history(results, figure_dir / 'bottle_thaw_history.png')


if __name__ == "__main__":
    main()
