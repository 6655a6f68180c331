"""
Solver Module for Bottle Thaw Model

This module implements the explicit time integrator of the bottle problem.
Each tick computes a stable time step, accumulates boundary and conduction
energy for every cell, routes the energy into temperature or latent storage
(enthalpy method), applies Ice -> Water transitions and commits the new
state to the grid in one go.
"""

import logging
import math

import numpy as np

from boundary import boundary_energy, wall_conductance
from conduction import conductance_sum, conduction_energy, edge_conductance
from convection import effective_conductivity
from errors import NumericalInstability
from materials import Phase, property_table
from model_init import initialize_model
from phase_change import apply_energy, apply_phase_transitions, heat_capacity, melting_threshold
from stability_criterion import grid_max_stable_dt, plan_timestep

logger = logging.getLogger(__name__)

# Tick length when no cell exchanges any heat (adiabatic single cell) [s]
IDLE_DT = 1.0

# Upper limit on sub-steps per tick
MAX_SUBSTEPS = 100000


def _stability(grid, config, phase, table):
    """Effective conductivity, heat capacity and maximum stable dt for a phase map."""
    k_eff = effective_conductivity(phase, config)
    capacity = heat_capacity(grid, phase, table)
    G_edge = edge_conductance(grid, k_eff)
    G_wall = wall_conductance(grid, k_eff, config.wall_heat_transfer_coefficient)
    dt_max = grid_max_stable_dt(capacity, conductance_sum(grid, G_edge), G_wall)
    return k_eff, capacity, dt_max


def plausible_bounds(grid, config):
    """
    Temperature range a stable step can produce [°C].

    Hull of the grid reference bounds (initial temperatures, plus earlier
    ambients and reached states after runtime changes), the melting point
    and the current ambient, widened by the instability tolerance.
    """
    low = min(grid.reference_bounds[0], config.ambient_temperature, config.melting_point)
    high = max(grid.reference_bounds[1], config.ambient_temperature, config.melting_point)
    return low - config.instability_tolerance, high + config.instability_tolerance


def _clamp_temperature(T, T_prev, low, high):
    """Replace non-finite and out-of-range temperatures; return the mask of changed cells."""
    fixed = np.where(np.isnan(T), T_prev, T)
    fixed = np.nan_to_num(fixed, nan=0.5 * (low + high), posinf=high, neginf=low)
    fixed = np.clip(fixed, low, high)
    return fixed, fixed != T


def step(grid, config, dt=None):
    """
    Advance the grid by one tick.

    Order within a (sub-)step: effective conductivities (convection) ->
    boundary energy (wall cells) -> conduction energy (all edges), both
    accumulated from the start-of-step temperatures -> energy to
    temperature / latent storage -> Ice -> Water transitions. The grid is
    only written once, after the last sub-step.

    Parameters
    ----------
    grid : BottleGrid
        Grid to advance (modified in place)
    config : SimulationConfig
        Simulation configuration
    dt : float, optional
        Requested tick duration [s], e.g. a frame time. Default: the
        timestep policy (CFL-bounded or fixed). Scaled by config.time_scale.

    Returns
    -------
    dict
        Step diagnostics: dt, substeps, dt_max, cfl_limited, clamped_cells,
        melted_cells, boundary_energy, time

    Raises
    ------
    ValueError
        If dt is given but not a positive finite number.
    NumericalInstability
        If the tick violates the CFL bound in 'strict' mode, needs more than
        MAX_SUBSTEPS sub-steps, or temperatures had to be clamped on more
        than max_unstable_ticks consecutive ticks.
    """
    if dt is not None and (not np.isfinite(dt) or dt <= 0):
        raise ValueError(f"Tick duration must be a positive finite number, got {dt}")

    table = property_table(config.material_overrides)
    T_melt = config.melting_point
    threshold = melting_threshold(grid, config)
    water_capacity = heat_capacity(grid, np.full(grid.n_cells, Phase.WATER, dtype=np.int8), table)
    low, high = plausible_bounds(grid, config)

    # Working copies; nothing is visible on the grid until the commit
    T = grid.temperature.copy()
    phase = grid.phase.copy()
    latent = grid.stored_latent_energy.copy()
    melted_latent = grid.melted_latent_energy.copy()

    k_eff, capacity, dt_max = _stability(grid, config, phase, table)
    dt_stable = config.cfl_safety_factor * dt_max

    if dt is not None:
        requested = dt * config.time_scale
    elif config.timestep_policy == 'fixed':
        requested = config.fixed_dt * config.time_scale
    elif math.isfinite(dt_stable):
        requested = dt_stable * config.time_scale
    else:
        requested = IDLE_DT * config.time_scale

    sub_dt, n_substeps, cfl_limited = plan_timestep(requested, dt_stable, config.stability_mode)
    if n_substeps > MAX_SUBSTEPS:
        raise NumericalInstability(
            f"Tick of {requested:.4g} s needs {n_substeps} sub-steps of {sub_dt:.4g} s "
            f"(limit {MAX_SUBSTEPS}); request shorter ticks"
        )
    duration = sub_dt * n_substeps

    elapsed = 0.0
    substeps = 0
    energy_in = 0.0
    clamped = np.zeros(grid.n_cells, dtype=bool)
    melted = np.zeros(grid.n_cells, dtype=bool)

    while duration - elapsed > 1e-9 * duration:
        h = min(sub_dt, duration - elapsed)
        if h > dt_stable:
            # A transition earlier in this tick tightened the bound
            h = dt_stable
            cfl_limited = True

        E_wall = boundary_energy(grid, T, k_eff, config, h)
        E_cond = conduction_energy(grid, T, k_eff, h)
        delta_energy = E_wall + E_cond

        T_prev = T
        T, latent = apply_energy(T, phase, latent, delta_energy, capacity, T_melt)
        T, phase, latent, consumed, melted_now = apply_phase_transitions(
            T, phase, latent, threshold, water_capacity, T_melt
        )
        melted_latent += consumed
        melted |= melted_now
        energy_in += float(E_wall.sum())

        T, clamped_now = _clamp_temperature(T, T_prev, low, high)
        clamped |= clamped_now

        elapsed += h
        substeps += 1

        if np.any(melted_now):
            k_eff, capacity, dt_max = _stability(grid, config, phase, table)
            dt_stable = config.cfl_safety_factor * dt_max

    # Commit
    grid.temperature[:] = T
    grid.phase[:] = phase
    grid.stored_latent_energy[:] = latent
    grid.melted_latent_energy[:] = melted_latent
    grid.time += elapsed
    grid.tick += 1
    grid.boundary_energy_in += energy_in

    n_melted = int(melted.sum())
    if n_melted:
        logger.info("t = %.2f s: %d cell(s) melted, %d ice cell(s) left",
                    grid.time, n_melted, grid.count_phase(Phase.ICE))

    n_clamped = int(clamped.sum())
    if n_clamped:
        grid.unstable_ticks += 1
        logger.warning(
            "t = %.2f s: %d cell temperature(s) left [%.2f, %.2f]°C and were clamped (%d consecutive tick(s))",
            grid.time, n_clamped, low, high, grid.unstable_ticks,
        )
        if grid.unstable_ticks > config.max_unstable_ticks:
            raise NumericalInstability(
                f"Temperatures clamped on {grid.unstable_ticks} consecutive ticks "
                f"(t = {grid.time:.2f} s); reduce the time step or check the configuration"
            )
    else:
        grid.unstable_ticks = 0

    return {
        'dt': elapsed,
        'substeps': substeps,
        'dt_max': dt_max,
        'cfl_limited': cfl_limited,
        'clamped_cells': np.where(clamped)[0],
        'melted_cells': np.where(melted)[0],
        'boundary_energy': energy_in,
        'time': grid.time,
    }


def total_enthalpy(grid, config):
    """
    Total enthalpy of the grid relative to the melting point [J].

    H = Σ m c (T - T_melt) + Σ E_latent,stored + Σ E_latent,melted

    Internal conduction leaves H unchanged; it only changes by the energy
    exchanged through the wall.
    """
    table = property_table(config.material_overrides)
    capacity = heat_capacity(grid, grid.phase, table)
    sensible = np.sum(capacity * (grid.temperature - config.melting_point))
    return float(sensible + grid.stored_latent_energy.sum() + grid.melted_latent_energy.sum())


def summarize_state(grid, config):
    """
    Summary quantities of the current state.

    Returns
    -------
    dict
        ice_mass, water_mass, air_mass [kg], melt_fraction [-],
        mean_temperature [°C] (volume-weighted), system_temperature [°C]
        (sensible-heat-weighted temperature of ice and water), n_ice, time
    """
    table = property_table(config.material_overrides)
    mass = table['density'][grid.phase] * grid.volume
    capacity = mass * table['specific_heat'][grid.phase]

    masses = {}
    for phase in Phase:
        masses[phase] = float(mass[grid.phase == phase].sum())

    initial_ice = np.count_nonzero(grid.initial_phase == Phase.ICE)
    if initial_ice > 0:
        melt_fraction = 1.0 - grid.count_phase(Phase.ICE) / initial_ice
    else:
        melt_fraction = 0.0

    condensed = grid.phase != Phase.AIR
    c_eff = capacity[condensed].sum()
    if abs(c_eff) < 1e-12:
        system_temperature = 0.0
    else:
        system_temperature = float(np.sum(capacity[condensed] * grid.temperature[condensed]) / c_eff)

    return {
        'time': grid.time,
        'ice_mass': masses[Phase.ICE],
        'water_mass': masses[Phase.WATER],
        'air_mass': masses[Phase.AIR],
        'n_ice': grid.count_phase(Phase.ICE),
        'melt_fraction': melt_fraction,
        'mean_temperature': float(np.sum(grid.volume * grid.temperature) / grid.volume.sum()),
        'system_temperature': system_temperature,
    }


class BottleSolver:
    """
    Simulation session: one grid, its configuration and the solution history.
    """

    def __init__(self, config, grid=None, verbose=True):
        """
        Initialize the bottle solver.

        Parameters
        ----------
        config : SimulationConfig
            Simulation configuration
        grid : BottleGrid, optional
            Existing grid. Default: built from config
        verbose : bool, optional
            If True, print progress messages during solve(). Default: True
        """
        self.config = config
        self.grid = grid if grid is not None else initialize_model(config)
        self.verbose = verbose
        self.last_diagnostics = None
        self._clear_history()

    def _clear_history(self):
        self.time_history = []
        self.temperature_history = []
        self.phase_history = []
        self.latent_history = []
        self.ice_mass_history = []
        self.water_mass_history = []
        self.enthalpy_history = []
        self.boundary_energy_history = []

    def _save_history(self):
        summary = summarize_state(self.grid, self.config)
        self.time_history.append(self.grid.time)
        self.temperature_history.append(self.grid.temperature.copy())
        self.phase_history.append(self.grid.phase.copy())
        self.latent_history.append(self.grid.stored_latent_energy.copy())
        self.ice_mass_history.append(summary['ice_mass'])
        self.water_mass_history.append(summary['water_mass'])
        self.enthalpy_history.append(total_enthalpy(self.grid, self.config))
        self.boundary_energy_history.append(self.grid.boundary_energy_in)

    def step(self, dt=None):
        """Advance one tick; see step()."""
        self.last_diagnostics = step(self.grid, self.config, dt)
        return self.last_diagnostics

    def snapshot(self):
        """Committed state for rendering."""
        return self.grid.snapshot()

    def total_enthalpy(self):
        return total_enthalpy(self.grid, self.config)

    def summary(self):
        return summarize_state(self.grid, self.config)

    def reset(self):
        """Rebuild the grid from the current configuration."""
        self.grid = initialize_model(self.config)
        self.last_diagnostics = None
        self._clear_history()
        logger.info("Simulation reset")

    def update_config(self, **changes):
        """
        Apply parameter changes from the next tick onward.

        Geometry, resolution and region changes rebuild the grid; anything
        else (ambient temperature, coefficients, multipliers, materials,
        timestep policy) keeps the current state.

        Raises
        ------
        InvalidConfiguration
            If the changed configuration is invalid; the current one stays active.
        """
        new_config = self.config.copy(**changes)
        rebuild = self.config.requires_rebuild(new_config)
        if rebuild:
            logger.info("Geometry changed (%s), rebuilding grid", sorted(changes))
            grid = initialize_model(new_config)
            self.config = new_config
            self.grid = grid
            self.last_diagnostics = None
            self._clear_history()
        else:
            # Temperatures reached under the old forcing stay plausible
            T = self.grid.temperature[np.isfinite(self.grid.temperature)]
            self.grid.extend_reference_bounds(
                self.config.ambient_temperature, self.config.melting_point,
                T.min() if T.size else None, T.max() if T.size else None,
            )
            self.config = new_config
            logger.info("Configuration updated: %s", sorted(changes))
        return rebuild

    def solve(self, duration=None, n_ticks=None, save_history=True, history_save_interval=1.0,
              stop_when_melted=False):
        """
        Run ticks until a simulated duration or tick count is reached.

        Parameters
        ----------
        duration : float, optional
            Simulated time to add [s]; the last tick may overshoot
        n_ticks : int, optional
            Number of ticks to run
        save_history : bool, optional
            Whether to save solution history. Default: True
        history_save_interval : float, optional
            Interval in simulated seconds between saved states. Default: 1.0 s.
            Always saves first and last states.
        stop_when_melted : bool, optional
            Stop as soon as no ice is left. Default: False

        Returns
        -------
        dict
            Solution results with time, temperature, phase and energy histories
        """
        if duration is None and n_ticks is None:
            raise ValueError("Either duration or n_ticks must be given")

        grid = self.grid
        t_start = grid.time
        t_end = t_start + duration if duration is not None else math.inf
        tick_limit = n_ticks if n_ticks is not None else math.inf

        had_ice = grid.count_phase(Phase.ICE) > 0
        melt_complete_time = None
        melt_complete_tick = None
        clamped_ticks = 0
        cfl_limited_ticks = 0

        if save_history:
            self._clear_history()
            self._save_history()
            last_saved_time = grid.time

        # Rotating spinner for progress indication
        spinner_chars = ['|', '/', '-', '\\']
        spinner_idx = 0
        last_spinner_update = grid.time
        spinner_interval = 0.5 * history_save_interval

        if self.verbose:
            print(f"\nSimulating... ", end='', flush=True)

        ticks = 0
        while ticks < tick_limit and grid.time < t_end:
            diagnostics = self.step()
            ticks += 1

            if len(diagnostics['clamped_cells']) > 0:
                clamped_ticks += 1
            if diagnostics['cfl_limited']:
                cfl_limited_ticks += 1

            if had_ice and melt_complete_time is None and grid.count_phase(Phase.ICE) == 0:
                melt_complete_time = grid.time
                melt_complete_tick = grid.tick
                if self.verbose:
                    print(f"\r                                                              ", end='')
                    print(f"\rAll ice melted at t = {grid.time:.2f} s (tick {grid.tick})")

            if self.verbose and grid.time - last_spinner_update >= spinner_interval:
                if math.isfinite(t_end):
                    progress_pct = min(100.0, (grid.time - t_start) / (t_end - t_start) * 100.0)
                else:
                    progress_pct = min(100.0, ticks / tick_limit * 100.0)
                print(f"\rSimulating... {spinner_chars[spinner_idx]} {progress_pct:5.1f}% (t = {grid.time:.1f} s)",
                      end='', flush=True)
                spinner_idx = (spinner_idx + 1) % len(spinner_chars)
                last_spinner_update = grid.time

            if save_history and grid.time - last_saved_time >= history_save_interval:
                self._save_history()
                last_saved_time = grid.time

            if stop_when_melted and melt_complete_time is not None:
                break

        if save_history and self.time_history[-1] != grid.time:
            self._save_history()

        if self.verbose:
            print(f"\r                                                              ", end='')
            print(f"\rSimulation completed: t = {grid.time:.2f} s ({ticks} ticks)")

        return {
            'time': np.array(self.time_history) if save_history else None,
            'temperature': np.array(self.temperature_history) if save_history else None,
            'phase': np.array(self.phase_history) if save_history else None,
            'stored_latent_energy': np.array(self.latent_history) if save_history else None,
            'ice_mass': np.array(self.ice_mass_history) if save_history else None,
            'water_mass': np.array(self.water_mass_history) if save_history else None,
            'total_enthalpy': np.array(self.enthalpy_history) if save_history else None,
            'boundary_energy_in': np.array(self.boundary_energy_history) if save_history else None,
            'n_ticks': ticks,
            'final_time': grid.time,
            'melt_complete_time': melt_complete_time,
            'melt_complete_tick': melt_complete_tick,
            'clamped_ticks': clamped_ticks,
            'cfl_limited_ticks': cfl_limited_ticks,
            'grid': grid,
        }
