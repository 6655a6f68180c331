"""
Phase-Change Module for Bottle Thaw Model

Enthalpy method for melting. An ice cell that has reached the melting
point stops heating; further energy is banked as stored latent energy
until the latent heat of the whole cell has been supplied, at which point
the cell becomes water. Transitions are one-directional (Ice -> Water).

For an ice cell the enthalpy measured from the melting point is

    e = m c_ice (T - T_melt) + E_latent

    e <  0 : solid below the melting point, T = T_melt + e / (m c_ice), E_latent = 0
    e >= 0 : solid at the melting point,    T = T_melt,                E_latent = e
"""

import numpy as np

from materials import Phase


def heat_capacity(grid, phase, table):
    """
    Heat capacity of every cell [J/K].

    C = rho * c_p * V for the cell's current phase
    """
    return table['density'][phase] * table['specific_heat'][phase] * grid.volume


def melting_threshold(grid, config):
    """
    Latent energy needed to melt each cell completely [J].

    E_melt = rho_ice * L_f * V
    """
    ice = config.material_properties(Phase.ICE)
    return ice['density'] * ice['latent_heat_of_fusion'] * grid.volume


def apply_energy(temperature, phase, stored_latent, delta_energy, capacity, melting_point):
    """
    Convert the net energy delta of the step into temperature or latent storage.

    Non-ice cells change temperature directly (ΔT = ΔE / C). Ice cells go
    through their enthalpy relative to the melting point, so a cell that
    crosses the melting point within the step only banks the excess.

    Parameters
    ----------
    temperature : numpy.ndarray
        Temperatures at the start of the step [°C]
    phase : numpy.ndarray
        Phase tag per cell
    stored_latent : numpy.ndarray
        Stored latent energy at the start of the step [J]
    delta_energy : numpy.ndarray
        Net energy received during the step [J]
    capacity : numpy.ndarray
        Heat capacity per cell [J/K]
    melting_point : float
        Ice melting point [°C]

    Returns
    -------
    tuple of numpy.ndarray
        (temperature, stored_latent) after the step
    """
    T_new = temperature + delta_energy / capacity
    latent_new = stored_latent.copy()

    ice = phase == Phase.ICE
    if np.any(ice):
        C = capacity[ice]
        e = C * (temperature[ice] - melting_point) + stored_latent[ice] + delta_energy[ice]
        at_melt = e >= 0.0

        T_new[ice] = np.where(at_melt, melting_point, melting_point + e / C)
        latent_new[ice] = np.where(at_melt, e, 0.0)

    return T_new, latent_new


def apply_phase_transitions(temperature, phase, stored_latent, threshold, water_capacity, melting_point):
    """
    Turn ice cells whose stored latent energy reached the threshold into water.

    The surplus beyond the threshold is not discarded: it raises the new
    water cell above the melting point.

    Parameters
    ----------
    temperature : numpy.ndarray
        Temperatures after the energy update [°C]
    phase : numpy.ndarray
        Phase tag per cell
    stored_latent : numpy.ndarray
        Stored latent energy after the energy update [J]
    threshold : numpy.ndarray
        Latent energy needed to melt each cell [J]
    water_capacity : numpy.ndarray
        Heat capacity each cell has once it is water [J/K]
    melting_point : float
        Ice melting point [°C]

    Returns
    -------
    tuple
        (temperature, phase, stored_latent, consumed, melted) where consumed is
        the latent energy absorbed by each transition [J] and melted is a
        boolean mask of the cells that changed phase
    """
    melted = (phase == Phase.ICE) & (stored_latent >= threshold)

    T_new = temperature.copy()
    phase_new = phase.copy()
    latent_new = stored_latent.copy()
    consumed = np.zeros_like(stored_latent)

    if np.any(melted):
        surplus = stored_latent[melted] - threshold[melted]
        T_new[melted] = melting_point + surplus / water_capacity[melted]
        phase_new[melted] = Phase.WATER
        latent_new[melted] = 0.0
        consumed[melted] = threshold[melted]

    return T_new, phase_new, latent_new, consumed, melted
