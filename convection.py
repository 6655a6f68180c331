"""
Convection Approximation Module for Bottle Thaw Model

Bulk mixing in the liquid and gas is not resolved. Instead, the
conductivity of Water and Air cells is multiplied by an empirical
effective-conductivity factor before the conduction fluxes are computed.
Ice is conduction-only and keeps its molecular conductivity.
"""

import numpy as np

from materials import Phase, property_table


def multiplier_table(config):
    """
    Convection multiplier per phase, indexable by the cell phase array.

    Returns
    -------
    numpy.ndarray
        [1.0, m_water, m_air]
    """
    return np.array([config.convection_multiplier(phase) for phase in Phase])


def effective_conductivity(phase, config):
    """
    Effective thermal conductivity of every cell.

    k_eff = m_phase * k_phase, with m_ice = 1

    Parameters
    ----------
    phase : numpy.ndarray
        Phase tag of each cell
    config : SimulationConfig
        Provides material overrides and convection multipliers

    Returns
    -------
    numpy.ndarray
        Effective conductivity per cell [W/(m·K)]
    """
    k = property_table(config.material_overrides)['conductivity']
    return (k * multiplier_table(config))[phase]
