"""
Material Properties Module for Bottle Thaw Model

Pure lookups of the physical properties of the three coexisting phases
(ice, liquid water, air). Values are built-in defaults that can be
overridden per phase from the simulation configuration.
"""

from enum import IntEnum

import numpy as np

from errors import InvalidConfiguration


class Phase(IntEnum):
    """Closed phase tag stored per cell."""
    ICE = 0
    WATER = 1
    AIR = 2


PROPERTY_NAMES = (
    'density',
    'specific_heat',
    'conductivity',
    'melting_point',
    'latent_heat_of_fusion',
)

# Must be strictly positive for every phase
POSITIVE_PROPERTIES = ('density', 'specific_heat', 'conductivity')

# Pure substance properties
DEFAULT_PROPERTIES = {
    Phase.ICE: {
        'density': 917.0,                  # [kg/m³]
        'specific_heat': 2090.0,           # [J/(kg·K)]
        'conductivity': 2.22,              # [W/(m·K)]
        'melting_point': 0.0,              # [°C]
        'latent_heat_of_fusion': 334000.0, # [J/kg]
    },
    Phase.WATER: {
        'density': 1000.0,
        'specific_heat': 4186.0,
        'conductivity': 0.6,
        'melting_point': 0.0,
        'latent_heat_of_fusion': 334000.0,
    },
    Phase.AIR: {
        'density': 1.2,
        'specific_heat': 1006.0,
        'conductivity': 0.026,
        'melting_point': None,             # no tracked transition
        'latent_heat_of_fusion': 0.0,
    },
}


def as_phase(tag):
    """
    Convert a phase tag (Phase, int or name such as 'ice') to a Phase.

    Raises
    ------
    ValueError
        If the tag does not name one of the three phases.
    """
    if isinstance(tag, Phase):
        return tag
    if isinstance(tag, str):
        try:
            return Phase[tag.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown phase tag '{tag}'") from None
    try:
        return Phase(tag)
    except ValueError:
        raise ValueError(f"Unknown phase tag '{tag}'") from None


def validate_overrides(overrides):
    """
    Check a material override mapping and normalize its keys to Phase.

    Parameters
    ----------
    overrides : dict or None
        {phase: {property_name: value}}

    Returns
    -------
    dict
        Normalized overrides keyed by Phase

    Raises
    ------
    InvalidConfiguration
        On unknown phases or properties, negative or non-finite values.
    """
    normalized = {}
    if not overrides:
        return normalized

    for tag, values in overrides.items():
        try:
            phase = as_phase(tag)
        except ValueError as exc:
            raise InvalidConfiguration(str(exc)) from None

        checked = {}
        for name, value in values.items():
            if name not in PROPERTY_NAMES:
                raise InvalidConfiguration(
                    f"Unknown material property '{name}' for {phase.name}"
                )
            if name == 'melting_point':
                if value is not None and not np.isfinite(value):
                    raise InvalidConfiguration(f"{phase.name} melting_point must be finite, got {value}")
                checked[name] = value if value is None else float(value)
                continue
            if value is None or not np.isfinite(value) or value < 0:
                raise InvalidConfiguration(
                    f"{phase.name} {name} must be a non-negative number, got {value}"
                )
            if name in POSITIVE_PROPERTIES and value == 0:
                raise InvalidConfiguration(f"{phase.name} {name} must be positive, got {value}")
            checked[name] = float(value)
        normalized.setdefault(phase, {}).update(checked)

    return normalized


def properties(phase, overrides=None):
    """
    Look up the material properties of a phase.

    Parameters
    ----------
    phase : Phase
        Phase tag
    overrides : dict, optional
        Validated overrides {Phase: {property_name: value}}

    Returns
    -------
    dict
        density [kg/m³], specific_heat [J/(kg·K)], conductivity [W/(m·K)],
        melting_point [°C], latent_heat_of_fusion [J/kg]
    """
    phase = as_phase(phase)
    props = dict(DEFAULT_PROPERTIES[phase])
    if overrides and phase in overrides:
        props.update(overrides[phase])
    return props


def property_table(overrides=None):
    """
    Per-phase arrays for vectorized lookup with a cell phase array.

    ``table['density'][grid.phase]`` gives the density of every cell.

    Returns
    -------
    dict
        {'density', 'specific_heat', 'conductivity'} -> numpy.ndarray of length 3
    """
    table = {}
    for name in POSITIVE_PROPERTIES:
        table[name] = np.array([properties(phase, overrides)[name] for phase in Phase])
    return table
