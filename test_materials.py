"""
Tests for material property lookups and overrides.
"""

import numpy as np
import pytest

from errors import InvalidConfiguration
from materials import Phase, as_phase, properties, property_table, validate_overrides
from sim_config import SimulationConfig


def test_default_properties():
    ice = properties(Phase.ICE)
    water = properties(Phase.WATER)
    air = properties(Phase.AIR)

    assert ice['density'] == 917.0
    assert ice['conductivity'] == 2.22
    assert ice['melting_point'] == 0.0
    assert water['specific_heat'] == 4186.0
    assert water['latent_heat_of_fusion'] == 334000.0
    assert air['melting_point'] is None
    assert air['latent_heat_of_fusion'] == 0.0


def test_lookup_returns_a_copy():
    props = properties(Phase.WATER)
    props['density'] = 1.0
    assert properties(Phase.WATER)['density'] == 1000.0


@pytest.mark.parametrize('tag, expected', [
    ('ice', Phase.ICE),
    (' Water ', Phase.WATER),
    (2, Phase.AIR),
    (Phase.ICE, Phase.ICE),
])
def test_as_phase(tag, expected):
    assert as_phase(tag) is expected


@pytest.mark.parametrize('tag', ['steam', 3, -1])
def test_unknown_phase_tag(tag):
    with pytest.raises(ValueError):
        as_phase(tag)


def test_overrides_by_name():
    overrides = validate_overrides({'water': {'conductivity': 0.58}})
    assert Phase.WATER in overrides
    assert properties('water', overrides)['conductivity'] == 0.58
    # Untouched properties keep their defaults
    assert properties('water', overrides)['density'] == 1000.0


@pytest.mark.parametrize('overrides', [
    {'ice': {'density': -1.0}},
    {'ice': {'conductivity': 0.0}},
    {'air': {'specific_heat': float('nan')}},
    {'water': {'viscosity': 1e-3}},
    {'steam': {'density': 0.6}},
    {'ice': {'melting_point': float('inf')}},
])
def test_invalid_overrides(overrides):
    with pytest.raises(InvalidConfiguration):
        validate_overrides(overrides)


def test_zero_latent_heat_allowed():
    overrides = validate_overrides({'ice': {'latent_heat_of_fusion': 0.0}})
    assert properties(Phase.ICE, overrides)['latent_heat_of_fusion'] == 0.0


def test_property_table_indexing():
    table = property_table({Phase.AIR: {'density': 1.0}})
    phase = np.array([Phase.AIR, Phase.ICE, Phase.WATER, Phase.ICE], dtype=np.int8)

    assert np.allclose(table['density'][phase], [1.0, 917.0, 1000.0, 917.0])
    assert set(table) == {'density', 'specific_heat', 'conductivity'}


def test_ice_needs_a_melting_point():
    with pytest.raises(InvalidConfiguration, match='melting_point'):
        SimulationConfig(material_overrides={'ice': {'melting_point': None}})
