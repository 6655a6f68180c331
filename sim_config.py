"""
Simulation Configuration Module for Bottle Thaw Model

This module holds the caller-owned configuration of a simulation session:
container geometry, initial phase regions, ambient forcing, material
overrides and the timestep policy.
"""

import numpy as np

from errors import InvalidConfiguration
from materials import Phase, as_phase, properties, validate_overrides

SHAPES = ('rectangular', 'cylindrical')
TIMESTEP_POLICIES = ('adaptive', 'fixed')
STABILITY_MODES = ('substep', 'clamp', 'strict')

# Physically sane ambient range [°C]
AMBIENT_TEMPERATURE_RANGE = (-90.0, 150.0)

# Effective-conductivity enhancement for the fluid phases [-]
DEFAULT_CONVECTION_MULTIPLIERS = {
    Phase.WATER: 8.0,
    Phase.AIR: 4.0,
}

# Changing any of these requires a new grid
GEOMETRY_KEYS = ('shape', 'width', 'height', 'depth', 'resolution', 'regions')


class Region:
    """
    Axis-aligned block of the cross-section with a uniform initial state.

    A cell belongs to the region when its centre lies in
    [x_min, x_max) x [z_min, z_max). For the cylindrical scheme x is the radius.
    """

    def __init__(self, phase, temperature, x_min, x_max, z_min, z_max):
        self.phase = as_phase(phase)
        self.temperature = float(temperature)
        self.x_min = float(x_min)
        self.x_max = float(x_max)
        self.z_min = float(z_min)
        self.z_max = float(z_max)

    def contains(self, x, z):
        """Boolean mask of the points (x, z) inside the region."""
        x = np.asarray(x)
        z = np.asarray(z)
        return (x >= self.x_min) & (x < self.x_max) & (z >= self.z_min) & (z < self.z_max)

    def __eq__(self, other):
        if not isinstance(other, Region):
            return NotImplemented
        return (self.phase, self.temperature, self.x_min, self.x_max, self.z_min, self.z_max) == \
               (other.phase, other.temperature, other.x_min, other.x_max, other.z_min, other.z_max)

    def __repr__(self):
        return (
            f"Region({self.phase.name}, {self.temperature:.2f}°C, "
            f"x=[{self.x_min:.4g}, {self.x_max:.4g}), z=[{self.z_min:.4g}, {self.z_max:.4g}))"
        )


def bottle_regions(width, height, shape='cylindrical', fill_level=0.75, ice_width=0.5,
                   ice_height=0.3, water_temperature=5.0, ice_temperature=None,
                   air_temperature=None, melting_point=0.0):
    """
    Standard bottle fill: an ice core surrounded by water, air above.

    Parameters
    ----------
    width : float
        Container width [m] (radius for the cylindrical scheme)
    height : float
        Container height [m]
    shape : str
        'cylindrical' puts the core on the axis, 'rectangular' centres it
    fill_level : float
        Liquid + ice level as a fraction of the height (0-1)
    ice_width : float
        Core width (or radius) as a fraction of the width (0-1)
    ice_height : float
        Core height as a fraction of the height, must not exceed fill_level
    water_temperature : float
        Initial water temperature [°C]
    ice_temperature : float, optional
        Initial ice temperature [°C]. Default: min(water_temperature, melting_point)
    air_temperature : float, optional
        Initial air temperature [°C]. Default: water_temperature
    melting_point : float
        Ice melting point used for the default ice temperature [°C]

    Returns
    -------
    list of Region
        Regions tiling [0, width) x [0, height)
    """
    if not 0.0 < fill_level <= 1.0:
        raise InvalidConfiguration(f"fill_level must be in (0, 1], got {fill_level}")
    if not 0.0 <= ice_width <= 1.0 or not 0.0 <= ice_height <= fill_level:
        raise InvalidConfiguration(
            f"Ice core ({ice_width} x {ice_height}) must fit inside the liquid "
            f"(1.0 x {fill_level})"
        )

    if ice_temperature is None:
        ice_temperature = min(water_temperature, melting_point)
    if air_temperature is None:
        air_temperature = water_temperature

    z_fill = fill_level * height
    core_w = ice_width * width
    core_h = ice_height * height

    if shape == 'cylindrical':
        x0, x1 = 0.0, core_w
    else:
        x0 = 0.5 * (width - core_w)
        x1 = x0 + core_w
    z0 = 0.5 * (z_fill - core_h)
    z1 = z0 + core_h

    regions = []
    if core_w > 0 and core_h > 0:
        regions.append(Region(Phase.ICE, ice_temperature, x0, x1, z0, z1))
        # Water tiles the rest of the liquid block around the core
        candidates = [
            (0.0, x0, 0.0, z_fill),
            (x1, width, 0.0, z_fill),
            (x0, x1, 0.0, z0),
            (x0, x1, z1, z_fill),
        ]
    else:
        candidates = [(0.0, width, 0.0, z_fill)]

    for xa, xb, za, zb in candidates:
        if xb > xa and zb > za:
            regions.append(Region(Phase.WATER, water_temperature, xa, xb, za, zb))

    if z_fill < height:
        regions.append(Region(Phase.AIR, air_temperature, 0.0, width, z_fill, height))

    return regions


class SimulationConfig:
    """Configuration of one bottle simulation session."""

    def __init__(self, shape='cylindrical', width=0.035, height=0.2, depth=1.0,
                 resolution=(7, 40), regions=None, ambient_temperature=25.0,
                 wall_heat_transfer_coefficient=5.0, convection_multipliers=None,
                 material_overrides=None, latent_heat_of_fusion=None,
                 timestep_policy='adaptive', fixed_dt=None, cfl_safety_factor=0.9,
                 stability_mode='substep', time_scale=1.0, instability_tolerance=1.0,
                 max_unstable_ticks=10):
        """
        Initialize the configuration.

        Parameters
        ----------
        shape : str
            'cylindrical' (axisymmetric r-z section) or 'rectangular'
        width : float
            Container width [m]; inner radius for 'cylindrical'
        height : float
            Container height [m]
        depth : float
            Out-of-plane depth of a rectangular section [m]. Ignored for 'cylindrical'
        resolution : tuple of int
            Cell counts (nx, nz)
        regions : list of Region, optional
            Initial phase regions. Default: bottle_regions(width, height, shape)
        ambient_temperature : float
            Fixed external temperature [°C]
        wall_heat_transfer_coefficient : float
            Wall film coefficient [W/(m²·K)]; 0 makes the container adiabatic
        convection_multipliers : dict, optional
            {Phase.WATER: m_w, Phase.AIR: m_a}, each >= 1
        material_overrides : dict, optional
            {phase: {property_name: value}}
        latent_heat_of_fusion : float, optional
            Overrides the latent heat of ice and water [J/kg]
        timestep_policy : str
            'adaptive' (CFL-bounded) or 'fixed'
        fixed_dt : float, optional
            Tick duration for the fixed policy [s]
        cfl_safety_factor : float
            Fraction of the maximum stable time step used (0 < C <= 1)
        stability_mode : str
            What a tick longer than the stable step does: 'substep', 'clamp' or 'strict'
        time_scale : float
            Simulation speed multiplier applied to each tick
        instability_tolerance : float
            Allowed excursion beyond the plausible temperature range [K]
        max_unstable_ticks : int
            Consecutive clamped ticks tolerated before raising
        """
        self.shape = shape
        self.width = width
        self.height = height
        self.depth = depth
        self.resolution = tuple(resolution)
        self.regions = list(regions) if regions is not None else None
        # Regions built by bottle_regions follow later geometry changes
        self._default_regions = regions is None
        self.ambient_temperature = ambient_temperature
        self.wall_heat_transfer_coefficient = wall_heat_transfer_coefficient
        self.convection_multipliers = convection_multipliers
        self.material_overrides = material_overrides
        self.latent_heat_of_fusion = latent_heat_of_fusion
        self.timestep_policy = timestep_policy
        self.fixed_dt = fixed_dt
        self.cfl_safety_factor = cfl_safety_factor
        self.stability_mode = stability_mode
        self.time_scale = time_scale
        self.instability_tolerance = instability_tolerance
        self.max_unstable_ticks = max_unstable_ticks

        self.validate()

    def validate(self):
        """
        Check every parameter and normalize derived fields.

        Raises
        ------
        InvalidConfiguration
            On the first invalid parameter.
        """
        if self.shape not in SHAPES:
            raise InvalidConfiguration(f"shape must be one of {SHAPES}, got '{self.shape}'")

        for name in ('width', 'height', 'depth'):
            value = getattr(self, name)
            if value is None or not np.isfinite(value) or value <= 0:
                raise InvalidConfiguration(f"{name} must be positive, got {value}")

        if len(self.resolution) != 2:
            raise InvalidConfiguration(f"resolution must be (nx, nz), got {self.resolution}")
        for n in self.resolution:
            if int(n) != n or n <= 0:
                raise InvalidConfiguration(f"resolution must hold positive integers, got {self.resolution}")
        self.resolution = (int(self.resolution[0]), int(self.resolution[1]))

        self.material_overrides = validate_overrides(self.material_overrides)
        if self.melting_point is None:
            raise InvalidConfiguration("Ice requires a melting_point")
        if self.latent_heat_of_fusion is not None:
            if not np.isfinite(self.latent_heat_of_fusion) or self.latent_heat_of_fusion < 0:
                raise InvalidConfiguration(
                    f"latent_heat_of_fusion must be non-negative, got {self.latent_heat_of_fusion}"
                )

        if self.regions is None:
            self.regions = bottle_regions(
                self.width, self.height, shape=self.shape,
                melting_point=self.melting_point,
            )
        if not self.regions:
            raise InvalidConfiguration("At least one initial region is required")
        for region in self.regions:
            if not isinstance(region, Region):
                raise InvalidConfiguration(f"Expected Region, got {type(region).__name__}")
            if region.x_max <= region.x_min or region.z_max <= region.z_min:
                raise InvalidConfiguration(f"Empty region {region}")
            if not np.isfinite(region.temperature):
                raise InvalidConfiguration(f"Region temperature must be finite: {region}")
            if region.phase == Phase.ICE and region.temperature > self.melting_point:
                raise InvalidConfiguration(
                    f"Ice region above the melting point ({self.melting_point}°C): {region}"
                )

        low, high = AMBIENT_TEMPERATURE_RANGE
        if self.ambient_temperature is None or not low <= self.ambient_temperature <= high:
            raise InvalidConfiguration(
                f"ambient_temperature must be within [{low}, {high}]°C, got {self.ambient_temperature}"
            )

        h = self.wall_heat_transfer_coefficient
        if h is None or not np.isfinite(h) or h < 0:
            raise InvalidConfiguration(f"wall_heat_transfer_coefficient must be non-negative, got {h}")

        multipliers = dict(DEFAULT_CONVECTION_MULTIPLIERS)
        for tag, value in (self.convection_multipliers or {}).items():
            try:
                phase = as_phase(tag)
            except ValueError as exc:
                raise InvalidConfiguration(str(exc)) from None
            if phase == Phase.ICE and value != 1.0:
                raise InvalidConfiguration("Ice is conduction-only; its convection multiplier is fixed at 1")
            if value is None or not np.isfinite(value) or value < 1.0:
                raise InvalidConfiguration(f"{phase.name} convection multiplier must be >= 1, got {value}")
            multipliers[phase] = float(value)
        multipliers.pop(Phase.ICE, None)
        self.convection_multipliers = multipliers

        if self.timestep_policy not in TIMESTEP_POLICIES:
            raise InvalidConfiguration(
                f"timestep_policy must be one of {TIMESTEP_POLICIES}, got '{self.timestep_policy}'"
            )
        if self.timestep_policy == 'fixed':
            if self.fixed_dt is None or not np.isfinite(self.fixed_dt) or self.fixed_dt <= 0:
                raise InvalidConfiguration(f"fixed_dt must be positive for the fixed policy, got {self.fixed_dt}")
        if not 0.0 < self.cfl_safety_factor <= 1.0:
            raise InvalidConfiguration(f"cfl_safety_factor must be in (0, 1], got {self.cfl_safety_factor}")
        if self.stability_mode not in STABILITY_MODES:
            raise InvalidConfiguration(
                f"stability_mode must be one of {STABILITY_MODES}, got '{self.stability_mode}'"
            )
        if self.time_scale is None or not np.isfinite(self.time_scale) or self.time_scale <= 0:
            raise InvalidConfiguration(f"time_scale must be positive, got {self.time_scale}")
        tol = self.instability_tolerance
        if tol is None or not np.isfinite(tol) or tol < 0:
            raise InvalidConfiguration(
                f"instability_tolerance must be non-negative, got {self.instability_tolerance}"
            )
        if int(self.max_unstable_ticks) != self.max_unstable_ticks or self.max_unstable_ticks < 0:
            raise InvalidConfiguration(
                f"max_unstable_ticks must be a non-negative integer, got {self.max_unstable_ticks}"
            )

    @property
    def melting_point(self):
        """Ice melting point [°C]."""
        return properties(Phase.ICE, self.material_overrides)['melting_point']

    def material_properties(self, phase):
        """Material properties of a phase with overrides and the latent heat applied."""
        props = properties(phase, self.material_overrides)
        if self.latent_heat_of_fusion is not None and as_phase(phase) != Phase.AIR:
            props['latent_heat_of_fusion'] = float(self.latent_heat_of_fusion)
        return props

    def convection_multiplier(self, phase):
        """Effective-conductivity multiplier of a phase (1 for ice)."""
        return self.convection_multipliers.get(as_phase(phase), 1.0)

    def as_dict(self):
        """Parameter dictionary accepted by the constructor."""
        return {
            'shape': self.shape,
            'width': self.width,
            'height': self.height,
            'depth': self.depth,
            'resolution': self.resolution,
            'regions': list(self.regions),
            'ambient_temperature': self.ambient_temperature,
            'wall_heat_transfer_coefficient': self.wall_heat_transfer_coefficient,
            'convection_multipliers': dict(self.convection_multipliers),
            'material_overrides': {phase: dict(values) for phase, values in self.material_overrides.items()},
            'latent_heat_of_fusion': self.latent_heat_of_fusion,
            'timestep_policy': self.timestep_policy,
            'fixed_dt': self.fixed_dt,
            'cfl_safety_factor': self.cfl_safety_factor,
            'stability_mode': self.stability_mode,
            'time_scale': self.time_scale,
            'instability_tolerance': self.instability_tolerance,
            'max_unstable_ticks': self.max_unstable_ticks,
        }

    def copy(self, **changes):
        """
        Validated copy with some parameters replaced.

        Raises
        ------
        InvalidConfiguration
            On unknown parameter names or invalid values.
        """
        params = self.as_dict()
        unknown = set(changes) - set(params)
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration parameters: {sorted(unknown)}")
        # Only the default bottle fill follows the geometry; caller regions are kept
        default_regions = self._default_regions and 'regions' not in changes
        if default_regions and any(k in changes for k in ('shape', 'width', 'height')):
            params['regions'] = None
        params.update(changes)
        config = SimulationConfig(**params)
        config._default_regions = config._default_regions or default_regions
        return config

    def requires_rebuild(self, other):
        """True if switching from this config to other changes the grid."""
        return any(getattr(self, key) != getattr(other, key) for key in GEOMETRY_KEYS)

    def __repr__(self):
        nx, nz = self.resolution
        return (
            f"SimulationConfig:\n"
            f"  Shape: {self.shape} ({self.width*1000:.1f} x {self.height*1000:.1f} mm)\n"
            f"  Resolution: {nx} x {nz} cells\n"
            f"  Regions: {len(self.regions)}\n"
            f"  Ambient: {self.ambient_temperature:.1f}°C, h = {self.wall_heat_transfer_coefficient:.2f} W/(m²·K)\n"
            f"  Timestep: {self.timestep_policy} ({self.stability_mode})"
        )
