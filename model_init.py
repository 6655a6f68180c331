"""
Model Initialization Module for Bottle Thaw Model

This module builds the discretized cross-section of the bottle: cell
geometry, neighbour topology, wall faces and the initial phase and
temperature of every cell.
"""

import logging

import numpy as np
from scipy import sparse

from errors import InvalidConfiguration
from materials import Phase

logger = logging.getLogger(__name__)


class Cell:
    """
    View of one grid cell.

    Reads and writes go straight to the grid arrays; a Cell holds no state
    of its own.
    """

    __slots__ = ('grid', 'index')

    def __init__(self, grid, index):
        self.grid = grid
        self.index = index

    @property
    def position(self):
        return tuple(self.grid.position[self.index])

    @property
    def temperature(self):
        return float(self.grid.temperature[self.index])

    @temperature.setter
    def temperature(self, value):
        self.grid.temperature[self.index] = value

    @property
    def phase(self):
        return Phase(int(self.grid.phase[self.index]))

    @phase.setter
    def phase(self, value):
        self.grid.phase[self.index] = int(value)

    @property
    def stored_latent_energy(self):
        return float(self.grid.stored_latent_energy[self.index])

    @stored_latent_energy.setter
    def stored_latent_energy(self, value):
        self.grid.stored_latent_energy[self.index] = value

    @property
    def volume(self):
        return float(self.grid.volume[self.index])

    @property
    def neighbors(self):
        return self.grid.neighbors(self.index)

    @property
    def is_boundary(self):
        return self.grid.is_boundary(self.index)

    def __repr__(self):
        x, z = self.position
        return (
            f"Cell({self.index}: x={x*1000:.2f} mm, z={z*1000:.2f} mm, "
            f"T={self.temperature:.2f}°C, {self.phase.name})"
        )


class GridSnapshot:
    """Read-only copy of the committed grid state, handed to consumers between ticks."""

    def __init__(self, grid):
        self.time = grid.time
        self.tick = grid.tick
        self.shape = grid.shape
        self.resolution = grid.resolution
        self.positions = grid.position.copy()
        self.temperature = grid.temperature.copy()
        self.phase = grid.phase.copy()
        self.stored_latent_energy = grid.stored_latent_energy.copy()
        self.boundary_mask = grid.boundary_mask.copy()
        for array in (self.positions, self.temperature, self.phase,
                      self.stored_latent_energy, self.boundary_mask):
            array.flags.writeable = False

    def cells(self):
        """Ordered list of (position, temperature, phase)."""
        return [
            (tuple(pos), float(T), Phase(int(p)))
            for pos, T, p in zip(self.positions, self.temperature, self.phase)
        ]

    def temperature_field(self):
        """Temperature as an (nz, nx) array, bottom row first."""
        nx, nz = self.resolution
        return self.temperature.reshape(nz, nx)

    def phase_map(self):
        """Phase tags as an (nz, nx) array, bottom row first."""
        nx, nz = self.resolution
        return self.phase.reshape(nz, nx)


class BottleGrid:
    """
    Discretized 2-D cross-section of the bottle.

    Cells are indexed j * nx + i (i along x or r, j along z, bottom row
    first). Per-cell state lives in numpy arrays; the topology (edges,
    incidence matrix, wall faces) is fixed at construction.
    """

    def __init__(self, config):
        """
        Build the grid from a configuration.

        Parameters
        ----------
        config : SimulationConfig
            Validated simulation configuration

        Raises
        ------
        InvalidConfiguration
            If the geometry or resolution is non-positive, or the initial
            regions leave gaps or overlap.
        """
        self.shape = config.shape
        self.width = config.width
        self.height = config.height
        self.depth = config.depth
        self.resolution = config.resolution

        nx, nz = self.resolution
        if nx <= 0 or nz <= 0 or self.width <= 0 or self.height <= 0 or self.depth <= 0:
            raise InvalidConfiguration(
                f"Geometry and resolution must be positive: {self.width} x {self.height} m, "
                f"{nx} x {nz} cells"
            )
        self.n_cells = nx * nz
        self.dx = self.width / nx
        self.dz = self.height / nz

        # Session bookkeeping
        self.time = 0.0
        self.tick = 0
        self.boundary_energy_in = 0.0  # Cumulative energy through the wall [J]
        self.unstable_ticks = 0        # Consecutive ticks that needed clamping

        self._build_geometry()
        self._build_topology()
        self._build_wall_faces()
        self._assign_regions(config.regions)

        # Temperature hull of the initial state, used for plausibility checks
        self.reference_bounds = (
            min(float(self.temperature.min()), config.melting_point),
            max(float(self.temperature.max()), config.melting_point),
        )

        logger.debug(
            "Built %s grid: %d x %d cells, %d edges, %d wall faces",
            self.shape, nx, nz, len(self.edges), len(self.wall_cell),
        )

    def _build_geometry(self):
        """Cell centres and volumes."""
        nx, nz = self.resolution
        i = np.tile(np.arange(nx), nz)
        j = np.repeat(np.arange(nz), nx)
        self.i_index = i
        self.j_index = j

        x = (i + 0.5) * self.dx
        z = (j + 0.5) * self.dz
        self.position = np.column_stack([x, z])

        if self.shape == 'cylindrical':
            r_in = i * self.dx
            r_out = (i + 1) * self.dx
            self.volume = np.pi * (r_out**2 - r_in**2) * self.dz
        else:
            self.volume = np.full(self.n_cells, self.dx * self.dz * self.depth)

    def _face_area_x(self, i_face):
        """Area of the face normal to x at column boundary i_face (0..nx)."""
        if self.shape == 'cylindrical':
            return 2.0 * np.pi * (i_face * self.dx) * self.dz
        return np.full(np.shape(i_face), self.dz * self.depth, dtype=float)

    def _face_area_z(self, i):
        """Area of the face normal to z for column i."""
        if self.shape == 'cylindrical':
            return np.pi * (((i + 1) * self.dx)**2 - (i * self.dx)**2)
        return np.full(np.shape(i), self.dx * self.depth, dtype=float)

    def _build_topology(self):
        """
        Edge list between adjacent cells, with face area and centre distance.

        Each adjacent pair appears exactly once as (a, b) with a < b.
        """
        nx, nz = self.resolution
        idx = np.arange(self.n_cells).reshape(nz, nx)

        # Edges along x (or r)
        a_x = idx[:, :-1].ravel()
        b_x = idx[:, 1:].ravel()
        area_x = self._face_area_x(self.i_index[a_x] + 1)
        dist_x = np.full(a_x.size, self.dx)

        # Edges along z
        a_z = idx[:-1, :].ravel()
        b_z = idx[1:, :].ravel()
        area_z = self._face_area_z(self.i_index[a_z])
        dist_z = np.full(a_z.size, self.dz)

        self.edges = np.column_stack([
            np.concatenate([a_x, a_z]),
            np.concatenate([b_x, b_z]),
        ]).astype(np.int64)
        self.edge_area = np.concatenate([area_x, area_z])
        self.edge_distance = np.concatenate([dist_x, dist_z])

        # Signed incidence: +1 at a, -1 at b, so (B @ T)[e] = T_a - T_b
        n_edges = len(self.edges)
        rows = np.repeat(np.arange(n_edges), 2)
        cols = self.edges.ravel()
        data = np.tile([1.0, -1.0], n_edges)
        self.incidence = sparse.csr_matrix((data, (rows, cols)), shape=(n_edges, self.n_cells))

        # Fixed neighbour lists
        neighbor_lists = [[] for _ in range(self.n_cells)]
        for a, b in self.edges:
            neighbor_lists[a].append(int(b))
            neighbor_lists[b].append(int(a))
        self._neighbors = tuple(tuple(sorted(n)) for n in neighbor_lists)

    def _build_wall_faces(self):
        """Faces on the container wall: cell index, area, centre-to-face distance."""
        nx, nz = self.resolution
        idx = np.arange(self.n_cells).reshape(nz, nx)

        cells = []
        areas = []
        half = []

        # Outer side wall (right side for rectangular, outer radius for cylindrical)
        outer = idx[:, -1]
        cells.append(outer)
        areas.append(self._face_area_x(np.full(outer.size, nx)))
        half.append(np.full(outer.size, 0.5 * self.dx))

        # Left side wall; for the cylindrical scheme this is the axis
        if self.shape != 'cylindrical':
            left = idx[:, 0]
            cells.append(left)
            areas.append(self._face_area_x(np.zeros(left.size)))
            half.append(np.full(left.size, 0.5 * self.dx))

        for row in (idx[0, :], idx[-1, :]):
            cells.append(row)
            areas.append(self._face_area_z(self.i_index[row]))
            half.append(np.full(row.size, 0.5 * self.dz))

        self.wall_cell = np.concatenate(cells).astype(np.int64)
        self.wall_area = np.concatenate(areas)
        self.wall_half_distance = np.concatenate(half)

        self.boundary_mask = np.zeros(self.n_cells, dtype=bool)
        self.boundary_mask[self.wall_cell] = True

    def _assign_regions(self, regions):
        """Initial phase and temperature from the unique region holding each cell centre."""
        x = self.position[:, 0]
        z = self.position[:, 1]

        coverage = np.zeros(self.n_cells, dtype=int)
        self.phase = np.zeros(self.n_cells, dtype=np.int8)
        self.temperature = np.zeros(self.n_cells)

        for region in regions:
            mask = region.contains(x, z)
            coverage += mask
            self.phase[mask] = int(region.phase)
            self.temperature[mask] = region.temperature

        gaps = np.where(coverage == 0)[0]
        if len(gaps) > 0:
            raise InvalidConfiguration(
                f"Initial regions leave {len(gaps)} cell(s) uncovered, "
                f"first at {tuple(np.round(self.position[gaps[0]], 6))}"
            )
        overlaps = np.where(coverage > 1)[0]
        if len(overlaps) > 0:
            raise InvalidConfiguration(
                f"Initial regions overlap at {len(overlaps)} cell(s), "
                f"first at {tuple(np.round(self.position[overlaps[0]], 6))}"
            )

        self.initial_phase = self.phase.copy()
        self.stored_latent_energy = np.zeros(self.n_cells)
        # Latent energy consumed by completed Ice -> Water transitions [J]
        self.melted_latent_energy = np.zeros(self.n_cells)

    def neighbors(self, index):
        """Indices of the cells adjacent to a cell."""
        return self._neighbors[index]

    def is_boundary(self, index):
        """True if the cell has at least one face on the container wall."""
        return bool(self.boundary_mask[index])

    def cell(self, index):
        """Cell view at an index."""
        if not 0 <= index < self.n_cells:
            raise IndexError(f"Cell index {index} out of range (0..{self.n_cells - 1})")
        return Cell(self, index)

    def cells(self):
        """Iterate over all cells in index order."""
        for index in range(self.n_cells):
            yield Cell(self, index)

    def __iter__(self):
        return self.cells()

    def __len__(self):
        return self.n_cells

    def snapshot(self):
        """Copy of the committed state for rendering or analysis."""
        return GridSnapshot(self)

    def count_phase(self, phase):
        """Number of cells in a phase."""
        return int(np.count_nonzero(self.phase == int(phase)))

    def extend_reference_bounds(self, *temperatures):
        """Widen the plausible temperature hull to cover the given temperatures [°C]."""
        values = [float(t) for t in temperatures if t is not None and np.isfinite(t)]
        if values:
            self.reference_bounds = (
                min(self.reference_bounds[0], *values),
                max(self.reference_bounds[1], *values),
            )

    def get_summary(self):
        """
        Get grid summary.

        Returns
        -------
        dict
            Geometry and phase counts
        """
        nx, nz = self.resolution
        return {
            'shape': self.shape,
            'n_cells': self.n_cells,
            'nx': nx,
            'nz': nz,
            'dx_mm': self.dx * 1000,
            'dz_mm': self.dz * 1000,
            'n_ice': self.count_phase(Phase.ICE),
            'n_water': self.count_phase(Phase.WATER),
            'n_air': self.count_phase(Phase.AIR),
            'n_boundary': int(self.boundary_mask.sum()),
        }

    def print_cell_summary(self):
        """Print the state of every cell."""
        print("\nCell Summary:")
        print("-" * 72)
        print(f"{'Cell':<6} {'x(mm)':<9} {'z(mm)':<9} {'T(°C)':<9} {'Phase':<7} {'E_lat(J)':<12} {'Wall':<5}")
        print("-" * 72)
        for cell in self.cells():
            x, z = cell.position
            print(f"{cell.index:<6} {x*1000:<9.2f} {z*1000:<9.2f} {cell.temperature:<9.2f} "
                  f"{cell.phase.name:<7} {cell.stored_latent_energy:<12.3e} {'yes' if cell.is_boundary else '':<5}")
        print("-" * 72)

    def __repr__(self):
        summary = self.get_summary()
        return (
            f"BottleGrid:\n"
            f"  Shape: {summary['shape']}\n"
            f"  Cells: {summary['nx']} x {summary['nz']} ({summary['dx_mm']:.3f} x {summary['dz_mm']:.3f} mm)\n"
            f"  Ice / water / air: {summary['n_ice']} / {summary['n_water']} / {summary['n_air']}\n"
            f"  Boundary cells: {summary['n_boundary']}"
        )


def initialize_model(config):
    """
    Convenience function to build the grid of a simulation session.

    Parameters
    ----------
    config : SimulationConfig
        Simulation configuration

    Returns
    -------
    BottleGrid
        Grid with initial phases and temperatures assigned
    """
    grid = BottleGrid(config)
    logger.info("Initialized %d cells (%d boundary)", grid.n_cells, int(grid.boundary_mask.sum()))
    return grid
