# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

'''
Adapters to the geometry/meshing/solving engine.

`Engine` defines the operations the cell sweep needs from an external
finite element package. `SyntheticEngine` implements them in memory:
it generates the sub-volumes of an idealised quarter (or four-quadrant)
RFQ cell model for the window written in its parameter table and
evaluates the two-term potential field instead of solving. It is
used for dry runs of a sweep and throughout the test suite.
'''

import json
import copy

import numpy as np
from scipy.special import iv as bessel1

from .errors import EngineError
from .geometry import BoundingBox, Domain, DomainRole
from .units import format_quantity, parse_quantity


class Engine():
    '''
    Interface of an engine adapter. Every method raises `EngineError`
    when the underlying native call fails.
    '''

    def connect(self, port=None):
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError

    def set_parameter(self, name, value, unit=''):
        raise NotImplementedError

    def get_parameter(self, name):
        raise NotImplementedError

    def create_primitive(self, kind, name, **properties):
        raise NotImplementedError

    def boolean_op(self, operation, name, inputs, keep_input=False):
        raise NotImplementedError

    def import_geometry(self, filename):
        raise NotImplementedError

    def rebuild_geometry(self):
        raise NotImplementedError

    def enumerate_domains(self, full_model=False):
        raise NotImplementedError

    def select_domain_at(self, point):
        raise NotImplementedError

    def get_bounding_box(self):
        raise NotImplementedError

    def set_named_selection(self, name, ids):
        raise NotImplementedError

    def configure_mesh(self, name, kind, selection=None, **settings):
        raise NotImplementedError

    def remesh(self):
        raise NotImplementedError

    def solve(self):
        raise NotImplementedError

    def interpolate_field(self, points):
        raise NotImplementedError

    def save_snapshot(self, filename):
        raise NotImplementedError

    def load_snapshot(self, filename):
        raise NotImplementedError


class SyntheticEngine(Engine):
    '''
    In-memory engine with parametric cell geometry and analytic field.

    Parameters
    ----------
    length_data: array_like
        Cell lengths [m], matching section first
    cad_offset: float, default 0.
        z position of the start of the matching section [m]
    r0: float, default 3.5e-3
        Mean aperture radius [m]
    rho: float, default 3.1076e-3
        Vane tip radius [m]
    beam_box_width: float, default 2e-3
        Transverse half width of the inner beam box [m]
    vertical_cell_height: float, default 15e-3
        Height of the vane tip sections [m]
    four_quad: bool, default False
        Generate a four-quadrant model instead of a quarter model
    end_flange: bool, default False
        Add an end plate domain to windows reaching the end of the vanes
    flange_thickness: float, default 5e-3
        z extent of the end plate [m]
    modulation: float, default 1.5
        Vane modulation used by the analytic field
    axis_noise: float, default 0.
        Amplitude of a spurious transverse field added on the beam axis,
        mimicking the interpolation noise of a real solver [V/m]
    legacy_numbering: bool, default False
        Number domains with the fixed legacy scheme (air volumes 1-4,
        airbag 7) instead of a shuffled order
    seed: int, default 0
        Seed of the domain id shuffling
    mesh_failures: list, optional
        Queue of DomainRole (or role names). Each `remesh` call pops one
        entry and fails on that region.
    solve_failures: iterable of int, optional
        Cell numbers for which `solve` fails
    rebuild_failures: int, default 0
        Number of consecutive `rebuild_geometry` calls that fail
    enumerate_failures: bool, default False
        Make `enumerate_domains` unavailable
    snapshot_failures: bool, default False
        Make `save_snapshot` fail
    '''

    def __init__(self, length_data, cad_offset=0., r0=3.5e-3, rho=3.1076e-3,
                 beam_box_width=2e-3, vertical_cell_height=15e-3, four_quad=False,
                 end_flange=False, flange_thickness=5e-3, modulation=1.5,
                 axis_noise=0., legacy_numbering=False, seed=0, mesh_failures=None,
                 solve_failures=None, rebuild_failures=0, enumerate_failures=False,
                 snapshot_failures=False):

        self.length_data = np.asarray(length_data, dtype=float).ravel()
        self.cad_offset = cad_offset
        self.r0 = r0
        self.rho = rho
        self.beam_box_width = beam_box_width
        self.vertical_cell_height = vertical_cell_height
        self.four_quad = four_quad
        self.end_flange = end_flange
        self.flange_thickness = flange_thickness
        self.modulation = modulation
        self.axis_noise = axis_noise
        self.legacy_numbering = legacy_numbering
        self.seed = seed

        self.mesh_failures = list(mesh_failures or [])
        self.solve_failures = set(solve_failures or [])
        self.rebuild_failures = rebuild_failures
        self.enumerate_failures = enumerate_failures
        self.snapshot_failures = snapshot_failures

        self.boundaries = np.concatenate([[0.], np.cumsum(self.length_data)]) + cad_offset
        self.vane_start = self.boundaries[0] - 0.5*self.length_data[0]
        self.vane_end = self.boundaries[-1] + 0.5*self.length_data[-1]

        self.connected = False
        self.port = None
        self.parameters = {}
        self.features = []
        self.selections = {}
        self.mesh_settings = {}

        self.domains = []
        self.meshed = False
        self.solved = False

        # call counters, inspected by the tests
        self.n_rebuilds = 0
        self.n_remesh = 0
        self.n_solves = 0
        self.snapshots = []

    # --- session ---

    def connect(self, port=None):
        self.connected = True
        self.port = port

    def disconnect(self):
        self.connected = False
        self.domains = []
        self.meshed = False
        self.solved = False

    def _check_connection(self):
        if not self.connected:
            raise EngineError('[!] Error: engine is not connected')

    # --- parameters ---

    def set_parameter(self, name, value, unit=''):
        self._check_connection()
        self.parameters[name] = format_quantity(value, unit)
        self.meshed = False
        self.solved = False

    def get_parameter(self, name):
        self._check_connection()
        if name not in self.parameters:
            raise EngineError(f'[!] Error: unknown parameter "{name}"')
        return parse_quantity(self.parameters[name])

    # --- geometry ---

    def create_primitive(self, kind, name, **properties):
        self._check_connection()
        self.features.append({'type': 'primitive', 'kind': kind, 'name': name,
                              'properties': properties})
        return name

    def boolean_op(self, operation, name, inputs, keep_input=False):
        self._check_connection()
        if operation not in ('union', 'difference', 'intersection', 'partition'):
            raise EngineError(f'[!] Error: unknown boolean operation "{operation}"')
        self.features.append({'type': 'boolean', 'operation': operation, 'name': name,
                              'inputs': list(inputs), 'keep_input': keep_input})
        return name

    def import_geometry(self, filename):
        self._check_connection()
        self.features.append({'type': 'import', 'filename': str(filename)})
        return filename

    def _window(self):
        try:
            return (self.get_parameter('cellStart'), self.get_parameter('cellEnd'),
                    self.get_parameter('selectionStart'), self.get_parameter('selectionEnd'),
                    self.get_parameter('boxWidth'))
        except EngineError as e:
            raise EngineError('[!] Error: cell window parameters are not set') from e

    def _build_domains(self, cell_start, cell_end, selection_start, selection_end, box_width):
        '''Sub-volumes of the cell model, keyed by role (vanes as lists)'''
        bbw = self.beam_box_width
        obw = 2*self.r0 + self.rho
        tip_end = max(box_width, self.vertical_cell_height, 1.2*obw)
        back_end = tip_end + 2*self.vertical_cell_height
        extent = back_end + 5e-3
        zs, ze = selection_start, selection_end

        inner_low = -bbw if self.four_quad else 0.
        outer_low = -obw if self.four_quad else 0.
        plane_low = -self.rho if self.four_quad else 0.
        bag_low = -extent if self.four_quad else 0.

        boxes = [
            (DomainRole.INNER_BEAM_BOX_FRONT, (inner_low, bbw, inner_low, bbw, zs, cell_start)),
            (DomainRole.INNER_BEAM_BOX_MID, (inner_low, bbw, inner_low, bbw, cell_start, cell_end)),
            (DomainRole.INNER_BEAM_BOX_REAR, (inner_low, bbw, inner_low, bbw, cell_end, ze)),
            (DomainRole.OUTER_BEAM_BOX, (outer_low, obw, outer_low, obw, zs, ze)),
            (DomainRole.VANE_TIP_Y, (plane_low, self.rho, self.r0, tip_end, zs, ze)),
            (DomainRole.VANE_BACK_Y, (plane_low, 3*self.rho, tip_end, back_end, zs, ze)),
            (DomainRole.AIR_BAG, (bag_low, extent, bag_low, extent, zs, ze)),
            (DomainRole.VANE_TIP_X, (self.r0, tip_end, plane_low, self.rho, zs, ze)),
            (DomainRole.VANE_BACK_X, (tip_end, back_end, plane_low, 3*self.rho, zs, ze)),
        ]

        if self.four_quad:
            boxes += [
                (DomainRole.VANE_TIP_X, (-tip_end, -self.r0, -self.rho, self.rho, zs, ze)),
                (DomainRole.VANE_BACK_X, (-back_end, -tip_end, -3*self.rho, 3*self.rho, zs, ze)),
                (DomainRole.VANE_TIP_Y, (-self.rho, self.rho, -tip_end, -self.r0, zs, ze)),
                (DomainRole.VANE_BACK_Y, (-3*self.rho, 3*self.rho, -back_end, -tip_end, zs, ze)),
            ]

        vanes_end = self.boundaries[-1]
        if self.end_flange and ze > vanes_end and zs < vanes_end - self.flange_thickness:
            boxes.append((DomainRole.END_FLANGE, (bag_low, extent, bag_low, extent,
                                                  vanes_end - self.flange_thickness, vanes_end)))

        # windows touching the selection bounds leave empty beam box pieces
        return [(role, bounds) for role, bounds in boxes if bounds[5] > bounds[4]]

    def rebuild_geometry(self):
        self._check_connection()
        self.n_rebuilds += 1
        self.meshed = False
        self.solved = False

        if self.rebuild_failures > 0:
            self.rebuild_failures -= 1
            self.domains = []
            raise EngineError('[!] Error: geometry rebuild failed')

        cell_start, cell_end, selection_start, selection_end, box_width = self._window()
        boxes = self._build_domains(cell_start, cell_end, selection_start,
                                    selection_end, box_width)

        if self.legacy_numbering:
            # air volumes 1-4, yTip 5, yBack 6, airbag 7, xTip 8, xBack 9
            ids = np.arange(1, len(boxes) + 1)
        else:
            rng = np.random.default_rng([self.seed, int(round(abs(selection_start)*1e9))])
            ids = rng.permutation(len(boxes)) + 1

        self.domains = [(int(i), role, BoundingBox(*bounds))
                        for i, (role, bounds) in zip(ids, boxes)]
        self.domains.sort(key=lambda d: d[0])

    def enumerate_domains(self, full_model=False):
        self._check_connection()
        if self.enumerate_failures:
            raise EngineError('[!] Error: domain enumeration is not supported')

        if full_model:
            boxes = self._build_domains(self.vane_start, self.vane_end, self.vane_start,
                                        self.vane_end, self.vertical_cell_height)
            return [Domain(i + 1, BoundingBox(*bounds))
                    for i, (role, bounds) in enumerate(boxes)
                    if role is not DomainRole.END_FLANGE]

        if not self.domains:
            raise EngineError('[!] Error: geometry has not been built')
        return [Domain(i, box) for i, role, box in self.domains]

    def domain_role(self, domain_id):
        '''True role of a generated domain'''
        for i, role, box in self.domains:
            if i == domain_id:
                return role
        return None

    def select_domain_at(self, point):
        self._check_connection()
        if not self.domains:
            raise EngineError('[!] Error: geometry has not been built')

        x, y, z = point
        best, best_volume = None, np.inf
        for i, role, b in self.domains:
            if b.xmin <= x <= b.xmax and b.ymin <= y <= b.ymax and b.zmin <= z <= b.zmax:
                volume = (b.xmax-b.xmin)*(b.ymax-b.ymin)*(b.zmax-b.zmin)
                if volume < best_volume:
                    best, best_volume = i, volume
        return best

    def get_bounding_box(self):
        self._check_connection()
        boxes = [BoundingBox(*bounds) for role, bounds in
                 self._build_domains(self.vane_start, self.vane_end, self.vane_start,
                                     self.vane_end, self.vertical_cell_height)]
        box = boxes[0]
        for other in boxes[1:]:
            box = box.union(other)
        return box

    def set_named_selection(self, name, ids):
        self._check_connection()
        known = {i for i, role, box in self.domains}
        unknown = set(ids) - known
        if unknown:
            raise EngineError(f'[!] Error: unknown domains {sorted(unknown)} in selection "{name}"')
        self.selections[name] = sorted(int(i) for i in ids)

    # --- mesh and solve ---

    def configure_mesh(self, name, kind, selection=None, **settings):
        self._check_connection()
        if kind not in ('free_tri', 'map', 'sweep', 'free_tet', 'size'):
            raise EngineError(f'[!] Error: unknown mesh operation "{kind}"')
        if selection is not None and selection not in self.selections:
            raise EngineError(f'[!] Error: unknown selection "{selection}"')
        self.mesh_settings[name] = dict(kind=kind, selection=selection, **settings)
        self.meshed = False

    def remesh(self):
        self._check_connection()
        self.n_remesh += 1
        if not self.domains:
            raise EngineError('[!] Error: geometry has not been built')

        if self.mesh_failures:
            role = self.mesh_failures.pop(0)
            if role is not None:
                role = DomainRole(role)
                raise EngineError(f'[!] Error: failed to mesh {role.value}', role=role)

        self.meshed = True

    def solve(self):
        self._check_connection()
        self.n_solves += 1
        if not self.meshed:
            raise EngineError('[!] Error: model has not been meshed')

        cell_no = int(round(self.get_parameter('cellNo')))
        if cell_no in self.solve_failures:
            raise EngineError(f'[!] Error: solver did not converge for cell {cell_no}')
        self.solved = True

    def interpolate_field(self, points):
        '''
        Electric field at `points` (N, 3) from the two-term potential of
        the current cell. Returns an (N, 3) array [V/m].
        '''
        self._check_connection()
        if not self.solved:
            raise EngineError('[!] Error: no solution available for interpolation')

        points = np.atleast_2d(np.asarray(points, dtype=float))
        x, y, z = points[:, 0], points[:, 1], points[:, 2]

        cell_start = self.get_parameter('cellStart')
        cell_end = self.get_parameter('cellEnd')
        cell_no = int(round(self.get_parameter('cellNo')))
        voltage = self.parameters.get('vaneVoltage')
        voltage = 1. if voltage is None else parse_quantity(voltage)

        kp = np.pi/(cell_end - cell_start)
        m, a = self.modulation, self.r0
        a10 = (m**2 - 1.)/(m**2*bessel1(0, kp*a) + bessel1(0, m*kp*a))
        xim = 1. - a10*bessel1(0, kp*a)
        sign = (-1.)**cell_no

        r = np.sqrt(x**2 + y**2)
        zl = z - cell_start

        # kp*I1(kp*r)/r tends to kp**2/2 on axis
        with np.errstate(invalid='ignore', divide='ignore'):
            radial = np.where(r > 0, kp*bessel1(1, kp*r)/np.where(r > 0, r, 1.), 0.5*kp**2)

        Ex = x*0.5*voltage*(+2.*xim/a**2 - sign*a10*radial*np.cos(kp*zl))
        Ey = y*0.5*voltage*(-2.*xim/a**2 - sign*a10*radial*np.cos(kp*zl))
        Ez = 0.5*voltage*sign*kp*a10*bessel1(0, kp*r)*np.sin(kp*zl)

        if self.axis_noise:
            on_axis = r == 0
            rng = np.random.default_rng(cell_no)
            Ex = Ex + on_axis*self.axis_noise*rng.standard_normal(len(x))
            Ey = Ey + on_axis*self.axis_noise*rng.standard_normal(len(x))

        return np.column_stack([Ex, Ey, Ez])

    # --- snapshots ---

    def save_snapshot(self, filename):
        self._check_connection()
        if self.snapshot_failures:
            raise EngineError(f'[!] Error: cannot save model to {filename}')

        state = {'parameters': self.parameters, 'features': self.features,
                 'selections': self.selections, 'mesh_settings': self.mesh_settings}
        with open(filename, 'w') as fh:
            json.dump(state, fh, indent=2, default=str)
        self.snapshots.append(str(filename))

    def load_snapshot(self, filename):
        self._check_connection()
        try:
            with open(filename, 'r') as fh:
                state = json.load(fh)
        except (OSError, ValueError) as e:
            raise EngineError(f'[!] Error: cannot load model from {filename}') from e

        self.parameters = dict(state.get('parameters', {}))
        self.features = copy.deepcopy(state.get('features', []))
        self.selections = dict(state.get('selections', {}))
        self.mesh_settings = dict(state.get('mesh_settings', {}))
        self.domains = []
        self.meshed = False
        self.solved = False
