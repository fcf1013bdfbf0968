# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os
import time

from .errors import (RFQFieldError, ConfigurationError, ClassificationError,
                     GeometryError, SolveError, EngineError, CellResult)
from .fieldmap import CellFieldMap
from .meshing import MeshSettings, mesh_cell
from .sampling import sample_cell, cell_position
from .selections import classify_domains, legacy_selections

PHASES = ('configure_parameters', 'rebuild_geometry', 'bind_selections',
          'remesh', 'solve', 'sample_grid', 'offset_and_tag')


def snapshot_name(model_file, suffix):
    '''RFQModel.json -> RFQModel_<suffix>.json'''
    root, ext = os.path.splitext(model_file)
    return f'{root}_{suffix}{ext}'


class CellPipeline():
    '''
    Build, mesh, solve and sample one cell of the RFQ model.

    Parameters
    ----------
    engine: Engine
        Connected engine holding the cell model
    params: RFQParameters
    logger: Logger, optional
    four_quad: bool, optional
        Model symmetry. Defaults to `params.four_quad`.
    '''

    def __init__(self, engine, params, logger=None, four_quad=None):
        self.engine = engine
        self.params = params
        self.logger = logger
        self.four_quad = bool(params.four_quad if four_quad is None else four_quad)
        self.phase = None

        self.mesh_settings = MeshSettings(params.n_beam_box_cells, params.beam_box_width,
                                          params.outer_beam_box_width,
                                          min_step_ratio=params.min_step_ratio,
                                          max_mesh_retries=params.max_mesh_retries)
        self.timings = {}
        self.selections = None
        self.mesh_report = None

    def _log(self, identifier, text, priority_level=6):
        if self.logger is not None:
            self.logger.message('rfqfield:pipeline:' + identifier, text,
                                priority_level=priority_level)

    def _enter(self, phase):
        self.phase = phase
        self._t0 = time.time()

    def _leave(self):
        self.timings[self.phase] = time.time() - self._t0

    def configure_parameters(self, window):
        self._enter('configure_parameters')
        values = window.as_parameters()
        values['vaneVoltage'] = (self.params.vane_voltage, 'V')
        try:
            for name, (value, unit) in values.items():
                self.engine.set_parameter(name, value, unit)
        except EngineError as e:
            raise ConfigurationError('[!] Error: cannot write cell parameters',
                                     phase=self.phase) from e
        self._leave()

    def rebuild_geometry(self):
        self._enter('rebuild_geometry')
        try:
            self.engine.rebuild_geometry()
        except EngineError as e:
            if self.logger is not None:
                self.logger.warning('Geometry rebuild failed, retrying',
                                    identifier='rfqfield:pipeline:rebuildGeometry',
                                    priority_level=6, exception=e)
            try:
                self.engine.rebuild_geometry()
            except EngineError as e2:
                raise GeometryError('[!] Error: geometry rebuild failed twice',
                                    phase=self.phase) from e2
        self._leave()

    def bind_selections(self, window, selection_names=None):
        '''
        Classify the domains of the rebuilt geometry and write the role
        and group selections into the engine.

        Parameters
        ----------
        selection_names: dict, optional
            Renames selections, {rfqfield name: engine name}
        '''
        self._enter('bind_selections')
        p = self.params
        try:
            domains = self.engine.enumerate_domains()
        except EngineError as e:
            if not p.allow_legacy_selection:
                raise ClassificationError('[!] Error: engine cannot enumerate domains',
                                          phase=self.phase) from e
            selections = legacy_selections(self.engine, window, p.n_cells,
                                           p.vertical_cell_height, logger=self.logger)
        else:
            selections = classify_domains(domains, window, p.beam_box_width, p.r0, p.rho,
                                          four_quad=self.four_quad,
                                          has_end_flange=p.has_end_flange,
                                          flange_thickness=p.flange_thickness,
                                          precision=p.precision, logger=self.logger)

        selection_names = selection_names or {}
        try:
            for name, ids in selections.groups().items():
                self.engine.set_named_selection(selection_names.get(name, name), ids)
        except EngineError as e:
            raise ClassificationError('[!] Error: cannot write selections',
                                      phase=self.phase) from e

        self.selections = selections
        self._leave()
        return selections

    def remesh(self, cell_no):
        self._enter('remesh')
        self.mesh_report = mesh_cell(self.engine, self.mesh_settings, cell_no,
                                     logger=self.logger)
        self._leave()

    def solve(self):
        self._enter('solve')
        try:
            self.engine.solve()
        except EngineError as e:
            raise SolveError('[!] Error: solve failed', phase=self.phase) from e
        self._leave()

    def sample_grid(self, window, position):
        self._enter('sample_grid')
        data = sample_cell(self.engine, window, position, x_grid=self.params.x_grid,
                           y_grid=self.params.y_grid, z_grid_steps=self.params.z_grid_steps,
                           four_quad=self.four_quad)
        self._leave()
        return data

    def offset_and_tag(self, cell_no, data):
        self._enter('offset_and_tag')
        data[:, 2] -= self.params.cad_offset
        fieldmap = CellFieldMap(cell_no, data)
        self._leave()
        return fieldmap

    def save_cell_snapshot(self, cell_no):
        '''Troubleshooting copy of the solved model, best effort'''
        filename = snapshot_name(self.params.model_file, cell_no)
        try:
            self.engine.save_snapshot(filename)
        except (EngineError, OSError) as e:
            if self.logger is not None:
                self.logger.warning(f'Cannot save model for cell {cell_no} to {filename}',
                                    identifier='rfqfield:pipeline:saveCellException',
                                    priority_level=6, exception=e)
            return None
        return filename

    def build_and_solve(self, cell_no, window, selection_names=None, last_cell_no=None):
        '''
        Run all phases for one cell.

        Parameters
        ----------
        cell_no: int
        window: CellWindow
            Window of `cell_no` from `get_cell_parameters`
        selection_names: dict, optional
            Engine names of the selections
        last_cell_no: int, optional
            Final cell of the sweep, sampled including its end plane.
            Defaults to N + 1.

        Returns
        -------
        CellFieldMap

        Raises
        ------
        RFQFieldError
            With `cell_no` and `phase` set
        '''
        if last_cell_no is None:
            last_cell_no = self.params.n_cells + 1

        try:
            self._log('configure', f'   - Configuring cell {cell_no}...')
            self.configure_parameters(window)
            self._log('build', '   - Building geometry...')
            self.rebuild_geometry()
            self.bind_selections(window, selection_names)
            self._log('mesh', '   - Meshing...')
            self.remesh(cell_no)
            self._log('solve', '   - Solving...')
            self.solve()
            if self.params.save_separate_cells:
                self.save_cell_snapshot(cell_no)
            data = self.sample_grid(window, cell_position(cell_no, last_cell_no))
            return self.offset_and_tag(cell_no, data)

        except RFQFieldError as e:
            if e.cell_no is None:
                e.cell_no = cell_no
            if e.phase is None:
                e.phase = self.phase
            raise

    def run_cell(self, cell_no, window, selection_names=None, last_cell_no=None):
        '''`build_and_solve` returning a CellResult instead of raising'''
        try:
            fieldmap = self.build_and_solve(cell_no, window, selection_names, last_cell_no)
        except RFQFieldError as e:
            return CellResult.failure(cell_no, e, phase=e.phase)
        return CellResult.success(cell_no, fieldmap)
