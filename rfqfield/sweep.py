# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import time

from tqdm import tqdm

from .cells import get_cell_parameters
from .checkpoint import CheckpointStore
from .errors import CellError, EngineError, EngineSessionError, RFQFieldError
from .fieldmap import assemble, write_fieldmap
from .geometry import detect_four_quadrant, find_vane_extent
from .logger import Logger, convert_seconds_to_text
from .pipeline import CellPipeline, snapshot_name


class SweepResult():
    '''Summary of one call to `FieldMapSweep.run`'''

    def __init__(self, start_cell, end_cell, four_quad=False):
        self.start_cell = start_cell
        self.end_cell = end_cell
        self.four_quad = four_quad
        self.completed = []
        self.skipped = []
        self.n_restarts = 0
        self.elapsed = 0.
        self.output_file = None
        self.fieldmap = None

    def to_dict(self):
        return {'start_cell': self.start_cell, 'end_cell': self.end_cell,
                'four_quad': self.four_quad, 'completed': self.completed,
                'skipped': self.skipped, 'n_restarts': self.n_restarts,
                'elapsed': convert_seconds_to_text(self.elapsed),
                'output_file': self.output_file}

    def __repr__(self):
        return (f'SweepResult(cells {self.start_cell}-{self.end_cell}, '
                f'completed={len(self.completed)}, skipped={self.skipped})')


class FieldMapSweep():
    '''
    Cell-by-cell construction of the RFQ field map.

    Each cell is built, solved and sampled by a `CellPipeline` and
    stored in the checkpoint store, which also records the last
    finished cell so an interrupted sweep resumes where it stopped.
    The engine server is restarted every `restart_interval` cells.

    Parameters
    ----------
    session: EngineSession
        Started engine session
    params: RFQParameters
    store: CheckpointStore, optional
        Defaults to `params.checkpoint_file`
    logger: Logger, optional
        Defaults to a Logger writing to `params.log_file`
    selection_names: dict, optional
        Engine names of the selections, see `CellPipeline.bind_selections`
    progress: bool, default True
        Show a tqdm progress bar
    '''

    def __init__(self, session, params, store=None, logger=None,
                 selection_names=None, progress=True):
        self.session = session
        self.params = params
        self.store = store if store is not None else CheckpointStore(params.checkpoint_file)
        self.logger = logger if logger is not None else \
            Logger(params.log_file, to_screen=params.verbose, to_file=params.file_verbose)
        self.selection_names = selection_names
        self.progress = progress

        self.four_quad = None
        self.model_start = params.model_start
        self.model_end = params.model_end

    @property
    def engine(self):
        return self.session.engine

    def setup(self):
        '''Model symmetry and vane extent, read from the engine once'''
        p = self.params

        if p.four_quad is not None:
            self.four_quad = bool(p.four_quad)
        else:
            try:
                self.four_quad = detect_four_quadrant(self.engine.get_bounding_box())
            except EngineError as e:
                self.logger.warning('Cannot read model bounding box, assuming a quarter model',
                                    identifier='rfqfield:sweep:detectSymmetry',
                                    priority_level=6, exception=e)
                self.four_quad = False

        if self.model_start is None or self.model_end is None:
            try:
                zmin, zmax = find_vane_extent(self.engine.enumerate_domains(full_model=True))
            except EngineError as e:
                self.logger.warning('Cannot find vane ends, using cell boundaries',
                                    identifier='rfqfield:sweep:findVaneEnd',
                                    priority_level=6, exception=e)
                zmin, zmax = None, None
            if self.model_start is None:
                self.model_start = zmin
            if self.model_end is None:
                self.model_end = zmax

        self.logger.sweep.update({'four_quad': self.four_quad,
                                  'model_start': self.model_start,
                                  'model_end': self.model_end,
                                  'restart_interval': p.get_restart_interval(self.four_quad)})

    def get_window(self, cell_no):
        p = self.params
        return get_cell_parameters(p.length_data, cell_no, cad_offset=p.cad_offset,
                                   vertical_cell_height=p.vertical_cell_height, rho=p.rho,
                                   n_extra_cells=p.n_extra_cells, model_start=self.model_start,
                                   model_end=self.model_end, logger=self.logger)

    def save_diagnostic_snapshot(self):
        '''Save the engine model for inspection after a fatal error, best effort'''
        filename = snapshot_name(self.params.model_file, 'temp')
        try:
            self.engine.save_snapshot(filename)
        except (EngineError, OSError) as e:
            self.logger.warning(f'Cannot save diagnostic model to {filename}',
                                identifier='rfqfield:sweep:saveTempException',
                                priority_level=8, exception=e)
            return None
        self.logger.message('rfqfield:sweep:saveTemp',
                            f'Model saved for inspection to {filename}', priority_level=3)
        return filename

    def restart_engine(self):
        self.session.restart(snapshot=snapshot_name(self.params.model_file, 'temp'))

    def run(self, start_cell=None, end_cell=None, write_output=True):
        '''
        Sweep the cells from `start_cell` to `end_cell` (inclusive).

        Parameters
        ----------
        start_cell: int, optional
            Defaults to the cell after the last checkpointed one
        end_cell: int, optional
            Defaults to N + 1, the end region after the last cell
        write_output: bool, default True
            Assemble the global field map and write it to
            `params.output_file` once the sweep is complete

        Returns
        -------
        SweepResult

        Raises
        ------
        CellError
            Wrapping the first unrecoverable cell failure
        EngineSessionError
            If the engine could not be restarted
        '''
        p = self.params
        if self.four_quad is None:
            self.setup()

        if start_cell is None:
            start_cell = self.store.last_cell_no + 1
        if end_cell is None:
            end_cell = p.n_cells + 1

        result = SweepResult(start_cell, end_cell, four_quad=self.four_quad)
        restart_interval = p.get_restart_interval(self.four_quad)
        pipeline = CellPipeline(self.engine, p, logger=self.logger, four_quad=self.four_quad)

        t0 = time.time()
        end_section = self.logger.section('Building field map...', 'sweep:buildFieldMap')
        if start_cell > 1:
            self.logger.message('rfqfield:sweep:resume',
                                f'   Resuming from cell {start_cell}', priority_level=3)

        for cell_no in tqdm(range(start_cell, end_cell + 1), disable=not self.progress):

            if cell_no > start_cell and (cell_no - start_cell) % restart_interval == 0:
                self.restart_engine()
                result.n_restarts += 1

            self.logger.message('rfqfield:sweep:cell',
                                f'   Cell {cell_no} of {p.n_cells}', priority_level=6)
            try:
                window = self.get_window(cell_no)
                cell = pipeline.run_cell(cell_no, window, self.selection_names,
                                         last_cell_no=p.n_cells + 1)

                if cell.ok:
                    self.store.append(cell.fieldmap)
                    self.store.mark_done(cell_no)
                    result.completed.append(cell_no)
                    self.logger.cells[cell_no] = {'window': window.to_dict(),
                                                  'n_samples': len(cell.fieldmap),
                                                  'mesh': pipeline.mesh_report}
                    continue

                if p.save_separate_cells and cell.recoverable:
                    self.logger.warning(f'Skipping cell {cell_no}: {cell.error}',
                                        identifier='rfqfield:sweep:skipCell',
                                        priority_level=3, exception=cell.error)
                    self.store.mark_skipped(cell_no)
                    result.skipped.append(cell_no)
                    continue

                cell.unwrap()

            except EngineSessionError:
                raise
            except Exception as e:
                phase = getattr(e, 'phase', None) or pipeline.phase
                self.logger.error(f'Error building cell {cell_no}',
                                  identifier='rfqfield:sweep:cellException',
                                  priority_level=1, exception=e)
                self.save_diagnostic_snapshot()
                text = e.text if isinstance(e, RFQFieldError) else str(e)
                raise CellError(f'[!] Error: cell {cell_no} failed: {text}',
                                cell_no=cell_no, phase=phase) from e

        result.elapsed = time.time() - t0
        end_section()

        # gaps left by earlier runs count as well
        gaps = self.store.skipped_cells
        if write_output and not gaps:
            result.fieldmap = self.write_output()
            result.output_file = p.output_file
        elif gaps:
            self.logger.warning(f'Cells {gaps} were skipped, '
                                'field map not written', identifier='rfqfield:sweep:gaps',
                                priority_level=3)

        self.logger.sweep.update(result.to_dict())
        return result

    def write_output(self, output_file=None):
        '''Assemble the stored cells into the global field map file'''
        output_file = output_file or self.params.output_file
        fieldmap = assemble(self.store, four_quad=self.four_quad)
        write_fieldmap(output_file, fieldmap)
        self.logger.message('rfqfield:sweep:writeFieldMap',
                            f'   Field map written to {output_file}', priority_level=3)
        return fieldmap
