import os

import numpy as np
import pytest

from rfqfield import EngineSession, FieldMapSweep, Logger
from rfqfield.checkpoint import CheckpointStore
from rfqfield.errors import CellError, EngineSessionError, SolveError
from rfqfield.fieldmap import read_fieldmap

# 16 planes for the matching section, 4 for each of the cells 2-7 and
# 5 for the closing end region
N_PLANES = 16 + 6*4 + 5
GRID = [0., 1e-3]


def sweep_params(make_params, **kwargs):
    kwargs.setdefault('x_grid', GRID)
    kwargs.setdefault('y_grid', GRID)
    kwargs.setdefault('z_grid_steps', 4)
    return make_params(**kwargs)


def make_sweep(session, params, logger=None):
    return FieldMapSweep(session, params, logger=logger or Logger(to_screen=0),
                         progress=False)


@pytest.mark.slow
class TestQuarterSweep:

    def test_full_sweep(self, make_params, make_engine):
        params = sweep_params(make_params)
        with EngineSession(make_engine(params)) as session:
            sweep = make_sweep(session, params)
            result = sweep.run()

        assert not sweep.four_quad
        assert result.completed == list(range(1, params.n_cells + 2))
        assert result.skipped == []
        assert result.n_restarts == 0

        # each quarter plane of 2 x 2 points is mirrored to 3 x 3
        assert result.fieldmap.shape == (N_PLANES*9, 9)
        assert len(np.unique(result.fieldmap[:, 2])) == N_PLANES
        assert os.path.exists(params.output_file)
        assert np.allclose(read_fieldmap(params.output_file), result.fieldmap)

        store = CheckpointStore(params.checkpoint_file)
        assert store.last_cell_no == params.n_cells + 1
        assert len(store) == params.n_cells + 1

    def test_vane_extent_closes_the_sweep(self, make_params, make_engine):
        params = sweep_params(make_params)
        engine = make_engine(params)
        with EngineSession(engine) as session:
            sweep = make_sweep(session, params)
            result = sweep.run()

        assert sweep.model_end == pytest.approx(engine.vane_end)
        z = result.fieldmap[:, 2]
        assert z.max() == pytest.approx(engine.vane_end - params.cad_offset)
        assert z.min() == pytest.approx(0.)

    def test_periodic_restart(self, make_params, make_engine, output_dir):
        params = sweep_params(make_params, restart_interval=3)
        engine = make_engine(params)
        with EngineSession(engine) as session:
            result = make_sweep(session, params).run()
            assert session.n_restarts == 2

        # restarts before cells 4 and 7
        assert result.n_restarts == 2
        assert os.path.exists(output_dir / 'RFQModel_temp.json')
        assert result.fieldmap.shape == (N_PLANES*9, 9)

    def test_resume(self, make_params, make_engine):
        params = sweep_params(make_params)
        with EngineSession(make_engine(params)) as session:
            first = make_sweep(session, params).run(end_cell=3)
        assert first.completed == [1, 2, 3]

        with EngineSession(make_engine(params)) as session:
            second = make_sweep(session, params).run()
        assert second.start_cell == 4
        assert second.completed == list(range(4, params.n_cells + 2))

        # no duplicated planes at the resume boundary
        assert second.fieldmap.shape == (N_PLANES*9, 9)

    def test_fatal_cell_failure(self, make_params, make_engine, output_dir):
        params = sweep_params(make_params)
        logger = Logger(to_screen=0)
        with EngineSession(make_engine(params, solve_failures={4})) as session:
            with pytest.raises(CellError) as excinfo:
                make_sweep(session, params, logger=logger).run()

        assert excinfo.value.cell_no == 4
        assert excinfo.value.phase == 'solve'
        assert isinstance(excinfo.value.__cause__, SolveError)
        assert CheckpointStore(params.checkpoint_file).last_cell_no == 3
        assert os.path.exists(output_dir / 'RFQModel_temp.json')
        assert not os.path.exists(params.output_file)
        assert len(logger.errors()) == 1

    def test_troubleshooting_skips_cells(self, make_params, make_engine, output_dir):
        params = sweep_params(make_params, save_separate_cells=True)
        logger = Logger(to_screen=0)
        with EngineSession(make_engine(params, solve_failures={4})) as session:
            result = make_sweep(session, params, logger=logger).run()

        assert result.skipped == [4]
        assert 4 not in result.completed
        assert not os.path.exists(params.output_file)
        assert result.fieldmap is None

        store = CheckpointStore(params.checkpoint_file)
        assert store.skipped_cells == [4]
        assert store.last_cell_no == params.n_cells + 1
        assert os.path.exists(output_dir / 'RFQModel_5.json')
        assert any(e['identifier'] == 'rfqfield:sweep:skipCell' for e in logger.warnings())

    def test_resume_keeps_earlier_gaps(self, make_params, make_engine):
        params = sweep_params(make_params, save_separate_cells=True)
        with EngineSession(make_engine(params, solve_failures={4})) as session:
            first = make_sweep(session, params).run(end_cell=5)
        assert first.skipped == [4]

        # the resumed run succeeds on every cell it processes
        logger = Logger(to_screen=0)
        with EngineSession(make_engine(params)) as session:
            second = make_sweep(session, params, logger=logger).run()

        assert second.start_cell == 6
        assert second.skipped == []
        assert second.fieldmap is None
        assert not os.path.exists(params.output_file)
        gaps = [e for e in logger.warnings() if e['identifier'] == 'rfqfield:sweep:gaps']
        assert len(gaps) == 1
        assert CheckpointStore(params.checkpoint_file).skipped_cells == [4]

        # rerunning the skipped cell closes the gap and writes the map
        with EngineSession(make_engine(params)) as session:
            third = make_sweep(session, params).run(start_cell=4, end_cell=4)

        store = CheckpointStore(params.checkpoint_file)
        assert store.skipped_cells == []
        assert store.last_cell_no == params.n_cells + 1
        assert third.completed == [4]
        assert os.path.exists(params.output_file)
        assert third.fieldmap.shape == (N_PLANES*9, 9)

    def test_snapshot_failure_is_logged(self, make_params, make_engine):
        params = sweep_params(make_params)
        logger = Logger(to_screen=0)
        engine = make_engine(params, solve_failures={2}, snapshot_failures=True)
        with EngineSession(engine) as session:
            with pytest.raises(CellError):
                make_sweep(session, params, logger=logger).run()

        warning = [e for e in logger.warnings()
                   if e['identifier'] == 'rfqfield:sweep:saveTempException']
        assert len(warning) == 1
        assert warning[0]['priority_level'] == 8

    def test_restart_failure_stops_sweep(self, make_params, make_engine):
        params = sweep_params(make_params, restart_interval=2)
        engine = make_engine(params, snapshot_failures=True)
        with EngineSession(engine) as session:
            with pytest.raises(EngineSessionError):
                make_sweep(session, params).run()

        assert CheckpointStore(params.checkpoint_file).last_cell_no == 2


@pytest.mark.slow
class TestFourQuadrantSweep:

    def test_detected_and_not_mirrored(self, make_params, make_engine):
        grid = [-1e-3, 0., 1e-3]
        params = sweep_params(make_params, x_grid=grid, y_grid=grid)
        with EngineSession(make_engine(params, four_quad=True)) as session:
            sweep = make_sweep(session, params)
            result = sweep.run()

        assert sweep.four_quad
        assert params.get_restart_interval(sweep.four_quad) == 10
        assert result.n_restarts == 0
        assert result.fieldmap.shape == (N_PLANES*9, 9)
        # field is odd in x and y
        left = result.fieldmap[result.fieldmap[:, 0] < 0]
        right = result.fieldmap[result.fieldmap[:, 0] > 0]
        assert np.allclose(left[:, 3], -right[:, 3])
