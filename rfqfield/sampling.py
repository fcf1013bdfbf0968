# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import numpy as np

from .errors import EngineError, SolveError

GRID_LIMIT = 5e-3
GRID_STEP = 0.5e-3


def default_transverse_grid(four_quad=False, limit=GRID_LIMIT, step=GRID_STEP):
    '''0:step:limit, or -limit:step:limit for four-quadrant models'''
    n = int(round(limit/step))
    if four_quad:
        return np.linspace(-limit, limit, 2*n + 1)
    return np.linspace(0., limit, n + 1)


def cell_position(cell_no, last_cell_no):
    '''
    Position of `cell_no` in the sweep: 'first' for the matching
    section (and the upstream end region), 'last' for the final cell
    of the sweep, 'interior' otherwise.
    '''
    if cell_no <= 1:
        return 'first'
    if cell_no >= last_cell_no:
        return 'last'
    return 'interior'


def longitudinal_grid(cell_start, cell_end, position='interior', z_grid_steps=16):
    '''
    z sample positions of one cell.

    The first cell is sampled four times finer. Only the last cell
    includes its end plane, which is otherwise the start plane of the
    next cell.
    '''
    length = cell_end - cell_start
    if position == 'first':
        n = 4*z_grid_steps
        return cell_start + np.arange(n)*length/n
    if position == 'last':
        return cell_start + np.arange(z_grid_steps + 1)*length/z_grid_steps
    return cell_start + np.arange(z_grid_steps)*length/z_grid_steps


def sample_points(x_grid, y_grid, z_grid):
    '''(N, 3) coordinates with x varying fastest, then y, then z'''
    zz, yy, xx = np.meshgrid(np.asarray(z_grid, dtype=float),
                             np.asarray(y_grid, dtype=float),
                             np.asarray(x_grid, dtype=float), indexing='ij')
    return np.column_stack([xx.ravel(), yy.ravel(), zz.ravel()])


def get_field_map(engine, points):
    '''
    Interpolate the solved electric field at `points` (N, 3).

    Returns
    -------
    numpy.ndarray
        (N, 9) array x, y, z, Ex, Ey, Ez, Bx, By, Bz with B = 0

    Raises
    ------
    SolveError
        If the engine cannot interpolate or returns non-finite values
    '''
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError('[!] Error: points must be an (N, 3) array of x, y, z')

    try:
        E = np.asarray(engine.interpolate_field(points), dtype=float)
    except EngineError as e:
        raise SolveError('[!] Error: field interpolation failed', phase='sample_grid') from e

    if E.shape != (len(points), 3):
        raise SolveError(f'[!] Error: engine returned field of shape {E.shape} '
                         f'for {len(points)} points', phase='sample_grid')
    if not np.all(np.isfinite(E)):
        raise SolveError('[!] Error: field contains non-finite values', phase='sample_grid')

    fieldmap = np.zeros((len(points), 9))
    fieldmap[:, :3] = points
    fieldmap[:, 3:6] = E
    return fieldmap


def sample_cell(engine, window, position='interior', x_grid=None, y_grid=None,
                z_grid_steps=16, four_quad=False):
    '''Sample the solved field of one cell on the regular grid'''
    if x_grid is None:
        x_grid = default_transverse_grid(four_quad)
    if y_grid is None:
        y_grid = default_transverse_grid(four_quad)

    z_grid = longitudinal_grid(window.cell_start, window.cell_end, position, z_grid_steps)
    return get_field_map(engine, sample_points(x_grid, y_grid, z_grid))
