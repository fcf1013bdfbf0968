# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import numpy as np

from .errors import ConfigurationError


class CellWindow():
    '''
    Longitudinal window of one cell (or of a range of consecutive cells)
    and the surrounding selection region handed to the engine.

    All lengths are in [m]. The invariant
    selection_start <= cell_start < cell_end <= selection_end
    always holds.

    Attributes
    ----------
    cell_no: int or tuple
        Cell number the window was computed for, or (first, last) when
        a range of cells was requested
    cell_start, cell_end: float
        Start and end of the cell(s)
    selection_start, selection_end: float
        Start and end of the selection region including the neighbour
        cells
    box_width: float
        Transverse width of the selection box around the vanes
    crosses_matching_boundary: bool
        True if the selection region spans the boundary between the
        matching section and the first regular cell
    n_cells: int
        Number of RFQ cells the window was computed from
    '''

    def __init__(self, cell_no, cell_start, cell_end, selection_start, selection_end,
                 box_width, crosses_matching_boundary=False, n_cells=None):
        self.cell_no = cell_no
        self.cell_start = float(cell_start)
        self.cell_end = float(cell_end)
        self.selection_start = float(selection_start)
        self.selection_end = float(selection_end)
        self.box_width = float(box_width)
        self.crosses_matching_boundary = bool(crosses_matching_boundary)
        self.n_cells = n_cells

    def as_parameters(self):
        '''Engine parameter table entries: {name: (value, unit)}'''
        return {
            'cellNo': (self.cell_no if np.isscalar(self.cell_no) else self.cell_no[0], ''),
            'boxWidth': (self.box_width, 'm'),
            'cellStart': (self.cell_start, 'm'),
            'cellEnd': (self.cell_end, 'm'),
            'selectionStart': (self.selection_start, 'm'),
            'selectionEnd': (self.selection_end, 'm'),
        }

    def to_dict(self):
        return {'cell_no': self.cell_no,
                'cell_start': self.cell_start, 'cell_end': self.cell_end,
                'selection_start': self.selection_start,
                'selection_end': self.selection_end,
                'box_width': self.box_width,
                'crosses_matching_boundary': self.crosses_matching_boundary}

    def __repr__(self):
        return (f'CellWindow(cell_no={self.cell_no}, cell=[{self.cell_start:.6g}, {self.cell_end:.6g}], '
                f'selection=[{self.selection_start:.6g}, {self.selection_end:.6g}], '
                f'box_width={self.box_width:.6g})')


def cell_boundaries(length_data, cad_offset=0.):
    '''z position of the start of every cell plus the end of the last one'''
    length_data = np.asarray(length_data, dtype=float).ravel()
    return np.concatenate([[0.], np.cumsum(length_data)]) + cad_offset


def get_cell_parameters(length_data, cell_no, cad_offset=0., vertical_cell_height=15e-3,
                        rho=3.1076e-3, n_extra_cells=1, model_start=None, model_end=None,
                        logger=None):
    '''
    Compute the cell and selection windows of one RFQ cell.

    The first entry of `length_data` is the matching section. CAD models
    usually place the origin at the end of the matching section, which is
    handled by `cad_offset` (typically minus the matching section length).

    Parameters
    ----------
    length_data: array_like
        Length of every cell in [m], matching section first
    cell_no: int or sequence of int
        Cell to select. If a sequence is given, only its minimum and
        maximum are used and the window spans all cells in between.
        Cell 0 and cell N+1 are the end regions before the matching
        section and after the last cell: they are clamped to the
        structure boundary and use `model_start`/`model_end` as their
        outer limit.
    cad_offset: float, default 0.
        z position of the start of the matching section in the CAD frame
    vertical_cell_height: float, default 15e-3
        Distance from the beam axis to the back of the vane tip sections
    rho: float, default 3.1076e-3
        Mean vane tip radius. Only used when the selection includes the
        matching section, whose transverse CAD envelope is larger.
    n_extra_cells: int, default 1
        Number of neighbour cells included either side in the selection
        region
    model_start, model_end: float, optional
        z extent of the vane model. Defaults to one boundary cell length
        beyond the first/last cell.
    logger: Logger, optional
        Receives a warning when the cell number is out of range

    Returns
    -------
    CellWindow
    '''
    length_data = np.asarray(length_data, dtype=float).ravel()
    n_cells = len(length_data)

    if n_cells == 0:
        raise ConfigurationError('[!] Error: empty cell length table')
    if np.any(length_data <= 0):
        raise ConfigurationError('[!] Error: cell lengths must be positive')
    if n_extra_cells < 0:
        raise ConfigurationError('[!] Error: n_extra_cells must be 0 or greater')

    n_extra_cells = int(round(n_extra_cells))
    cells = np.atleast_1d(np.round(cell_no)).astype(int)
    first_cell, last_cell = int(cells.min()), int(cells.max())
    boundaries = cell_boundaries(length_data, cad_offset)

    if first_cell < 1 or last_cell > n_cells:
        if logger is not None:
            logger.warning(f'Cell range [{first_cell}, {last_cell}] outside [1, {n_cells}]: '
                           'clamping to the model boundaries',
                           identifier='rfqfield:cells:getCellParameters:outOfRange',
                           priority_level=6)

    # cell window
    if first_cell < 1:
        cell_start = boundaries[0] - length_data[0]
        if model_start is not None and model_start < boundaries[0]:
            cell_start = model_start
    else:
        cell_start = boundaries[min(first_cell, n_cells + 1) - 1]

    if last_cell > n_cells:
        cell_end = boundaries[-1] + length_data[-1]
        if model_end is not None and model_end > boundaries[-1]:
            cell_end = model_end
    else:
        cell_end = boundaries[max(last_cell, 0)]

    if not cell_start < cell_end:
        raise ConfigurationError(f'[!] Error: empty cell window [{cell_start}, {cell_end}]',
                                 cell_no=first_cell)

    # selection box
    first_selection_cell = first_cell - n_extra_cells
    last_selection_cell = last_cell + n_extra_cells

    if first_selection_cell <= 1:
        box_width = length_data[0] + rho
    else:
        box_width = vertical_cell_height

    crosses_matching_boundary = first_selection_cell <= 1 and last_selection_cell >= 2

    if first_selection_cell < 1:
        selection_start = boundaries[0] - length_data[0]
    else:
        selection_start = boundaries[min(first_selection_cell, n_cells + 1) - 1]

    if last_selection_cell > n_cells:
        selection_end = boundaries[-1] + length_data[-1]
    else:
        selection_end = boundaries[max(last_selection_cell, 0)]

    if crosses_matching_boundary and first_selection_cell >= 1:
        selection_start -= length_data[0]/10.

    selection_start = min(selection_start, cell_start)
    selection_end = max(selection_end, cell_end)

    if first_cell == last_cell:
        label = first_cell
    else:
        label = (first_cell, last_cell)

    return CellWindow(label, cell_start, cell_end, selection_start, selection_end,
                      box_width, crosses_matching_boundary, n_cells=n_cells)
