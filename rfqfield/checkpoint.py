# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os
import json

import h5py
import numpy as np

from .fieldmap import CellFieldMap, COLUMNS


class CheckpointStore():
    '''
    HDF5 file holding the per-cell field maps of a sweep.

    Every cell is stored as dataset `fieldmap<cell_no>`. The root
    attribute `lastCellNo` is only advanced after the dataset has been
    written and flushed, so a crash in between makes the sweep process
    the cell again. Writing a cell that already exists replaces it.

    Parameters
    ----------
    filename: str
        Path of the .h5 file. Created if it does not exist.
    '''

    def __init__(self, filename='RFQFieldMap.h5'):
        self.filename = filename
        folder = os.path.dirname(os.path.abspath(filename))
        if not os.path.exists(folder):
            os.makedirs(folder)

        with h5py.File(self.filename, 'a') as h5:
            if 'lastCellNo' not in h5.attrs:
                h5.attrs['lastCellNo'] = 0
            if 'skippedCells' not in h5.attrs:
                h5.attrs['skippedCells'] = '[]'
            h5.attrs['columns'] = np.array(COLUMNS, dtype='S')

    @staticmethod
    def dataset_name(cell_no):
        return f'fieldmap{int(cell_no)}'

    @property
    def last_cell_no(self):
        with h5py.File(self.filename, 'r') as h5:
            return int(h5.attrs['lastCellNo'])

    @property
    def skipped_cells(self):
        with h5py.File(self.filename, 'r') as h5:
            return json.loads(h5.attrs['skippedCells'])

    def cell_numbers(self):
        '''Stored cell numbers in ascending order'''
        with h5py.File(self.filename, 'r') as h5:
            cells = [int(key[len('fieldmap'):]) for key in h5.keys()
                     if key.startswith('fieldmap')]
        return sorted(cells)

    def __contains__(self, cell_no):
        with h5py.File(self.filename, 'r') as h5:
            return self.dataset_name(cell_no) in h5

    def __len__(self):
        return len(self.cell_numbers())

    def append(self, fieldmap):
        '''Store a CellFieldMap, replacing a stale copy of the same cell'''
        name = self.dataset_name(fieldmap.cell_no)
        with h5py.File(self.filename, 'a') as h5:
            if name in h5:
                del h5[name]
            h5.create_dataset(name, data=fieldmap.data)
            h5.flush()

    def mark_done(self, cell_no):
        '''
        Advance the checkpoint to `cell_no` and clear a gap recorded
        for it. Re-running an earlier cell never moves the checkpoint
        back.
        '''
        with h5py.File(self.filename, 'a') as h5:
            skipped = set(json.loads(h5.attrs['skippedCells']))
            skipped.discard(int(cell_no))
            h5.attrs['skippedCells'] = json.dumps(sorted(skipped))
            h5.attrs['lastCellNo'] = max(int(h5.attrs['lastCellNo']), int(cell_no))
            h5.flush()

    def mark_skipped(self, cell_no):
        '''Record a gap and advance the checkpoint past it'''
        with h5py.File(self.filename, 'a') as h5:
            skipped = set(json.loads(h5.attrs['skippedCells']))
            skipped.add(int(cell_no))
            h5.attrs['skippedCells'] = json.dumps(sorted(skipped))
            h5.attrs['lastCellNo'] = max(int(h5.attrs['lastCellNo']), int(cell_no))
            h5.flush()

    def get(self, cell_no):
        name = self.dataset_name(cell_no)
        with h5py.File(self.filename, 'r') as h5:
            if name not in h5:
                raise KeyError(f'[!] Error: no field map stored for cell {cell_no}')
            return CellFieldMap(int(cell_no), h5[name][()])

    def iter_fieldmaps(self):
        '''Stored field maps in ascending cell order'''
        for cell_no in self.cell_numbers():
            yield self.get(cell_no)

    def reset(self):
        '''Remove all cells and restart the sweep from cell 1'''
        with h5py.File(self.filename, 'w') as h5:
            h5.attrs['lastCellNo'] = 0
            h5.attrs['skippedCells'] = '[]'
            h5.attrs['columns'] = np.array(COLUMNS, dtype='S')

    def __repr__(self):
        return f'CheckpointStore({self.filename!r}, last_cell_no={self.last_cell_no})'
