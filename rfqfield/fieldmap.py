# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os

import numpy as np

HEADER = 'x\ty\tz\tEx\tEy\tEz\tBx\tBy\tBz'
COLUMNS = HEADER.split('\t')


class CellFieldMap():
    '''
    Field samples of one cell: an (N, 9) array of
    x, y, z, Ex, Ey, Ez, Bx, By, Bz tagged with its cell number.
    '''

    def __init__(self, cell_no, data):
        data = np.asarray(data, dtype=float)
        if data.ndim != 2 or data.shape[1] != 9:
            raise ValueError(f'[!] Error: field map must be an (N, 9) array, got {data.shape}')
        self.cell_no = cell_no
        self.data = data

    def __len__(self):
        return len(self.data)

    @property
    def x(self):
        return self.data[:, 0]

    @property
    def y(self):
        return self.data[:, 1]

    @property
    def z(self):
        return self.data[:, 2]

    @property
    def E(self):
        return self.data[:, 3:6]

    def __repr__(self):
        return f'CellFieldMap(cell_no={self.cell_no}, n_samples={len(self)})'


def _as_array(fieldmap):
    if isinstance(fieldmap, CellFieldMap):
        return fieldmap.data
    fieldmap = np.asarray(fieldmap, dtype=float)
    if fieldmap.ndim != 2 or fieldmap.shape[1] != 9:
        raise ValueError(f'[!] Error: field map must be an (N, 9) array, got {fieldmap.shape}')
    return fieldmap


def load_fieldmap(source):
    '''
    Concatenate per-cell field maps in ascending cell order.

    Parameters
    ----------
    source: CheckpointStore or iterable of CellFieldMap

    Returns
    -------
    numpy.ndarray
        (N, 9) global field map. Samples shared by adjacent cells are
        kept as they are.
    '''
    if hasattr(source, 'iter_fieldmaps'):
        maps = list(source.iter_fieldmaps())
    else:
        maps = sorted(source, key=lambda m: m.cell_no)

    if not maps:
        return np.zeros((0, 9))
    return np.concatenate([_as_array(m) for m in maps], axis=0)


def fill_fieldmap_from_quadrant(fieldmap):
    '''
    Expand a first-quadrant field map (x >= 0, y >= 0) to the full
    transverse plane using the quadrupole symmetry.

    The transverse field on the beam axis is set to zero. Samples are
    then mirrored across x = 0 (Ex and Bx change sign) and the result
    across y = 0 (Ey and By change sign). Samples lying on a mirror
    plane are not duplicated. Samples outside the first quadrant are
    dropped first, so an already mirrored map comes back unchanged.
    The output is sorted by z, y, x.
    '''
    fieldmap = np.array(_as_array(fieldmap), dtype=float)
    fieldmap = fieldmap[(fieldmap[:, 0] >= 0) & (fieldmap[:, 1] >= 0)]

    on_axis = (fieldmap[:, 0] == 0) & (fieldmap[:, 1] == 0)
    fieldmap[on_axis, 3] = 0.
    fieldmap[on_axis, 4] = 0.

    mirror = fieldmap[fieldmap[:, 0] > 0].copy()
    mirror[:, [0, 3, 6]] *= -1
    fieldmap = np.concatenate([fieldmap, mirror], axis=0)

    mirror = fieldmap[fieldmap[:, 1] > 0].copy()
    mirror[:, [1, 4, 7]] *= -1
    fieldmap = np.concatenate([fieldmap, mirror], axis=0)

    order = np.lexsort((fieldmap[:, 0], fieldmap[:, 1], fieldmap[:, 2]))
    return fieldmap[order]


def assemble(source, four_quad=False):
    '''Global field map from the per-cell maps, mirrored unless four-quadrant'''
    fieldmap = load_fieldmap(source)
    if four_quad:
        # solved over the full plane, on-axis Ex and Ey kept as sampled
        return fieldmap
    return fill_fieldmap_from_quadrant(fieldmap)


def write_fieldmap(filename, fieldmap, newline=os.linesep):
    '''Tab separated text file with a header line, 10 significant digits'''
    np.savetxt(filename, _as_array(fieldmap), fmt='%.10g', delimiter='\t',
               header=HEADER, comments='', newline=newline)
    return filename


def read_fieldmap(filename):
    '''Read a field map text file with or without its header line'''
    with open(filename, 'r') as fh:
        first = fh.readline()
    skiprows = 0 if _is_numeric(first) else 1
    data = np.loadtxt(filename, skiprows=skiprows, ndmin=2)
    if data.size == 0:
        return np.zeros((0, 9))
    if data.shape[1] == 6:
        data = np.column_stack([data, np.zeros((len(data), 3))])
    return _as_array(data)


def _is_numeric(line):
    try:
        [float(v) for v in line.split()]
    except ValueError:
        return False
    return bool(line.split())


def combine_fieldmaps(input_files, output_file, skip_zero=False):
    '''
    Combine several field map files into one.

    Parameters
    ----------
    input_files: list of (str, float)
        Field map files and the z position of their origin [m] in the
        combined map, e.g. [('matching.txt', 0.), ('rfq.txt', 21.8e-3)]
    output_file: str
        Combined field map, written with `write_fieldmap`
    skip_zero: bool, default False
        Drop the z = 0 plane of each file, for maps whose first plane
        repeats the last plane of the previous file

    Returns
    -------
    numpy.ndarray
        The combined (N, 9) field map
    '''
    maps = []
    for entry in input_files:
        if isinstance(entry, (str, os.PathLike)):
            filename, offset = entry, 0.
        else:
            filename, offset = entry
        if not os.path.exists(filename):
            raise FileNotFoundError(f'[!] Error: cannot find input file {filename}')

        data = read_fieldmap(filename)
        if skip_zero:
            data = data[data[:, 2] != 0]
        data[:, 2] += offset

        # drop repeated points, keeping the first occurrence
        _, first = np.unique(data[:, :3], axis=0, return_index=True)
        maps.append(data[np.sort(first)])

    combined = np.concatenate(maps, axis=0) if maps else np.zeros((0, 9))
    write_fieldmap(output_file, combined)
    return combined
