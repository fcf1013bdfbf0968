# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import numpy as np
import pyvista as pv

from .fieldmap import CellFieldMap, read_fieldmap


def fieldmap_to_polydata(fieldmap):
    '''
    Point cloud of a field map with the vector arrays 'E' and 'B' and
    the scalar arrays 'Ex', 'Ey', 'Ez' and '|E|'.

    Parameters
    ----------
    fieldmap: numpy.ndarray, CellFieldMap or str
        (N, 9) array, cell field map or field map text file
    '''
    if isinstance(fieldmap, str):
        fieldmap = read_fieldmap(fieldmap)
    elif isinstance(fieldmap, CellFieldMap):
        fieldmap = fieldmap.data
    fieldmap = np.asarray(fieldmap, dtype=float)

    cloud = pv.PolyData(fieldmap[:, :3].copy())
    cloud.point_data['E'] = fieldmap[:, 3:6]
    cloud.point_data['B'] = fieldmap[:, 6:9]
    for i, component in enumerate(('Ex', 'Ey', 'Ez')):
        cloud.point_data[component] = fieldmap[:, 3 + i]
    cloud.point_data['|E|'] = np.linalg.norm(fieldmap[:, 3:6], axis=1)
    return cloud


def export_vtk(fieldmap, filename='RFQFieldMap.vtk'):
    '''Save the field map as a VTK point cloud, e.g. for ParaView'''
    cloud = fieldmap_to_polydata(fieldmap)
    cloud.save(filename)
    return filename
