# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

from enum import Enum

import numpy as np


class DomainRole(Enum):
    '''Functional role of a meshed sub-volume of one cell model'''

    INNER_BEAM_BOX_FRONT = 'innerBeamBoxFront'
    INNER_BEAM_BOX_MID = 'innerBeamBoxMid'
    INNER_BEAM_BOX_REAR = 'innerBeamBoxRear'
    OUTER_BEAM_BOX = 'outerBeamBox'
    AIR_BAG = 'airBag'
    VANE_TIP_X = 'xVaneTip'
    VANE_BACK_X = 'xVaneBack'
    VANE_TIP_Y = 'yVaneTip'
    VANE_BACK_Y = 'yVaneBack'
    END_FLANGE = 'endFlange'

    @property
    def is_vane(self):
        return self in VANE_ROLES


INNER_BEAM_BOX_ROLES = (DomainRole.INNER_BEAM_BOX_FRONT,
                        DomainRole.INNER_BEAM_BOX_MID,
                        DomainRole.INNER_BEAM_BOX_REAR)

VANE_ROLES = (DomainRole.VANE_TIP_X, DomainRole.VANE_BACK_X,
              DomainRole.VANE_TIP_Y, DomainRole.VANE_BACK_Y)

MANDATORY_ROLES = INNER_BEAM_BOX_ROLES + (DomainRole.OUTER_BEAM_BOX,
                                          DomainRole.AIR_BAG) + VANE_ROLES


def quantize(value, precision=1e-9):
    '''Round `value` (scalar or array) to a multiple of `precision`'''
    return np.round(np.asarray(value, dtype=float)/precision)*precision


class BoundingBox():
    '''
    Axis aligned bounding box (xmin, xmax, ymin, ymax, zmin, zmax),
    the same ordering as `pyvista.DataSet.bounds`.
    '''

    def __init__(self, xmin, xmax, ymin, ymax, zmin, zmax):
        self.xmin, self.xmax = float(xmin), float(xmax)
        self.ymin, self.ymax = float(ymin), float(ymax)
        self.zmin, self.zmax = float(zmin), float(zmax)

        if self.xmin > self.xmax or self.ymin > self.ymax or self.zmin > self.zmax:
            raise ValueError(f'[!] Error: inverted bounding box {self.bounds}')

    @classmethod
    def from_bounds(cls, bounds):
        return cls(*bounds)

    @property
    def bounds(self):
        return (self.xmin, self.xmax, self.ymin, self.ymax, self.zmin, self.zmax)

    @property
    def center(self):
        return (0.5*(self.xmin+self.xmax),
                0.5*(self.ymin+self.ymax),
                0.5*(self.zmin+self.zmax))

    @property
    def dz(self):
        return self.zmax - self.zmin

    def quantized(self, precision=1e-9):
        return BoundingBox(*quantize(self.bounds, precision))

    def union(self, other):
        return BoundingBox(min(self.xmin, other.xmin), max(self.xmax, other.xmax),
                           min(self.ymin, other.ymin), max(self.ymax, other.ymax),
                           min(self.zmin, other.zmin), max(self.zmax, other.zmax))

    def __eq__(self, other):
        return isinstance(other, BoundingBox) and self.bounds == other.bounds

    def __hash__(self):
        return hash(self.bounds)

    def __repr__(self):
        return 'BoundingBox(' + ', '.join(f'{v:.6g}' for v in self.bounds) + ')'


class Domain():
    '''
    One solid sub-volume of the engine geometry. Ids are assigned by the
    engine after every rebuild and are only valid for the current cell.
    '''

    def __init__(self, id, bounding_box):
        self.id = int(id)
        if not isinstance(bounding_box, BoundingBox):
            bounding_box = BoundingBox.from_bounds(bounding_box)
        self.bounding_box = bounding_box

    def __repr__(self):
        return f'Domain({self.id}, {self.bounding_box!r})'


def detect_four_quadrant(model_bounds):
    '''
    A model is treated as four-quadrant when it extends significantly
    into negative x and y: abs(xmin) > xmax/2 and abs(ymin) > ymax/2.
    '''
    if isinstance(model_bounds, BoundingBox):
        model_bounds = model_bounds.bounds
    xmin, xmax, ymin, ymax = model_bounds[:4]
    return bool(abs(xmin) > xmax/2. and abs(ymin) > ymax/2.)


def find_vane_extent(domains, roles=None):
    '''
    Longitudinal extent (zmin, zmax) of the vane geometry.

    Parameters
    ----------
    domains: list of Domain
        Domains of the full (unwindowed) model
    roles: SelectionSet, optional
        If given, only the domains assigned to vane roles are used.
        Otherwise every domain not touching the beam axis is considered
        a vane piece.
    '''
    if roles is not None:
        ids = set()
        for role in VANE_ROLES:
            ids |= roles[role]
        boxes = [d.bounding_box for d in domains if d.id in ids]
    else:
        boxes = [d.bounding_box for d in domains
                 if d.bounding_box.xmin > 0 or d.bounding_box.ymin > 0
                 or d.bounding_box.xmax < 0 or d.bounding_box.ymax < 0]

    if not boxes:
        return None, None

    return (min(b.zmin for b in boxes), max(b.zmax for b in boxes))
