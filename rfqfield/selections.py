# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import numpy as np

from .errors import ClassificationError, EngineError
from .geometry import (DomainRole, INNER_BEAM_BOX_ROLES, VANE_ROLES,
                       MANDATORY_ROLES, quantize)

# minimum number of domains of a cell model without end flange
MIN_DOMAINS_QUARTER = 9
MIN_DOMAINS_FOUR_QUAD = 13

# legacy domain numbering: airbag id -> (yTip, yBack, xTip, xBack)
LEGACY_VANE_IDS = {
    6: (5, 7, 8, 9),
    7: (5, 6, 8, 9),
    8: (5, 6, 7, 9),
}
LEGACY_AIR_VOLUME_IDS = (1, 2, 3, 4)


class SelectionSet():
    '''
    Mapping DomainRole -> set of engine domain ids for one cell.

    Derived selection groups (all vanes, terminals, air volumes...) are
    available from `groups()`. Instances are only valid for the geometry
    build they were computed from.
    '''

    def __init__(self, four_quad=False, legacy=False):
        self.roles = {role: set() for role in DomainRole}
        self.four_quad = four_quad
        self.legacy = legacy

    def __getitem__(self, role):
        return self.roles[role]

    def __iter__(self):
        return iter(self.roles.items())

    def add(self, role, domain_id):
        self.roles[role].add(int(domain_id))

    def ids(self, *roles):
        out = set()
        for role in roles:
            out |= self.roles[role]
        return sorted(out)

    def role_of(self, domain_id):
        for role, ids in self.roles.items():
            if domain_id in ids:
                return role
        return None

    def groups(self):
        '''Named selections written to the engine, {name: [ids]}'''
        x_vanes = (DomainRole.VANE_TIP_X, DomainRole.VANE_BACK_X)
        y_vanes = (DomainRole.VANE_TIP_Y, DomainRole.VANE_BACK_Y)
        groups = {role.value: self.ids(role) for role in DomainRole}
        groups.update({
            'innerBeamBox': self.ids(*INNER_BEAM_BOX_ROLES),
            'allVanes': self.ids(*VANE_ROLES),
            'horizontalVanes': self.ids(*x_vanes),
            'verticalVanes': self.ids(*y_vanes),
            'allTerminals': self.ids(*VANE_ROLES),
            'horizontalTerminals': self.ids(*x_vanes),
            'verticalTerminals': self.ids(*y_vanes),
            'vaneTips': self.ids(DomainRole.VANE_TIP_X, DomainRole.VANE_TIP_Y),
            'airVolumes': self.ids(*INNER_BEAM_BOX_ROLES, DomainRole.OUTER_BEAM_BOX,
                                   DomainRole.AIR_BAG),
            'airBagBoundaries': self.ids(DomainRole.AIR_BAG),
        })
        return groups

    def to_dict(self):
        return {role.value: sorted(ids) for role, ids in self.roles.items()}

    def __repr__(self):
        filled = {r.value: sorted(i) for r, i in self.roles.items() if i}
        return f'SelectionSet({filled})'


class _Predicates():
    '''Bounding box tests on quantized coordinates'''

    def __init__(self, window, beam_box_width, outer_beam_box_width,
                 four_quad, precision):
        self.precision = precision
        self.four_quad = four_quad
        self.bbw = float(quantize(beam_box_width, precision))
        self.obw = float(quantize(outer_beam_box_width, precision))
        self.cell_start = float(quantize(window.cell_start, precision))
        self.cell_end = float(quantize(window.cell_end, precision))
        self.selection_start = float(quantize(window.selection_start, precision))
        self.selection_end = float(quantize(window.selection_end, precision))

    def eq(self, a, b):
        return abs(a - b) <= 0.5*self.precision

    def le(self, a, b):
        return a <= b + 0.5*self.precision

    def _centered_box(self, b, width):
        if not (self.eq(b.xmax, width) and self.eq(b.ymax, width)):
            return False
        low = -width if self.four_quad else 0.
        return self.eq(b.xmin, low) and self.eq(b.ymin, low)

    def inner_beam_box(self, b):
        if not self._centered_box(b, self.bbw):
            return None
        if self.le(b.zmax, self.cell_start):
            return DomainRole.INNER_BEAM_BOX_FRONT
        if self.le(self.cell_end, b.zmin):
            return DomainRole.INNER_BEAM_BOX_REAR
        return DomainRole.INNER_BEAM_BOX_MID

    def outer_beam_box(self, b):
        return self._centered_box(b, self.obw)

    def vane(self, b):
        '''Return (role, side) for vane pieces, side is +1 or -1'''
        cx, cy, _ = b.center
        on_x_plane = self.le(b.ymin, 0.) and self.le(0., b.ymax)
        on_y_plane = self.le(b.xmin, 0.) and self.le(0., b.xmax)

        if on_x_plane and abs(cx) > abs(cy):
            if b.xmin > 0.5*self.precision:
                tip = b.xmin < self.obw - 0.5*self.precision
                return (DomainRole.VANE_TIP_X if tip else DomainRole.VANE_BACK_X), 1
            if self.four_quad and b.xmax < -0.5*self.precision:
                tip = -b.xmax < self.obw - 0.5*self.precision
                return (DomainRole.VANE_TIP_X if tip else DomainRole.VANE_BACK_X), -1

        if on_y_plane and abs(cy) > abs(cx):
            if b.ymin > 0.5*self.precision:
                tip = b.ymin < self.obw - 0.5*self.precision
                return (DomainRole.VANE_TIP_Y if tip else DomainRole.VANE_BACK_Y), 1
            if self.four_quad and b.ymax < -0.5*self.precision:
                tip = -b.ymax < self.obw - 0.5*self.precision
                return (DomainRole.VANE_TIP_Y if tip else DomainRole.VANE_BACK_Y), -1

        return None, 0

    def end_flange(self, b, flange_thickness):
        thin = self.le(b.dz, flange_thickness)
        partial = b.zmin > self.selection_start + 0.5*self.precision or \
            b.zmax < self.selection_end - 0.5*self.precision
        return thin and partial

    def air_bag(self, b):
        if self.four_quad:
            return True
        return self.eq(b.xmin, 0.) and self.eq(b.ymin, 0.) and \
            b.xmax > self.obw and b.ymax > self.obw


def classify_domains(domains, window, beam_box_width, r0, rho, four_quad=False,
                     has_end_flange=None, flange_thickness=14e-3, precision=1e-9,
                     logger=None):
    '''
    Assign every domain of the current cell geometry to a DomainRole.

    Domains are tested in a fixed priority order: inner beam box
    (front/mid/rear split at `window.cell_start` and `window.cell_end`),
    outer beam box, vane quadrants (tip/back split at the outer beam box
    width 2*r0 + rho), end flange, air bag.

    Parameters
    ----------
    domains: list of Domain
        Sub-volumes enumerated by the engine after the geometry rebuild
    window: CellWindow
        Window the geometry was built for
    beam_box_width: float
        Transverse half width of the inner beam box [m]
    r0: float
        Mean aperture radius [m]
    rho: float
        Vane tip radius [m]
    four_quad: bool, default False
        Whether the model covers the four transverse quadrants. Vane
        pieces on the negative axes are then merged into the same roles.
    has_end_flange: bool, optional
        Force end flange detection on or off. By default end flanges are
        searched only when the number of domains exceeds the minimum
        count for the symmetry (9 quarter, 13 four-quadrant).
    flange_thickness: float, default 14e-3
        Maximum z extent of an end flange domain [m]
    precision: float, default 1e-9
        Absolute quantization applied to all coordinates before testing

    Returns
    -------
    SelectionSet

    Raises
    ------
    ClassificationError
        If a mandatory role is missing or duplicated, or if a domain
        cannot be classified in quarter mode
    '''
    outer_beam_box_width = 2*r0 + rho
    if beam_box_width >= outer_beam_box_width:
        raise ClassificationError('[!] Error: inner beam box must be narrower than '
                                  f'the outer beam box ({beam_box_width} >= {outer_beam_box_width})')

    test = _Predicates(window, beam_box_width, outer_beam_box_width, four_quad, precision)

    if has_end_flange is None:
        threshold = MIN_DOMAINS_FOUR_QUAD if four_quad else MIN_DOMAINS_QUARTER
        has_end_flange = len(domains) > threshold

    selections = SelectionSet(four_quad=four_quad)
    sides = {role: [] for role in VANE_ROLES}
    unclassified = []

    for domain in domains:
        b = domain.bounding_box.quantized(precision)

        role = test.inner_beam_box(b)
        if role is None and test.outer_beam_box(b):
            role = DomainRole.OUTER_BEAM_BOX
        if role is None:
            role, side = test.vane(b)
            if role is not None:
                sides[role].append(side)
        if role is None and has_end_flange and test.end_flange(b, flange_thickness):
            role = DomainRole.END_FLANGE
        if role is None and test.air_bag(b):
            role = DomainRole.AIR_BAG

        if role is None:
            unclassified.append(domain)
            continue

        selections.add(role, domain.id)

    cell_no = getattr(window, 'cell_no', None)

    if unclassified:
        raise ClassificationError(
            '[!] Error: unclassifiable domains ' +
            ', '.join(f'{d.id} {d.bounding_box!r}' for d in unclassified),
            cell_no=cell_no, phase='classify')

    # sentinel end cells leave no room for the front or rear inner beam box
    required = [role for role in MANDATORY_ROLES
                if not (role is DomainRole.INNER_BEAM_BOX_FRONT
                        and test.eq(test.selection_start, test.cell_start))
                and not (role is DomainRole.INNER_BEAM_BOX_REAR
                         and test.eq(test.cell_end, test.selection_end))]
    missing = [role for role in required if not selections[role]]

    duplicated = []
    for role in MANDATORY_ROLES:
        n = len(selections[role])
        if role.is_vane and four_quad:
            if n > 2 or (n == 2 and sorted(sides[role]) != [-1, 1]):
                duplicated.append(role)
            elif n == 1:
                missing.append(role)
        elif role is DomainRole.AIR_BAG and four_quad:
            continue
        elif n > 1:
            duplicated.append(role)

    if missing or duplicated:
        text = '[!] Error: domain classification failed.'
        if missing:
            text += ' Missing: ' + ', '.join(r.value for r in missing) + '.'
        if duplicated:
            text += ' Duplicated: ' + ', '.join(r.value for r in duplicated) + '.'
        raise ClassificationError(text, missing=missing, duplicated=duplicated,
                                  cell_no=cell_no, phase='classify')

    if logger is not None:
        logger.message('rfqfield:selections:classifyDomains',
                       f'       - Domains classified: {selections.to_dict()}',
                       priority_level=7)

    return selections


def _legacy_set(airbag_no, four_quad=False):
    y_tip, y_back, x_tip, x_back = LEGACY_VANE_IDS[airbag_no]
    selections = SelectionSet(four_quad=four_quad, legacy=True)
    for role, domain_id in zip(INNER_BEAM_BOX_ROLES + (DomainRole.OUTER_BEAM_BOX,),
                               LEGACY_AIR_VOLUME_IDS):
        selections.add(role, domain_id)
    selections.add(DomainRole.AIR_BAG, airbag_no)
    selections.add(DomainRole.VANE_TIP_Y, y_tip)
    selections.add(DomainRole.VANE_BACK_Y, y_back)
    selections.add(DomainRole.VANE_TIP_X, x_tip)
    selections.add(DomainRole.VANE_BACK_X, x_back)
    return selections


def fallback_selections(cell_no, n_cells, crosses_matching_boundary, logger=None):
    '''
    Best-guess legacy domain numbering from the cell index alone.

    Only meant for engines that cannot enumerate domains. The numbering
    assumes the reference quarter model geometry.
    '''
    if 200 <= cell_no < n_cells:
        airbag_no = 8
    elif crosses_matching_boundary:
        airbag_no = 6
    else:
        airbag_no = 7

    if logger is not None:
        logger.warning(f'Unable to determine domain numbers. Reverting to airbag domain {airbag_no}',
                       identifier='rfqfield:selections:fallbackSelections', priority_level=6)

    return _legacy_set(airbag_no)


def find_airbag_domain(engine, window, vertical_cell_height, logger=None):
    '''
    Legacy airbag lookup by probing points at the corners of the
    selection box. Only domain numbers 6, 7 and 8 are accepted.

    Raises
    ------
    ClassificationError
        If none of the four probes returns a valid airbag number
    '''
    probes = [
        (window.box_width, window.box_width, window.selection_start),
        (window.box_width, window.box_width, window.selection_end),
        (vertical_cell_height, vertical_cell_height, window.selection_start),
        (vertical_cell_height, vertical_cell_height, window.selection_end),
    ]

    for attempt, point in enumerate(probes, start=1):
        try:
            airbag_no = engine.select_domain_at(point)
        except EngineError as e:
            airbag_no, cause = None, e
        else:
            cause = None

        if airbag_no in LEGACY_VANE_IDS:
            return airbag_no

        if logger is not None:
            last = attempt == len(probes)
            text = ('Final attempt to find domains failed.' if last else
                    f'Attempt {attempt} to find domains failed. Attempting to continue...')
            logger.warning(text, identifier='rfqfield:selections:findAirbagDomain',
                           priority_level=8, exception=cause)

    raise ClassificationError('[!] Error: invalid airbag domain number',
                              missing=[DomainRole.AIR_BAG],
                              cell_no=getattr(window, 'cell_no', None), phase='classify')


def legacy_selections(engine, window, n_cells, vertical_cell_height, logger=None):
    '''
    Selections for engines without reliable domain enumeration: probe
    for the airbag first, fall back to index heuristics.
    '''
    cell_no = int(np.min(np.atleast_1d(window.cell_no)))
    if logger is not None:
        logger.warning('Using legacy domain numbering for selections',
                       identifier='rfqfield:selections:legacySelections', priority_level=6)
    try:
        airbag_no = find_airbag_domain(engine, window, vertical_cell_height, logger=logger)
    except ClassificationError:
        return fallback_selections(cell_no, n_cells, window.crosses_matching_boundary,
                                   logger=logger)
    return _legacy_set(airbag_no)
