# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

from .errors import EngineError, MeshingError
from .geometry import DomainRole


class MeshSettings():
    '''
    Mesh strategy of one cell model.

    Parameters
    ----------
    n_beam_box_cells: int
        Transverse divisions of the inner beam box
    beam_box_width: float
        Transverse half width of the inner beam box [m]
    outer_beam_box_width: float
        Transverse half width of the outer beam box [m]
    z_divisions: tuple of int, default (16, 32, 16)
        Longitudinal divisions of the front, mid and rear inner beam box
    end_cell_z_divisions: tuple of int, default (32, 128, 32)
        Longitudinal divisions used for cells 1 and 2, which contain the
        matching section taper
    terminal_hauto: int, default 1
        Predefined element size (1 finest, 9 coarsest) of the surface
        mesh on the vane terminals
    outer_beam_box_hauto: int, default 1
    air_bag_hauto: int, default 5
    global_hauto: int, default 5
    min_step_ratio: float, default 0.1
        Lower limit of the inner/outer mesh step ratio when refining
        the inner beam box after an outer beam box failure
    max_mesh_retries: int, default 4
    '''

    def __init__(self, n_beam_box_cells, beam_box_width, outer_beam_box_width,
                 z_divisions=(16, 32, 16), end_cell_z_divisions=(32, 128, 32),
                 terminal_hauto=1, outer_beam_box_hauto=1, air_bag_hauto=5,
                 global_hauto=5, min_step_ratio=0.1, max_mesh_retries=4):

        self.n_beam_box_cells = int(n_beam_box_cells)
        self.beam_box_width = beam_box_width
        self.outer_beam_box_width = outer_beam_box_width
        self.z_divisions = tuple(z_divisions)
        self.end_cell_z_divisions = tuple(end_cell_z_divisions)
        self.terminal_hauto = terminal_hauto
        self.outer_beam_box_hauto = outer_beam_box_hauto
        self.air_bag_hauto = air_bag_hauto
        self.global_hauto = global_hauto
        self.min_step_ratio = min_step_ratio
        self.max_mesh_retries = max_mesh_retries

        if self.n_beam_box_cells < 1:
            raise ValueError('[!] Error: n_beam_box_cells must be 1 or greater')

    @property
    def outer_step(self):
        return self.outer_beam_box_width/self.n_beam_box_cells

    def inner_step(self, n_divisions):
        return self.beam_box_width/n_divisions

    def step_ratio(self, n_divisions):
        return self.inner_step(n_divisions)/self.outer_step

    def divisions_for(self, cell_no):
        '''(transverse, (front, mid, rear)) divisions for `cell_no`'''
        if cell_no in (1, 2):
            return 2*self.n_beam_box_cells, self.end_cell_z_divisions
        return self.n_beam_box_cells, self.z_divisions


def configure_cell_mesh(engine, settings, n_divisions, z_divisions):
    '''Write the mesh sequence of one cell into the engine'''
    front, mid, rear = z_divisions
    engine.configure_mesh('size', 'size', hauto=settings.global_hauto)
    engine.configure_mesh('ftri1', 'free_tri', selection='allTerminals',
                          hauto=settings.terminal_hauto)
    engine.configure_mesh('map1', 'map', selection='innerBeamBoxFront',
                          numelem=n_divisions)
    engine.configure_mesh('swe1', 'sweep', selection='innerBeamBox',
                          distribution={DomainRole.INNER_BEAM_BOX_FRONT.value: front,
                                        DomainRole.INNER_BEAM_BOX_MID.value: mid,
                                        DomainRole.INNER_BEAM_BOX_REAR.value: rear})
    engine.configure_mesh('ftet1', 'free_tet', selection='outerBeamBox',
                          hauto=settings.outer_beam_box_hauto)
    engine.configure_mesh('ftet2', 'free_tet', selection='airBag',
                          hauto=settings.air_bag_hauto)


def mesh_cell(engine, settings, cell_no, logger=None):
    '''
    Mesh the current cell.

    The inner beam box gets a structured mesh, swept along z, the
    terminals a fine surface mesh and the remaining air volumes a free
    tetrahedral mesh. When the outer beam box cannot be meshed, the
    transverse density of the inner beam box is doubled and the whole
    cell remeshed, until the inner/outer step ratio falls below
    `settings.min_step_ratio` or `settings.max_mesh_retries` is reached.
    Any other failure is retried once with half the inner beam box
    density.

    Returns
    -------
    dict
        Final transverse divisions, longitudinal divisions and number of
        attempts

    Raises
    ------
    MeshingError
    '''
    n_divisions, z_divisions = settings.divisions_for(cell_no)
    attempts = 0
    halved = False

    while True:
        attempts += 1
        configure_cell_mesh(engine, settings, n_divisions, z_divisions)
        try:
            engine.remesh()
            break
        except EngineError as e:
            if e.role is DomainRole.OUTER_BEAM_BOX:
                refined = 2*n_divisions
                ratio = settings.step_ratio(refined)
                if ratio < settings.min_step_ratio or attempts > settings.max_mesh_retries:
                    raise MeshingError('[!] Error: meshing impossible, inner/outer step ratio '
                                       f'{ratio:.3g} after {attempts} attempts',
                                       cell_no=cell_no, phase='remesh') from e
                if logger is not None:
                    logger.warning(f'Outer beam box mesh failed, refining inner beam box to '
                                   f'{refined} divisions', identifier='rfqfield:meshing:refine',
                                   priority_level=6, exception=e)
                n_divisions = refined

            elif not halved and n_divisions > 1:
                halved = True
                n_divisions = max(n_divisions//2, 1)
                if logger is not None:
                    logger.warning(f'Mesh failed, retrying with {n_divisions} inner beam box '
                                   'divisions', identifier='rfqfield:meshing:coarsen',
                                   priority_level=6, exception=e)
            else:
                raise MeshingError('[!] Error: meshing failed', cell_no=cell_no,
                                   phase='remesh') from e

    return {'n_divisions': n_divisions, 'z_divisions': z_divisions, 'attempts': attempts}
