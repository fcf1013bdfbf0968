# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

from . import errors
from . import units
from . import logger
from . import geometry
from . import cells
from . import selections
from . import engine
from . import session
from . import meshing
from . import sampling
from . import fieldmap
from . import checkpoint
from . import pipeline
from . import sweep
from . import export

from .cells import CellWindow, get_cell_parameters
from .checkpoint import CheckpointStore
from .engine import Engine, SyntheticEngine
from .errors import CellResult
from .fieldmap import CellFieldMap, assemble, combine_fieldmaps, fill_fieldmap_from_quadrant, \
    load_fieldmap, read_fieldmap, write_fieldmap
from .geometry import BoundingBox, Domain, DomainRole, detect_four_quadrant, find_vane_extent
from .logger import Logger
from .parameters import RFQParameters
from .pipeline import CellPipeline
from .selections import SelectionSet, classify_domains, fallback_selections, find_airbag_domain
from .session import EngineSession, get_engine_port
from .sweep import FieldMapSweep, SweepResult

from ._version import __version__
