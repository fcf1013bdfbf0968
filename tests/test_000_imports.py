import pytest


def test_dependency_imports():
    import scipy
    import numpy
    import pyvista
    import h5py
    from tqdm import tqdm


def test_module_imports():
    from rfqfield import get_cell_parameters
    from rfqfield import classify_domains
    from rfqfield import CellPipeline
    from rfqfield import FieldMapSweep
    from rfqfield import CheckpointStore
    from rfqfield import EngineSession
    from rfqfield import SyntheticEngine
    from rfqfield import RFQParameters
    from rfqfield import Logger

    from rfqfield.errors import ClassificationError, MeshingError, CellError
    from rfqfield.fieldmap import fill_fieldmap_from_quadrant, combine_fieldmaps
    from rfqfield.export import export_vtk


def test_version():
    import rfqfield
    assert isinstance(rfqfield.__version__, str)
