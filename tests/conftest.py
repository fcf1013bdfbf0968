import numpy as np
import pytest

from rfqfield import RFQParameters, SyntheticEngine


def pytest_addoption(parser):
    parser.addoption(
        "--keep-output", action="store_true",
        help="Write sweep outputs to ./test_output instead of a temporary folder"
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: full cell sweeps")


@pytest.fixture
def output_dir(request, tmp_path):
    if request.config.getoption("--keep-output"):
        folder = request.path.parent / "test_output" / request.node.name
        folder.mkdir(parents=True, exist_ok=True)
        return folder
    return tmp_path


@pytest.fixture
def lengths():
    # matching section followed by 6 regular cells
    return np.r_[20e-3, 5e-3, 5e-3, 5.2e-3, 5.4e-3, 5.6e-3, 5.8e-3]


@pytest.fixture
def make_params(lengths, output_dir):
    def _make(**kwargs):
        kwargs.setdefault('vane_voltage', 1e3)
        kwargs.setdefault('model_file', str(output_dir / 'RFQModel.json'))
        kwargs.setdefault('checkpoint_file', str(output_dir / 'RFQFieldMap.h5'))
        kwargs.setdefault('output_file', str(output_dir / 'RFQFieldMap.txt'))
        return RFQParameters(kwargs.pop('length_data', lengths), r0=3.5e-3,
                             rho=3.1076e-3, **kwargs)
    return _make


@pytest.fixture
def make_engine(lengths):
    def _make(params=None, **kwargs):
        if params is not None:
            kwargs.setdefault('cad_offset', params.cad_offset)
            kwargs.setdefault('beam_box_width', params.beam_box_width)
        else:
            kwargs.setdefault('cad_offset', -lengths[0])
            kwargs.setdefault('beam_box_width', 3e-3)
        engine = SyntheticEngine(kwargs.pop('length_data', lengths), r0=3.5e-3,
                                 rho=3.1076e-3, **kwargs)
        return engine
    return _make
