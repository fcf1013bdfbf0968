# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import json

import numpy as np

from .errors import ConfigurationError

RESTART_INTERVAL_QUARTER = 40
RESTART_INTERVAL_FOUR_QUAD = 10


class RFQParameters():
    '''
    Parameters of a field map sweep.

    Parameters
    ----------
    length_data: array_like
        Length of every cell [m], matching section first
    r0: float
        Mean aperture radius [m]
    rho: float
        Vane tip radius [m]
    vane_voltage: float, default 1.
        Inter-vane voltage [V]
    cad_offset: float, optional
        z position of the start of the matching section in the CAD
        frame [m]. Defaults to minus the matching section length.
    vertical_cell_height: float, default 15e-3
        Height of the vane tip sections [m]
    n_extra_cells: int, default 1
        Neighbour cells included either side of the cell in the model
    n_beam_box_cells: int, default 12
        Transverse mesh divisions of the inner beam box
    beam_box_width: float, optional
        Transverse half width of the inner beam box [m]. Defaults to
        `n_beam_box_cells / 4e3`, i.e. 0.25 mm elements.
    four_quad: bool, optional
        Model symmetry. Detected from the model bounding box if None.
    restart_interval: int, optional
        Cells between two engine restarts. Defaults to 40 for quarter
        and 10 for four-quadrant models.
    x_grid, y_grid: array_like, optional
        Transverse sample positions [m]
    z_grid_steps: int, default 16
        Longitudinal samples per cell
    model_start, model_end: float, optional
        z extent of the vanes [m], discovered from the model if None
    has_end_flange: bool, optional
        Whether the model includes end plates. Detected from the domain
        count if None.
    flange_thickness: float, default 14e-3
    precision: float, default 1e-9
        Quantization of coordinates in the domain classification [m]
    allow_legacy_selection: bool, default False
        Use the legacy domain numbering when the engine cannot
        enumerate domains
    save_separate_cells: bool, default False
        Troubleshooting mode: save the model after every cell and skip
        cells that fail to mesh or solve
    min_step_ratio: float, default 0.1
    max_mesh_retries: int, default 4
    model_file: str, default 'RFQModel.json'
        Engine model snapshot. Restart and diagnostic snapshots are
        derived from its name.
    checkpoint_file: str, default 'RFQFieldMap.h5'
    output_file: str, default 'RFQFieldMap.txt'
    log_file: str, optional
    verbose: int, default 5
        Screen verbosity threshold
    file_verbose: int, default 10
        Log file verbosity threshold
    '''

    def __init__(self, length_data, r0, rho, vane_voltage=1., cad_offset=None,
                 vertical_cell_height=15e-3, n_extra_cells=1, n_beam_box_cells=12,
                 beam_box_width=None, four_quad=None, restart_interval=None,
                 x_grid=None, y_grid=None, z_grid_steps=16, model_start=None,
                 model_end=None, has_end_flange=None, flange_thickness=14e-3,
                 precision=1e-9, allow_legacy_selection=False, save_separate_cells=False,
                 min_step_ratio=0.1, max_mesh_retries=4, model_file='RFQModel.json',
                 checkpoint_file='RFQFieldMap.h5', output_file='RFQFieldMap.txt',
                 log_file=None, verbose=5, file_verbose=10):

        self.length_data = np.asarray(length_data, dtype=float).ravel()
        self.r0 = r0
        self.rho = rho
        self.vane_voltage = vane_voltage
        self.cad_offset = cad_offset
        self.vertical_cell_height = vertical_cell_height
        self.n_extra_cells = n_extra_cells
        self.n_beam_box_cells = n_beam_box_cells
        self.beam_box_width = beam_box_width
        self.four_quad = four_quad
        self.restart_interval = restart_interval
        self.x_grid = None if x_grid is None else np.asarray(x_grid, dtype=float)
        self.y_grid = None if y_grid is None else np.asarray(y_grid, dtype=float)
        self.z_grid_steps = z_grid_steps
        self.model_start = model_start
        self.model_end = model_end
        self.has_end_flange = has_end_flange
        self.flange_thickness = flange_thickness
        self.precision = precision
        self.allow_legacy_selection = allow_legacy_selection
        self.save_separate_cells = save_separate_cells
        self.min_step_ratio = min_step_ratio
        self.max_mesh_retries = max_mesh_retries
        self.model_file = model_file
        self.checkpoint_file = checkpoint_file
        self.output_file = output_file
        self.log_file = log_file
        self.verbose = verbose
        self.file_verbose = file_verbose

        self.validate()

        if self.cad_offset is None:
            self.cad_offset = -float(self.length_data[0])
        if self.beam_box_width is None:
            self.beam_box_width = self.n_beam_box_cells/4e3

    @classmethod
    def from_modulations(cls, a_data, length_data, r0, rho, vane_voltage, **kwargs):
        '''
        Parameters from the vane modulation table: the beam box is sized
        from the minimum aperture `a_data` with 0.25 mm elements.
        '''
        a_data = np.asarray(a_data, dtype=float)
        n_beam_box_cells = int(np.floor(np.min(a_data)*4e3))
        kwargs.setdefault('n_beam_box_cells', n_beam_box_cells)
        kwargs.setdefault('beam_box_width', n_beam_box_cells/4e3)
        return cls(length_data, r0, rho, vane_voltage=vane_voltage, **kwargs)

    def validate(self):
        if self.length_data.size == 0:
            raise ConfigurationError('[!] Error: empty cell length table')
        if np.any(self.length_data <= 0) or not np.all(np.isfinite(self.length_data)):
            raise ConfigurationError('[!] Error: cell lengths must be positive and finite')
        if self.r0 is None or self.r0 <= 0 or self.rho is None or self.rho <= 0:
            raise ConfigurationError('[!] Error: r0 and rho must be positive')
        if self.n_extra_cells < 0:
            raise ConfigurationError('[!] Error: n_extra_cells must be 0 or greater')
        if self.n_beam_box_cells < 1:
            raise ConfigurationError('[!] Error: n_beam_box_cells must be 1 or greater')
        if self.z_grid_steps < 1:
            raise ConfigurationError('[!] Error: z_grid_steps must be 1 or greater')
        if self.restart_interval is not None and self.restart_interval < 1:
            raise ConfigurationError('[!] Error: restart_interval must be 1 or greater')
        if self.beam_box_width is not None and self.beam_box_width >= self.outer_beam_box_width:
            raise ConfigurationError('[!] Error: beam box wider than the outer beam box')

    @property
    def n_cells(self):
        return len(self.length_data)

    @property
    def outer_beam_box_width(self):
        return 2*self.r0 + self.rho

    def get_restart_interval(self, four_quad=None):
        if self.restart_interval is not None:
            return int(self.restart_interval)
        four_quad = self.four_quad if four_quad is None else four_quad
        return RESTART_INTERVAL_FOUR_QUAD if four_quad else RESTART_INTERVAL_QUARTER

    def to_dict(self):
        out = {}
        for key, value in self.__dict__.items():
            if isinstance(value, np.ndarray):
                value = value.tolist()
            out[key] = value
        return out

    def to_json(self, filename):
        with open(filename, 'w') as fh:
            json.dump(self.to_dict(), fh, indent=2)

    @classmethod
    def from_json(cls, filename):
        with open(filename, 'r') as fh:
            data = json.load(fh)
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f'[!] Error: invalid parameter file {filename}') from e

    def update_logger(self, logger):
        '''Record the parameters in the `parameters` section of `logger`'''
        logger.parameters.update({
            'n_cells': self.n_cells,
            'r0': self.r0,
            'rho': self.rho,
            'vane_voltage': self.vane_voltage,
            'cad_offset': self.cad_offset,
            'vertical_cell_height': self.vertical_cell_height,
            'n_extra_cells': self.n_extra_cells,
            'n_beam_box_cells': self.n_beam_box_cells,
            'beam_box_width': self.beam_box_width,
            'outer_beam_box_width': self.outer_beam_box_width,
            'four_quad': self.four_quad,
            'restart_interval': self.restart_interval,
            'z_grid_steps': self.z_grid_steps,
            'save_separate_cells': self.save_separate_cells,
            'model_file': self.model_file,
            'output_file': self.output_file,
        })
