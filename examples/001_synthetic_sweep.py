# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os
import numpy as np
import matplotlib.pyplot as plt

from rfqfield import RFQParameters, SyntheticEngine, EngineSession, FieldMapSweep, Logger
from rfqfield.export import export_vtk

# ---------- RFQ description ---------

# Cell lengths [m], matching section first
n_cells = 40
lengths = np.r_[20e-3, np.linspace(4e-3, 8e-3, n_cells)]

# Minimum aperture of every cell [m] -> inner beam box size
a_data = np.linspace(2.2e-3, 2.0e-3, n_cells + 1)

r0 = 3.5e-3       # mean aperture [m]
rho = 3.1076e-3   # vane tip radius [m]
voltage = 50e3    # inter-vane voltage [V]

results_folder = '001_results/'
if not os.path.exists(results_folder):
    os.mkdir(results_folder)

params = RFQParameters.from_modulations(a_data, lengths, r0, rho, voltage,
                                        z_grid_steps=8,
                                        restart_interval=15,
                                        model_file=results_folder+'RFQModel.json',
                                        checkpoint_file=results_folder+'RFQFieldMap.h5',
                                        output_file=results_folder+'RFQFieldMap.txt',
                                        log_file=results_folder+'RFQFieldMap.log',
                                        verbose=3)
params.to_json(results_folder+'parameters.json')

# ------------ Engine ----------------
# the synthetic engine builds the cell sub-volumes in memory and
# evaluates the two-term potential instead of solving
engine = SyntheticEngine(lengths, cad_offset=params.cad_offset,
                         r0=r0, rho=rho,
                         beam_box_width=params.beam_box_width,
                         modulation=1.4,
                         end_flange=True,
                         flange_thickness=5e-3)

logger = Logger(params.log_file, to_screen=params.verbose, to_file=params.file_verbose)
params.update_logger(logger)

# ----------- Sweep ----------
# rerunning the script resumes from the last stored cell
with EngineSession(engine, logger=logger) as session:
    sweep = FieldMapSweep(session, params, logger=logger)
    result = sweep.run()

logger.save_logs(results_folder)
print(result)

# ----------- Plot Ez on axis ----------
fieldmap = result.fieldmap
on_axis = (fieldmap[:, 0] == 0) & (fieldmap[:, 1] == 0)

fig, ax = plt.subplots(1, 1, figsize=[8, 4], dpi=150)
ax.plot(fieldmap[on_axis, 2]*1e3, fieldmap[on_axis, 5]*1e-6, c='tab:red', lw=1.5)
ax.set_xlabel('z [mm]')
ax.set_ylabel(r'$E_z$ on axis [MV/m]')
ax.set_title('RFQ field map, synthetic engine')
fig.tight_layout()
fig.savefig(results_folder+'Ez_on_axis.png')

# ----------- Export to VTK ----------
# open in ParaView, or pv.read(...).plot(scalars='|E|')
export_vtk(fieldmap, results_folder+'RFQFieldMap.vtk')
