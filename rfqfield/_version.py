# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

__version__ = '0.3.0'
