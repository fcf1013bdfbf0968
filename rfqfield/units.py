# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import re

from .errors import ConfigurationError

# scale factors to SI base units
unit_scale = {
    '': 1.0,
    'm': 1.0,
    'cm': 1e-2,
    'mm': 1e-3,
    'um': 1e-6,
    'V': 1.0,
    'kV': 1e3,
    'MV': 1e6,
}

_quantity_pattern = re.compile(r'^\s*([-+0-9.eE]+)\s*(?:\[\s*([A-Za-z]*)\s*\])?\s*$')


def format_quantity(value, unit='m', precision=12):
    '''Format `value` as an engine parameter string, e.g. "0.0125[m]"'''
    text = f'{float(value):.{precision}g}'
    if unit:
        text += f'[{unit}]'
    return text


def parse_quantity(text):
    '''
    Parse an engine parameter string such as "12.5[mm]" into
    a float in SI units. Plain numbers are returned unchanged.
    '''
    if isinstance(text, (int, float)):
        return float(text)

    match = _quantity_pattern.match(str(text))
    if match is None:
        raise ConfigurationError(f'Cannot parse quantity "{text}"')

    value, unit = match.group(1), match.group(2) or ''
    if unit not in unit_scale:
        raise ConfigurationError(f'Unknown unit "{unit}" in quantity "{text}"')

    try:
        return float(value)*unit_scale[unit]
    except ValueError as exc:
        raise ConfigurationError(f'Cannot parse quantity "{text}"') from exc
