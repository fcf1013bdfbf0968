# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

'''
Exception hierarchy used across the cell sweep.

Every exception carries a `recoverable` flag. Recoverable errors
can be absorbed by the sweep when running in troubleshooting mode
(`save_separate_cells=True`); everything else aborts the sweep after
a diagnostic snapshot of the engine model has been attempted.
'''


class RFQFieldError(Exception):
    '''Base class for all rfqfield errors'''

    recoverable = False
    identifier = 'rfqfield:error'

    def __init__(self, text='', cell_no=None, phase=None):
        super().__init__(text)
        self.text = text
        self.cell_no = cell_no
        self.phase = phase

    def __str__(self):
        where = []
        if self.cell_no is not None:
            where.append(f'cell {self.cell_no}')
        if self.phase is not None:
            where.append(f'phase "{self.phase}"')
        if where:
            return f'{self.text} ({", ".join(where)})'
        return self.text


class ConfigurationError(RFQFieldError):
    '''Bad window bounds or missing/invalid scalar parameters'''
    identifier = 'rfqfield:configuration'


class ClassificationError(RFQFieldError):
    '''A domain role is missing, duplicated, or a domain is unclassifiable

    Attributes
    ----------
    missing: list of DomainRole
        Mandatory roles that received no domain
    duplicated: list of DomainRole
        Roles that received more domains than allowed
    '''
    identifier = 'rfqfield:classification'

    def __init__(self, text='', missing=None, duplicated=None, **kwargs):
        super().__init__(text, **kwargs)
        self.missing = list(missing or [])
        self.duplicated = list(duplicated or [])


class GeometryError(RFQFieldError):
    identifier = 'rfqfield:geometry'


class MeshingError(RFQFieldError):
    '''Meshing failed even after density escalation'''
    recoverable = True
    identifier = 'rfqfield:meshing'


class SolveError(RFQFieldError):
    recoverable = True
    identifier = 'rfqfield:solve'


class EngineError(RFQFieldError):
    '''Raised by engine adapters when a native call fails

    Attributes
    ----------
    role: DomainRole or None
        Mesh region responsible for a meshing failure, if known
    '''
    identifier = 'rfqfield:engine'

    def __init__(self, text='', role=None, **kwargs):
        super().__init__(text, **kwargs)
        self.role = role


class EngineSessionError(RFQFieldError):
    '''Failed launch, teardown, reconnect or snapshot reload'''
    identifier = 'rfqfield:session'


class CellError(RFQFieldError):
    '''Wraps the error that stopped the sweep at a given cell and phase'''
    identifier = 'rfqfield:cell'


class CellResult():
    '''
    Outcome of building and solving one cell.

    Either `fieldmap` is set (success) or `error` is set. `recoverable`
    tells the sweep whether the failure may be skipped in troubleshooting
    mode.
    '''

    def __init__(self, cell_no, fieldmap=None, error=None, phase=None):
        self.cell_no = cell_no
        self.fieldmap = fieldmap
        self.error = error
        self.phase = phase

    @classmethod
    def success(cls, cell_no, fieldmap):
        return cls(cell_no, fieldmap=fieldmap)

    @classmethod
    def failure(cls, cell_no, error, phase=None):
        return cls(cell_no, error=error, phase=phase)

    @property
    def ok(self):
        return self.error is None

    @property
    def recoverable(self):
        if self.ok:
            return True
        return bool(getattr(self.error, 'recoverable', False))

    def unwrap(self):
        '''Return the field map or raise the stored error'''
        if self.error is not None:
            raise self.error
        return self.fieldmap

    def __repr__(self):
        if self.ok:
            return f'CellResult(cell_no={self.cell_no}, ok)'
        return f'CellResult(cell_no={self.cell_no}, error={self.error!r}, phase={self.phase!r})'
