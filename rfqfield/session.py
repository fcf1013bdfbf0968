# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os
import time
import shlex
import subprocess

from .errors import EngineError, EngineSessionError
from .logger import convert_seconds_to_text, current_time

DEFAULT_PORT = 2036
PORT_NAMES = {'default': 0, 'secondary': 1, 'tertiary': 2}


def get_engine_port(port_setting='default', port_file=None, logger=None):
    '''
    Port number of the engine server.

    Parameters
    ----------
    port_setting: str or int, default 'default'
        'default' (2036), 'secondary' (2037), 'tertiary' (2038) or an
        explicit port number. Numbers below 2036 and unknown names fall
        back to the default port.
    port_file: str, optional
        Text file containing the port number. Takes precedence over
        `port_setting` when it can be read.
    logger: Logger, optional
        Receives a warning when the port file cannot be read
    '''
    if port_file is not None:
        try:
            with open(port_file, 'r') as fh:
                port_setting = int(fh.read().strip())
        except (OSError, ValueError) as e:
            if logger is not None:
                logger.warning('Cannot get engine port number. Proceeding with default value.',
                               identifier='rfqfield:session:getEnginePortException',
                               priority_level=8, exception=e)
            return DEFAULT_PORT

    if isinstance(port_setting, str):
        if port_setting.strip().isdigit():
            port_setting = int(port_setting)
        else:
            return DEFAULT_PORT + PORT_NAMES.get(port_setting.strip().lower(), 0)

    if isinstance(port_setting, (int, float)) and not isinstance(port_setting, bool):
        if port_setting >= DEFAULT_PORT:
            return int(port_setting)

    return DEFAULT_PORT


class EngineSession():
    '''
    Lifecycle of one engine server and of the connection to it.

    The session moves through the states 'idle' -> 'launched' ->
    'connected' -> 'loaded' and back to 'stopped' on teardown. A restart
    runs teardown -> launch -> connect -> reload in this order; any other
    order is refused with `EngineSessionError`.

    Parameters
    ----------
    engine: Engine
        Adapter the session connects and reloads
    server_command: str or list, optional
        Command starting the engine server. '-port <port>' is appended.
        If None, no process is launched (in-process engines).
    port: str or int, default 'default'
        Port setting, see `get_engine_port`
    port_file: str, optional
        File holding the port number
    model_file: str, optional
        Snapshot loaded after connecting. Ignored when `rebuild_model`
        is given.
    rebuild_model: callable, optional
        `rebuild_model(engine)` recreates the model from scratch, e.g.
        from a CAD import. Used instead of reloading snapshots.
    startup_delay: float, default 0.
        Seconds to wait after launching the server before connecting
    logger: Logger, optional
    '''

    def __init__(self, engine, server_command=None, port='default', port_file=None,
                 model_file=None, rebuild_model=None, startup_delay=0., logger=None):

        self.engine = engine
        self.server_command = server_command
        self.logger = logger
        self.port = get_engine_port(port, port_file, logger=logger)
        self.model_file = model_file
        self.rebuild_model = rebuild_model
        self.startup_delay = startup_delay

        self.process = None
        self.state = 'idle'
        self.n_restarts = 0

    @property
    def cad_import(self):
        return self.rebuild_model is not None

    def _log(self, identifier, text, priority_level=5):
        if self.logger is not None:
            self.logger.message('rfqfield:session:' + identifier, text,
                                priority_level=priority_level)

    def _require(self, action, *states):
        if self.state not in states:
            raise EngineSessionError(f'[!] Error: cannot {action} engine session '
                                     f'in state "{self.state}"', phase=action)

    def launch(self):
        '''Start the engine server process'''
        self._require('launch', 'idle', 'stopped')

        if self.server_command is not None:
            command = self.server_command
            if isinstance(command, str):
                command = shlex.split(command)
            command = list(command) + ['-port', str(self.port)]
            self._log('launch:start', f'Starting engine server on port {self.port}...', 3)
            try:
                self.process = subprocess.Popen(command, stdout=subprocess.DEVNULL,
                                                stderr=subprocess.STDOUT)
            except OSError as e:
                raise EngineSessionError(f'[!] Error: cannot start engine server {command[0]}',
                                         phase='launch') from e
            if self.startup_delay:
                time.sleep(self.startup_delay)
            if self.process.poll() is not None:
                raise EngineSessionError('[!] Error: engine server exited with code '
                                         f'{self.process.returncode}', phase='launch')

        self.state = 'launched'

    def connect(self):
        self._require('connect', 'launched')
        try:
            self.engine.connect(self.port)
        except EngineError as e:
            raise EngineSessionError(f'[!] Error: cannot connect to engine on port {self.port}',
                                     phase='connect') from e
        self.state = 'connected'

    def reload(self, snapshot=None):
        '''Load `snapshot` (default: the model file) or rebuild the model'''
        self._require('reload', 'connected', 'loaded')
        try:
            if self.rebuild_model is not None:
                self.rebuild_model(self.engine)
            else:
                snapshot = snapshot or self.model_file
                if snapshot is not None:
                    self.engine.load_snapshot(snapshot)
        except (EngineError, OSError) as e:
            raise EngineSessionError('[!] Error: cannot reload engine model',
                                     phase='reload') from e
        self.state = 'loaded'

    def teardown(self):
        '''Disconnect and stop the server process'''
        if self.state in ('connected', 'loaded'):
            try:
                self.engine.disconnect()
            except EngineError as e:
                raise EngineSessionError('[!] Error: cannot disconnect from engine',
                                         phase='teardown') from e

        if self.process is not None:
            self.process.terminate()
            try:
                self.process.wait(timeout=30)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
            self.process = None

        self.state = 'stopped'

    def start(self):
        '''Launch, connect and load the model'''
        self.launch()
        self.connect()
        self.reload()
        return self

    def restart(self, snapshot=None):
        '''
        Restart the engine server to release its memory.

        Unless the model is rebuilt from CAD, it is first saved to
        `snapshot` and reloaded from it after reconnecting.

        Raises
        ------
        EngineSessionError
            If any step fails. The sweep cannot continue in that case.
        '''
        self._require('restart', 'connected', 'loaded')
        t0 = time.time()
        self._log('restart:start', 'Reloading engine server...', 3)
        self._log('restart:startTime', f'   Start time: {current_time()}')

        if not self.cad_import and snapshot is not None:
            try:
                self.engine.save_snapshot(snapshot)
            except (EngineError, OSError) as e:
                raise EngineSessionError(f'[!] Error: cannot save model to {snapshot}',
                                         phase='restart') from e
        elif self.cad_import:
            snapshot = None

        self.teardown()
        self.launch()
        self.connect()
        self.reload(snapshot)
        self.n_restarts += 1

        self._log('restart:endTime', f'   End time: {current_time()}{os.linesep}'
                  f'   Elapsed time: {convert_seconds_to_text(time.time() - t0)}.')

    def close(self):
        if self.state != 'idle':
            self.teardown()

    def __enter__(self):
        if self.state in ('idle', 'stopped'):
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
