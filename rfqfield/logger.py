# copyright ################################# #
# This file is part of the rfqfield Package.  #
# Copyright (c) CERN, 2025.                   #
# ########################################### #

import os
import sys
import json
import time
import traceback

ERROR_LEVELS = ('information', 'warning', 'error')


def current_time():
    return time.strftime('%H:%M:%S %d-%b-%Y')


def convert_seconds_to_text(seconds):
    '''Human readable elapsed time, e.g. "1 hour, 2 minutes and 3 seconds"'''
    seconds = int(round(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    if hours:
        parts.append(f'{hours} hour' + ('s' if hours != 1 else ''))
    if minutes:
        parts.append(f'{minutes} minute' + ('s' if minutes != 1 else ''))
    if seconds or not parts:
        parts.append(f'{seconds} second' + ('s' if seconds != 1 else ''))

    if len(parts) == 1:
        return parts[0]
    return ', '.join(parts[:-1]) + ' and ' + parts[-1]


class Logger():
    '''
    Collects run parameters in sections and dispatches prioritised
    messages to the terminal and to a log file.

    A message is shown on screen when its `priority_level` is lower or
    equal than `to_screen`, and written to file when it is lower or
    equal than `to_file`. Lower numbers mean more important messages:
    1-3 for sweep milestones, 5-7 for per-cell progress and 8 for
    notification problems.

    Parameters
    ----------
    logfile: str, optional
        Path of the log file. Messages are appended. If None, nothing
        is written to disk.
    to_screen: int, default 5
        Verbosity threshold for terminal output
    to_file: int, default 10
        Verbosity threshold for the log file
    '''

    def __init__(self, logfile=None, to_screen=5, to_file=10):
        self.parameters = {}
        self.sweep = {}
        self.cells = {}

        self.logfile = logfile
        self.to_screen = to_screen
        self.to_file = to_file
        self.newline = '\r\n' if sys.platform.startswith('win') else '\n'

        self.history = []
        self._last_exception = None

    def message(self, identifier, text, priority_level=5,
                error_level='information', exception=None):
        '''
        Log one message.

        Parameters
        ----------
        identifier: str
            Colon separated origin of the message,
            e.g. 'rfqfield:sweep:restart:start'
        text: str
            Message text
        priority_level: int, default 5
            Importance of the message, compared against the
            verbosity thresholds
        error_level: str, default 'information'
            One of 'information', 'warning', 'error'
        exception: Exception, optional
            Cause of a warning or error. Its details are written to
            file unless the previous message had the same cause type.
        '''
        if error_level not in ERROR_LEVELS:
            error_level = 'information'

        entry = {'identifier': identifier, 'text': text,
                 'priority_level': priority_level,
                 'error_level': error_level,
                 'exception': exception}
        self.history.append(entry)

        skip_details = False
        if error_level != 'information' and exception is not None:
            if self._last_exception is not None and \
               type(exception) is type(self._last_exception) and \
               str(exception) == str(self._last_exception):
                skip_details = True
            self._last_exception = exception

        if priority_level <= self.to_screen:
            self._to_screen(entry)

        if self.logfile is not None and priority_level <= self.to_file:
            try:
                self._to_file(entry, skip_details)
            except OSError as e:
                # never escalate a notification failure
                if identifier != 'rfqfield:logger:fileException':
                    self.message('rfqfield:logger:fileException',
                                 'Connection to log file failed',
                                 priority_level=8, error_level='warning',
                                 exception=e)

        return entry

    def warning(self, text, identifier='rfqfield', priority_level=5, exception=None):
        return self.message(identifier, text, priority_level, 'warning', exception)

    def error(self, text, identifier='rfqfield', priority_level=3, exception=None):
        return self.message(identifier, text, priority_level, 'error', exception)

    def warnings(self):
        return [e for e in self.history if e['error_level'] == 'warning']

    def errors(self):
        return [e for e in self.history if e['error_level'] == 'error']

    def _to_screen(self, entry):
        if entry['error_level'] == 'error':
            print(f"\n[!] Error: {entry['text']}\n           {entry['identifier']}\n")
        elif entry['error_level'] == 'warning':
            print(f"[!] Warning: {entry['text']}")
        else:
            print('\x1b[2;37m'+entry['text']+'\x1b[0m')

    def _to_file(self, entry, skip_details=False):
        nl = self.newline
        exception = entry['exception']

        with open(self.logfile, 'a', encoding='utf-8') as fh:
            if entry['error_level'] == 'error':
                fh.write(f"{nl}Error: {entry['text']}{nl}")
                fh.write(f"       {entry['identifier']}{nl}")
            elif entry['error_level'] == 'warning':
                fh.write(f"Warning: {entry['text']}{nl}")
                fh.write(f"         {entry['identifier']}{nl}")
            else:
                fh.write(entry['text'] + nl)

            if exception is not None and not skip_details:
                fh.write(f'{nl}Exception details:{nl}')
                fh.write(f'    code: {type(exception).__name__}{nl}')
                fh.write(f' message: {exception}{nl}')
                for line in traceback.format_tb(exception.__traceback__):
                    fh.write(line.rstrip().replace('\n', nl) + nl)
                fh.write(nl)

    def section(self, title, sub_identifier=''):
        '''
        Context helper returning a callable that logs the end time and
        elapsed time of a section started now.
        '''
        t0 = time.time()
        base = 'rfqfield' + (':' + sub_identifier if sub_identifier else '')
        self.message(base + ':start', title, priority_level=3)
        self.message(base + ':startTime', f'   Start time: {current_time()}')

        def end():
            elapsed = convert_seconds_to_text(time.time() - t0)
            self.message(base + ':endTime',
                         f'   End time: {current_time()}{self.newline}'
                         f'   Elapsed time: {elapsed}.')
            return elapsed

        return end

    def save_logs(self, folder):
        """
        Save all logged parameter sections (parameters, sweep, cells)
        into `rfqfield.log.json` inside the results folder.
        """
        if not os.path.exists(folder):
            os.makedirs(folder)

        logfile = os.path.join(folder, 'rfqfield.log.json')

        sections = [
            ('Parameters', self.parameters),
            ('Sweep', self.sweep),
            ('Cells', self.cells),
        ]

        # convert non-serializable values to strings recursively
        def _convert(obj):
            if isinstance(obj, dict):
                return {str(k): _convert(v) for k, v in obj.items()}
            if isinstance(obj, (list, tuple)):
                return [_convert(v) for v in obj]
            if hasattr(obj, 'tolist'):
                return obj.tolist()
            try:
                json.dumps(obj)
                return obj
            except TypeError:
                return str(obj)

        with open(logfile, 'w', encoding='utf-8') as fh:
            json.dump({title: _convert(data) for title, data in sections},
                      fh, indent=2, ensure_ascii=False)

        return logfile
