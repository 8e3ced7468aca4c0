# walletdb - wallet record storage and recovery
# Copyright (C) 2019-2020 The ElectrumSV Developers
#
# Permission is hereby granted, free of charge, to any person
# obtaining a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS
# BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN
# ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
# CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

'''walletdb logging facilities.'''

import logging
from typing import Optional, TextIO, Union


LOGGER_NAME = "walletdb"
LOG_FORMAT = '%(asctime)s:' + logging.BASIC_FORMAT


class Logs(object):
    '''
    Manages the loggers of the walletdb modules.

    Every module logger is a child of the package logger, which only has a null handler until
    the application asks for output. The application's own logging configuration is otherwise
    left alone.
    '''

    def __init__(self) -> None:
        # root is a public attribute.
        self.root = logging.getLogger(LOGGER_NAME)
        self.root.addHandler(logging.NullHandler())
        self.stream_handler: Optional[logging.StreamHandler] = None

    def add_handler(self, handler: logging.Handler) -> None:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.root.addHandler(handler)

    def remove_handler(self, handler: logging.Handler) -> None:
        self.root.removeHandler(handler)

    def add_file_output(self, path: str) -> logging.Handler:
        handler = logging.FileHandler(path, encoding='utf-8')
        self.add_handler(handler)
        return handler

    def set_stream_output(self, stream: TextIO) -> None:
        if self.stream_handler is None:
            self.stream_handler = logging.StreamHandler(stream)
            self.add_handler(self.stream_handler)
        else:
            self.stream_handler.setStream(stream)

    def get_logger(self, name: str) -> logging.Logger:
        return self.root.getChild(name)

    def set_level(self, level: Union[str, int]) -> None:
        '''Level can be a string, such as "info", or a constant from logging module.'''
        if isinstance(level, str):
            level = level.upper()
        self.root.setLevel(level)

    def level(self) -> int:
        return self.root.getEffectiveLevel()

    def is_debug_level(self) -> bool:
        return self.level() == logging.DEBUG


logs = Logs()
