# ubitflash
# Copyright (c) 2017-2019 Arm Limited
# Copyright (c) 2024 ubitflash contributors
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import sys
import logging
from typing import (Callable, Optional)

LOG = logging.getLogger(__name__)

## @brief Signature of flash progress sinks.
#
# The first argument is the fraction complete in [0, 1], or None exactly once when the flash
# attempt has finished (successfully or not). The second is whether a partial flash is running.
ProgressCallback = Callable[[Optional[float], bool], None]

DEFAULT_MIN_PROGRESS_INCREMENT = 0.0025

def rate_limit_progress(minimum_increment: float, callback: ProgressCallback) -> ProgressCallback:
    """! @brief Wrap a progress sink so it is not called for tiny increments.

    A call is passed through when the value is None, exactly 0 or 1, or at least
    `minimum_increment` above the last value passed through. A None resets the tracking so the
    next flash attempt starts afresh.
    """
    last_value = -1.0

    def _limited(value: Optional[float], partial: bool) -> None:
        nonlocal last_value
        if (value is None) or (value == 0) or (value == 1) or (value >= last_value + minimum_increment):
            last_value = -1.0 if (value is None) else value
            callback(value, partial)

    return _limited

class ProgressReport(object):
    """!
    @brief Base progress report class.

    Instances are progress sinks: call with the fraction complete and the partial flag. This base
    class implements the logic but no output.
    """
    def __init__(self, file=None):
        self._file = file or sys.stdout
        self.prev_progress = 0
        self.backwards_progress = False
        self.done = False
        self.last = 0
        self.partial = None

    def __call__(self, progress, partial=False):
        # None ends the attempt; finish the bar if it was left incomplete.
        if progress is None:
            if (not self.done) and (self.partial is not None):
                self.done = True
                self._finish()
            return

        assert progress >= 0.0
        if progress > 1.0:
            LOG.debug("progress out of bounds: %.3f", progress)
            progress = 1.0

        # A change of flash mode or a restart from 0 starts a new bar.
        if (progress == 0.0) or (partial != self.partial):
            if (self.partial is not None) and not self.done:
                self._finish()
            self.partial = partial
            self._start()

        if progress < self.prev_progress:
            self.backwards_progress = True
        self.prev_progress = progress

        if not self.done:
            self._update(progress)

            if progress >= 1.0:
                self.done = True
                self._finish()
                if self.backwards_progress:
                    LOG.debug("Progress went backwards!")

    def _start(self):
        self.prev_progress = 0
        self.backwards_progress = False
        self.done = False
        self.last = 0

    def _update(self, progress):
        raise NotImplementedError()

    def _finish(self):
        raise NotImplementedError()

    @property
    def _label(self):
        return "partial" if self.partial else "full   "

class ProgressReportTTY(ProgressReport):
    """!
    @brief Progress report subclass for TTYs.

    The progress bar is fully redrawn onscreen as progress is updated.
    """

    WIDTH = 20

    def _update(self, progress):
        self._file.write('\r')
        i = int(progress * self.WIDTH)
        self._file.write("%s [%-20s] %3d%%" % (self._label, '=' * i, round(progress * 100)))
        self._file.flush()

    def _finish(self):
        self._file.write("\n")

class ProgressReportNoTTY(ProgressReport):
    """!
    @brief Progress report subclass for non-TTY output.

    Only the difference between the previous and current progress is drawn for each update,
    making the output suitable for piping to a file.
    """

    WIDTH = 40

    def _start(self):
        super(ProgressReportNoTTY, self)._start()

        self._file.write(self._label + ' [' + '---|' * 9 + '----]\n' + ' ' * len(self._label) + ' [')
        self._file.flush()

    def _update(self, progress):
        i = int(progress * self.WIDTH)
        delta = i - self.last
        self._file.write('=' * delta)
        self._file.flush()
        self.last = i

    def _finish(self):
        self._file.write("]\n")
        self._file.flush()

def print_progress(file=None):
    """!
    @brief Progress printer factory.

    Checks whether the output file is a TTY and instantiates the matching ProgressReport
    subclass. sys.stdout is used if _file_ is None.
    """
    if file is None:
        file = sys.stdout
    try:
        istty = os.isatty(file.fileno())
    except (OSError, AttributeError):
        istty = False

    klass = ProgressReportTTY if istty else ProgressReportNoTTY
    return klass(file)
