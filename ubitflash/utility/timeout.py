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

from time import (time, sleep)

from ..core import exceptions

class Timeout(object):
    """! @brief Deadline helper and context manager.

    The usual pattern uses an else block on a while loop to handle the timeout. The loop body must
    break out in the successful case.

    @code
    with Timeout(5, sleeptime=0.01) as t_o:
        while t_o.check():
            if target_is_ready():
                break
        else:
            raise exceptions.TimeoutError("target never became ready")
    @endcode

    A single Timeout may also be handed down to several operations so they share one deadline.
    Each of them polls check() or reads `remaining`; the first one to notice the deadline has
    passed raises. Use start() rather than a with statement when the deadline has to begin
    before the operations that use it.

    A timeout of None never expires.
    """

    def __init__(self, timeout, sleeptime=0):
        """! @brief Constructor.
        @param self
        @param timeout The timeout in seconds. May be None to indicate no timeout.
        @param sleeptime Time in seconds to sleep during calls to check(), starting with the
            second call. Defaults to 0, so check() does not sleep.
        """
        self._sleeptime = sleeptime
        self._timeout = timeout
        self._timed_out = False
        self._start = -1
        self._is_first_check = True

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    def start(self):
        """! @brief Start the clock. Returns self."""
        self._start = time()
        self._timed_out = False
        self._is_first_check = True
        return self

    @property
    def timeout(self):
        return self._timeout

    def check(self, autosleep=True):
        """! @brief Check for timeout and possibly sleep.

        @param self
        @param autosleep Whether to sleep if not timed out yet. The sleeptime passed to the
            constructor must have been non-zero.
        @retval True The timeout has _not_ occurred.
        @retval False The deadline has passed and the loop should be exited.
        """
        if (self._timeout is not None) and ((time() - self._start) > self._timeout):
            self._timed_out = True
        elif (not self._is_first_check) and autosleep and self._sleeptime:
            sleep(self._sleeptime)
        self._is_first_check = False
        return not self._timed_out

    @property
    def did_time_out(self):
        """! @brief Whether the timeout has occurred as of the time when this property is accessed."""
        self.check(autosleep=False)
        return self._timed_out

    @property
    def remaining(self):
        """! @brief Seconds left before the deadline, never negative. None if there is no deadline."""
        if self._timeout is None:
            return None
        return max(0.0, self._timeout - (time() - self._start))

    def raise_if_expired(self, message="operation timed out"):
        """! @brief Raise TimeoutError if the deadline has passed."""
        if self.did_time_out:
            raise exceptions.TimeoutError(message)
