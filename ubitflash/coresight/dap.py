# ubitflash
# Copyright (c) 2015-2021 Arm Limited
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

import logging
from typing import NamedTuple

from ..core import exceptions
from ..probe.pydapaccess.cmsis_dap_core import Reg
from ..utility.timeout import Timeout

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

# DP registers, as seen through DAP_Transfer.
DP_IDR = Reg.DP_0x0 # read-only
DP_ABORT = Reg.DP_0x0 # write-only
DP_CTRL_STAT = Reg.DP_0x4 # read-write
DP_SELECT = Reg.DP_0x8 # write-only
DP_RDBUFF = Reg.DP_0xC # read-only

ABORT_STKCMPCLR = 0x00000002
ABORT_STKERRCLR = 0x00000004
ABORT_WDERRCLR = 0x00000008
ABORT_ORUNERRCLR = 0x00000010
ABORT_CLEAR_ALL = ABORT_ORUNERRCLR | ABORT_WDERRCLR | ABORT_STKERRCLR | ABORT_STKCMPCLR

DPIDR_REVISION_MASK = 0xf0000000
DPIDR_REVISION_SHIFT = 28
DPIDR_PARTNO_MASK = 0x0ff00000
DPIDR_PARTNO_SHIFT = 20
DPIDR_MIN_MASK = 0x00010000
DPIDR_VERSION_MASK = 0x0000f000
DPIDR_VERSION_SHIFT = 12

CSYSPWRUPACK = 0x80000000
CDBGPWRUPACK = 0x20000000
CSYSPWRUPREQ = 0x40000000
CDBGPWRUPREQ = 0x10000000

## Arbitrary 5 second timeout for DP power up requests.
DP_POWER_REQUEST_TIMEOUT = 5.0

## Number of attempts at selecting SWD and reading the DP IDR.
DP_CONNECT_ATTEMPTS = 4

## @brief Class to hold fields from DP IDR register.
class DPIDR(NamedTuple):
    idr: int
    partno: int
    version: int
    revision: int
    mindp: int

class DebugPort(object):
    """! @brief The SWD Debug Port of the target.

    connect() brings the DP from an unknown state to one where the MEM-AP can be used: the wire is
    switched to SWD, the IDR is read, sticky errors are cleared, AP bank 0 is selected and debug
    and system power are requested.
    """

    def __init__(self, dap):
        self._dap = dap
        self.dpidr = DPIDR(0, 0, 0, 0, 0)

    @property
    def dap(self):
        return self._dap

    def connect(self):
        for attempt in range(DP_CONNECT_ATTEMPTS):
            try:
                self._switch_to_swd()
                self.dpidr = self.read_idr()
                break
            except exceptions.TransferError:
                # The DP may have taken the SWJ sequence for an invalid transfer. Resend it.
                LOG.debug("DP IDR read failed; resending SWJ sequence (attempt %d)", attempt + 1)
                if attempt == DP_CONNECT_ATTEMPTS - 1:
                    raise

        LOG.debug("DP IDR = 0x%08x (v%d%s rev%d)", self.dpidr.idr, self.dpidr.version,
                " MINDP" if self.dpidr.mindp else "", self.dpidr.revision)

        self.clear_sticky_err()
        self._dap.write_reg(DP_SELECT, 0)
        if not self.power_up_debug():
            raise exceptions.DebugError("timed out waiting for debug power up")

    def _switch_to_swd(self):
        """! @brief Send the deprecated ADIv5.0 JTAG-to-SWD select sequence."""
        self._line_reset()
        self._dap.swj_sequence(16, 0xe79e)
        self._line_reset()
        self._dap.swj_sequence(2, 0)

    def _line_reset(self):
        # >=50 cycles with SWDIO high
        self._dap.swj_sequence(51, 0xffffffffffffff)

    def read_idr(self):
        """! @brief Read IDR register and get DP version"""
        dpidr = self._dap.read_reg(DP_IDR)
        TRACE.debug("read DP_IDR = 0x%08x", dpidr)
        dp_partno = (dpidr & DPIDR_PARTNO_MASK) >> DPIDR_PARTNO_SHIFT
        dp_version = (dpidr & DPIDR_VERSION_MASK) >> DPIDR_VERSION_SHIFT
        dp_revision = (dpidr & DPIDR_REVISION_MASK) >> DPIDR_REVISION_SHIFT
        is_mindp = (dpidr & DPIDR_MIN_MASK) != 0
        return DPIDR(dpidr, dp_partno, dp_version, dp_revision, is_mindp)

    def _handle_error(self, error):
        # Clear sticky error for fault errors.
        if isinstance(error, exceptions.TransferFaultError):
            TRACE.debug("clearing sticky error after %s", error)
            self.clear_sticky_err()

    def clear_sticky_err(self):
        self._dap.write_reg(DP_ABORT, ABORT_CLEAR_ALL)

    def power_up_debug(self):
        """! @brief Assert DP power requests.

        Request both debug and system power be enabled, and wait until the request is acked.

        @return Boolean indicating whether the power up request succeeded.
        """
        self._dap.write_reg(DP_CTRL_STAT, CSYSPWRUPREQ | CDBGPWRUPREQ)

        with Timeout(DP_POWER_REQUEST_TIMEOUT) as time_out:
            while time_out.check():
                r = self._dap.read_reg(DP_CTRL_STAT)
                if (r & (CDBGPWRUPACK | CSYSPWRUPACK)) == (CDBGPWRUPACK | CSYSPWRUPACK):
                    break
            else:
                return False

        return True
