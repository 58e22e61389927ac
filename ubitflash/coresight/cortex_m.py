# ubitflash
# Copyright (c) 2006-2020 Arm Limited
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

from ..core import exceptions
from ..utility.timeout import Timeout

LOG = logging.getLogger(__name__)

class CortexM(object):
    """! @brief Debug control of a Cortex-M core through its memory mapped debug registers."""

    # Debug Halting Control and Status Register
    DHCSR = 0xE000EDF0
    C_DEBUGEN = (1 << 0)
    C_HALT = (1 << 1)
    C_STEP = (1 << 2)
    C_MASKINTS = (1 << 3)
    C_SNAPSTALL = (1 << 5)
    S_REGRDY = (1 << 16)
    S_HALT = (1 << 17)
    S_SLEEP = (1 << 18)
    S_LOCKUP = (1 << 19)
    S_RETIRE_ST = (1 << 24)
    S_RESET_ST = (1 << 25)

    # Debug Core Register Selector Register
    DCRSR = 0xE000EDF4
    DCRSR_REGWnR = (1 << 16)
    DCRSR_REGSEL = 0x1F

    # Debug Core Register Data Register
    DCRDR = 0xE000EDF8

    # Debug Exception and Monitor Control Register
    DEMCR = 0xE000EDFC
    DEMCR_VC_CORERESET = (1 << 0)

    # NVIC: Application Interrupt/Reset Control Register
    NVIC_AIRCR = 0xE000ED0C
    NVIC_AIRCR_VECTKEY = (0x5FA << 16)
    NVIC_AIRCR_VECTRESET = (1 << 0)
    NVIC_AIRCR_VECTCLRACTIVE = (1 << 1)
    NVIC_AIRCR_SYSRESETREQ = (1 << 2)

    DBGKEY = (0xA05F << 16)

    # Core register numbers for DCRSR.REGSEL.
    R0 = 0
    SP = 13
    LR = 14
    PC = 15

    ## Number of general purpose registers r0-r12.
    GENERAL_REGISTER_COUNT = 13

    ## Seconds to wait for DHCSR.S_REGRDY after a core register access.
    REGISTER_READY_TIMEOUT = 0.1

    ## Seconds to wait for the core to report halted after a halt request.
    HALT_TIMEOUT = 1.0

    def __init__(self, ap):
        self._ap = ap

    @property
    def ap(self):
        return self._ap

    def read32(self, addr):
        return self._ap.read32(addr)

    def write32(self, addr, value):
        self._ap.write32(addr, value)

    def halt(self, wait=True):
        """! @brief Halt the core.

        @param wait Poll until the core reports halted.
        @exception TimeoutError The core did not halt within HALT_TIMEOUT.
        """
        LOG.debug("halting core")
        self.write32(CortexM.DHCSR, CortexM.DBGKEY | CortexM.C_DEBUGEN | CortexM.C_HALT)
        if not wait:
            return
        with Timeout(CortexM.HALT_TIMEOUT) as t_o:
            while t_o.check():
                if self.is_halted():
                    break
            else:
                raise exceptions.TimeoutError("timed out waiting for core to halt")

    def resume(self):
        """! @brief Resume execution of the core."""
        LOG.debug("resuming core")
        self.write32(CortexM.DHCSR, CortexM.DBGKEY | CortexM.C_DEBUGEN)

    def is_halted(self):
        return (self.read32(CortexM.DHCSR) & CortexM.S_HALT) != 0

    def _wait_for_regrdy(self, reg):
        with Timeout(CortexM.REGISTER_READY_TIMEOUT) as t_o:
            while t_o.check():
                if self.read32(CortexM.DHCSR) & CortexM.S_REGRDY:
                    break
            else:
                raise exceptions.CoreRegisterAccessError("timed out accessing core register %d" % reg)

    def read_core_register(self, reg):
        """! @brief Read core register _reg_ (0-15). The core must be halted."""
        self.write32(CortexM.DCRSR, reg & CortexM.DCRSR_REGSEL)
        self._wait_for_regrdy(reg)
        return self.read32(CortexM.DCRDR)

    def write_core_register(self, reg, value):
        """! @brief Write core register _reg_ (0-15). The core must be halted."""
        self.write32(CortexM.DCRDR, value)
        self.write32(CortexM.DCRSR, (reg & CortexM.DCRSR_REGSEL) | CortexM.DCRSR_REGWnR)
        self._wait_for_regrdy(reg)

    def software_reset(self, timeout=None):
        """! @brief Request a system reset and wait for the core to leave reset.

        S_RESET_ST is sticky until DHCSR is read, so polling ends at the first read that finds it
        clear.

        @param timeout Optional running Timeout bounding the wait.
        @exception TimeoutError The deadline passed before the core left reset.
        """
        LOG.debug("software reset")
        self.write32(CortexM.NVIC_AIRCR, CortexM.NVIC_AIRCR_VECTKEY | CortexM.NVIC_AIRCR_SYSRESETREQ)

        while self.read32(CortexM.DHCSR) & CortexM.S_RESET_ST:
            if timeout is not None:
                timeout.raise_if_expired("timed out waiting for reset to complete")

    def set_reset_catch(self):
        """! @brief Halt the core on the next reset.

        @return The previous DEMCR value, to be handed to clear_reset_catch().
        """
        demcr = self.read32(CortexM.DEMCR)
        self.write32(CortexM.DEMCR, demcr | CortexM.DEMCR_VC_CORERESET)
        return demcr

    def clear_reset_catch(self, demcr):
        """! @brief Restore DEMCR as saved by set_reset_catch()."""
        self.write32(CortexM.DEMCR, demcr)
