# ubitflash
# Copyright (c) 2015-2020 Arm Limited
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
from time import sleep

from ..core import exceptions
from ..probe.pydapaccess.cmsis_dap_core import Reg
from ..utility.conversion import byte_list_to_u32le_list

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

# MEM-AP registers, as seen through DAP_Transfer with AP bank 0 selected.
MEM_AP_CSW = Reg.AP_0x0
MEM_AP_TAR = Reg.AP_0x4
MEM_AP_DRW = Reg.AP_0xC

# AP Control and Status Word definitions
CSW_SIZE32   =  0x00000002
CSW_SADDRINC =  0x00000010 # Single increment by SIZE field
CSW_DEVICEEN =  0x00000040
CSW_HPROT    =  0x03000000 # Privileged data access
CSW_MSTRDBG  =  0x20000000

CSW_VALUE = CSW_MSTRDBG | CSW_HPROT | CSW_DEVICEEN | CSW_SADDRINC | CSW_SIZE32

## TAR only auto-increments within a 1 KiB block.
AUTO_INCREMENT_PAGE_SIZE = 0x400

## Delay before repeating a block write that the target answered with WAIT.
DEFAULT_WAIT_RETRY_DELAY = 0.1

class MemAP(object):
    """! @brief 32-bit memory access through the AHB-AP.

    Block transfers are split at the TAR auto-increment boundary and then into bursts that fit
    one probe packet. Each write burst reprograms CSW and TAR so it can be repeated on its own
    when the target answers WAIT.

    A FAULT sets the sticky error flag of the DP, which makes every later AP access fault too. It
    is cleared through the DP before the fault is raised.
    """

    def __init__(self, dp, wait_retry_delay=DEFAULT_WAIT_RETRY_DELAY):
        self._dp = dp
        self._dap = dp.dap
        self._wait_retry_delay = wait_retry_delay

    @property
    def dp(self):
        return self._dp

    @property
    def dap(self):
        return self._dap

    def _handle_error(self, error):
        self._dp._handle_error(error)

    def _set_address(self, addr):
        self._dap.write_reg(MEM_AP_CSW, CSW_VALUE)
        self._dap.write_reg(MEM_AP_TAR, addr)

    def read32(self, addr):
        """! @brief Read one aligned word."""
        assert (addr & 0x3) == 0
        self._set_address(addr)
        try:
            value = self._dap.read_reg(MEM_AP_DRW)
        except exceptions.TransferFaultError as error:
            error.fault_address = addr
            error.fault_length = 4
            self._handle_error(error)
            raise
        TRACE.debug("read32(0x%08x) -> 0x%08x", addr, value)
        return value

    def write32(self, addr, value):
        """! @brief Write one aligned word."""
        assert (addr & 0x3) == 0
        TRACE.debug("write32(0x%08x, 0x%08x)", addr, value)
        self._set_address(addr)
        try:
            self._dap.write_reg(MEM_AP_DRW, value)
        except exceptions.TransferFaultError as error:
            error.fault_address = addr
            error.fault_length = 4
            self._handle_error(error)
            raise

    def _read_block32_page(self, addr, size):
        """! @brief Read words that do not cross the auto-increment boundary."""
        TRACE.debug("_read_block32(addr=0x%08x, size=%d)", addr, size)
        self._set_address(addr)
        capacity = self._dap.read_burst_capacity
        result = bytearray()
        try:
            while size > 0:
                n = min(size, capacity)
                result += self._dap.read_reg_repeat(MEM_AP_DRW, n)
                size -= n
        except exceptions.TransferFaultError as error:
            error.fault_address = addr
            error.fault_length = size * 4
            self._handle_error(error)
            raise
        return result

    def _write_block32_chunk(self, addr, words):
        """! @brief Write one burst, repeating it while the target answers WAIT."""
        while True:
            TRACE.debug("_write_block32(addr=0x%08x, size=%d)", addr, len(words))
            try:
                self._set_address(addr)
                self._dap.write_reg_repeat(MEM_AP_DRW, words)
                return
            except exceptions.TransferTimeoutError:
                LOG.debug("target busy writing 0x%08x; retrying in %.0f ms", addr,
                        self._wait_retry_delay * 1000)
                sleep(self._wait_retry_delay)
            except exceptions.TransferFaultError as error:
                error.fault_address = addr
                error.fault_length = len(words) * 4
                self._handle_error(error)
                raise

    def read_memory_block32(self, addr, size) -> bytes:
        """! @brief Read _size_ aligned words starting at _addr_.

        @return The words as `size * 4` little endian bytes.
        """
        assert (addr & 0x3) == 0
        result = bytearray()
        while size > 0:
            n = AUTO_INCREMENT_PAGE_SIZE - (addr & (AUTO_INCREMENT_PAGE_SIZE - 1))
            if size * 4 < n:
                n = size * 4
            result += self._read_block32_page(addr, n // 4)
            size -= n // 4
            addr += n
        return bytes(result)

    def write_memory_block32(self, addr, data):
        """! @brief Write aligned words starting at _addr_.

        @param data Either a list of words or bytes whose length is a multiple of 4.
        """
        assert (addr & 0x3) == 0
        if isinstance(data, (bytes, bytearray)):
            if len(data) % 4:
                raise exceptions.InvalidArgument("block write length %d is not a multiple of 4" % len(data))
            data = byte_list_to_u32le_list(data)
        burst_words = self._dap.write_burst_capacity // 4
        size = len(data)
        offset = 0
        while size > 0:
            n = AUTO_INCREMENT_PAGE_SIZE - (addr & (AUTO_INCREMENT_PAGE_SIZE - 1))
            n = min(n // 4, size, burst_words)
            self._write_block32_chunk(addr, data[offset:offset + n])
            offset += n
            size -= n
            addr += n * 4
