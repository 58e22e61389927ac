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
import threading
from typing import (List, Optional, Sequence)

from .cmsis_dap_core import (
    CMSISDAPProtocol,
    DAP_SWD_PORT,
    ID,
    READ,
    Reg,
    check_transfer_status,
    transfer_request,
    )
from .interface import find_daplink
from ...core import exceptions
from ...utility.concurrency import locked
from ...utility.conversion import (byte_list_to_u32le_list, read32le)

LOG = logging.getLogger(__name__)
TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

class DAPAccessCMSISDAP(object):
    """! @brief Register level access to a target through a CMSIS-DAP probe.

    Every access is one complete command/response exchange; nothing is queued. Responses are
    checked strictly. A response for another command or with an unexpected transfer count raises
    ProtocolError, and a failed ACK raises the matching TransferError subclass. Nothing is retried
    at this level.

    All methods take the object's reentrant lock, so a probe can be shared between threads.
    """

    def __init__(self, interface=None, unique_id=None, frequency=1000000):
        if interface is None:
            interface = find_daplink(unique_id)
        self._interface = interface
        self._unique_id = interface.get_serial_number()
        self._lock = threading.RLock()
        self._protocol = CMSISDAPProtocol(self._interface)
        self._frequency = frequency
        self._packet_size: Optional[int] = None
        self._packet_count: Optional[int] = None
        self._fw_version: Optional[str] = None
        self._has_opened_once = False
        self._is_open = False

    def lock(self):
        """! @brief Lock the interface."""
        self._lock.acquire()

    def unlock(self):
        """! @brief Unlock the interface."""
        self._lock.release()

    @property
    def is_open(self):
        return self._is_open

    @property
    def unique_id(self):
        return self._unique_id

    @property
    def packet_size(self):
        """! @brief Maximum packet size reported by the probe. Only valid while open."""
        return self._packet_size

    @property
    def firmware_version(self):
        return self._fw_version

    @property
    def read_burst_capacity(self):
        """! @brief Maximum number of words one DAP_Transfer read burst can return."""
        return (self._packet_size - 4) // 4

    @property
    def write_burst_capacity(self):
        """! @brief Maximum number of data bytes one DAP_TransferBlock write can carry."""
        return self._packet_size - 8

    @locked
    def open(self):
        if self._is_open:
            return

        self._interface.open()

        # Probe properties are read the first time only.
        if not self._has_opened_once:
            self._packet_count = self._protocol.dap_info(ID.MAX_PACKET_COUNT)
            self._interface.set_packet_count(self._packet_count)
            self._packet_size = self._protocol.dap_info(ID.MAX_PACKET_SIZE)
            self._interface.set_packet_size(self._packet_size)
            self._fw_version = self._protocol.dap_info(ID.PRODUCT_FW_VERSION)
            LOG.debug("CMSIS-DAP probe %s: firmware version %s, packet size %d, packet count %d",
                    self._unique_id, self._fw_version, self._packet_size, self._packet_count)
            self._has_opened_once = True

        self._is_open = True

    @locked
    def close(self):
        if not self._is_open:
            return
        self._interface.close()
        self._is_open = False

    @locked
    def identify(self, item):
        assert isinstance(item, ID)
        return self._protocol.dap_info(item)

    @locked
    def connect(self):
        """! @brief Select SWD and configure the probe's clock and transfer behaviour."""
        port = self._protocol.connect(DAP_SWD_PORT)
        if port != DAP_SWD_PORT:
            raise exceptions.ProtocolError("probe connected port %d instead of SWD" % port)
        self._protocol.set_swj_clock(self._frequency)
        self._protocol.transfer_configure(0, 0x0050, 0)
        self._protocol.swd_configure(1)

    @locked
    def disconnect(self):
        self._protocol.disconnect()

    @locked
    def set_clock(self, frequency):
        self._protocol.set_swj_clock(frequency)
        self._frequency = frequency

    @locked
    def swj_sequence(self, length, bits):
        self._protocol.swj_sequence(length, bits)

    @locked
    def vendor(self, index, data=None):
        """! @brief Send a vendor command and return the response bytes following the opcode."""
        return self._protocol.vendor(index, data or [])

    def _transfer(self, requests, write_data=None) -> List[int]:
        resp = self._protocol.transfer(requests, write_data)
        if len(resp) < 3:
            raise exceptions.ProtocolError("short DAP_TRANSFER response")
        check_transfer_status(resp[2])
        if resp[1] != len(requests):
            raise exceptions.ProtocolError("DAP_TRANSFER completed %d of %d transfers"
                    % (resp[1], len(requests)))

        read_count = sum(1 for r in requests if r & READ)
        if len(resp) < 3 + read_count * 4:
            raise exceptions.ProtocolError("short DAP_TRANSFER response")
        return [read32le(resp, 3 + i * 4) for i in range(read_count)]

    @locked
    def read_reg(self, reg):
        assert isinstance(reg, Reg)
        value = self._transfer([transfer_request(reg)])[0]
        TRACE.debug("read_reg(%s) -> 0x%08x", reg.name, value)
        return value

    @locked
    def write_reg(self, reg, value):
        assert isinstance(reg, Reg)
        TRACE.debug("write_reg(%s, 0x%08x)", reg.name, value)
        self._transfer([transfer_request(reg, is_write=True)], {0: value})

    @locked
    def read_reg_repeat(self, reg, count) -> bytes:
        """! @brief Read the same register _count_ times in one DAP_Transfer.

        @return The values read as `count * 4` little endian bytes.
        @exception InvalidArgument The burst does not fit in one packet.
        """
        assert isinstance(reg, Reg)
        if not (0 < count <= min(self.read_burst_capacity, 255)):
            raise exceptions.InvalidArgument("invalid read burst length %d" % count)
        resp = self._protocol.transfer([transfer_request(reg)] * count)
        if len(resp) < 3:
            raise exceptions.ProtocolError("short DAP_TRANSFER response")
        check_transfer_status(resp[2])
        if (resp[1] != count) or (len(resp) < 3 + count * 4):
            raise exceptions.ProtocolError("DAP_TRANSFER returned %d of %d words" % (resp[1], count))
        return bytes(resp[3:3 + count * 4])

    @locked
    def write_reg_repeat(self, reg, words: Sequence[int]):
        """! @brief Write a sequence of words to the same register with one DAP_TransferBlock.

        _words_ may also be a bytes object whose length is a multiple of 4.
        """
        assert isinstance(reg, Reg)
        if isinstance(words, (bytes, bytearray)):
            words = byte_list_to_u32le_list(words)
        count = len(words)
        if not (0 < count * 4 <= self.write_burst_capacity):
            raise exceptions.InvalidArgument("invalid write burst length %d" % count)
        resp = self._protocol.transfer_block(count, transfer_request(reg, is_write=True), words)
        if len(resp) < 4:
            raise exceptions.ProtocolError("short DAP_TRANSFER_BLOCK response")
        check_transfer_status(resp[3])
        transferred = resp[1] | (resp[2] << 8)
        if transferred != count:
            raise exceptions.ProtocolError("DAP_TRANSFER_BLOCK wrote %d of %d words" % (transferred, count))

    def __repr__(self):
        return "<%s@%x %s>" % (type(self).__name__, id(self), self._unique_id)
