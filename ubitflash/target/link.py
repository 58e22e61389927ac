# ubitflash
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
from enum import Enum
from time import sleep
from typing import (NamedTuple, Optional)

from ..board.board_id import BoardSerialInfo
from ..core import exceptions
from ..core.session import Session
from ..coresight.ap import MemAP
from ..coresight.cortex_m import CortexM
from ..coresight.dap import DebugPort
from ..probe.pydapaccess.dap_access_cmsis_dap import DAPAccessCMSISDAP
from ..probe.pydapaccess.interface import find_daplink
from ..utility.concurrency import locked
from ..utility.notification import Notifier
from ..utility.timeout import Timeout

LOG = logging.getLogger(__name__)

# nRF factory information configuration registers.
FICR_CODEPAGESIZE = 0x10000010
FICR_CODESIZE = 0x10000014
FICR_DEVICE_ID_1 = 0x10000064

## Attempts at reading an identity register before giving up.
IDENTITY_READ_ATTEMPTS = 20

## Delay in seconds between identity read attempts.
IDENTITY_READ_RETRY_DELAY = 0.02

class LinkState(Enum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2

class SessionState(NamedTuple):
    """! @brief What was learned about the target while connecting."""
    device_id: int
    page_size: int
    page_count: int
    serial_info: BoardSerialInfo

class TargetLink(Notifier):
    """! @brief Connection to the micro:bit's target MCU through its DAPLink interface chip.

    The link owns the whole probe stack: DAP access, debug port, memory AP and core. connect()
    builds it from scratch, so a link can be reconnected after the target was reset or reflashed
    behind its back. After a successful connect the target's identity and flash geometry are
    available from the `session_state`.

    Every public method takes the link's reentrant lock, so a link may be shared between threads.

    Subscribers to `TargetLink.Event.STATE_CHANGED` receive a notification whose data is the
    tuple `(old_state, new_state)`.
    """

    class Event(Enum):
        STATE_CHANGED = 1

    def __init__(self, session=None, interface=None):
        super(TargetLink, self).__init__()
        self._session = session
        self._interface = interface
        self._lock = threading.RLock()
        self._state = LinkState.DISCONNECTED
        self._session_state: Optional[SessionState] = None
        self._logged_serial_info: Optional[BoardSerialInfo] = None
        self._initial_connection_complete = False
        self._dap: Optional[DAPAccessCMSISDAP] = None
        self._dp: Optional[DebugPort] = None
        self._ap: Optional[MemAP] = None
        self._core: Optional[CortexM] = None

    def lock(self):
        self._lock.acquire()

    def unlock(self):
        self._lock.release()

    @property
    def session(self):
        if self._session is None:
            return Session.get_current()
        return self._session

    @session.setter
    def session(self, session):
        self._session = session

    @property
    def state(self):
        return self._state

    @property
    def is_connected(self):
        return self._state is LinkState.CONNECTED

    @property
    def session_state(self) -> Optional[SessionState]:
        return self._session_state

    def _require_session_state(self, name):
        if self._session_state is None:
            raise exceptions.Error("%s not defined until connected" % name)
        return self._session_state

    @property
    def device_id(self):
        return self._require_session_state("device_id").device_id

    @property
    def page_size(self):
        return self._require_session_state("page_size").page_size

    @property
    def page_count(self):
        return self._require_session_state("page_count").page_count

    @property
    def serial_info(self):
        return self._require_session_state("serial_info").serial_info

    @property
    def packet_size(self):
        if self._dap is None:
            raise exceptions.Error("packet_size not defined until connected")
        return self._dap.packet_size

    def _set_state(self, new_state):
        old_state = self._state
        if new_state is old_state:
            return
        self._state = new_state
        LOG.debug("link state %s -> %s", old_state.name, new_state.name)
        self.notify(TargetLink.Event.STATE_CHANGED, (old_state, new_state))

    def _get_interface(self):
        if self._interface is None:
            self._interface = find_daplink(self.session.options.get('probe.unique_id'))
        return self._interface

    @locked
    def connect(self, timeout=None):
        """! @brief Connect to the target and read its identity.

        The first call only opens the probe. Later calls first disconnect, then rebuild every
        object in the probe stack.

        @param timeout Optional running Timeout bounding the identity reads.
        @exception TimeoutError The identity could not be read before the deadline.
        """
        if self._initial_connection_complete:
            self.disconnect()
        else:
            self._initial_connection_complete = True

        self._session_state = None
        self._set_state(LinkState.CONNECTING)
        try:
            options = self.session.options
            interface = self._get_interface()
            self._dap = DAPAccessCMSISDAP(interface, frequency=options.get('frequency'))
            self._dap.open()
            self._dap.connect()
            self._dp = DebugPort(self._dap)
            self._dp.connect()
            self._ap = MemAP(self._dp, wait_retry_delay=options.get('flash.wait_retry_delay'))
            self._core = CortexM(self._ap)
            LOG.debug("connected to %s", interface)

            serial_info = BoardSerialInfo.parse(interface.get_serial_number())
            LOG.debug("Detected board ID %s", serial_info.id)
            if serial_info != self._logged_serial_info:
                self._logged_serial_info = serial_info
                LOG.info("Board ID %s, family %s, interface %s", serial_info.id,
                        serial_info.family_id, serial_info.hic)

            # The target may not be ready to answer straight after a flash, so wait on errors.
            device_id = self.read_mem32_wait_on_error(FICR_DEVICE_ID_1, timeout)
            page_size = self.read_mem32_wait_on_error(FICR_CODEPAGESIZE, timeout)
            page_count = self.read_mem32_wait_on_error(FICR_CODESIZE, timeout)
        except exceptions.Error:
            self._set_state(LinkState.DISCONNECTED)
            raise

        self._session_state = SessionState(device_id, page_size, page_count, serial_info)
        LOG.debug("device ID 0x%08x, %d pages of %d bytes", device_id, page_count, page_size)
        self._set_state(LinkState.CONNECTED)

    reconnect = connect

    @locked
    def disconnect(self):
        """! @brief Release the probe. Does nothing if the probe was never opened."""
        self._session_state = None
        if (self._dap is None) or not self._dap.is_open:
            self._set_state(LinkState.DISCONNECTED)
            return
        try:
            self._dap.disconnect()
        finally:
            self._dap.close()
            self._set_state(LinkState.DISCONNECTED)

    @locked
    def read_mem32_wait_on_error(self, addr, timeout=None):
        """! @brief Read a word, retrying on transfer errors.

        Up to 20 attempts 20 ms apart are made. Any error that is not a TransferError is raised
        immediately. After the last failed attempt its error is raised.

        @param timeout Optional running Timeout; TimeoutError is raised once it has expired.
        """
        last_error = None
        for attempt in range(IDENTITY_READ_ATTEMPTS):
            if timeout is not None:
                timeout.raise_if_expired("timed out reading 0x%08x" % addr)
            try:
                return self._ap.read32(addr)
            except exceptions.TransferError as err:
                LOG.debug("read of 0x%08x failed (%s); retrying", addr, err)
                last_error = err
                sleep(IDENTITY_READ_RETRY_DELAY)
        raise last_error

    @locked
    def read_mem32(self, addr):
        return self._ap.read32(addr)

    @locked
    def write_mem32(self, addr, value):
        self._ap.write32(addr, value)

    @locked
    def read_memory_block(self, addr, count) -> bytes:
        """! @brief Read _count_ words from _addr_ and return them as bytes."""
        return self._ap.read_memory_block32(addr, count)

    @locked
    def write_memory_block(self, addr, data):
        """! @brief Write a list of words, or bytes of a multiple of 4 in length, to _addr_."""
        self._ap.write_memory_block32(addr, data)

    @locked
    def halt(self):
        self._core.halt()

    @locked
    def resume(self):
        self._core.resume()

    @locked
    def is_halted(self):
        return self._core.is_halted()

    @locked
    def write_core_register(self, reg, value):
        self._core.write_core_register(reg, value)

    @locked
    def read_core_register(self, reg):
        return self._core.read_core_register(reg)

    @locked
    def execute_at(self, address, code, sp, pc, lr, *registers):
        """! @brief Load code into RAM and start the core running it.

        Returns as soon as the core is running; use wait_for_halt() to wait for the code to hit
        its breakpoint.

        @param address Load address of _code_.
        @param code List of words.
        @param sp, pc, lr Initial values of those registers.
        @param registers Initial values of r0 upwards, at most 12 of them.
        @exception InvalidArgument More than 12 register values were given.
        """
        if len(registers) > CortexM.GENERAL_REGISTER_COUNT - 1:
            raise exceptions.InvalidArgument("Only 12 general purpose registers but got %d values"
                    % len(registers))

        self._core.halt()
        self._ap.write_memory_block32(address, code)
        self._core.write_core_register(CortexM.PC, pc)
        self._core.write_core_register(CortexM.LR, lr)
        self._core.write_core_register(CortexM.SP, sp)
        for i, value in enumerate(registers):
            self._core.write_core_register(CortexM.R0 + i, value)
        self._core.resume()

    @locked
    def wait_for_halt(self, timeout=None):
        """! @brief Poll until the core halts.

        @param timeout Seconds to wait. Defaults to the `flash.timeout.halt` option.
        @exception TimeoutError The core did not halt in time.
        """
        if timeout is None:
            timeout = self.session.options.get('flash.timeout.halt')
        with Timeout(timeout) as t_o:
            while t_o.check():
                if self._core.is_halted():
                    return
        raise exceptions.TimeoutError("timed out waiting for core to halt")

    @locked
    def reset(self, halt=False, timeout=None):
        """! @brief Reset the target by software reset.

        With _halt_ the core is stopped on its reset vector: the core is halted, reset vector
        catch is armed, the system reset, and once the core has halted DEMCR is restored.

        @param timeout Optional running Timeout bounding every wait of the reset.
        @exception TimeoutError The deadline passed.
        """
        if halt:
            self._core.halt()
            demcr = self._core.set_reset_catch()
            self._core.software_reset(timeout)
            self.wait_for_halt(timeout.remaining if (timeout is not None) else None)
            self._core.clear_reset_catch(demcr)
        else:
            self._core.software_reset(timeout)

    @locked
    def vendor_command(self, index, data=None):
        """! @brief Send vendor specific command _index_ to the probe."""
        return self._dap.vendor(index, data)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, value, traceback):
        self.disconnect()
        return False
