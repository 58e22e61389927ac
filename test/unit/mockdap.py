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

from ubitflash.coresight.cortex_m import CortexM
from ubitflash.flash.pages import murmur3_core
from ubitflash.flash.partial import (COMPUTE_CHECKSUMS, FLASH_PAGE, LOAD_ADDR)
from ubitflash.probe.pydapaccess.cmsis_dap_core import (Command, DAPTransferResponse)
from ubitflash.probe.pydapaccess.interface.interface import Interface
from ubitflash.utility.conversion import (read32le, u32le_list_to_byte_list)

SERIAL_V1 = "9900" + "0000" + "0" * 32 + "9B8E8F6D"
SERIAL_V2 = "9904" + "0000" + "0" * 32 + "9B8E8F6D"

DPIDR_VALUE = 0x0bb11477

FICR_CODEPAGESIZE = 0x10000010
FICR_CODESIZE = 0x10000014
FICR_DEVICE_ID_1 = 0x10000064

ABORT_STKERRCLR = 0x00000004
CTRLSTAT_STICKYERR = 0x00000020

class MockTarget(object):
    """Word addressed memory plus the parts of a Cortex-M debug unit the flasher touches.

    Resuming the core with PC at one of the flash stubs runs a Python model of the stub and halts
    again, as the real stub does when it hits its breakpoint.
    """

    def __init__(self, page_size=1024, page_count=16, device_id=0x12345678):
        self.page_size = page_size
        self.page_count = page_count
        self.device_id = device_id
        self.words = {}
        self.regs = [0] * 16
        self.dcrdr = 0
        self.demcr = 0
        self.halted = False
        self.reset_pending = False
        self.reset_count = 0
        self.runs = []
        self.stubs_halt = True
        self.flash_page_hangs = False
        self.fault_addrs = set()
        self.fault_reads = {}

    @property
    def flash_size(self):
        return self.page_size * self.page_count

    def flash_bytes(self, start=0, length=None):
        if length is None:
            length = self.flash_size - start
        return bytes(u32le_list_to_byte_list(
                [self.read(a) for a in range(start, start + length, 4)]))

    def load_flash(self, data, addr=0):
        for offset in range(0, len(data), 4):
            self.words[addr + offset] = read32le(data, offset)

    def is_fault(self, addr):
        if addr in self.fault_addrs:
            return True
        remaining = self.fault_reads.get(addr, 0)
        if remaining:
            self.fault_reads[addr] = remaining - 1
            return True
        return False

    def read(self, addr):
        if addr == CortexM.DHCSR:
            value = CortexM.S_REGRDY | CortexM.C_DEBUGEN
            if self.halted:
                value |= CortexM.S_HALT | CortexM.C_HALT
            if self.reset_pending:
                value |= CortexM.S_RESET_ST
                self.reset_pending = False
            return value
        elif addr == CortexM.DCRDR:
            return self.dcrdr
        elif addr == CortexM.DEMCR:
            return self.demcr
        elif addr == FICR_CODEPAGESIZE:
            return self.page_size
        elif addr == FICR_CODESIZE:
            return self.page_count
        elif addr == FICR_DEVICE_ID_1:
            return self.device_id
        default = 0xffffffff if (addr < self.flash_size) else 0
        return self.words.get(addr, default)

    def write(self, addr, value):
        if addr == CortexM.DHCSR:
            if (value & 0xffff0000) != CortexM.DBGKEY:
                return
            if value & CortexM.C_HALT:
                self.halted = True
            elif self.halted:
                self.halted = False
                self._run()
        elif addr == CortexM.DCRSR:
            reg = value & CortexM.DCRSR_REGSEL
            if value & CortexM.DCRSR_REGWnR:
                self.regs[reg] = self.dcrdr
            else:
                self.dcrdr = self.regs[reg]
        elif addr == CortexM.DCRDR:
            self.dcrdr = value
        elif addr == CortexM.DEMCR:
            self.demcr = value
        elif addr == CortexM.NVIC_AIRCR:
            if value == (CortexM.NVIC_AIRCR_VECTKEY | CortexM.NVIC_AIRCR_SYSRESETREQ):
                self.reset_count += 1
                self.reset_pending = True
                self.halted = bool(self.demcr & CortexM.DEMCR_VC_CORERESET)
        else:
            self.words[addr] = value

    def _code_at(self, addr, code):
        return all(self.read(addr + i * 4) == word for i, word in enumerate(code))

    def _run(self):
        pc = self.regs[CortexM.PC]
        self.runs.append(pc)
        if (pc == LOAD_ADDR + 1) and self._code_at(LOAD_ADDR, COMPUTE_CHECKSUMS):
            self._compute_checksums()
        elif (pc == LOAD_ADDR + 5) and self._code_at(LOAD_ADDR, FLASH_PAGE):
            if self.flash_page_hangs:
                return
            self._flash_page()
        else:
            return
        if self.stubs_halt:
            self.halted = True

    def _compute_checksums(self):
        table, page_size, page_count = self.regs[0], self.regs[2], self.regs[3]
        for i in range(page_count):
            h0, h1 = murmur3_core(self.flash_bytes(i * page_size, page_size))
            self.words[table + i * 8] = h0
            self.words[table + i * 8 + 4] = h1

    def _flash_page(self):
        dest, src, count = self.regs[0], self.regs[1], self.regs[2]
        for i in range(count):
            self.words[dest + i * 4] = self.read(src + i * 4)

class MockDAPInterface(Interface):
    """Simulated DAPLink HID interface answering CMSIS-DAP commands from a MockTarget."""

    def __init__(self, target=None, serial_number=SERIAL_V1, packet_size=64):
        super(MockDAPInterface, self).__init__()
        self.target = target if (target is not None) else MockTarget()
        self.serial_number = serial_number
        self.vid = 0x0d28
        self.pid = 0x0204
        self.product_name = "BBC micro:bit CMSIS-DAP"
        self.vendor_name = "ARM"
        self.probe_packet_size = packet_size
        self.is_open = False
        self.open_count = 0
        self.commands = []
        self.vendor_commands = []
        self.vendor_status = {}
        self.wait_responses = 0
        self.idr_failures = 0
        self.wrong_response = False
        self._response = None
        self.ctrl_stat = 0
        self.sticky_err = False
        self.aborts = []
        self.select = 0
        self.csw = 0
        self.tar = 0

    def open(self):
        assert not self.is_open
        self.is_open = True
        self.open_count += 1

    def close(self):
        assert self.is_open
        self.is_open = False

    def write(self, data):
        data = list(data)
        self.commands.append(data)
        opcode = data[0]
        if opcode == Command.DAP_INFO:
            resp = self._dap_info(data[1])
        elif opcode == Command.DAP_CONNECT:
            resp = [opcode, data[1]]
        elif opcode == Command.DAP_TRANSFER:
            resp = self._transfer(data)
        elif opcode == Command.DAP_TRANSFER_BLOCK:
            resp = self._transfer_block(data)
        elif opcode >= Command.DAP_VENDOR0:
            resp = self._vendor(opcode - Command.DAP_VENDOR0, data[1:])
        else:
            resp = [opcode, 0]
        if self.wrong_response:
            resp[0] = (resp[0] + 1) & 0xff
        resp = resp + [0] * (self.probe_packet_size - len(resp))
        self._response = bytes(resp)

    def read(self):
        resp, self._response = self._response, None
        assert resp is not None
        return resp

    def _dap_info(self, id_):
        if id_ == 0xfe:
            return [Command.DAP_INFO, 1, 1]
        elif id_ == 0xff:
            return [Command.DAP_INFO, 2, self.probe_packet_size & 0xff, self.probe_packet_size >> 8]
        elif id_ == 9:
            version = list(b"0255") + [0]
            return [Command.DAP_INFO, len(version)] + version
        return [Command.DAP_INFO, 0]

    def _access(self, request, value=None):
        """Perform one transfer. Returns (ack, read value)."""
        is_ap = request & 1
        is_read = request & 2
        offset = ((request >> 2) & 3) * 4
        if not is_ap:
            if offset == 0x0 and is_read:
                if self.idr_failures:
                    self.idr_failures -= 1
                    return DAPTransferResponse.ACK_NO_ACK, 0
                return DAPTransferResponse.ACK_OK, DPIDR_VALUE
            elif offset == 0x0:
                self.aborts.append(value)
                if value & ABORT_STKERRCLR:
                    self.sticky_err = False
            elif offset == 0x4:
                if is_read:
                    acks = (self.ctrl_stat & 0x50000000) << 1
                    sticky = CTRLSTAT_STICKYERR if self.sticky_err else 0
                    return DAPTransferResponse.ACK_OK, self.ctrl_stat | acks | sticky
                self.ctrl_stat = value
            elif offset == 0x8 and not is_read:
                self.select = value
            return DAPTransferResponse.ACK_OK, 0

        # Until STICKYERR is cleared through ABORT every AP access faults.
        if self.sticky_err:
            return DAPTransferResponse.ACK_FAULT, 0

        if offset == 0x0:
            if is_read:
                return DAPTransferResponse.ACK_OK, self.csw
            self.csw = value
        elif offset == 0x4:
            if is_read:
                return DAPTransferResponse.ACK_OK, self.tar
            self.tar = value
        elif offset == 0xc:
            if self.target.is_fault(self.tar):
                self.sticky_err = True
                return DAPTransferResponse.ACK_FAULT, 0
            result = 0
            if is_read:
                result = self.target.read(self.tar)
            else:
                self.target.write(self.tar, value)
            # TAR auto-increments within a 1 KiB block only.
            self.tar = (self.tar & ~0x3ff) | ((self.tar + 4) & 0x3ff)
            return DAPTransferResponse.ACK_OK, result
        return DAPTransferResponse.ACK_OK, 0

    def _transfer(self, data):
        count = data[2]
        index = 3
        done = 0
        status = DAPTransferResponse.ACK_OK
        read_data = []
        for _ in range(count):
            request = data[index]
            index += 1
            value = None
            if not (request & 2):
                value = read32le(data, index)
                index += 4
            status, result = self._access(request, value)
            if status != DAPTransferResponse.ACK_OK:
                break
            done += 1
            if request & 2:
                read_data.extend(u32le_list_to_byte_list([result]))
        return [Command.DAP_TRANSFER, done, status] + read_data

    def _transfer_block(self, data):
        count = data[2] | (data[3] << 8)
        request = data[4]
        if self.wait_responses:
            self.wait_responses -= 1
            return [Command.DAP_TRANSFER_BLOCK, 0, 0, DAPTransferResponse.ACK_WAIT]
        done = 0
        status = DAPTransferResponse.ACK_OK
        read_data = []
        for i in range(count):
            value = None
            if not (request & 2):
                value = read32le(data, 5 + i * 4)
            status, result = self._access(request, value)
            if status != DAPTransferResponse.ACK_OK:
                break
            done += 1
            if request & 2:
                read_data.extend(u32le_list_to_byte_list([result]))
        return [Command.DAP_TRANSFER_BLOCK, done & 0xff, done >> 8, status] + read_data

    def _vendor(self, index, data):
        self.vendor_commands.append((index, data))
        return [Command.DAP_VENDOR0 + index, self.vendor_status.get(index, 0)]

    def daplink_stream(self):
        """Return the bytes sent with the DAPLink flash WRITE vendor command."""
        out = bytearray()
        for index, data in self.vendor_commands:
            if index == 12:
                out += bytes(data[1:1 + data[0]])
        return bytes(out)
