# ubitflash
# Copyright (c) 2006-2013,2018-2020 Arm Limited
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

from enum import Enum

from ...core import exceptions

class Command:
    DAP_INFO = 0x00
    DAP_CONNECT = 0x02
    DAP_DISCONNECT = 0x03
    DAP_TRANSFER_CONFIGURE = 0x04
    DAP_TRANSFER = 0x05
    DAP_TRANSFER_BLOCK = 0x06
    DAP_SWJ_CLOCK = 0x11
    DAP_SWJ_SEQUENCE = 0x12
    DAP_SWD_CONFIGURE = 0x13
    DAP_VENDOR0 = 0x80 # Start of vendor-specific command IDs.

COMMAND_NAMES = {value: name for name, value in vars(Command).items() if name.startswith('DAP_')}

class Reg(Enum):
    """! @brief Abstract registers addressed by DAP_Transfer requests.

    Values 0-3 are the DP registers at offsets 0x0-0xC, values 4-7 the registers at the same
    offsets of the AP bank chosen by DP SELECT.
    """
    DP_0x0 = 0
    DP_0x4 = 1
    DP_0x8 = 2
    DP_0xC = 3
    AP_0x0 = 4
    AP_0x4 = 5
    AP_0x8 = 6
    AP_0xC = 7

class ID(Enum):
    """! @brief Information IDs for DAP_Info"""
    VENDOR = 1
    PRODUCT = 2
    SER_NUM = 3
    CMSIS_DAP_PROTOCOL_VERSION = 4
    DEVICE_VENDOR = 5
    DEVICE_NAME = 6
    PRODUCT_FW_VERSION = 9
    CAPABILITIES = 0xf0
    MAX_PACKET_COUNT = 0xfe
    MAX_PACKET_SIZE = 0xff

# Info IDs that return integer values.
INTEGER_INFOS = [
    ID.CAPABILITIES,
    ID.MAX_PACKET_COUNT,
    ID.MAX_PACKET_SIZE,
    ]

DAP_DEFAULT_PORT = 0
DAP_SWD_PORT = 1

DAP_OK = 0
DAP_ERROR = 0xff

# Transfer request bits.
AP_ACC = 1 << 0
DP_ACC = 0 << 0
READ = 1 << 1
WRITE = 0 << 1

class DAPTransferResponse:
    """! Responses to DAP_Transfer and DAP_TransferBlock"""
    ACK_MASK = 0x07 # Bits [2:0]
    PROTOCOL_ERROR_MASK = 0x08 # Bit [3]

    # Values for ACK bitfield.
    ACK_OK = 1
    ACK_WAIT = 2
    ACK_FAULT = 4
    ACK_NO_ACK = 7

def transfer_request(reg, is_write=False):
    """! @brief Build the request byte for one access of _reg_."""
    request = WRITE if is_write else READ
    if reg.value < 4:
        request |= DP_ACC
    else:
        request |= AP_ACC
    request |= (reg.value % 4) << 2
    return request

def check_transfer_status(status):
    """! @brief Raise for a DAP_Transfer or DAP_TransferBlock response status byte.

    @exception TransferTimeoutError The target answered WAIT.
    @exception TransferFaultError The target answered FAULT.
    @exception TransferError No ACK, an unknown ACK value, or an SWD protocol error.
    """
    ack = status & DAPTransferResponse.ACK_MASK
    if ack != DAPTransferResponse.ACK_OK:
        if ack == DAPTransferResponse.ACK_FAULT:
            raise exceptions.TransferFaultError()
        elif ack == DAPTransferResponse.ACK_WAIT:
            raise exceptions.TransferTimeoutError("target busy (WAIT)")
        elif ack == DAPTransferResponse.ACK_NO_ACK:
            raise exceptions.TransferError("No ACK received")
        else:
            raise exceptions.TransferError("Unexpected ACK value (%d) returned by probe" % ack)
    elif (status & DAPTransferResponse.PROTOCOL_ERROR_MASK) != 0:
        raise exceptions.TransferError("SWD protocol error")

class CMSISDAPProtocol(object):
    """! @brief This class implements the CMSIS-DAP wire protocol.

    One method per command. Each sends one packet, reads the reply and checks that it answers the
    command that was sent. Interpretation of transfer responses is left to the caller.
    """

    def __init__(self, interface):
        self.interface = interface

    def _command(self, cmd, check_status=True):
        opcode = cmd[0]
        self.interface.write(cmd)

        resp = self.interface.read()
        if (len(resp) == 0) or (resp[0] != opcode):
            # Response is to a different command
            raise exceptions.ProtocolError("expected %s" % COMMAND_NAMES.get(opcode, "0x%02x" % opcode))

        if check_status and (resp[1] != DAP_OK):
            raise exceptions.ProtocolError("%s failed (status 0x%02x)"
                    % (COMMAND_NAMES.get(opcode, "0x%02x" % opcode), resp[1]))
        return resp

    def dap_info(self, id_):
        """! @brief Sends the DAP_Info command to read info from the CMSIS-DAP probe.
        @param self This object.
        @param id_ One of the ID constants.
        @return An int for the IDs in INTEGER_INFOS, otherwise a string, or None if the returned
            info value is empty.
        @exception ProtocolError Raised if the response is to another command or has an invalid
            length.
        """
        assert type(id_) is ID

        resp = self._command([Command.DAP_INFO, id_.value], check_status=False)
        resp_len = resp[1]

        # Integer values
        if id_ in INTEGER_INFOS:
            if resp_len == 1:
                return resp[2]
            elif resp_len == 2:
                return (resp[3] << 8) | resp[2]
            elif resp_len == 4:
                return (resp[5] << 24) | (resp[4] << 16) | (resp[3] << 8) | resp[2]
            else:
                raise exceptions.ProtocolError("invalid DAP_INFO response length for %s" % id_.name)

        # String values. They are sent as C strings with a terminating null char, so we strip it out.
        if resp_len == 0:
            return None
        if resp_len > (len(resp) - 2):
            raise exceptions.ProtocolError("invalid DAP_INFO response length for %s" % id_.name)
        return bytearray(resp[2:2 + resp_len - 1]).decode('utf-8', 'replace')

    def connect(self, mode=DAP_DEFAULT_PORT):
        resp = self._command([Command.DAP_CONNECT, mode], check_status=False)
        if resp[1] == 0:
            # DAP connect failed
            raise exceptions.ProtocolError("DAP_CONNECT failed")
        return resp[1]

    def disconnect(self):
        return self._command([Command.DAP_DISCONNECT])[1]

    def transfer_configure(self, idle_cycles=0x00, wait_retry=0x0050, match_retry=0x0000):
        cmd = [Command.DAP_TRANSFER_CONFIGURE,
                idle_cycles,
                wait_retry & 0xff, wait_retry >> 8,
                match_retry & 0xff, match_retry >> 8]
        return self._command(cmd)[1]

    def set_swj_clock(self, clock=1000000):
        cmd = [Command.DAP_SWJ_CLOCK,
                clock & 0xff, (clock >> 8) & 0xff, (clock >> 16) & 0xff, (clock >> 24) & 0xff]
        return self._command(cmd)[1]

    def swd_configure(self, turnaround=1, always_send_data_phase=False):
        assert 1 <= turnaround <= 4
        conf = (turnaround - 1) | (int(always_send_data_phase) << 2)
        return self._command([Command.DAP_SWD_CONFIGURE, conf])[1]

    def swj_sequence(self, length, bits):
        assert 0 <= length <= 256
        cmd = [Command.DAP_SWJ_SEQUENCE, 0 if (length == 256) else length]
        for i in range((length + 7) // 8):
            cmd.append(bits & 0xff)
            bits >>= 8
        return self._command(cmd)[1]

    def transfer(self, requests, write_data=None, dap_index=0):
        """! @brief Send a DAP_Transfer command.

        @param requests List of request bytes, one per transfer.
        @param write_data Optional dict of request index to 32-bit value, for the write requests.
        @return The raw response: opcode, transfer count, transfer status, then 4 bytes per read.
        """
        cmd = [Command.DAP_TRANSFER, dap_index, len(requests)]
        for i, request in enumerate(requests):
            cmd.append(request)
            if not (request & READ):
                value = write_data[i]
                cmd.extend([(value >> 0) & 0xff, (value >> 8) & 0xff,
                            (value >> 16) & 0xff, (value >> 24) & 0xff])
        return self._command(cmd, check_status=False)

    def transfer_block(self, count, request, words=None, dap_index=0):
        """! @brief Send a DAP_TransferBlock command.

        @param count Number of transfers.
        @param request Request byte shared by all transfers.
        @param words Values to write, for a write request.
        @return The raw response: opcode, 16-bit transfer count, transfer status, then read data.
        """
        cmd = [Command.DAP_TRANSFER_BLOCK, dap_index, count & 0xff, (count >> 8) & 0xff, request]
        for value in (words or []):
            cmd.extend([(value >> 0) & 0xff, (value >> 8) & 0xff,
                        (value >> 16) & 0xff, (value >> 24) & 0xff])
        return self._command(cmd, check_status=False)

    def vendor(self, index, data):
        """! @brief Send vendor command _index_ (0-31) and return the response after the opcode."""
        cmd = [Command.DAP_VENDOR0 + index]
        cmd.extend(data)
        resp = self._command(cmd, check_status=False)
        return resp[1:]
