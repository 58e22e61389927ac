# ubitflash
# Copyright (c) 2006-2013,2018 Arm Limited
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

class Interface(object):
    """! @brief Base class for USB transports to a CMSIS-DAP probe.

    A transport moves whole packets. write() pads a command to the packet size and sends it;
    read() returns the next response packet. Subclasses fill in the identity attributes from the
    USB descriptors.
    """

    @staticmethod
    def get_all_connected_interfaces():
        raise NotImplementedError()

    DEFAULT_USB_TIMEOUT_S = 10
    DEFAULT_USB_TIMEOUT_MS = DEFAULT_USB_TIMEOUT_S * 1000

    def __init__(self):
        self.vid = 0
        self.pid = 0
        self.vendor_name = ""
        self.product_name = ""
        self.serial_number = ""
        self.packet_count = 1
        self.packet_size = 64

    def open(self):
        raise NotImplementedError()

    def close(self):
        raise NotImplementedError()

    def write(self, data):
        raise NotImplementedError()

    def read(self):
        raise NotImplementedError()

    def get_info(self):
        return "%s %s (0x%04x, 0x%04x)" % (self.vendor_name, self.product_name, self.vid, self.pid)

    def get_packet_count(self):
        return self.packet_count

    def set_packet_count(self, count):
        self.packet_count = count

    def set_packet_size(self, size):
        self.packet_size = size

    def get_packet_size(self):
        return self.packet_size

    def get_serial_number(self):
        return self.serial_number

    def __repr__(self):
        return "<%s@%x %s %s>" % (type(self).__name__, id(self), self.get_info(), self.serial_number)
