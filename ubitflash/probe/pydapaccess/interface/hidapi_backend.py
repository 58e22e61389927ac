# ubitflash
# Copyright (c) 2006-2021 Arm Limited
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
import platform
import threading
import queue
from typing import Optional

from .interface import Interface
from .common import (
    generate_device_unique_id,
    is_daplink_vid_pid,
    is_known_device_string,
    )
from ....core import exceptions
from ....utility.conversion import to_str_safe

LOG = logging.getLogger(__name__)
TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

try:
    import hid
except ImportError:
    IS_AVAILABLE = False
else:
    IS_AVAILABLE = True

# OS flags.
_IS_DARWIN = (platform.system() == 'Darwin')
_IS_WINDOWS = (platform.system() == 'Windows')

class HidApiUSB(Interface):
    """! @brief CMSIS-DAP USB interface class using hidapi backend."""

    isAvailable = IS_AVAILABLE

    HIDAPI_MAX_PACKET_COUNT = 30

    def __init__(self, dev, info):
        super(HidApiUSB, self).__init__()
        self.vid = info['vendor_id']
        self.pid = info['product_id']
        self.vendor_name = info['manufacturer_string'] or "0x%04x" % self.vid
        self.product_name = info['product_string'] or "0x%04x" % self.pid
        self.serial_number = info['serial_number'] \
                or generate_device_unique_id(self.vid, self.pid, to_str_safe(info['path']))
        self.device_info = info
        self.device = dev
        self.closed = True
        self.thread = None
        self.read_sem = threading.Semaphore(0)
        self.closed_event = threading.Event()
        self.received_data = queue.SimpleQueue()
        self._read_thread_did_exit = False
        self._read_thread_exception: Optional[Exception] = None

    def set_packet_count(self, count):
        # hidapi for macOS limits the number of packets it queues for reading.
        if _IS_DARWIN:
            count = min(count, self.HIDAPI_MAX_PACKET_COUNT)
        self.packet_count = count

    def open(self):
        try:
            self.device.open_path(self.device_info['path'])
        except IOError as exc:
            raise exceptions.ProbeError("Unable to open device: " + str(exc)) from exc

        # Windows reads directly; a receive thread corrupts packets there.
        if not _IS_WINDOWS:
            self.closed_event.clear()
            self.thread = threading.Thread(target=self.rx_task)
            self.thread.daemon = True
            self.thread.start()

        self.closed = False

    def rx_task(self):
        try:
            while not self.closed_event.is_set():
                self.read_sem.acquire()
                if not self.closed_event.is_set():
                    read_data = bytes(self.device.read(self.packet_size))
                    self.received_data.put(read_data)
        except (IOError, ValueError) as err:
            TRACE.debug("rx_task exception: %s", err)
            self._read_thread_exception = err
        finally:
            self._read_thread_did_exit = True

    @staticmethod
    def get_all_connected_interfaces():
        """! @brief Returns all the connected DAPLink devices as HidApiUSB objects."""
        boards = []

        for device_info in hid.enumerate():
            vid = device_info['vendor_id']
            pid = device_info['product_id']
            product_name = to_str_safe(device_info['product_string'] or "")
            if not is_known_device_string(product_name) and not is_daplink_vid_pid(vid, pid):
                # The interface name may appear in the path. At least, it does on macOS.
                device_path = to_str_safe(device_info['path'])
                if not is_known_device_string(device_path):
                    continue

            try:
                dev = hid.device()
            except IOError as exc:
                LOG.debug("Failed to open USB device: %s", exc)
                continue

            boards.append(HidApiUSB(dev, device_info))

        return boards

    def write(self, data):
        """! @brief Write data on the OUT endpoint associated to the HID interface"""
        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB OUT> (%d) %s", len(data), ' '.join(['%02x' % i for i in data]))
        data = list(data)
        data.extend([0] * (self.packet_size - len(data)))
        if not _IS_WINDOWS:
            self.read_sem.release()
        self.device.write([0] + data)

    def read(self):
        """! @brief Read data on the IN endpoint associated to the HID interface"""
        if _IS_WINDOWS:
            read_data = bytes(self.device.read(self.packet_size))
        else:
            if self.closed:
                return b''

            try:
                read_data = self.received_data.get(True, self.DEFAULT_USB_TIMEOUT_S)
            except queue.Empty:
                if self._read_thread_did_exit:
                    raise exceptions.ProbeDisconnected("Probe %s read thread exited unexpectedly"
                            % self.serial_number) from self._read_thread_exception
                raise exceptions.ProbeError("Timeout reading from probe %s" % self.serial_number) from None

        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB RD < (%d) %s", len(read_data),
                    ' '.join(['%02x' % i for i in read_data.rstrip(b'\x00')]))

        return read_data

    def close(self):
        """! @brief Close the interface"""
        assert not self.closed_event.is_set()

        LOG.debug("closing interface")
        self.closed = True
        if not _IS_WINDOWS:
            self.closed_event.set()
            self.read_sem.release()
            self.thread.join()
            self.thread = None

            # Reset the thread state so the interface can be reopened.
            self.closed_event.clear()
            self.read_sem = threading.Semaphore(0)
            self.received_data = queue.SimpleQueue()
            self._read_thread_did_exit = False
            self._read_thread_exception = None
        self.device.close()
