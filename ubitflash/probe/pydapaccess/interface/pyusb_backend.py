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
import threading
import platform
import errno
import queue
from typing import Optional

from .interface import Interface
from .common import (
    USB_CLASS_HID,
    filter_device_by_class,
    is_known_device_string,
    is_daplink_vid_pid,
    generate_device_unique_id,
    )
from ....core import exceptions

LOG = logging.getLogger(__name__)
TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

try:
    import libusb_package
    import usb.core
    import usb.util
except ImportError:
    IS_AVAILABLE = False
else:
    IS_AVAILABLE = True

class PyUSB(Interface):
    """! @brief CMSIS-DAP USB interface class using pyusb for the backend.

    Responses are read by a background thread. Each write() releases the thread for exactly one
    read, so the thread never posts a read the probe will not answer.
    """

    isAvailable = IS_AVAILABLE

    did_show_no_libusb_warning = False

    def __init__(self, dev):
        super(PyUSB, self).__init__()
        self.vid = dev.idVendor
        self.pid = dev.idProduct
        self.product_name = dev.product or "0x%04x" % dev.idProduct
        self.vendor_name = dev.manufacturer or "0x%04x" % dev.idVendor
        self.serial_number = dev.serial_number \
                or generate_device_unique_id(dev.idVendor, dev.idProduct, dev.bus, dev.address)
        self.ep_out = None
        self.ep_in = None
        self.dev = None
        self.intf_number = None
        self.kernel_driver_was_attached = False
        self.closed = True
        self.thread = None
        self.rx_stop_event = threading.Event()
        self.rcv_data = queue.SimpleQueue()
        self.read_sem = threading.Semaphore(0)
        self._read_thread_did_exit = False
        self._read_thread_exception: Optional[Exception] = None

    def open(self):
        assert self.closed is True

        dev = libusb_package.find(custom_match=FindDap(self.serial_number))
        if dev is None:
            raise exceptions.ProbeDisconnected("Probe %s not found" % self.serial_number)

        config = dev.get_active_configuration()

        hid_interface_count = len(list(usb.util.find_descriptor(config, find_all=True,
                bInterfaceClass=USB_CLASS_HID)))
        matcher = MatchCmsisDapv1Interface(hid_interface_count)

        interface = usb.util.find_descriptor(config, custom_match=matcher)
        if interface is None:
            raise exceptions.ProbeError("Probe %s has no CMSIS-DAPv1 interface" % self.serial_number)
        interface_number = interface.bInterfaceNumber

        ep_in, ep_out = None, None
        for endpoint in interface:
            if endpoint.bEndpointAddress & usb.util.ENDPOINT_IN:
                ep_in = endpoint
            else:
                ep_out = endpoint

        # Detach kernel driver
        self.kernel_driver_was_attached = False
        try:
            if dev.is_kernel_driver_active(interface_number):
                LOG.debug("Detaching kernel driver of interface %d from USB device (VID=%04x PID=%04x).",
                        interface_number, dev.idVendor, dev.idProduct)
                dev.detach_kernel_driver(interface_number)
                self.kernel_driver_was_attached = True
        except usb.core.USBError as e:
            LOG.warning("USB kernel driver detach failed ([%s] %s). Attached driver may interfere "
                    "with flashing.", e.errno, e.strerror)
        except NotImplementedError:
            LOG.debug("Probe %s: USB kernel driver detaching is not supported.", self.serial_number)

        try:
            usb.util.claim_interface(dev, interface_number)
        except usb.core.USBError as exc:
            raise exceptions.ProbeError("Unable to claim interface for probe %s" % self.serial_number) from exc

        self.ep_out = ep_out
        self.ep_in = ep_in
        self.dev = dev
        self.intf_number = interface_number

        # Start RX thread as the last step
        self.closed = False
        self.start_rx()

    def start_rx(self):
        # Flush stale responses by reading until timeout exception
        try:
            while True:
                self.ep_in.read(self.ep_in.wMaxPacketSize, 1)
        except usb.core.USBError:
            pass

        thread_name = "CMSIS-DAPv1 receive (%s)" % self.serial_number
        self.thread = threading.Thread(target=self.rx_task, name=thread_name)
        self.thread.daemon = True
        self.thread.start()

    def rx_task(self):
        try:
            while not self.rx_stop_event.is_set():
                self.read_sem.acquire()
                if not self.rx_stop_event.is_set():
                    read_data = self.ep_in.read(self.ep_in.wMaxPacketSize,
                            timeout=self.DEFAULT_USB_TIMEOUT_MS).tobytes()
                    self.rcv_data.put(read_data)
        except Exception as err:
            TRACE.debug("rx_task exception: %s", err)
            self._read_thread_exception = err
        finally:
            self._read_thread_did_exit = True

    @staticmethod
    def get_all_connected_interfaces():
        """! @brief Returns all the connected DAPLink devices as PyUSB objects."""
        try:
            all_devices = libusb_package.find(find_all=True, custom_match=FindDap())
        except usb.core.NoBackendError:
            if not PyUSB.did_show_no_libusb_warning:
                LOG.warning("micro:bit probes may not be detected because no libusb library was found.")
                PyUSB.did_show_no_libusb_warning = True
            return []

        return [PyUSB(board) for board in all_devices]

    def write(self, data):
        """! @brief Write data on the OUT endpoint associated to the HID interface"""
        report_size = self.packet_size
        if self.ep_out:
            report_size = self.ep_out.wMaxPacketSize

        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB OUT> (%d) %s", len(data), ' '.join(['%02x' % i for i in data]))

        data = list(data)
        data.extend([0] * (report_size - len(data)))

        self.read_sem.release()

        if not self.ep_out:
            bmRequestType = 0x21       # Host to device request of type Class of Recipient Interface
            bmRequest = 0x09           # Set_REPORT
            wValue = 0x200             # Issuing an OUT report
            wIndex = self.intf_number
            self.dev.ctrl_transfer(bmRequestType, bmRequest, wValue, wIndex, data,
                    timeout=self.DEFAULT_USB_TIMEOUT_MS)
        else:
            self.ep_out.write(data, timeout=self.DEFAULT_USB_TIMEOUT_MS)

    def read(self):
        """! @brief Read data on the IN endpoint associated to the HID interface"""
        if self.closed:
            return b''

        try:
            data = self.rcv_data.get(True, self.DEFAULT_USB_TIMEOUT_S)
        except queue.Empty:
            if self._read_thread_did_exit:
                raise exceptions.ProbeDisconnected("Probe %s read thread exited unexpectedly"
                        % self.serial_number) from self._read_thread_exception
            raise exceptions.ProbeError("Timeout reading from probe %s" % self.serial_number) from None

        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB RD < (%d) %s", len(data),
                    ' '.join(['%02x' % i for i in bytes(data).rstrip(b'\x00')]))

        return data

    def close(self):
        """! @brief Close the interface"""
        assert self.closed is False

        LOG.debug("closing interface")
        self.closed = True
        self.rx_stop_event.set()
        self.read_sem.release()
        self.thread.join()
        self.rx_stop_event.clear()
        self.rcv_data = queue.SimpleQueue()
        self.read_sem = threading.Semaphore(0)
        usb.util.release_interface(self.dev, self.intf_number)
        if self.kernel_driver_was_attached:
            try:
                self.dev.attach_kernel_driver(self.intf_number)
            except usb.core.USBError as exception:
                LOG.warning('Exception attaching kernel driver: %s', exception)
        usb.util.dispose_resources(self.dev)
        self.ep_out = None
        self.ep_in = None
        self.dev = None
        self.intf_number = None
        self.kernel_driver_was_attached = False
        self.thread = None
        self._read_thread_did_exit = False
        self._read_thread_exception = None

class MatchCmsisDapv1Interface(object):
    """! @brief Match class for finding the CMSIS-DAPv1 HID interface.

    1. If there is more than one HID interface on the device, the interface must have an interface
        name string containing "CMSIS-DAP".
    2. bInterfaceClass must be 0x03 (HID) and bInterfaceSubClass must be 0.
    3. Must have an interrupt IN endpoint, plus an optional interrupt OUT endpoint.
    """

    def __init__(self, hid_interface_count):
        self._hid_count = hid_interface_count

    def __call__(self, interface):
        try:
            if self._hid_count > 1:
                interface_name = usb.util.get_string(interface.device, interface.iInterface)
                if (interface_name is None) or not is_known_device_string(interface_name):
                    return False

            if (interface.bInterfaceClass != USB_CLASS_HID) \
                or (interface.bInterfaceSubClass != 0):
                return False

            if interface.bNumEndpoints not in (1, 2):
                return False

            endpoint_attrs = sorted(
                (usb.util.endpoint_direction(ep.bEndpointAddress),
                 usb.util.endpoint_type(ep.bmAttributes))
                 for ep in interface
            )
            if any(ep_type != usb.util.ENDPOINT_TYPE_INTR for _, ep_type in endpoint_attrs):
                return False
            return usb.util.ENDPOINT_IN in [ep_dir for ep_dir, _ in endpoint_attrs]
        except (UnicodeDecodeError, IndexError):
            # A corrupted interface name or a missing endpoint.
            return False

class FindDap(object):
    """! @brief DAPLink match class to be used with usb.core.find"""

    def __init__(self, serial=None):
        self._serial = serial

    def __call__(self, dev):
        if filter_device_by_class(dev.idVendor, dev.idProduct, dev.bDeviceClass):
            return False

        is_daplink = is_daplink_vid_pid(dev.idVendor, dev.idProduct)
        try:
            # Getting the active config first gives a more direct error for missing permissions.
            config = dev.get_active_configuration()

            device_string = dev.product
            if ((device_string is None) or (not is_known_device_string(device_string))) and (not is_daplink):
                return False

            hid_interface_count = len(list(usb.util.find_descriptor(config, find_all=True,
                    bInterfaceClass=USB_CLASS_HID)))
            matcher = MatchCmsisDapv1Interface(hid_interface_count)
            cmsis_dap_interface = usb.util.find_descriptor(config, custom_match=matcher)
        except usb.core.USBError as error:
            if error.errno == errno.EACCES and platform.system() == "Linux":
                msg = ("%s while trying to interrogate a USB device (VID=%04x PID=%04x). "
                       "This can probably be remedied with a udev rule." %
                       (error, dev.idVendor, dev.idProduct))
                if is_daplink:
                    LOG.warning(msg)
                else:
                    LOG.debug(msg)
            else:
                LOG.debug("Error accessing USB device (VID=%04x PID=%04x): %s",
                    dev.idVendor, dev.idProduct, error)
            return False
        except (IndexError, NotImplementedError, ValueError, UnicodeDecodeError) as error:
            LOG.debug("Error accessing USB device (VID=%04x PID=%04x): %s", dev.idVendor, dev.idProduct, error)
            return False

        if cmsis_dap_interface is None:
            return False
        if self._serial is not None:
            if dev.serial_number is None:
                return self._serial == generate_device_unique_id(dev.idVendor, dev.idProduct,
                        dev.bus, dev.address)
            if self._serial != dev.serial_number:
                return False
        return True
