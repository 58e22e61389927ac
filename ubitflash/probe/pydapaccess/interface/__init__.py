# ubitflash
# Copyright (c) 2006-2013 Arm Limited
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

import os
import logging
import platform

from ....core import exceptions
from .hidapi_backend import HidApiUSB
from .pyusb_backend import PyUSB

LOG = logging.getLogger(__name__)

INTERFACE = {
             'hidapiusb': HidApiUSB,
             'pyusb': PyUSB,
            }

# Allow user to override backend with an environment variable.
USB_BACKEND = os.getenv('UBITFLASH_USB_BACKEND', "") # pylint: disable=invalid-name

if USB_BACKEND and ((USB_BACKEND not in INTERFACE) or (not INTERFACE[USB_BACKEND].isAvailable)):
    LOG.error("Invalid USB backend specified in UBITFLASH_USB_BACKEND: " + USB_BACKEND)
    USB_BACKEND = ""

def _default_backend():
    system = platform.system()
    if system in ("Windows", "Darwin"):
        preferred = ['hidapiusb', 'pyusb']
    else:
        preferred = ['pyusb', 'hidapiusb']
    for name in preferred:
        if INTERFACE[name].isAvailable:
            return name
    return ""

if not USB_BACKEND:
    USB_BACKEND = _default_backend()

def get_all_connected_interfaces():
    """! @brief Return Interface objects for every attached DAPLink probe.

    @exception ProbeError No USB backend library is installed.
    """
    if not USB_BACKEND:
        raise exceptions.ProbeError("No USB backend found; install pyusb and libusb-package, or hidapi")
    return INTERFACE[USB_BACKEND].get_all_connected_interfaces()

def find_daplink(unique_id=None):
    """! @brief Return the Interface of the probe with serial _unique_id_, or the first one found.

    @exception ProbeDisconnected No matching probe is attached.
    """
    for interface in get_all_connected_interfaces():
        if (unique_id is None) or (interface.get_serial_number() == unique_id):
            return interface
    if unique_id is None:
        raise exceptions.ProbeDisconnected("No micro:bit found")
    raise exceptions.ProbeDisconnected("No micro:bit with serial number %s found" % unique_id)
