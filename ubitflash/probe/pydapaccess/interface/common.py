# ubitflash
# Copyright (c) 2019-2021 Arm Limited
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

from hashlib import sha1
from base64 import b32encode
from typing import (List, Tuple, Union)

# USB class codes.
USB_CLASS_COMPOSITE = 0x00
USB_CLASS_COMMUNICATIONS = 0x02
USB_CLASS_HID = 0x03
USB_CLASS_MISCELLANEOUS = 0xef

CMSIS_DAP_USB_CLASSES = [
    USB_CLASS_COMPOSITE,
    USB_CLASS_MISCELLANEOUS,
    ]

VidPidPair = Tuple[int, int]

ARM_VID = 0x0d28

## VID/PID of the Arm DAPLink firmware running on the micro:bit interface chip.
ARM_DAPLINK_ID: VidPidPair = (ARM_VID, 0x0204)

KNOWN_DAPLINK_IDS: List[VidPidPair] = [
    ARM_DAPLINK_ID,
    ]

## Substrings identifying a CMSIS-DAP interface in product or interface name strings.
KNOWN_DEVICE_STRINGS: List[str] = [
    "CMSIS-DAP",
    "CMSIS_DAP",
    ]

def is_daplink_vid_pid(vid: int, pid: int) -> bool:
    """! @brief Test whether a VID/PID pair belongs to DAPLink firmware."""
    return (vid, pid) in KNOWN_DAPLINK_IDS

def is_known_device_string(device_string: str) -> bool:
    return any(s in device_string for s in KNOWN_DEVICE_STRINGS)

def filter_device_by_class(vid: int, pid: int, device_class: int) -> bool:
    """! @brief Test whether the device should be ignored by comparing bDeviceClass.

    @retval True Skip the device.
    @retval False The device is valid.
    """
    if device_class in CMSIS_DAP_USB_CLASSES:
        return False
    # Old "Mbed CMSIS-DAP" firmware has an incorrect bDeviceClass.
    if ((vid, pid) == ARM_DAPLINK_ID) and (device_class == USB_CLASS_COMMUNICATIONS):
        return False
    return True

def generate_device_unique_id(vid: int, pid: int, *locations: Union[int, str]) -> str:
    """! @brief Generate a semi-stable unique ID from USB device properties.

    Used when a device does not report a serial number string. The ID is stable for a given
    device as long as it stays plugged into the same USB port.
    """
    s = "%04x,%04x," % (vid, pid) + ",".join(str(l) for l in locations)
    return b32encode(sha1(s.encode()).digest()).decode('ascii')
