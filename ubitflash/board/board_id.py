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
from enum import Enum
from typing import NamedTuple

from ..core import exceptions

LOG = logging.getLogger(__name__)

class BoardVersion(Enum):
    """! @brief micro:bit hardware generations."""
    V1 = "V1"
    V2 = "V2"

    @property
    def flash_size(self):
        """! @brief Size of the target's internal flash in bytes."""
        return 256 * 1024 if (self is BoardVersion.V1) else 512 * 1024

class BoardId(object):
    """! @brief A validated micro:bit board ID.

    The ID is the first four hex digits of the DAPLink USB serial number. Construction fails with
    UnknownBoardError for IDs that are not a micro:bit.
    """

    V1_IDS = (0x9900, 0x9901)
    V2_IDS = (0x9903, 0x9904, 0x9905, 0x9906)

    V1_NORMALIZED = 0x9900
    V2_NORMALIZED = 0x9903

    def __init__(self, id):
        if (id not in self.V1_IDS) and (id not in self.V2_IDS):
            raise exceptions.UnknownBoardError("Could not recognise the Board ID %x" % id)
        self._id = id

    @property
    def id(self):
        return self._id

    def is_v1(self):
        return self._id in self.V1_IDS

    def is_v2(self):
        return self._id in self.V2_IDS

    def to_board_version(self):
        return BoardVersion.V1 if self.is_v1() else BoardVersion.V2

    def normalize(self):
        """! @brief Return the default board ID for this board's hardware generation."""
        return BoardId(self.V1_NORMALIZED if self.is_v1() else self.V2_NORMALIZED)

    @classmethod
    def parse(cls, value):
        """! @brief Parse a hex string without 0x prefix, such as "9900"."""
        try:
            id = int(value, 16)
        except ValueError as err:
            raise exceptions.UnknownBoardError("Could not recognise the Board ID %r" % value) from err
        return cls(id)

    @classmethod
    def for_version(cls, version):
        return cls(cls.V1_NORMALIZED if (version is BoardVersion.V1) else cls.V2_NORMALIZED)

    def __eq__(self, other):
        return isinstance(other, BoardId) and (other.id == self._id)

    def __hash__(self):
        return hash(self._id)

    def __str__(self):
        return "%x" % self._id

    def __repr__(self):
        return "<BoardId %x>" % self._id

## Expected length of a DAPLink USB serial number.
SERIAL_NUMBER_LENGTH = 48

class BoardSerialInfo(NamedTuple):
    """! @brief Identity fields encoded in the DAPLink USB serial number."""
    id: BoardId
    family_id: str
    hic: str

    @classmethod
    def parse(cls, serial):
        """! @brief Split a DAPLink serial number into board ID, family ID and HIC ID.

        @exception ProbeError No serial number was reported.
        @exception UnknownBoardError The board ID is not a micro:bit.
        """
        if not serial:
            raise exceptions.ProbeError("Could not detect ID from connected board.")
        if len(serial) != SERIAL_NUMBER_LENGTH:
            LOG.warning("USB serial number unexpected length: %d", len(serial))
        return cls(BoardId.parse(serial[0:4]), serial[4:8], serial[-8:])
