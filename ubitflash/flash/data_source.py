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
from io import StringIO
from typing import Union

from intelhex import (IntelHex, IntelHexError)

from ..core import exceptions

LOG = logging.getLogger(__name__)

## Addresses from here up are not main flash (FICR, UICR, peripherals).
FLASH_REGION_END = 0x10000000

## Intel HEX record type that opens a board specific block of a universal hex file.
UNIVERSAL_HEX_BLOCK_START = "0A"

## Runs of erased bytes at least this long are left out when converting bytes to hex.
MIN_PAD_RUN = 64

def is_universal_hex(text):
    """! @brief Whether _text_ is a micro:bit universal hex, holding images for several boards."""
    for line in text.splitlines():
        line = line.strip()
        if line.startswith(':') and (line[7:9].upper() == UNIVERSAL_HEX_BLOCK_START):
            return True
    return False

class FlashImage(object):
    """! @brief Sparse image of target memory.

    A thin wrapper around an `intelhex.IntelHex` object.
    """

    def __init__(self, ihex=None):
        self._ihex = ihex if (ihex is not None) else IntelHex()

    @classmethod
    def from_hex(cls, text):
        """! @brief Parse Intel HEX text.

        @exception FlashDataError The text is not valid Intel HEX, or is a universal hex.
        """
        if is_universal_hex(text):
            raise exceptions.FlashDataError("universal hex files are not supported")
        ihex = IntelHex()
        try:
            ihex.loadhex(StringIO(text))
        except IntelHexError as err:
            raise exceptions.FlashDataError("invalid hex file: %s" % err) from err
        return cls(ihex)

    @classmethod
    def from_padded_bytes(cls, data, pad=0xff):
        """! @brief Create an image from bytes based at address 0.

        Runs of at least MIN_PAD_RUN _pad_ bytes are treated as unprogrammed and left out.
        """
        ihex = IntelHex()
        start = 0
        offset = 0
        length = len(data)
        while offset < length:
            if data[offset] != pad:
                offset += 1
                continue
            run_end = offset
            while (run_end < length) and (data[run_end] == pad):
                run_end += 1
            if (run_end - offset) >= MIN_PAD_RUN:
                if offset > start:
                    ihex.puts(start, bytes(data[start:offset]))
                start = run_end
            offset = run_end
        if start < length:
            ihex.puts(start, bytes(data[start:length]))
        return cls(ihex)

    @property
    def ihex(self):
        return self._ihex

    def segments(self):
        """! @brief List of (start, end) address ranges holding data, end exclusive."""
        return self._ihex.segments()

    def end_below(self, limit):
        """! @brief End address of the last segment starting below _limit_, or None."""
        ends = [end for start, end in self.segments() if start < limit]
        return max(ends) if ends else None

    def slice_pad(self, start, length, fill=0xff) -> bytes:
        """! @brief Return exactly _length_ bytes from _start_, with gaps filled by _fill_."""
        if length <= 0:
            return b''
        saved_padding = self._ihex.padding
        self._ihex.padding = fill
        try:
            return bytes(self._ihex.tobinarray(start=start, size=length))
        finally:
            self._ihex.padding = saved_padding

    def to_hex(self):
        """! @brief Return the image as Intel HEX text."""
        out = StringIO()
        self._ihex.write_hex_file(out, write_start_addr=False)
        return out.getvalue()

class FlashDataSource(object):
    """! @brief Provides the image to flash for a given board.

    Partial flashing needs the main flash contents as bytes from address 0. A full flash hands
    the image to DAPLink, which accepts Intel HEX text or a raw binary.
    """

    def partial_flash_data(self, board_id) -> bytes:
        raise NotImplementedError()

    def full_flash_data(self, board_id) -> Union[str, bytes]:
        raise NotImplementedError()

    @staticmethod
    def for_data(data):
        """! @brief Wrap Intel HEX text, raw bytes or a FlashImage in a data source.

        Existing data sources are returned unchanged.
        """
        if isinstance(data, FlashDataSource):
            return data
        if isinstance(data, str):
            return HexFlashDataSource(data)
        if isinstance(data, (bytes, bytearray, FlashImage)):
            return BinaryFlashDataSource(data)
        raise exceptions.InvalidArgument("cannot flash data of type %s" % type(data).__name__)

class HexFlashDataSource(FlashDataSource):
    """! @brief Data source for an Intel HEX file."""

    def __init__(self, hex_text):
        self._hex = hex_text

    def partial_flash_data(self, board_id) -> bytes:
        image = FlashImage.from_hex(self._hex)
        end = image.end_below(FLASH_REGION_END)
        if end is None:
            raise exceptions.FlashDataError("Empty hex")
        return image.slice_pad(0, end, 0)

    def full_flash_data(self, board_id) -> str:
        if is_universal_hex(self._hex):
            raise exceptions.FlashDataError("universal hex files are not supported")
        return self._hex

class BinaryFlashDataSource(FlashDataSource):
    """! @brief Data source for a flash image based at address 0.

    _data_ is either raw bytes or a FlashImage. A FlashImage is padded with 0xFF to the board's
    flash size for partial flashing.
    """

    def __init__(self, data):
        self._data = data

    def partial_flash_data(self, board_id) -> bytes:
        if isinstance(self._data, FlashImage):
            flash_size = board_id.to_board_version().flash_size
            return self._data.slice_pad(0, flash_size)
        return bytes(self._data)

    def full_flash_data(self, board_id) -> str:
        if isinstance(self._data, FlashImage):
            return self._data.to_hex()
        return FlashImage.from_padded_bytes(self._data).to_hex()
