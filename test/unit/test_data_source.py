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

from io import StringIO
import pytest
from intelhex import IntelHex

from ubitflash.board.board_id import BoardId
from ubitflash.core import exceptions
from ubitflash.flash.data_source import (
    BinaryFlashDataSource,
    FlashDataSource,
    FlashImage,
    HexFlashDataSource,
    is_universal_hex,
)

V1 = BoardId(0x9900)
V2 = BoardId(0x9903)

def make_hex(*chunks):
    ihex = IntelHex()
    for addr, data in chunks:
        ihex.puts(addr, data)
    out = StringIO()
    ihex.write_hex_file(out, write_start_addr=False)
    return out.getvalue()

# Extended linear address record followed by a block start record.
UNIVERSAL_HEX = ":020000040000FA\n:0400000A9900C0DEBB\n:00000001FF\n"

class TestFlashImage:
    def test_from_hex(self):
        image = FlashImage.from_hex(make_hex((0, b'\x01\x02\x03\x04'), (0x100, b'\x05')))
        assert image.segments() == [(0, 4), (0x100, 0x101)]

    def test_from_hex_invalid(self):
        with pytest.raises(exceptions.FlashDataError):
            FlashImage.from_hex("this is not hex\n")

    def test_from_hex_universal(self):
        with pytest.raises(exceptions.FlashDataError):
            FlashImage.from_hex(UNIVERSAL_HEX)

    def test_slice_pad(self):
        image = FlashImage.from_hex(make_hex((2, b'\xaa\xbb')))
        assert image.slice_pad(0, 6) == b'\xff\xff\xaa\xbb\xff\xff'
        assert image.slice_pad(0, 6, 0) == b'\x00\x00\xaa\xbb\x00\x00'
        assert image.slice_pad(3, 2) == b'\xbb\xff'

    def test_slice_pad_empty(self):
        assert FlashImage().slice_pad(0, 0) == b''
        assert FlashImage().slice_pad(0, 3) == b'\xff\xff\xff'

    def test_slice_pad_restores_padding(self):
        image = FlashImage()
        image.slice_pad(0, 4, 0)
        assert image.ihex.padding == 0xff

    def test_end_below(self):
        image = FlashImage.from_hex(make_hex((0, b'\x01' * 8), (0x10001014, b'\x00\x00\x00\x00')))
        assert image.end_below(0x10000000) == 8
        assert FlashImage().end_below(0x10000000) is None

    def test_from_padded_bytes_drops_long_runs(self):
        data = b'\x01\x02' + b'\xff' * 64 + b'\x03'
        image = FlashImage.from_padded_bytes(data)
        assert image.segments() == [(0, 2), (66, 67)]

    def test_from_padded_bytes_keeps_short_runs(self):
        data = b'\x01' + b'\xff' * 63 + b'\x02'
        image = FlashImage.from_padded_bytes(data)
        assert image.segments() == [(0, 65)]

    def test_from_padded_bytes_all_erased(self):
        assert FlashImage.from_padded_bytes(b'\xff' * 128).segments() == []

    def test_to_hex_round_trip(self):
        text = make_hex((0x20, b'\x10\x20\x30'))
        assert FlashImage.from_hex(FlashImage.from_hex(text).to_hex()).slice_pad(0x20, 3) == b'\x10\x20\x30'

class TestUniversalHex:
    def test_detects_block_start(self):
        assert is_universal_hex(UNIVERSAL_HEX)

    def test_plain_hex(self):
        assert not is_universal_hex(make_hex((0, b'\x01')))

class TestHexFlashDataSource:
    def test_partial_zero_filled(self):
        source = HexFlashDataSource(make_hex((0, b'\x01\x02'), (6, b'\x03\x04')))
        assert source.partial_flash_data(V1) == b'\x01\x02\x00\x00\x00\x00\x03\x04'

    def test_partial_ignores_uicr(self):
        source = HexFlashDataSource(make_hex((0, b'\x01\x02\x03\x04'), (0x10001014, b'\x00\x00\x00\x00')))
        assert source.partial_flash_data(V2) == b'\x01\x02\x03\x04'

    def test_partial_empty(self):
        with pytest.raises(exceptions.FlashDataError):
            HexFlashDataSource(make_hex()).partial_flash_data(V1)

    def test_full_is_hex_text(self):
        text = make_hex((0, b'\x01'))
        assert HexFlashDataSource(text).full_flash_data(V1) == text

    def test_full_universal_rejected(self):
        with pytest.raises(exceptions.FlashDataError):
            HexFlashDataSource(UNIVERSAL_HEX).full_flash_data(V1)

class TestBinaryFlashDataSource:
    def test_partial_bytes_unchanged(self):
        assert BinaryFlashDataSource(b'\x01\x02\x03').partial_flash_data(V1) == b'\x01\x02\x03'

    def test_partial_image_padded_to_flash_size(self):
        image = FlashImage.from_hex(make_hex((4, b'\x01')))
        data = BinaryFlashDataSource(image).partial_flash_data(V1)
        assert len(data) == 256 * 1024
        assert data[:6] == b'\xff\xff\xff\xff\x01\xff'
        assert len(BinaryFlashDataSource(image).partial_flash_data(V2)) == 512 * 1024

    def test_full_from_bytes(self):
        text = BinaryFlashDataSource(b'\x01\x02' + b'\xff' * 100).full_flash_data(V1)
        assert text.startswith(':')
        assert FlashImage.from_hex(text).segments() == [(0, 2)]

    def test_full_from_image(self):
        image = FlashImage.from_hex(make_hex((0x40, b'\x07')))
        assert FlashImage.from_hex(BinaryFlashDataSource(image).full_flash_data(V1)).segments() \
                == [(0x40, 0x41)]

class TestForData:
    def test_str(self):
        assert isinstance(FlashDataSource.for_data(make_hex((0, b'\x01'))), HexFlashDataSource)

    @pytest.mark.parametrize("data", [b'\x01', bytearray(b'\x01'), FlashImage()])
    def test_binary(self, data):
        assert isinstance(FlashDataSource.for_data(data), BinaryFlashDataSource)

    def test_source_unchanged(self):
        source = HexFlashDataSource("")
        assert FlashDataSource.for_data(source) is source

    def test_bad_type(self):
        with pytest.raises(exceptions.InvalidArgument):
            FlashDataSource.for_data(1234)
