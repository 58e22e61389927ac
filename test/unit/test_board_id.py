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
import pytest

from ubitflash.board.board_id import (BoardId, BoardSerialInfo, BoardVersion)
from ubitflash.core import exceptions

class TestBoardId:
    @pytest.mark.parametrize("id", [0x9900, 0x9901])
    def test_v1(self, id):
        board_id = BoardId(id)
        assert board_id.is_v1()
        assert not board_id.is_v2()
        assert board_id.to_board_version() is BoardVersion.V1
        assert board_id.normalize() == BoardId(0x9900)

    @pytest.mark.parametrize("id", [0x9903, 0x9904, 0x9905, 0x9906])
    def test_v2(self, id):
        board_id = BoardId(id)
        assert board_id.is_v2()
        assert board_id.to_board_version() is BoardVersion.V2
        assert board_id.normalize() == BoardId(0x9903)

    @pytest.mark.parametrize("id", [0x9902, 0x9907, 0x0240, 0])
    def test_unknown(self, id):
        with pytest.raises(exceptions.UnknownBoardError):
            BoardId(id)

    def test_unknown_is_value_error(self):
        with pytest.raises(ValueError):
            BoardId(0x1234)

    def test_parse(self):
        assert BoardId.parse("9904") == BoardId(0x9904)

    def test_parse_bad(self):
        with pytest.raises(exceptions.UnknownBoardError):
            BoardId.parse("zzzz")

    def test_for_version(self):
        assert BoardId.for_version(BoardVersion.V1).id == 0x9900
        assert BoardId.for_version(BoardVersion.V2).id == 0x9903

    def test_str(self):
        assert str(BoardId(0x9901)) == "9901"

    def test_hashable(self):
        assert len({BoardId(0x9900), BoardId(0x9900), BoardId(0x9903)}) == 2

    def test_flash_size(self):
        assert BoardVersion.V1.flash_size == 256 * 1024
        assert BoardVersion.V2.flash_size == 512 * 1024

class TestBoardSerialInfo:
    SERIAL = "9904360251154e4500000000000000000000000097969902"

    def test_parse(self):
        info = BoardSerialInfo.parse(self.SERIAL)
        assert info.id == BoardId(0x9904)
        assert info.family_id == "3602"
        assert info.hic == "97969902"

    def test_missing(self):
        with pytest.raises(exceptions.ProbeError):
            BoardSerialInfo.parse("")

    def test_odd_length_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            info = BoardSerialInfo.parse("99001234abcd")
        assert info.id == BoardId(0x9900)
        assert "unexpected length" in caplog.text

    def test_unknown_board(self):
        with pytest.raises(exceptions.UnknownBoardError):
            BoardSerialInfo.parse("1234" + self.SERIAL[4:])
