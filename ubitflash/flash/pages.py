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

from typing import (List, NamedTuple, Tuple)

from ..utility.conversion import read32le

class Page(NamedTuple):
    """! @brief One flash page worth of data.

    `data` is always exactly one page long.
    """
    target_addr: int
    data: bytes

def page_align_blocks(buffer, target_addr=0, page_size=1024) -> List[Page]:
    """! @brief Cut _buffer_ into pages, zero padding the last one.

    @param buffer Image bytes starting at _target_addr_.
    @param target_addr Address of the first byte of _buffer_. Must be page aligned.
    @param page_size Page size in bytes.
    """
    assert (target_addr % page_size) == 0
    pages = []
    for offset in range(0, len(buffer), page_size):
        data = bytes(buffer[offset:offset + page_size])
        if len(data) < page_size:
            data += bytes(page_size - len(data))
        pages.append(Page(target_addr + offset, data))
    return pages

def _rotl32(value, shift):
    return ((value << shift) | (value >> (32 - shift))) & 0xffffffff

def murmur3_core(data) -> Tuple[int, int]:
    """! @brief Compute the two 32-bit page hashes calculated by the on-target checksum routine.

    This is the body of murmur3 run twice in parallel from different seeds, without the length
    mix and finalizer. _data_ length must be a multiple of 4.
    """
    h0 = 0x2F9BE6CC
    h1 = 0x1EC3A6C8
    for offset in range(0, len(data), 4):
        k = read32le(data, offset)
        k = (k * 0xcc9e2d51) & 0xffffffff
        k = _rotl32(k, 15)
        k = (k * 0x1b873593) & 0xffffffff

        h0 ^= k
        h1 ^= k
        h0 = _rotl32(h0, 13)
        h1 = _rotl32(h1, 13)
        h0 = (h0 * 5 + 0xe6546b64) & 0xffffffff
        h1 = (h1 * 5 + 0xe6546b64) & 0xffffffff
    return (h0, h1)

def only_changed(pages, checksums, page_size) -> List[Page]:
    """! @brief Filter _pages_ down to those whose contents differ from the flash.

    @param pages Pages in address order.
    @param checksums Table read back from the checksum routine: two little endian words per
        device page.
    @param page_size Page size in bytes.
    @return The changed pages, in their original order. A page beyond the end of the table is
        always changed.
    """
    changed = []
    for page in pages:
        idx = page.target_addr // page_size
        if (idx * 8 + 8) > len(checksums):
            changed.append(page)
            continue
        h0, h1 = murmur3_core(page.data)
        if (h0 != read32le(checksums, idx * 8)) or (h1 != read32le(checksums, idx * 8 + 4)):
            changed.append(page)
    return changed
