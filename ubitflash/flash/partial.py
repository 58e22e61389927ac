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

from ..core import exceptions
from ..coresight.cortex_m import CortexM
from ..utility.timeout import Timeout
from .daplink import DAPLinkFlasher
from .pages import (page_align_blocks, only_changed)

LOG = logging.getLogger(__name__)

## Address the code stubs are loaded and run at.
LOAD_ADDR = 0x20000000

## Initial stack pointer for the code stubs.
STACK_ADDR = 0x20001000

## Checksum table and page staging area.
DATA_ADDR = 0x20002000

## Pages from this address up (FICR, UICR) are never written by a partial flash.
PARTIAL_FLASH_LIMIT = 0x10000000

## Copies r2 words from the RAM at r1 to the flash page at r0, then hits the breakpoint at LR.
#
# The first word is a pair of bkpt instructions, so LR is set to LOAD_ADDR + 1 and the routine
# itself is entered at LOAD_ADDR + 5.
FLASH_PAGE = [
    0xbe00be00, 0x2502b5f0, 0x4c204b1f, 0xf3bf511d, 0xf3bf8f6f, 0x25808f4f, 0x002e00ed,
    0x2f00595f, 0x25a1d0fc, 0x515800ed, 0x2d00599d, 0x2500d0fc, 0xf3bf511d, 0xf3bf8f6f,
    0x25808f4f, 0x002e00ed, 0x2f00595f, 0x2501d0fc, 0xf3bf511d, 0xf3bf8f6f, 0x599d8f4f,
    0xd0fc2d00, 0x25002680, 0x00f60092, 0xd1094295, 0x511a2200, 0x8f6ff3bf, 0x8f4ff3bf,
    0x2a00599a, 0xbdf0d0fc, 0x5147594f, 0x2f00599f, 0x3504d0fc, 0x46c0e7ec, 0x4001e000,
    0x00000504,
    ]

## Writes two murmur3 words per flash page to r0, for r3 pages of r2 bytes each.
COMPUTE_CHECKSUMS = [
    0x4c27b5f0, 0x44a52680, 0x22009201, 0x91004f25, 0x00769303, 0x24080013, 0x25010019,
    0x40eb4029, 0xd0002900, 0x3c01407b, 0xd1f52c00, 0x468c0091, 0xa9044665, 0x506b3201,
    0xd1eb42b2, 0x089b9b01, 0x23139302, 0x9b03469c, 0xd104429c, 0x2000be2a, 0x449d4b15,
    0x9f00bdf0, 0x4d149e02, 0x49154a14, 0x3e01cf08, 0x2111434b, 0x491341cb, 0x405a434b,
    0x4663405d, 0x230541da, 0x4b10435a, 0x466318d2, 0x230541dd, 0x4b0d435d, 0x2e0018ed,
    0x6002d1e7, 0x9a009b01, 0x18d36045, 0x93003008, 0xe7d23401, 0xfffffbec, 0xedb88320,
    0x00000414, 0x1ec3a6c8, 0x2f9be6cc, 0xcc9e2d51, 0x1b873593, 0xe6546b64,
    ]

class PartialFlasher(object):
    """! @brief Flash a micro:bit, writing only the pages that changed where that pays off.

    The target computes a checksum of every flash page, the image is diffed against the checksums,
    and the changed pages are copied into flash by a small routine running on the target. When more
    than half of the pages changed the DAPLink full flash is used instead. Whichever method is
    chosen first, the other one is tried if it fails.

    The link must be connected. It is disconnected when flash() returns.
    """

    def __init__(self, link, board_id):
        """! @brief Constructor.
        @param self
        @param link Connected TargetLink.
        @param board_id BoardId of the connected board, passed on to the data source.
        """
        self._link = link
        self._board_id = board_id

    @property
    def _options(self):
        return self._link.session.options

    def _get_flash_checksums(self) -> bytes:
        """! @brief Run the checksum routine over the whole flash and return the checksum table."""
        page_size = self._link.page_size
        page_count = self._link.page_count
        self._link.execute_at(LOAD_ADDR, COMPUTE_CHECKSUMS, STACK_ADDR, LOAD_ADDR + 1, 0xffffffff,
                DATA_ADDR, 0, page_size, page_count)
        self._link.wait_for_halt()
        return self._link.read_memory_block(DATA_ADDR, page_count * 2)

    def _run_flash(self, page, slot):
        """! @brief Start the copy routine on _page_ from the RAM at _slot_, without waiting."""
        link = self._link
        link.halt()
        link.write_core_register(CortexM.PC, LOAD_ADDR + 4 + 1)
        link.write_core_register(CortexM.LR, LOAD_ADDR + 1)
        link.write_core_register(CortexM.SP, STACK_ADDR)
        link.write_core_register(CortexM.R0, page.target_addr)
        link.write_core_register(CortexM.R0 + 1, slot)
        link.write_core_register(CortexM.R0 + 2, link.page_size >> 2)
        link.resume()

    def _partial_flash_page(self, page, next_page, i):
        # Two RAM slots, so the next page uploads while this one is copied into flash.
        slot_a = DATA_ADDR
        slot_b = DATA_ADDR + self._link.page_size
        this_slot = slot_a if (i & 1) else slot_b
        next_slot = slot_b if (i & 1) else slot_a

        if page.target_addr >= PARTIAL_FLASH_LIMIT:
            LOG.debug("skipping page at 0x%08x", page.target_addr)
            # The next page still expects to find its data in its slot.
            if next_page is not None:
                self._link.write_memory_block(next_slot, next_page.data)
            return

        # Later pages were already uploaded with the page before them.
        if i == 0:
            self._link.write_memory_block(this_slot, page.data)

        self._run_flash(page, this_slot)
        if next_page is not None:
            self._link.write_memory_block(next_slot, next_page.data)
        self._link.wait_for_halt()

    def _partial_flash_core(self, pages, progress):
        LOG.info("Partial flash of %d pages", len(pages))
        for i, page in enumerate(pages):
            progress(i / len(pages), True)
            next_page = pages[i + 1] if (i + 1 < len(pages)) else None
            self._partial_flash_page(page, next_page, i)
        progress(1, True)

    def full_flash(self, data_source, progress):
        """! @brief Write the complete image through DAPLink.

        @param data_source FlashDataSource for the image.
        @param progress Sink called as `progress(fraction, False)`.
        """
        LOG.info("Full flash")
        data = data_source.full_flash_data(self._board_id)
        DAPLinkFlasher(self._link).flash(data, progress)

    def _partial_flash(self, data_source, progress) -> bool:
        flash_bytes = data_source.partial_flash_data(self._board_id)
        page_size = self._link.page_size

        checksums = self._get_flash_checksums()
        self._link.write_memory_block(LOAD_ADDR, FLASH_PAGE)

        aligned = page_align_blocks(flash_bytes, 0, page_size)
        total_pages = len(aligned)
        LOG.debug("Total pages: %d", total_pages)
        aligned = only_changed(aligned, checksums, page_size)
        LOG.info("Changed pages: %d of %d", len(aligned), total_pages)

        if len(aligned) > total_pages / 2:
            try:
                self.full_flash(data_source, progress)
                was_partial = False
            except exceptions.Error as err:
                LOG.warning("Full flash failed (%s); attempting partial flash", err)
                self._partial_flash_core(aligned, progress)
                was_partial = True
        else:
            try:
                self._partial_flash_core(aligned, progress)
                was_partial = True
            except exceptions.Error as err:
                LOG.warning("Partial flash failed (%s); attempting full flash", err)
                self.full_flash(data_source, progress)
                was_partial = False

        # The board can always be reset by hand.
        try:
            self._link.reset()
        except exceptions.Error as err:
            LOG.info("Reset after flashing failed: %s", err, exc_info=True)
        LOG.info("Flashing complete")
        return was_partial

    def _reset_before_flash(self, timeout):
        LOG.debug("Begin reset")
        try:
            self._link.reset(halt=True, timeout=timeout)
        except exceptions.TimeoutError:
            raise
        except exceptions.Error as err:
            LOG.debug("Retrying reset after error: %s", err)
            timeout.raise_if_expired("timed out resetting target")
            self._link.reconnect(timeout)
            self._link.reset(halt=True, timeout=timeout)

    def flash(self, data_source, progress) -> bool:
        """! @brief Reset the target into halt, then flash it.

        If the target cannot be reset and halted before the `flash.timeout.reset` deadline, a
        full flash is done straight away.

        @param data_source FlashDataSource for the image.
        @param progress Sink called as `progress(fraction, partial)`.
        @return Whether the flash that completed was a partial flash.
        """
        try:
            timeout = Timeout(self._options.get('flash.timeout.reset')).start()
            try:
                self._reset_before_flash(timeout)
            except exceptions.TimeoutError:
                LOG.info("Resetting micro:bit timed out; attempting full flash")
                self.full_flash(data_source, progress)
                return False

            LOG.debug("Begin flashing")
            return self._partial_flash(data_source, progress)
        finally:
            self._link.disconnect()
