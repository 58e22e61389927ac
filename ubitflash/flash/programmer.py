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
from time import time

from ..core.session import Session
from ..target.link import TargetLink
from ..utility.progress import (print_progress, rate_limit_progress)
from ..utility.timeout import Timeout
from .data_source import FlashDataSource
from .partial import PartialFlasher

LOG = logging.getLogger(__name__)

class FlashProgrammer(object):
    """! @brief Flashes an image onto a micro:bit.

    This is the main entry point for flashing. A simple example:

    @code
    with open("program.hex") as f:
        FlashProgrammer(Session()).program(f.read())
    @endcode

    The image may be Intel HEX text, raw bytes based at address 0, a FlashImage, or any
    FlashDataSource. A data source is asked for the image only once the board is known, so it can
    pick the image for the board's hardware version.
    """

    def __init__(self, session_or_link=None, progress=None, partial=None,
            minimum_progress_increment=None):
        """! @brief Constructor.

        @param self
        @param session_or_link A Session or TargetLink. When None, the current session is used.
        @param progress Progress sink, called as `progress(fraction, partial)` and finally as
            `progress(None, was_partial)`. Defaults to a progress bar on stdout.
        @param partial Whether partial flashing is allowed. Defaults to the `flash.partial` option.
        @param minimum_progress_increment Smallest progress step passed to the sink. Defaults to
            the `flash.min_progress_increment` option.
        """
        if isinstance(session_or_link, TargetLink):
            self._link = session_or_link
            self._session = session_or_link.session
        else:
            self._session = session_or_link if (session_or_link is not None) else Session.get_current()
            self._link = self._session.link if (self._session.link is not None) \
                    else TargetLink(session=self._session)

        options = self._session.options
        self._progress = progress if (progress is not None) else print_progress()
        self._partial = partial if (partial is not None) else options.get('flash.partial')
        self._min_increment = minimum_progress_increment if (minimum_progress_increment is not None) \
                else options.get('flash.min_progress_increment')

    @property
    def link(self):
        return self._link

    def program(self, data) -> bool:
        """! @brief Connect to the board and flash _data_ onto it.

        @param data FlashDataSource, Intel HEX text, bytes or FlashImage.
        @return Whether a partial flash was performed.
        @exception Error Connecting or flashing failed. The progress sink has still received its
            final None.
        """
        data_source = FlashDataSource.for_data(data)
        start_time = time()
        progress = rate_limit_progress(self._min_increment, self._progress)

        was_partial = False
        try:
            LOG.debug("Connecting before flash")
            self._link.connect(Timeout(self._session.options.get('flash.timeout.connect')).start())
            board_id = self._link.serial_info.id
            LOG.debug("Flashing %s board %s", board_id.to_board_version().name, board_id)

            flasher = PartialFlasher(self._link, board_id)
            if self._partial:
                was_partial = flasher.flash(data_source, progress)
            else:
                flasher.full_flash(data_source, progress)
        finally:
            progress(None, was_partial)
            self._link.disconnect()

        LOG.info("Flash complete in %.3f s (%s)", time() - start_time,
                "partial" if was_partial else "full")
        return was_partial
