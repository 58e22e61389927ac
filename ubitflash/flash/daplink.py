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

from ..core import exceptions

LOG = logging.getLogger(__name__)

class DAPLinkFlasher(object):
    """! @brief Full flash through the DAPLink firmware's flash programming vendor commands.

    The whole image is streamed to the interface chip, which erases and programs the target
    itself. Both Intel HEX text and raw binaries starting at address 0 are accepted.
    """

    ## Vendor command indices. The opcode sent is 0x80 plus the index.
    RESET = 9
    OPEN = 10
    CLOSE = 11
    WRITE = 12

    ## Stream types for the OPEN command.
    STREAM_BINARY = 0
    STREAM_HEX = 1

    def __init__(self, link):
        self._link = link

    def _command(self, index, data=None):
        resp = self._link.vendor_command(index, data)
        if len(resp) and (resp[0] != 0):
            raise exceptions.FlashFailure("DAPLink flash command %d failed" % index,
                    result_code=resp[0])
        return resp

    def flash(self, data, progress=None):
        """! @brief Write a complete image.

        @param data Intel HEX text, or the hex or binary image as bytes.
        @param progress Optional sink called as `progress(fraction, False)`.
        @exception FlashFailure DAPLink returned a non-zero status.
        """
        if isinstance(data, str):
            data = data.encode('ascii')
        stream_type = self.STREAM_HEX if data[:1] == b':' else self.STREAM_BINARY
        total = len(data)
        chunk_size = self._link.packet_size - 2
        start_time = time()

        LOG.debug("DAPLink flash of %d bytes (%s)", total,
                "hex" if (stream_type == self.STREAM_HEX) else "binary")
        self._command(self.OPEN, [stream_type, 0, 0, 0])

        offset = 0
        while offset < total:
            chunk = data[offset:offset + chunk_size]
            self._command(self.WRITE, [len(chunk)] + list(chunk))
            offset += len(chunk)
            if progress is not None:
                progress(offset / total, False)

        if progress is not None:
            progress(1.0, False)
        self._command(self.CLOSE)
        self._command(self.RESET)
        LOG.debug("DAPLink flash took %.3f s", time() - start_time)
