# ubitflash
# Copyright (c) 2018-2020 Arm Limited
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

from typing import (Any, Dict, NamedTuple, Tuple, Union)

class OptionInfo(NamedTuple):
    name: str
    type: Union[type, Tuple[type, ...]]
    default: Any
    help: str

## @brief Definitions of the builtin options.
BUILTIN_OPTIONS = [
    OptionInfo('config_file', str, None,
        "Path to custom config file."),
    OptionInfo('flash.min_progress_increment', float, 0.0025,
        "Smallest progress increment passed on to the progress callback. Start, end and completion "
        "notifications are always passed on."),
    OptionInfo('flash.partial', bool, True,
        "Use a partial flash, writing only changed pages, where possible. When False a full flash "
        "through the DAPLink firmware is always performed."),
    OptionInfo('flash.timeout.connect', float, 10.0,
        "Timeout in seconds for connecting to the target and reading its identity."),
    OptionInfo('flash.timeout.halt', float, 10.0,
        "Timeout in seconds to wait for the core to halt after running a code stub."),
    OptionInfo('flash.timeout.reset', float, 1.0,
        "Timeout in seconds for the reset that precedes flashing. A target that does not halt "
        "in time is given a full flash."),
    OptionInfo('flash.wait_retry_delay', float, 0.1,
        "Delay in seconds before repeating a block write that the target answered with WAIT."),
    OptionInfo('frequency', int, 1000000,
        "SWD clock frequency in Hz. Default is 1 MHz."),
    OptionInfo('logging', (str, dict), None,
        "Logging configuration dictionary, or path to YAML file containing logging configuration."),
    OptionInfo('no_config', bool, False,
        "Do not use default config file."),
    OptionInfo('probe.unique_id', str, None,
        "Serial number of the DAPLink probe to use. The first micro:bit found is used if not set."),
    OptionInfo('project_dir', str, None,
        "Path to the session's project directory. Defaults to the working directory when the "
        "session is created."),
    ]

## @brief The runtime dictionary of options.
OPTIONS_INFO: Dict[str, OptionInfo] = {}

def add_option_set(options):
    """! @brief Merge a list of OptionInfo objects into OPTIONS_INFO."""
    OPTIONS_INFO.update({oi.name: oi for oi in options})

add_option_set(BUILTIN_OPTIONS)
