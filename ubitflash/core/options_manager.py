# ubitflash
# Copyright (c) 2019-2020 Arm Limited
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
from functools import partial

from .options import OPTIONS_INFO

LOG = logging.getLogger(__name__)

class OptionsManager(object):
    """! @brief Layered session options.

    When an option is read, the highest priority layer that holds a value for it wins. The
    default from OPTIONS_INFO acts as a layer of infinitely low priority. Layers are plain dicts,
    so options can come from keyword arguments, a YAML config file, or defaults supplied by the
    caller.

    Values whose type does not match the option's declared type are dropped with a warning
    rather than being allowed to fail later deep inside the flash code. Unknown option names are
    accepted as is.
    """

    def __init__(self):
        self._layers = []

    def add_front(self, new_options):
        """! @brief Add a new highest priority layer of option values."""
        self._add_layer(new_options, partial(self._layers.insert, 0))

    def add_back(self, new_options):
        """! @brief Add a new lowest priority layer of option values."""
        self._add_layer(new_options, self._layers.append)

    def _add_layer(self, new_options, add_operation):
        if new_options is None:
            return
        add_operation(self._convert_options(new_options))

    def _convert_options(self, new_options):
        """! @brief Prepare a dictionary of options for use by the manager.

        1. Strip entries with a value of None.
        2. Replace double-underscores ("__") with a dot (".") and lowercase the name.
        3. Drop entries of the wrong type for a known option.
        """
        output = {}
        for name, value in new_options.items():
            if value is None:
                continue
            name = name.replace("__", ".").lower()
            if not self._is_valid_value(name, value):
                continue
            output[name] = value
        return output

    def _is_valid_value(self, name, value):
        info = OPTIONS_INFO.get(name)
        if info is None:
            return True
        # Let an int stand in for a float option.
        if (info.type is float) and isinstance(value, int) and not isinstance(value, bool):
            return True
        if isinstance(value, info.type):
            return True
        LOG.warning("Ignoring option '%s': value %r is not of type %s", name, value, info.type)
        return False

    def is_set(self, key):
        """! @brief Return whether any layer has a value for the option."""
        return any(key in layer for layer in self._layers)

    def get_default(self, key):
        """! @brief Return the default value for the specified option."""
        if key in OPTIONS_INFO:
            return OPTIONS_INFO[key].default
        else:
            return None

    def get(self, key):
        """! @brief Return the highest priority value for the option, or its default."""
        for layer in self._layers:
            if key in layer:
                return layer[key]
        return self.get_default(key)

    def set(self, key, value):
        """! @brief Set an option in the current highest priority layer."""
        self.update({key: value})

    def update(self, new_options):
        """! @brief Set multiple options in the current highest priority layer."""
        if not self._layers:
            self._layers.append({})
        self._layers[0].update(self._convert_options(new_options))

    def __contains__(self, key):
        return self.is_set(key)

    def __getitem__(self, key):
        return self.get(key)

    def __setitem__(self, key, value):
        self.set(key, value)
