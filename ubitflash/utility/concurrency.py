# ubitflash
# Copyright (c) 2018-2019 Arm Limited
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

import functools

def locked(func):
    """! @brief Decorator to automatically lock a method of a class.

    The class is required to have `lock()` and `unlock()` methods. The lock must be reentrant,
    since locked methods routinely call other locked methods of the same object.
    """
    @functools.wraps(func)
    def _locking(self, *args, **kwargs):
        self.lock()
        try:
            return func(self, *args, **kwargs)
        finally:
            self.unlock()
    return _locking
