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

import logging
import logging.config
import os
import weakref
from typing import (Any, Dict, List, Mapping, Optional)

import yaml
from typing_extensions import Self

from . import exceptions
from .options_manager import OptionsManager

LOG = logging.getLogger(__name__)

## @brief Set of default config filenames to search for.
_CONFIG_FILE_NAMES = [
        "ubitflash.yaml",
        "ubitflash.yml",
        ".ubitflash.yaml",
        ".ubitflash.yml",
    ]

class Session(object):
    """! @brief Top-level object for flashing one micro:bit.

    A session owns the options for everything that happens while it is open, and the
    @ref ubitflash.target.link.TargetLink "TargetLink" used to reach the board. Options are merged
    from keyword arguments (highest priority), the _options_ dict, the config file found in the
    project directory, and finally _option_defaults_.

    The config file is YAML with a dictionary at the top level. Its keys are option names. A
    `logging` key may hold a `logging.config.dictConfig` dictionary, or the path of a YAML file
    containing one.

    Used as a context manager, the session connects its link on entry and disconnects on exit.
    """

    ## @brief Weak reference to the most recently created session.
    _current_session: Optional[weakref.ref] = None

    ## An empty session used for options when there is no other session available.
    _options_session: Optional["Session"] = None

    @classmethod
    def get_current(cls) -> Self:
        """! @brief Return the most recently created Session instance or a default Session.

        If no live session exists, a new default session is created and returned. That at least
        provides access to the user's config file.
        """
        if cls._current_session is not None:
            session = cls._current_session()
            if session is not None:
                return session

        if cls._options_session is None:
            cls._options_session = cls(None)
        return cls._options_session

    def __init__(
            self,
            link=None,
            auto_open: bool = True,
            options: Optional[Mapping[str, Any]] = None,
            option_defaults: Optional[Mapping[str, Any]] = None,
            **kwargs
            ) -> None:
        """! @brief Session constructor.

        @param self
        @param link Optional TargetLink. When None a link to the first micro:bit found (or the
            one named by the `probe.unique_id` option) is created on open().
        @param auto_open Whether to automatically open the session when used as a context manager.
        @param options Optional session options dictionary.
        @param option_defaults Optional dictionary of option values with the lowest priority.
        @param kwargs Session options passed as keyword arguments.
        """
        Session._current_session = weakref.ref(self)

        self._link = link
        self._auto_open = auto_open
        self._options = OptionsManager()
        self._is_open = False

        if link is not None:
            link.session = self

        self._options.add_front(kwargs)
        self._options.add_back(options)

        if self.options.get('project_dir') is None:
            self._project_dir: str = os.environ.get('UBITFLASH_PROJECT_DIR') or os.getcwd()
        else:
            self._project_dir = os.path.abspath(os.path.expanduser(self.options.get('project_dir')))
        LOG.debug("Project directory: %s", self.project_dir)

        self._options.add_back(self._get_config())
        self._options.add_back(option_defaults)

        self._configure_logging()

    def _get_config(self) -> Dict[str, Any]:
        # Load config file if one was provided via options, and no_config option was not set.
        if not self.options.get('no_config'):
            config_path = self.find_user_file('config_file', _CONFIG_FILE_NAMES)

            if config_path is not None:
                try:
                    with open(config_path, 'r') as config_file:
                        LOG.debug("Loading config from: %s", config_path)
                        config = yaml.safe_load(config_file)
                        # Allow an empty config file.
                        if config is None:
                            return {}
                        # But fail if someone tries to put something other than a dict at the top.
                        elif not isinstance(config, dict):
                            raise exceptions.Error("configuration file %s does not contain a top-level dictionary"
                                    % config_path)
                        return config
                except IOError as err:
                    LOG.warning("Error attempting to access config file '%s': %s", config_path, err)

        return {}

    def find_user_file(self, option_name: Optional[str], filename_list: List[str]) -> Optional[str]:
        """! @brief Search the project directory for a file.

        @retval None No matching file was found.
        @retval string An absolute path to the requested file.
        """
        if option_name is not None:
            file_path = self.options.get(option_name)
        else:
            file_path = None

        # Look for default filenames if a path wasn't provided.
        if file_path is None:
            for filename in filename_list:
                this_path = os.path.expanduser(filename)
                if not os.path.isabs(this_path):
                    this_path = os.path.join(self.project_dir, filename)
                if os.path.isfile(this_path):
                    file_path = this_path
                    break
        # Use the path passed in options, which may be absolute, relative to the
        # home directory, or relative to the project directory.
        else:
            file_path = os.path.expanduser(file_path)
            if not os.path.isabs(file_path):
                file_path = os.path.join(self.project_dir, file_path)

        return file_path

    def _configure_logging(self) -> None:
        """! @brief Load a logging config dict or file."""
        config_value = self.options.get('logging')

        # Allow logging setting to refer to another file.
        if isinstance(config_value, str):
            logging_config_path = self.find_user_file(None, [config_value])

            if logging_config_path is None:
                LOG.warning("Logging config file '%s' does not exist", config_value)
                return
            try:
                with open(logging_config_path, 'r') as config_file:
                    config = yaml.safe_load(config_file)
                    LOG.debug("Using logging configuration from: %s", logging_config_path)
            except IOError as err:
                LOG.warning("Error attempting to load logging config file '%s': %s", config_value, err)
                return
        else:
            config = config_value

        if config is not None:
            config = dict(config)
            # Stuff a version key if it's missing, to make it easier to use.
            if 'version' not in config:
                config['version'] = 1
            if 'disable_existing_loggers' not in config:
                config['disable_existing_loggers'] = False
            # Remove an empty 'loggers' key.
            if ('loggers' in config) and (config['loggers'] is None):
                del config['loggers']

            try:
                logging.config.dictConfig(config)
            except (ValueError, TypeError, AttributeError, ImportError) as err:
                LOG.warning("Error applying logging configuration: %s", err)

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def link(self):
        """! @brief The TargetLink, or None before open() when none was passed in."""
        return self._link

    @property
    def options(self) -> OptionsManager:
        return self._options

    @property
    def project_dir(self) -> str:
        return self._project_dir

    def __enter__(self) -> "Session":
        if self._auto_open:
            try:
                self.open()
            except exceptions.Error:
                self.close()
                raise
        return self

    def __exit__(self, exc_type, value, traceback) -> bool:
        self.close()
        return False

    def open(self) -> None:
        """! @brief Connect to the board and read its identity."""
        # Importing here avoids an import cycle, since the link reads its options from a session.
        from ..target.link import TargetLink
        from ..utility.timeout import Timeout

        if self._is_open:
            return
        if self._link is None:
            self._link = TargetLink(session=self)
        self._is_open = True
        self._link.connect(Timeout(self.options.get('flash.timeout.connect')).start())

    def close(self) -> None:
        """! @brief Disconnect the link."""
        if not self._is_open:
            return
        self._is_open = False

        try:
            self._link.disconnect()
        except exceptions.Error as err:
            LOG.error("Error during disconnect: %s", err)
