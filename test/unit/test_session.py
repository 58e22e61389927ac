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

from ubitflash.core import exceptions
from ubitflash.core.session import Session
from ubitflash.target.link import LinkState

class TestSessionConfig:
    def test_defaults(self, tmp_path):
        session = Session(project_dir=str(tmp_path))
        assert session.options.get('flash.partial') is True
        assert session.project_dir == str(tmp_path)
        assert session.link is None
        assert not session.is_open

    def test_config_file(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("flash.partial: false\nfrequency: 4000000\n")
        session = Session(project_dir=str(tmp_path))
        assert session.options.get('flash.partial') is False
        assert session.options.get('frequency') == 4000000

    def test_hidden_config_file(self, tmp_path):
        (tmp_path / ".ubitflash.yml").write_text("flash.timeout.halt: 2.5\n")
        assert Session(project_dir=str(tmp_path)).options.get('flash.timeout.halt') == 2.5

    def test_kwargs_override_config(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("frequency: 4000000\n")
        session = Session(project_dir=str(tmp_path), frequency=2000000)
        assert session.options.get('frequency') == 2000000

    def test_option_defaults_lowest(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("frequency: 4000000\n")
        session = Session(project_dir=str(tmp_path), option_defaults={'frequency': 100, 'foo': 1})
        assert session.options.get('frequency') == 4000000
        assert session.options.get('foo') == 1

    def test_no_config(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("frequency: 4000000\n")
        session = Session(project_dir=str(tmp_path), no_config=True)
        assert session.options.get('frequency') == 1000000

    def test_config_file_option(self, tmp_path):
        (tmp_path / "other.yaml").write_text("flash.partial: false\n")
        session = Session(project_dir=str(tmp_path), config_file="other.yaml")
        assert session.options.get('flash.partial') is False

    def test_empty_config_file(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("")
        assert Session(project_dir=str(tmp_path)).options.get('frequency') == 1000000

    def test_non_dict_config(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text("- a\n- b\n")
        with pytest.raises(exceptions.Error):
            Session(project_dir=str(tmp_path))

    def test_project_dir_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv('UBITFLASH_PROJECT_DIR', str(tmp_path))
        assert Session(no_config=True).project_dir == str(tmp_path)

    def test_logging_config(self, tmp_path):
        (tmp_path / "ubitflash.yaml").write_text(
                "logging:\n  loggers:\n    ubitflash.test_session:\n      level: ERROR\n")
        Session(project_dir=str(tmp_path))
        assert logging.getLogger("ubitflash.test_session").level == logging.ERROR

    def test_get_current(self):
        session = Session(no_config=True)
        assert Session.get_current() is session

class TestSessionLink:
    def test_context_manager(self, probe, link):
        session = Session(link=link, no_config=True)
        with session:
            assert session.is_open
            assert link.is_connected
            assert link.page_size == 1024
        assert not session.is_open
        assert link.state is LinkState.DISCONNECTED
        assert not probe.is_open

    def test_open_failure_closes(self, probe, link):
        probe.serial_number = "1234" + probe.serial_number[4:]
        session = Session(link=link, no_config=True)
        with pytest.raises(exceptions.UnknownBoardError):
            with session:
                pass
        assert not session.is_open
        assert not probe.is_open
