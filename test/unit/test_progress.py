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

import io
import pytest

from ubitflash.utility.progress import (
    ProgressReportNoTTY,
    ProgressReportTTY,
    print_progress,
    rate_limit_progress,
)

class Recorder(object):
    def __init__(self):
        self.calls = []

    def __call__(self, progress, partial):
        self.calls.append((progress, partial))

@pytest.fixture
def recorder():
    return Recorder()

class TestRateLimit:
    def test_small_steps_dropped(self, recorder):
        progress = rate_limit_progress(0.1, recorder)
        for value in (0, 0.05, 0.1, 0.15, 0.25, 1):
            progress(value, True)
        assert recorder.calls == [(0, True), (0.1, True), (0.25, True), (1, True)]

    def test_end_always_passed(self, recorder):
        progress = rate_limit_progress(0.5, recorder)
        progress(0.1, False)
        progress(0.2, False)
        progress(None, False)
        assert recorder.calls == [(0.1, False), (None, False)]

    def test_none_resets(self, recorder):
        progress = rate_limit_progress(0.5, recorder)
        progress(0.9, True)
        progress(None, True)
        progress(0.1, False)
        assert recorder.calls == [(0.9, True), (None, True), (0.1, False)]

class TestProgressReport:
    def test_notty_bar(self):
        out = io.StringIO()
        report = ProgressReportNoTTY(out)
        report(0.0, True)
        report(0.5, True)
        report(1.0, True)
        text = out.getvalue()
        assert text.startswith("partial [")
        assert text.count('=') == ProgressReportNoTTY.WIDTH
        assert text.endswith("]\n")

    def test_none_finishes_incomplete_bar(self):
        out = io.StringIO()
        report = ProgressReportNoTTY(out)
        report(0.0, False)
        report(0.25, False)
        report(None, False)
        assert out.getvalue().endswith("]\n")
        assert report.done

    def test_none_without_bar(self):
        out = io.StringIO()
        report = ProgressReportNoTTY(out)
        report(None, False)
        assert out.getvalue() == ""

    def test_mode_change_starts_new_bar(self):
        out = io.StringIO()
        report = ProgressReportTTY(out)
        report(0.3, True)
        report(0.1, False)
        text = out.getvalue()
        assert "partial" in text
        assert "full" in text

    def test_print_progress_not_tty(self):
        assert isinstance(print_progress(io.StringIO()), ProgressReportNoTTY)
