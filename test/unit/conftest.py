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

import pytest

from ubitflash.core.session import Session
from ubitflash.target.link import TargetLink

from mockdap import (MockDAPInterface, MockTarget)

class FakeClock(object):
    """Clock that advances by a small tick on every read, so deadline loops always end."""

    def __init__(self, tick=0.001):
        self.now = 1000.0
        self.tick = tick
        self.sleeps = []

    def time(self):
        self.now += self.tick
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

@pytest.fixture(scope='function')
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr('ubitflash.utility.timeout.time', fake.time)
    monkeypatch.setattr('ubitflash.utility.timeout.sleep', fake.sleep)
    monkeypatch.setattr('ubitflash.coresight.ap.sleep', fake.sleep)
    monkeypatch.setattr('ubitflash.target.link.sleep', fake.sleep)
    return fake

@pytest.fixture(scope='function')
def target():
    return MockTarget()

@pytest.fixture(scope='function')
def probe(target):
    return MockDAPInterface(target)

@pytest.fixture(scope='function')
def session():
    return Session(no_config=True)

@pytest.fixture(scope='function')
def link(session, probe, clock):
    return TargetLink(session=session, interface=probe)

@pytest.fixture(scope='function')
def connected_link(link):
    link.connect()
    yield link
    link.disconnect()
