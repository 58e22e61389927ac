# ubitflash
# Copyright (c) 2016-2019 Arm Limited
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

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

class Notification(object):
    """!@brief One event delivered to subscribers."""

    def __init__(self, event, source, data=None):
        self._event = event
        self._source = source
        self._data = data

    @property
    def event(self):
        return self._event

    @property
    def source(self):
        return self._source

    @property
    def data(self):
        return self._data

    def __repr__(self):
        return "<Notification@0x%08x event=%s source=%s data=%s>" % (
                id(self), repr(self.event), repr(self.source), repr(self.data))

class Notifier(object):
    """!@brief Mix-in class that provides notification broadcast capabilities.

    Subscribers register a callable for one or more hashable events. notify() wraps the event,
    the sending object and an optional data value in a Notification and calls every subscriber of
    that event in subscription order. Subscribers are called synchronously from the notifying
    thread, so they must not block.
    """

    def __init__(self):
        ## Dict of event -> list of subscriber callables.
        self._subscribers = {}

    def subscribe(self, cb, events):
        """!@brief Subscribe to one event or an iterable of events."""
        if not isinstance(events, (tuple, list, set)):
            events = [events]
        for event in events:
            self._subscribers.setdefault(event, []).append(cb)

    def unsubscribe(self, cb, events=None):
        """!@brief Remove a callback from all subscriptions, or only from the given events."""
        if (events is not None) and (not isinstance(events, (tuple, list, set))):
            events = [events]
        for event, subscribers in self._subscribers.items():
            if (events is not None) and (event not in events):
                continue
            if cb in subscribers:
                subscribers.remove(cb)

    def notify(self, event, data=None):
        """!@brief Notify subscribers of an event.

        It is acceptable to notify for an event for which there are no subscribers.
        """
        subscribers = list(self._subscribers.get(event, []))
        if not subscribers:
            TRACE.debug("Not sending notification because no subscribers: event=%s", event)
            return
        note = Notification(event, self, data)
        TRACE.debug("Sending notification to %d subscribers: %s", len(subscribers), note)
        for cb in subscribers:
            cb(note)
