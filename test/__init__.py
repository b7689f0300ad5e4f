# Copyright 2010-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Test suite for mongocore.

Nothing here needs a running server: operations go to the in-memory
:class:`~test.mongocore_mocks.MockServer`, or to one listening on a local
port when real sockets are under test.
"""
from __future__ import annotations

import unittest

from test.mongocore_mocks import MockClient


class MockClientTest(unittest.TestCase):
    """Base class of tests that run operations against a MockServer."""

    client_kwargs: dict = {}

    def setUp(self):
        super().setUp()
        self.client = MockClient(**self.client_kwargs)
        self.server = self.client.mock_server
        self.db = self.client.mocktest
        self.coll = self.db.test

    def assertAllCheckedIn(self):
        self.assertEqual(self.client.mock_checkouts, self.client.mock_checkins)

    def writes(self, op_code=None):
        if op_code is None:
            return list(self.server.writes)
        return [w for w in self.server.writes if w.op_code == op_code]
