# Copyright 2009-present MongoDB, Inc.
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

"""Write and command core of a MongoDB driver speaking the legacy wire
protocol.
"""
from __future__ import annotations

ASCENDING = 1
"""Ascending sort order."""
DESCENDING = -1
"""Descending sort order."""

GEO2D = "2d"
"""Index specifier for a 2-dimensional `geospatial index`_.

.. _geospatial index: http://docs.mongodb.org/manual/core/2d/
"""

GEOSPHERE = "2dsphere"
"""Index specifier for a `spherical geospatial index`_.

.. _spherical geospatial index: http://docs.mongodb.org/manual/core/2dsphere/
"""

HASHED = "hashed"
"""Index specifier for a `hashed index`_.

.. _hashed index: http://docs.mongodb.org/manual/core/index-hashed/
"""

TEXT = "text"
"""Index specifier for a `text index`_.

.. _text index: http://docs.mongodb.org/manual/core/index-text/
"""

from mongocore._version import (  # noqa: E402
    __version__,
    get_version_string,
    version,
    version_tuple,
)
from mongocore.collection import Collection  # noqa: E402
from mongocore.database import Database  # noqa: E402
from mongocore.message import InsertFlags, RemoveFlags, UpdateFlags  # noqa: E402
from mongocore.mongo_client import MongoClient  # noqa: E402
from mongocore.typings import DocumentConvertible  # noqa: E402
from mongocore.write_concern import WriteConcern  # noqa: E402

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "GEO2D",
    "GEOSPHERE",
    "HASHED",
    "TEXT",
    "version_tuple",
    "get_version_string",
    "__version__",
    "version",
    "Collection",
    "Database",
    "DocumentConvertible",
    "InsertFlags",
    "MongoClient",
    "RemoveFlags",
    "UpdateFlags",
    "WriteConcern",
]
