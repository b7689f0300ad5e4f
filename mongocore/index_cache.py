# Copyright 2011-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you
# may not use this file except in compliance with the License.  You
# may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.  See the License for the specific language governing
# permissions and limitations under the License.

"""The per-collection cache of index names known to exist."""
from __future__ import annotations

from typing import Any, Callable, TypeVar

from mongocore.lock import _create_lock

_T = TypeVar("_T")


class _IndexCache:
    """A set of index names guarded by a single lock.

    The cache is optimistic: a name is added once the create for it has
    returned, and every drop clears the whole cache. Indexes created or
    dropped by other clients are not tracked.
    """

    def __init__(self) -> None:
        self.__lock = _create_lock()
        self.__names: set[str] = set()

    def ensure(self, name: str, create: Callable[[], Any]) -> bool:
        """Call `create` unless `name` is cached, then cache `name`.

        The lookup, the create and the insert happen under the lock, so
        concurrent callers for the same name issue exactly one create. If
        `create` raises, `name` is not cached.

        Returns True if `create` was called.
        """
        with self.__lock:
            if name in self.__names:
                return False
            create()
            self.__names.add(name)
            return True

    def invalidate(self, drop: Callable[[], _T]) -> _T:
        """Call `drop` and clear the cache, whether or not `drop` raises."""
        with self.__lock:
            try:
                return drop()
            finally:
                self.__names.clear()

    def clear(self) -> None:
        with self.__lock:
            self.__names.clear()
