# Copyright 2009-present MongoDB, Inc.
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

"""Tools for connecting to MongoDB.

.. seealso:: :doc:`/examples/high_availability` for examples of connecting
   to replica sets or sets of mongos servers.

To get a :class:`~mongocore.database.Database` instance from a
:class:`MongoClient` use either dictionary-style or attribute-style
access:

.. doctest::

  >>> from mongocore import MongoClient
  >>> c = MongoClient()
  >>> c.test_database
  Database(MongoClient(host='localhost', port=27017), 'test_database')
  >>> c["test-database"]
  Database(MongoClient(host='localhost', port=27017), 'test-database')
"""
from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING, Any, ContextManager, Optional, Type

from bson.codec_options import CodecOptions
from mongocore import common
from mongocore.common import CONNECT_TIMEOUT, MAX_POOL_SIZE, WAIT_QUEUE_TIMEOUT
from mongocore.database import Database
from mongocore.lock import _create_lock
from mongocore.pool import Pool, PoolOptions
from mongocore.write_concern import WriteConcern

if TYPE_CHECKING:
    from mongocore.pool import Connection
    from mongocore.typings import _Address


class MongoClient:
    """
    A client-side representation of a single MongoDB server.

    The client owns a connection pool to that server. Its options give the
    default write concern and codec options of every
    :class:`~mongocore.database.Database` and
    :class:`~mongocore.collection.Collection` obtained from it.
    """

    HOST = "localhost"
    PORT = 27017

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        document_class: Type = dict,
        tz_aware: bool = False,
        **kwargs: Any,
    ) -> None:
        """Client for a MongoDB instance.

        The client object is thread-safe and has connection-pooling built in.
        No connection is opened until the first operation needs one.

        :param host: hostname or IP address of the instance to connect to,
            optionally followed by ``:port``. Defaults to ``localhost``.
        :param port: port number on which to connect. Overrides a port
            given in `host`.
        :param document_class: default class to use for documents returned
            from the server
        :param tz_aware: if ``True``, :class:`~datetime.datetime` instances
            returned as values in a document by this :class:`MongoClient`
            will be timezone aware (otherwise they will be naive)
        :param kwargs: Other optional keyword parameters. Option names are
            case insensitive.

          | **Pool options:**

          - `maxPoolSize` (optional): The maximum allowable number of
            concurrent connections. Defaults to 100. ``0`` or ``None`` mean
            no limit.
          - `connectTimeoutMS`: (integer or None) Controls how long (in
            milliseconds) the driver will wait during server monitoring when
            connecting a new socket to a server before concluding the server
            is unavailable. Defaults to ``20000`` (20 seconds).
          - `socketTimeoutMS`: (integer or None) Controls how long (in
            milliseconds) the driver will wait for a response after sending an
            ordinary (non-monitoring) database operation before concluding that
            a network error has occurred. ``0`` or ``None`` means no timeout.
            Defaults to ``None`` (no timeout).
          - `waitQueueTimeoutMS`: (integer or None) How long (in milliseconds)
            a thread will wait for a socket from the pool if the pool has no
            free sockets. Defaults to ``None`` (no timeout).

          | **Write Concern options:**
          | (Only set if passed. No default values.)

          - `w`: (integer or string) If this is a replica set, write operations
            will block until they have been replicated to the specified number
            or tagged set of servers. `w=<int>` always includes the replica set
            primary (e.g. w=3 means write to the primary and wait until
            replicated to **two** secondaries). Passing w=0 **disables write
            acknowledgement** and all other write concern options.
          - `wTimeoutMS`: (integer) Used in conjunction with `w`. Specify a
            value in milliseconds to control how long to wait for write
            propagation to complete. Alias: `wtimeout`.
          - `journal`: If ``True`` block until write operations have been
            committed to the journal. Alias: `j`.
          - `fsync`: If ``True`` and the server is running without journaling,
            blocks until the server has synced all data files to disk.
        """
        if host is None:
            host = self.HOST
        if not isinstance(host, str):
            raise TypeError("host must be an instance of str")
        if port is None:
            host, port = common.partition_node(host)
        elif not isinstance(port, int) or isinstance(port, bool):
            raise TypeError("port must be an instance of int")

        opts = common.get_validated_options(kwargs)
        self.__address: _Address = (host, port)
        self.__options = opts
        self.__codec_options = CodecOptions(document_class=document_class, tz_aware=tz_aware)
        self.__write_concern = WriteConcern(
            w=opts.get("w"),
            wtimeout=opts.get("wtimeoutms"),
            j=opts.get("journal"),
            fsync=opts.get("fsync"),
        )
        self.__pool_options = PoolOptions(
            max_pool_size=opts.get("maxpoolsize", MAX_POOL_SIZE),
            connect_timeout=opts.get("connecttimeoutms", CONNECT_TIMEOUT),
            socket_timeout=opts.get("sockettimeoutms"),
            wait_queue_timeout=opts.get("waitqueuetimeoutms", WAIT_QUEUE_TIMEOUT),
        )
        self.__lock = _create_lock()
        self.__pool: Optional[Pool] = None
        self.__databases: dict[str, Database] = {}

    @property
    def address(self) -> _Address:
        """(host, port) of the server this client talks to."""
        return self.__address

    @property
    def options(self) -> dict[str, Any]:
        """The validated keyword options, keyed by lower-cased name."""
        return dict(self.__options)

    @property
    def codec_options(self) -> CodecOptions:
        return self.__codec_options

    @property
    def write_concern(self) -> WriteConcern:
        """The default :class:`~mongocore.write_concern.WriteConcern`."""
        return self.__write_concern

    @property
    def pool_options(self) -> PoolOptions:
        return self.__pool_options

    def _get_pool(self) -> Pool:
        with self.__lock:
            if self.__pool is None:
                self.__pool = Pool(self.__address, self.__pool_options)
            return self.__pool

    def _checkout(self) -> ContextManager[Connection]:
        """Check a connection out of the pool. Use with a "with" statement."""
        return self._get_pool().checkout()

    def close(self) -> None:
        """Close every pooled connection.

        The client can still be used; a new pool is created on demand.
        """
        with self.__lock:
            pool, self.__pool = self.__pool, None
        if pool is not None:
            pool.close()

    def __enter__(self) -> MongoClient:
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def get_database(
        self,
        name: str,
        write_concern: Optional[WriteConcern] = None,
        codec_options: Optional[CodecOptions] = None,
    ) -> Database:
        """Get a :class:`~mongocore.database.Database` with the given name and
        options.

        :param name: The name of the database - a string.
        :param write_concern: An instance of
            :class:`~mongocore.write_concern.WriteConcern`. If ``None`` (the
            default) the :attr:`write_concern` of this :class:`MongoClient` is
            used.
        :param codec_options: An instance of
            :class:`~bson.codec_options.CodecOptions`. If ``None`` (the
            default) the :attr:`codec_options` of this :class:`MongoClient` is
            used.
        """
        return Database(self, name, write_concern, codec_options)

    def __getattr__(self, name: str) -> Database:
        """Get a database by name.

        Raises :class:`~mongocore.errors.InvalidName` if an invalid
        database name is used.

        :param name: the name of the database to get
        """
        if name.startswith("_"):
            raise AttributeError(
                f"{type(self).__name__} has no attribute {name!r}. To access the {name}"
                f" database, use client[{name!r}]."
            )
        return self.__getitem__(name)

    def __getitem__(self, name: str) -> Database:
        """Get a database by name.

        Raises :class:`~mongocore.errors.InvalidName` if an invalid
        database name is used.

        :param name: the name of the database to get
        """
        with self.__lock:
            db = self.__databases.get(name)
            if db is None:
                db = self.__databases[name] = Database(self, name)
            return db

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, self.__class__):
            return self.__address == other.address
        return NotImplemented

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash(self.__address)

    def __repr__(self) -> str:
        host, port = self.__address
        return f"{type(self).__name__}(host={host!r}, port={port!r})"
