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

from __future__ import annotations

import collections
import contextlib
import datetime
import os
import socket
import threading
import time
from typing import TYPE_CHECKING, Any, Iterator, Mapping, NoReturn, Optional, Sequence, Union

from bson.codec_options import DEFAULT_CODEC_OPTIONS, CodecOptions
from mongocore.common import (
    CONNECT_TIMEOUT,
    MAX_BSON_SIZE,
    MAX_MESSAGE_SIZE,
    MAX_POOL_SIZE,
    WAIT_QUEUE_TIMEOUT,
)
from mongocore.errors import (
    AutoReconnect,
    ConnectionFailure,
    NetworkTimeout,
    WaitQueueTimeoutError,
)
from mongocore.helpers import _check_command_response
from mongocore.lock import _cond_wait, _create_lock
from mongocore.logger import (
    _COMMAND_LOGGER,
    _CONNECTION_LOGGER,
    _CommandStatusMessage,
    _ConnectionStatusMessage,
    _debug_log,
)
from mongocore.message import (
    _command,
    _convert_exception,
    _last_error,
    _LegacyMessage,
    _OpReply,
    _raise_document_too_large,
)
from mongocore.network import receive_message

if TYPE_CHECKING:
    from mongocore.typings import _Address
    from mongocore.write_concern import WriteConcern


def _raise_connection_failure(
    address: Any, error: Exception, msg_prefix: Optional[str] = None
) -> NoReturn:
    """Convert a socket.error to ConnectionFailure and raise it."""
    host, port = address
    # If connecting to a Unix socket, port will be None.
    if port is not None:
        msg = "%s:%d: %s" % (host, port, error)
    else:
        msg = f"{host}: {error}"
    if msg_prefix:
        msg = msg_prefix + msg
    if isinstance(error, socket.timeout):
        raise NetworkTimeout(msg) from error
    else:
        raise AutoReconnect(msg) from error


class PoolOptions:
    """Read only connection pool options for a MongoClient.

    Should not be instantiated directly by application developers.
    """

    __slots__ = (
        "__max_pool_size",
        "__connect_timeout",
        "__socket_timeout",
        "__wait_queue_timeout",
    )

    def __init__(
        self,
        max_pool_size: Optional[int] = MAX_POOL_SIZE,
        connect_timeout: Optional[float] = CONNECT_TIMEOUT,
        socket_timeout: Optional[float] = None,
        wait_queue_timeout: Optional[float] = WAIT_QUEUE_TIMEOUT,
    ):
        self.__max_pool_size = max_pool_size
        self.__connect_timeout = connect_timeout
        self.__socket_timeout = socket_timeout
        self.__wait_queue_timeout = wait_queue_timeout

    @property
    def max_pool_size(self) -> Optional[int]:
        """The maximum allowable number of concurrent connections to each
        connected server. Requests to a server will block if there are
        `maxPoolSize` outstanding connections to the requested server.
        Defaults to 100. Cannot be 0.

        When a server's pool has reached `max_pool_size`, operations for that
        server block waiting for a socket to be returned to the pool. If
        ``waitQueueTimeoutMS`` is set, a blocked operation will raise
        :exc:`~mongocore.errors.WaitQueueTimeoutError` after a timeout.
        ``None`` and ``0`` mean unbounded.
        """
        return self.__max_pool_size

    @property
    def connect_timeout(self) -> Optional[float]:
        """How long a connection can take to be opened before timing out."""
        return self.__connect_timeout

    @property
    def socket_timeout(self) -> Optional[float]:
        """How long a send or receive on a socket can take before timing out."""
        return self.__socket_timeout

    @property
    def wait_queue_timeout(self) -> Optional[float]:
        """How long a thread will wait for a socket from the pool if the pool
        has no free sockets.
        """
        return self.__wait_queue_timeout

    @property
    def non_default_options(self) -> dict[str, Any]:
        """The non-default options this pool was created with.

        Added for logging.
        """
        opts = {}
        if self.__max_pool_size != MAX_POOL_SIZE:
            opts["maxPoolSize"] = self.__max_pool_size
        if self.__wait_queue_timeout != WAIT_QUEUE_TIMEOUT:
            opts["waitQueueTimeoutMS"] = self.__wait_queue_timeout * 1000  # type: ignore[operator]
        return opts


class Connection:
    """Store a socket with some metadata.

    :param sock: a raw socket object
    :param address: the server's (host, port)
    :param id: the id of this connection in its pool
    """

    def __init__(self, sock: socket.socket, address: _Address, id: int):
        self.sock = sock
        self.address = address
        self.id = id
        self.closed = False
        self.active = False
        self.max_bson_size = MAX_BSON_SIZE
        self.max_message_size = MAX_MESSAGE_SIZE

    def send_message(self, message: bytes) -> None:
        """Send a raw BSON message or raise ConnectionFailure.

        If a network exception is raised, the socket is closed.
        """
        try:
            self.sock.sendall(message)
        except BaseException as error:
            self._raise_connection_failure(error)

    def receive_message(self, request_id: Optional[int]) -> _OpReply:
        """Receive a raw BSON message or raise ConnectionFailure.

        If any exception is raised, the socket is closed.
        """
        try:
            return receive_message(self.sock, request_id, self.max_message_size)
        except BaseException as error:
            self._raise_connection_failure(error)

    def send_write(
        self, msg: _LegacyMessage, write_concern: WriteConcern
    ) -> Optional[dict[str, Any]]:
        """Send a legacy write message and, when `write_concern` is
        acknowledged, the ``getlasterror`` that follows it.

        Returns the decoded ``getlasterror`` reply, or None for an
        unacknowledged write. Errors the server reports in the reply are
        left for the caller to inspect.
        """
        if msg.max_doc_size > self.max_bson_size:
            _raise_document_too_large(msg.name, msg.max_doc_size, self.max_bson_size)

        request_id, data = msg.to_wire()
        if write_concern.acknowledged:
            request_id, gle, _ = _last_error(msg.database_name, write_concern, msg.codec_options)
            data += gle

        start = datetime.datetime.now()
        self._log_command(
            message=_CommandStatusMessage.STARTED,
            command=msg.log_document(),
            commandName=msg.name,
            databaseName=msg.database_name,
            requestId=request_id,
        )
        try:
            self.send_message(data)
            if write_concern.acknowledged:
                reply = self.receive_message(request_id)
                result: Optional[dict[str, Any]] = reply.command_response(msg.codec_options)
            else:
                result = None
        except Exception as exc:
            self._log_command(
                message=_CommandStatusMessage.FAILED,
                durationMS=datetime.datetime.now() - start,
                failure=_convert_exception(exc),
                commandName=msg.name,
                databaseName=msg.database_name,
                requestId=request_id,
            )
            raise
        self._log_command(
            message=_CommandStatusMessage.SUCCEEDED,
            durationMS=datetime.datetime.now() - start,
            reply=result if result is not None else {"ok": 1},
            commandName=msg.name,
            databaseName=msg.database_name,
            requestId=request_id,
        )
        return result

    def command(
        self,
        dbname: str,
        spec: Mapping[str, Any],
        codec_options: CodecOptions = DEFAULT_CODEC_OPTIONS,
        check: bool = True,
        allowable_errors: Optional[Sequence[Union[str, int]]] = None,
    ) -> dict[str, Any]:
        """Execute a command or raise an error.

        :param dbname: name of the database on which to run the command
        :param spec: a command document as a dict, SON, or mapping object
        :param codec_options: a CodecOptions instance
        :param check: raise OperationFailure if there are errors
        :param allowable_errors: errors to ignore if `check` is True
        """
        name = next(iter(spec))
        request_id, data, max_doc_size = _command(dbname, spec, codec_options)
        if max_doc_size > self.max_bson_size:
            _raise_document_too_large(name, max_doc_size, self.max_bson_size)

        start = datetime.datetime.now()
        self._log_command(
            message=_CommandStatusMessage.STARTED,
            command=spec,
            commandName=name,
            databaseName=dbname,
            requestId=request_id,
        )
        try:
            self.send_message(data)
            reply = self.receive_message(request_id)
            response = reply.command_response(codec_options)
            if check:
                _check_command_response(response, allowable_errors)
        except Exception as exc:
            self._log_command(
                message=_CommandStatusMessage.FAILED,
                durationMS=datetime.datetime.now() - start,
                failure=_convert_exception(exc),
                commandName=name,
                databaseName=dbname,
                requestId=request_id,
            )
            raise
        self._log_command(
            message=_CommandStatusMessage.SUCCEEDED,
            durationMS=datetime.datetime.now() - start,
            reply=response,
            commandName=name,
            databaseName=dbname,
            requestId=request_id,
        )
        return response

    def _log_command(self, **fields: Any) -> None:
        _debug_log(
            _COMMAND_LOGGER,
            operationId=fields["requestId"],
            driverConnectionId=self.id,
            serverHost=self.address[0],
            serverPort=self.address[1],
            **fields,
        )

    def close_socket(self, reason: Optional[str]) -> None:
        """Close this connection with a reason."""
        if self.closed:
            return
        self._close_socket()
        if reason:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_ConnectionStatusMessage.CONN_CLOSED,
                serverHost=self.address[0],
                serverPort=self.address[1],
                driverConnectionId=self.id,
                reason=reason,
            )

    def _close_socket(self) -> None:
        """Close this connection."""
        if self.closed:
            return
        self.closed = True
        # Avoid exceptions on interpreter shutdown.
        try:
            self.sock.close()
        except OSError:
            pass

    def _raise_connection_failure(self, error: BaseException) -> NoReturn:
        # Catch *all* exceptions from socket methods and close the socket. In
        # regular Python, socket operations only raise socket.error, even if
        # the underlying cause was a Ctrl-C: a signal raised during socket.recv
        # is expressed as an EINTR error from poll.
        #
        # The connection closed log message is emitted later in checkin.
        self.close_socket(None)
        if isinstance(error, OSError):
            _raise_connection_failure(self.address, error)
        else:
            raise error

    def __eq__(self, other: Any) -> bool:
        return self.sock == other.sock

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash(self.sock)

    def __repr__(self) -> str:
        return "Connection({}){} at {}".format(
            repr(self.sock),
            self.closed and " CLOSED" or "",
            id(self),
        )


def _create_connection(address: _Address, options: PoolOptions) -> socket.socket:
    """Given (host, port) and PoolOptions, connect and return a socket object.

    Can raise socket.error.

    This is a modified version of create_connection from CPython >= 2.7.
    """
    host, port = address

    # Check if dealing with a unix domain socket
    if host.endswith(".sock"):
        if not hasattr(socket, "AF_UNIX"):
            raise ConnectionFailure("UNIX-sockets are not supported on this system")
        sock = socket.socket(socket.AF_UNIX)
        try:
            sock.connect(host)
            return sock
        except OSError:
            sock.close()
            raise

    # Don't try IPv6 if we don't support it. Also skip it if host
    # is 'localhost' (::1 is fine). Avoids slow connect issues.
    family = socket.AF_INET
    if socket.has_ipv6 and host != "localhost":
        family = socket.AF_UNSPEC

    err = None
    for res in socket.getaddrinfo(host, port, family, socket.SOCK_STREAM):
        af, socktype, proto, dummy, sa = res
        sock = socket.socket(af, socktype, proto)
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(options.connect_timeout)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, True)
            sock.connect(sa)
            return sock
        except OSError as e:
            err = e
            sock.close()

    if err is not None:
        raise err
    else:
        # This likely means we tried to connect to an IPv6 only
        # host with an OS/kernel or Python interpreter that doesn't
        # support IPv6.
        raise OSError("getaddrinfo failed")


class Pool:
    def __init__(self, address: _Address, options: PoolOptions):
        """
        :param address: a (hostname, port) tuple
        :param options: a PoolOptions instance
        """
        # LIFO pool. Sockets are ordered on idle time. Sockets claimed
        # and returned to pool from the left side. Stale sockets removed
        # from the right side.
        self.conns: collections.deque[Connection] = collections.deque()
        self.closed = False
        # Keep track of resets, so we notice sockets created before the most
        # recent reset and close them.
        self.next_connection_id = 1
        self.address = address
        self.opts = options
        self.pid = os.getpid()
        self.lock = _create_lock()
        # Enforces: maxPoolSize
        # Also used for: clearing the wait queue
        self.size_cond = threading.Condition(self.lock)
        self.requests = 0
        self.active_sockets = 0
        self.max_pool_size: float = self.opts.max_pool_size or float("inf")
        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.POOL_CREATED,
            serverHost=self.address[0],
            serverPort=self.address[1],
            **self.opts.non_default_options,
        )

    def _reset(self, close: bool) -> None:
        with self.size_cond:
            if self.closed:
                return
            newpid = os.getpid()
            if self.pid != newpid:
                self.pid = newpid
                self.active_sockets = 0
            conns, self.conns = self.conns, collections.deque()
            if close:
                self.closed = True
            # Clear the wait queue
            self.size_cond.notify_all()

        if close:
            for conn in conns:
                conn.close_socket("poolClosed")
            _debug_log(
                _CONNECTION_LOGGER,
                message=_ConnectionStatusMessage.POOL_CLOSED,
                serverHost=self.address[0],
                serverPort=self.address[1],
            )
        else:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_ConnectionStatusMessage.POOL_CLEARED,
                serverHost=self.address[0],
                serverPort=self.address[1],
            )
            for conn in conns:
                conn.close_socket("stale")

    def reset(self) -> None:
        """Close every idle connection. The pool stays usable."""
        self._reset(close=False)

    def close(self) -> None:
        self._reset(close=True)

    def connect(self) -> Connection:
        """Connect to Mongo and return a new Connection.

        Can raise ConnectionFailure.

        Note that the pool does not keep a reference to the socket -- you
        must call checkin() when you're done with it.
        """
        with self.lock:
            conn_id = self.next_connection_id
            self.next_connection_id += 1

        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.CONN_CREATED,
            serverHost=self.address[0],
            serverPort=self.address[1],
            driverConnectionId=conn_id,
        )

        try:
            sock = _create_connection(self.address, self.opts)
            sock.settimeout(self.opts.socket_timeout)
        except BaseException as error:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_ConnectionStatusMessage.CONN_CLOSED,
                serverHost=self.address[0],
                serverPort=self.address[1],
                driverConnectionId=conn_id,
                reason="An error occurred while using the connection",
                error="ConnectionError",
            )
            if isinstance(error, OSError):
                _raise_connection_failure(self.address, error)
            raise

        return Connection(sock, self.address, conn_id)

    @contextlib.contextmanager
    def checkout(self) -> Iterator[Connection]:
        """Get a connection from the pool. Use with a "with" statement.

        Returns a :class:`Connection` object wrapping a connected
        :class:`socket.socket`.

        This method should always be used in a with-statement::

            with pool.checkout() as conn:
                conn.send_write(msg, write_concern)

        The connection is checked back in on every exit path. A connection
        that failed while checked out is closed rather than reused.

        Can raise ConnectionFailure or OperationFailure.
        """
        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.CHECKOUT_STARTED,
            serverHost=self.address[0],
            serverPort=self.address[1],
        )
        start = datetime.datetime.now()
        conn = self._get_conn()
        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.CHECKOUT_SUCCEEDED,
            serverHost=self.address[0],
            serverPort=self.address[1],
            driverConnectionId=conn.id,
            durationMS=datetime.datetime.now() - start,
        )
        try:
            yield conn
        finally:
            self.checkin(conn)

    def _get_conn(self) -> Connection:
        """Get or create a Connection. Can raise ConnectionFailure."""
        # We use the pid here to avoid issues with fork / multiprocessing.
        if self.pid != os.getpid():
            self.reset()

        if self.closed:
            self._log_checkout_failed("Connection pool was closed")
            raise AutoReconnect("Attempted to check out a connection from closed connection pool")

        # Get a free socket or create one.
        if self.opts.wait_queue_timeout:
            deadline: Optional[float] = time.monotonic() + self.opts.wait_queue_timeout
        else:
            deadline = None

        with self.size_cond:
            while not (self.requests < self.max_pool_size):
                if not _cond_wait(self.size_cond, deadline):
                    # Timed out, notify the next thread to ensure a
                    # timeout doesn't consume the condition.
                    if self.requests < self.max_pool_size:
                        self.size_cond.notify()
                    self._raise_wait_queue_timeout()
                if self.closed:
                    self._log_checkout_failed("Connection pool was closed")
                    raise AutoReconnect(
                        "Attempted to check out a connection from closed connection pool"
                    )
            self.requests += 1

        # We've now acquired the semaphore and must release it on error.
        conn = None
        try:
            with self.lock:
                self.active_sockets += 1
                while self.conns:
                    candidate = self.conns.popleft()
                    if not candidate.closed:
                        conn = candidate
                        break
            if conn is None:
                conn = self.connect()
        except BaseException:
            with self.size_cond:
                self.requests -= 1
                self.active_sockets -= 1
                self.size_cond.notify()
            self._log_checkout_failed("An error occurred while trying to establish a new connection")
            raise

        conn.active = True
        return conn

    def checkin(self, conn: Connection) -> None:
        """Return the connection to the pool, or if it's closed discard it.

        :param conn: The connection to check into the pool.
        """
        conn.active = False
        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.CHECKEDIN,
            serverHost=self.address[0],
            serverPort=self.address[1],
            driverConnectionId=conn.id,
        )
        if self.pid != os.getpid():
            conn.close_socket("stale")
            self.reset()
        elif self.closed:
            conn.close_socket("poolClosed")
        elif conn.closed:
            # The closed log message is emitted after the check in.
            _debug_log(
                _CONNECTION_LOGGER,
                message=_ConnectionStatusMessage.CONN_CLOSED,
                serverHost=self.address[0],
                serverPort=self.address[1],
                driverConnectionId=conn.id,
                reason="An error occurred while using the connection",
                error="ConnectionError",
            )
        else:
            with self.lock:
                self.conns.appendleft(conn)

        with self.size_cond:
            self.requests -= 1
            self.active_sockets -= 1
            self.size_cond.notify()

    def _log_checkout_failed(self, reason: str) -> None:
        _debug_log(
            _CONNECTION_LOGGER,
            message=_ConnectionStatusMessage.CHECKOUT_FAILED,
            serverHost=self.address[0],
            serverPort=self.address[1],
            reason=reason,
        )

    def _raise_wait_queue_timeout(self) -> NoReturn:
        self._log_checkout_failed("Wait queue timeout elapsed without a connection becoming available")
        timeout = self.opts.wait_queue_timeout
        raise WaitQueueTimeoutError(
            "Timed out while checking out a connection from connection pool. "
            f"maxPoolSize: {self.opts.max_pool_size}, timeout: {timeout}"
        )

    def __del__(self) -> None:
        # Avoid ResourceWarnings in Python 3
        # Close all sockets without calling reset() or close() because it is
        # not safe to acquire a lock in __del__.
        for conn in self.conns:
            conn._close_socket()
