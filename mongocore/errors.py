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

"""Exceptions raised by mongocore."""
from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from bson.errors import InvalidDocument


class MongoCoreError(Exception):
    """Base class for all mongocore exceptions."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self._message = message


class ProtocolError(MongoCoreError):
    """Raised for failures related to the wire protocol."""


class ConnectionFailure(MongoCoreError):
    """Raised when a connection to the database cannot be made or is lost."""


class WaitQueueTimeoutError(ConnectionFailure):
    """Raised when a thread times out waiting for a connection from the pool.

    Only raised when the client was configured with ``waitQueueTimeoutMS``.
    """


class AutoReconnect(ConnectionFailure):
    """Raised when a connection to the database is lost and an attempt to
    auto-reconnect will be made.

    In order to auto-reconnect you must handle this exception, recognizing
    that the operation which caused it has not necessarily succeeded. Future
    operations will attempt to open a new connection to the database (and
    will continue to raise this exception until the first successful
    connection is made).

    Subclass of :exc:`~mongocore.errors.ConnectionFailure`.
    """

    errors: Union[Mapping[str, Any], list]
    details: Union[Mapping[str, Any], list]

    def __init__(self, message: str = "", errors: Optional[Union[Mapping[str, Any], list]] = None) -> None:
        super().__init__(message)
        self.errors = self.details = errors or []


class NetworkTimeout(AutoReconnect):
    """An operation on an open connection exceeded socketTimeoutMS.

    The remaining connections in the pool stay open. In the case of a write
    operation, you cannot know whether it succeeded or failed.

    Subclass of :exc:`~mongocore.errors.AutoReconnect`.
    """


class ConfigurationError(MongoCoreError):
    """Raised when something is incorrectly configured."""


class OperationFailure(MongoCoreError):
    """Raised when a database operation fails."""

    def __init__(
        self,
        error: str,
        code: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.__code = code
        self.__details = details

    @property
    def code(self) -> Optional[int]:
        """The error code returned by the server, if any."""
        return self.__code

    @property
    def details(self) -> Optional[Mapping[str, Any]]:
        """The complete error document returned by the server.

        Depending on the error that occurred, the error document may include
        useful information beyond just the error message. When connected to a
        mongos the error document may contain one or more subdocuments if
        errors occurred on multiple shards.
        """
        return self.__details

    def __str__(self) -> str:
        output_str = "%s, full error: %s" % (self._message, self.__details)
        return output_str


class InvalidOperation(MongoCoreError):
    """Raised when a client attempts to perform an invalid operation."""


class ArgumentOrderError(InvalidOperation):
    """Raised when an update's query document holds update modifiers.

    A ``$``-prefixed top level key in the query almost always means the query
    and the update document were passed in the wrong order.
    """


class InvalidName(MongoCoreError):
    """Raised when an invalid name is used."""


class DocumentTooLarge(InvalidDocument):
    """Raised when an encoded document is too large for the connected server
    or for a single wire message.
    """
