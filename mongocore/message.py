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

"""Tools for creating legacy `messages
<https://www.mongodb.com/docs/manual/legacy-opcodes/>`_ to be sent to
MongoDB.

.. note:: This module is for internal use and is generally not needed by
   application developers.
"""
from __future__ import annotations

import enum
import random
import struct
from typing import TYPE_CHECKING, Any, Mapping, NoReturn, Optional

import bson
from bson.codec_options import DEFAULT_CODEC_OPTIONS, CodecOptions
from bson.errors import InvalidStringData
from bson.int64 import Int64
from bson.son import SON
from mongocore.common import MAX_MESSAGE_SIZE
from mongocore.errors import AutoReconnect, DocumentTooLarge, OperationFailure, ProtocolError

if TYPE_CHECKING:
    from mongocore.write_concern import WriteConcern

MAX_INT32 = 2147483647
MIN_INT32 = -2147483648

OP_REPLY = 1
OP_UPDATE = 2001
OP_INSERT = 2002
OP_QUERY = 2004
OP_DELETE = 2006

_ZERO_32 = b"\x00\x00\x00\x00"
_HEADER_SIZE = 16

_UNICODE_REPLACE_CODEC_OPTIONS: CodecOptions[Mapping[str, Any]] = CodecOptions(
    unicode_decode_error_handler="replace"
)


class InsertFlags(enum.IntFlag):
    """Flags of an OP_INSERT message."""

    NONE = 0
    CONTINUE_ON_ERROR = 1


class UpdateFlags(enum.IntFlag):
    """Flags of an OP_UPDATE message."""

    NONE = 0
    UPSERT = 1
    MULTI = 2


class RemoveFlags(enum.IntFlag):
    """Flags of an OP_DELETE message."""

    NONE = 0
    SINGLE = 1


def _randint() -> int:
    """Generate a pseudo random 32 bit integer."""
    return random.randint(MIN_INT32, MAX_INT32)  # noqa: S311


def _convert_exception(exception: Exception) -> dict[str, Any]:
    """Convert an Exception into a failure document for logging."""
    return {"errmsg": str(exception), "errtype": exception.__class__.__name__}


_pack_header = struct.Struct("<iiii").pack
_pack_int = struct.Struct("<i").pack


def _pack_message(operation: int, data: bytes) -> tuple[int, bytes]:
    """Takes message data and adds a message header based on the operation.

    Returns the request id and the resultant message string.
    """
    rid = _randint()
    message = _pack_header(_HEADER_SIZE + len(data), rid, 0, operation)
    return rid, message + data


def _make_c_string(string: str) -> bytes:
    encoded = string.encode("utf-8")
    if b"\x00" in encoded:
        raise InvalidStringData("namespace must not contain the null character")
    return encoded + b"\x00"


def _raise_document_too_large(operation: str, doc_size: int, max_size: int) -> NoReturn:
    """Internal helper for raising DocumentTooLarge."""
    if operation == "insert":
        raise DocumentTooLarge(
            "BSON document too large (%d bytes)"
            " - the connected server supports"
            " BSON document sizes up to %d"
            " bytes." % (doc_size, max_size)
        )
    else:
        # There's nothing intelligent we can say
        # about size for update and delete
        raise DocumentTooLarge(f"{operation!r} command document too large")


class _LegacyMessage:
    """Base class of the legacy write messages."""

    name = ""
    op_code = 0

    def __init__(self, namespace: str, codec_options: CodecOptions) -> None:
        self.namespace = namespace
        self.database_name, _, self.collection_name = namespace.partition(".")
        self.codec_options = codec_options
        # Size of the largest document in this message.
        self.max_doc_size = 0

    def _encode(self, document: Mapping[str, Any]) -> bytes:
        encoded = bson.encode(document, codec_options=self.codec_options)
        self.max_doc_size = max(self.max_doc_size, len(encoded))
        return encoded

    def _body(self) -> bytes:
        raise NotImplementedError

    def to_wire(self) -> tuple[int, bytes]:
        """Return the request id and the bytes of this message."""
        return _pack_message(self.op_code, self._body())

    def log_document(self) -> SON[str, Any]:
        """A command shaped summary of this message, for logging."""
        return SON([(self.name, self.collection_name)])


class _InsertMessage(_LegacyMessage):
    """An OP_INSERT message that accumulates documents.

    The running :attr:`length` includes the message header, so it can be
    compared directly against a connection's maximum message size.
    """

    name = "insert"
    op_code = OP_INSERT

    def __init__(
        self,
        namespace: str,
        flags: InsertFlags = InsertFlags.NONE,
        max_size: int = MAX_MESSAGE_SIZE,
        codec_options: CodecOptions = DEFAULT_CODEC_OPTIONS,
    ) -> None:
        super().__init__(namespace, codec_options)
        self.flags = flags
        self.__max_size = max_size
        self.__prefix = _pack_int(flags) + _make_c_string(namespace)
        self.__docs: list[bytes] = []
        self.__length = _HEADER_SIZE + len(self.__prefix)

    @property
    def max_size(self) -> int:
        return self.__max_size

    @property
    def length(self) -> int:
        """The length in bytes of the message built so far."""
        return self.__length

    @property
    def overflowed(self) -> bool:
        return self.__length > self.__max_size

    def __len__(self) -> int:
        return len(self.__docs)

    def append(self, document: Mapping[str, Any]) -> None:
        """Encode `document` and add it to the end of this message."""
        self._append_encoded(self._encode(document))

    def _append_encoded(self, encoded: bytes) -> None:
        self.__docs.append(encoded)
        self.__length += len(encoded)

    def remove_last(self) -> bytes:
        """Take the last document back out of this message.

        Returns its encoded bytes.
        """
        encoded = self.__docs.pop()
        self.__length -= len(encoded)
        self.max_doc_size = max((len(doc) for doc in self.__docs), default=0)
        return encoded

    def reset(self, initial: Optional[bytes] = None) -> None:
        """Empty this message, optionally starting over with the encoded
        document `initial`.
        """
        self.__docs = []
        self.__length = _HEADER_SIZE + len(self.__prefix)
        self.max_doc_size = 0
        if initial is not None:
            self.max_doc_size = len(initial)
            self._append_encoded(initial)

    def _body(self) -> bytes:
        return self.__prefix + b"".join(self.__docs)

    def log_document(self) -> SON[str, Any]:
        doc = super().log_document()
        doc["ordered"] = not self.flags & InsertFlags.CONTINUE_ON_ERROR
        doc["documentCount"] = len(self.__docs)
        return doc


class _UpdateMessage(_LegacyMessage):
    """An OP_UPDATE message. Both documents are encoded up front."""

    name = "update"
    op_code = OP_UPDATE

    def __init__(
        self,
        namespace: str,
        flags: UpdateFlags,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        codec_options: CodecOptions = DEFAULT_CODEC_OPTIONS,
    ) -> None:
        super().__init__(namespace, codec_options)
        self.flags = flags
        self.query = query
        self.update = update
        self.__data = b"".join(
            [
                _ZERO_32,
                _make_c_string(namespace),
                _pack_int(flags),
                self._encode(query),
                self._encode(update),
            ]
        )

    def _body(self) -> bytes:
        return self.__data

    def log_document(self) -> SON[str, Any]:
        doc = super().log_document()
        doc["updates"] = [
            SON(
                [
                    ("q", self.query),
                    ("u", self.update),
                    ("multi", bool(self.flags & UpdateFlags.MULTI)),
                    ("upsert", bool(self.flags & UpdateFlags.UPSERT)),
                ]
            )
        ]
        return doc


class _DeleteMessage(_LegacyMessage):
    """An OP_DELETE message."""

    name = "delete"
    op_code = OP_DELETE

    def __init__(
        self,
        namespace: str,
        flags: RemoveFlags,
        query: Mapping[str, Any],
        codec_options: CodecOptions = DEFAULT_CODEC_OPTIONS,
    ) -> None:
        super().__init__(namespace, codec_options)
        self.flags = flags
        self.query = query
        self.__data = b"".join(
            [
                _ZERO_32,
                _make_c_string(namespace),
                _pack_int(flags),
                self._encode(query),
            ]
        )

    def _body(self) -> bytes:
        return self.__data

    def log_document(self) -> SON[str, Any]:
        doc = super().log_document()
        limit = 1 if self.flags & RemoveFlags.SINGLE else 0
        doc["deletes"] = [SON([("q", self.query), ("limit", limit)])]
        return doc


def _query(
    options: int,
    collection_name: str,
    num_to_skip: int,
    num_to_return: int,
    query: Mapping[str, Any],
    opts: CodecOptions,
) -> tuple[int, bytes, int]:
    """Get a **query** message."""
    encoded = bson.encode(query, codec_options=opts)
    data = b"".join(
        [
            _pack_int(options),
            _make_c_string(collection_name),
            _pack_int(num_to_skip),
            _pack_int(num_to_return),
            encoded,
        ]
    )
    rid, msg = _pack_message(OP_QUERY, data)
    return rid, msg, len(encoded)


def _command(
    dbname: str, spec: Mapping[str, Any], opts: CodecOptions
) -> tuple[int, bytes, int]:
    """Get an OP_QUERY message running the command `spec` on `dbname`."""
    return _query(0, dbname + ".$cmd", 0, -1, spec, opts)


def _last_error(
    dbname: str, write_concern: WriteConcern, opts: CodecOptions
) -> tuple[int, bytes, int]:
    """Get the ``getlasterror`` message acknowledging a legacy write."""
    return _command(dbname, write_concern.get_last_error_command(), opts)


class _OpReply:
    """A MongoDB OP_REPLY response message."""

    __slots__ = ("flags", "cursor_id", "number_returned", "documents")

    UNPACK_FROM = struct.Struct("<iqii").unpack_from
    OP_CODE = OP_REPLY

    def __init__(self, flags: int, cursor_id: int, number_returned: int, documents: bytes):
        self.flags = flags
        self.cursor_id = Int64(cursor_id)
        self.number_returned = number_returned
        self.documents = documents

    def raw_response(self) -> list[bytes]:
        """Check the response header from the database, without decoding BSON.

        Can raise AutoReconnect or OperationFailure.
        """
        if self.flags & 1:
            # This layer never sends getMore.
            raise ProtocolError("Unexpected CursorNotFound flag on a reply")
        elif self.flags & 2:
            error_object: dict = bson.decode(self.documents)
            # Fake the ok field if it doesn't exist.
            error_object.setdefault("ok", 0)
            errmsg = error_object.get("$err", "")
            if errmsg.startswith("not master") or errmsg.startswith("node is recovering"):
                raise AutoReconnect(errmsg, error_object)
            raise OperationFailure(
                "database error: %s" % errmsg,
                error_object.get("code"),
                error_object,
            )
        if self.documents:
            return [self.documents]
        return []

    def unpack_response(
        self, codec_options: CodecOptions = _UNICODE_REPLACE_CODEC_OPTIONS
    ) -> list[dict[str, Any]]:
        """Unpack a response from the database and decode the BSON document(s).

        :param codec_options: an instance of
            :class:`~bson.codec_options.CodecOptions`
        """
        self.raw_response()
        return bson.decode_all(self.documents, codec_options)

    def command_response(self, codec_options: CodecOptions) -> dict[str, Any]:
        """Unpack a command response."""
        docs = self.unpack_response(codec_options=codec_options)
        if len(docs) != 1:
            raise ProtocolError(f"Expected exactly one document in a reply, got {len(docs)}")
        return docs[0]

    @classmethod
    def unpack(cls, msg: bytes) -> _OpReply:
        """Construct an _OpReply from raw bytes."""
        # Ignore the starting_from field.
        flags, cursor_id, _, number_returned = cls.UNPACK_FROM(msg)

        documents = msg[20:]
        return cls(flags, cursor_id, number_returned, documents)
