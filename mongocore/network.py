# Copyright 2015-present MongoDB, Inc.
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

"""Internal network layer helper methods."""
from __future__ import annotations

import errno
import socket
import struct
from typing import Optional

from mongocore.common import MAX_MESSAGE_SIZE
from mongocore.errors import AutoReconnect, ProtocolError
from mongocore.message import _OpReply

_UNPACK_HEADER = struct.Struct("<iiii").unpack


def receive_message(
    sock: socket.socket, request_id: Optional[int], max_message_size: int = MAX_MESSAGE_SIZE
) -> _OpReply:
    """Receive a raw BSON message or raise OSError."""
    # Ignore the response's request id.
    length, _, response_to, op_code = _UNPACK_HEADER(_receive_data_on_socket(sock, 16))
    if op_code != _OpReply.OP_CODE:
        raise ProtocolError(f"Got opcode {op_code!r} but expected {_OpReply.OP_CODE!r}")
    if request_id is not None:
        if request_id != response_to:
            raise ProtocolError(f"Got response id {response_to!r} but expected {request_id!r}")
    if length <= 16:
        raise ProtocolError(
            f"Message length ({length!r}) not longer than standard message header size (16)"
        )
    if length > max_message_size:
        raise ProtocolError(
            f"Message length ({length!r}) is larger than server max "
            f"message size ({max_message_size!r})"
        )

    return _OpReply.unpack(_receive_data_on_socket(sock, length - 16))


def _receive_data_on_socket(sock: socket.socket, length: int) -> bytes:
    buf = bytearray(length)
    mv = memoryview(buf)
    bytes_read = 0
    while bytes_read < length:
        try:
            chunk_length = sock.recv_into(mv[bytes_read:])
        except OSError as exc:
            if _errno_from_exception(exc) == errno.EINTR:
                continue
            raise
        if chunk_length == 0:
            raise AutoReconnect("connection closed")

        bytes_read += chunk_length

    return bytes(buf)


def _errno_from_exception(exc: BaseException) -> Optional[int]:
    if hasattr(exc, "errno"):
        return exc.errno
    if exc.args:
        return exc.args[0]
    return None
