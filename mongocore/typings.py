# Copyright 2022-present MongoDB, Inc.
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

"""Type aliases used by mongocore"""
from __future__ import annotations

from typing import (
    Any,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

# Common Shared Types.
_Address = Tuple[str, Optional[int]]
_IndexKeyHint = Union[str, Sequence[Union[str, Tuple[str, Any]]], Mapping[str, Any]]


@runtime_checkable
class DocumentConvertible(Protocol):
    """Any object that knows how to render itself as a document.

    Every write operation accepts these wherever it accepts a mapping; the
    object is converted with :meth:`to_document` right before encoding and is
    never modified.
    """

    def to_document(self) -> Mapping[str, Any]:
        ...


_DocumentIn = Union[Mapping[str, Any], DocumentConvertible]


__all__ = ["DocumentConvertible"]
