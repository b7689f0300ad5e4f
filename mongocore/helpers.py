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

"""Bits and pieces used by the driver that don't really fit elsewhere."""
from __future__ import annotations

from typing import (
    Any,
    Container,
    Iterable,
    Mapping,
    MutableMapping,
    NoReturn,
    Optional,
    Sequence,
    Union,
)

from bson.objectid import ObjectId
from bson.son import SON
from mongocore import ASCENDING
from mongocore.common import MAX_COLLECTION_NAME_LENGTH
from mongocore.errors import AutoReconnect, InvalidName, OperationFailure
from mongocore.typings import DocumentConvertible, _IndexKeyHint

# Characters that may never appear in a database name.
_DATABASE_NAME_INVALID_CHARS = frozenset(' ./\\"$\x00')


def _to_document(value: Any) -> Mapping[str, Any]:
    """Return the document form of `value`.

    Mappings are returned unchanged, :class:`DocumentConvertible` objects
    are converted. Anything else raises TypeError.
    """
    if isinstance(value, Mapping):
        return value
    if isinstance(value, DocumentConvertible):
        document = value.to_document()
        if not isinstance(document, Mapping):
            raise TypeError(
                f"{type(value).__name__}.to_document() must return a mapping, "
                f"not {type(document).__name__}"
            )
        return document
    raise TypeError(
        "document must be an instance of dict, bson.son.SON, any other "
        "type that inherits from collections.abc.Mapping, or an object "
        f"with a to_document() method, not {type(value).__name__}"
    )


def _to_remove_query(spec_or_id: Any) -> Mapping[str, Any]:
    """Turn the argument of a remove into a query document.

    ``None`` selects everything and a bare value selects by ``_id``.
    """
    if spec_or_id is None:
        return {}
    if isinstance(spec_or_id, (Mapping, DocumentConvertible)):
        return _to_document(spec_or_id)
    return {"_id": spec_or_id}


def _insert_id_first(document: MutableMapping[str, Any], oid: Any) -> None:
    """Make ``_id`` the first field of `document`, in place."""
    items = list(document.items())
    document.clear()
    document["_id"] = oid
    document.update(items)


def _has_modifiers(document: Mapping[str, Any]) -> bool:
    """Does any top level key of `document` start with "$"?"""
    return any(isinstance(key, str) and key.startswith("$") for key in document)


def _is_single_id_query(query: Mapping[str, Any]) -> bool:
    """Is `query` exactly ``{"_id": <ObjectId>}``?"""
    return len(query) == 1 and "_id" in query and isinstance(query["_id"], ObjectId)


def _index_list(key_or_list: _IndexKeyHint) -> list[tuple[str, Any]]:
    """Helper to generate a list of (key, direction) pairs.

    Takes a single key name, a list of key names and/or (key, direction)
    pairs, or an ordered mapping of key to direction. Bare key names are
    ascending.
    """
    if isinstance(key_or_list, str):
        return [(key_or_list, ASCENDING)]
    if isinstance(key_or_list, Mapping):
        return list(key_or_list.items())
    if not isinstance(key_or_list, (list, tuple)):
        raise TypeError(
            "key_or_list must be a key name, a list of key names and/or "
            "(key, direction) pairs, or a mapping, "
            f"not: {type(key_or_list).__name__}"
        )
    values: list[tuple[str, Any]] = []
    for item in key_or_list:
        if isinstance(item, str):
            values.append((item, ASCENDING))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            values.append((item[0], item[1]))
        else:
            raise TypeError(
                "each index key must be a key name or a (key, direction) pair, "
                f"not: {item!r}"
            )
    return values


def _index_document(index_list: Sequence[tuple[str, Any]]) -> SON[str, Any]:
    """Helper to generate an index specifying document.

    Takes a list of (key, direction) pairs.
    """
    if not len(index_list):
        raise ValueError("key_or_list must not be empty")

    index: SON[str, Any] = SON()
    for key, value in index_list:
        if not isinstance(key, str):
            raise TypeError(f"first item in each key pair must be an instance of str, not {key!r}")
        if isinstance(value, bool) or not isinstance(value, (str, int, float, Mapping)):
            raise TypeError(
                "second item in each key pair must be 1, -1, "
                "'2d', or another valid MongoDB index specifier."
            )
        index[key] = value
    return index


def _format_index_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).replace(" ", "_")


def _gen_index_name(keys: Iterable[tuple[str, Any]]) -> str:
    """Generate an index name from the set of fields it is over.

    Integer, floating point and string directions are part of the name.
    Any other direction contributes only the separator.
    """
    parts = []
    for key, value in keys:
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            parts.append(f"{key}_{_format_index_value(value)}")
        else:
            parts.append(f"{key}_")
    return "_".join(parts)


def _check_database_name(name: Any) -> None:
    """Check that a database name is legal."""
    if not isinstance(name, str):
        raise TypeError(f"name must be an instance of str, not {type(name)}")
    if not name:
        raise InvalidName("database name cannot be the empty string")
    invalid = _DATABASE_NAME_INVALID_CHARS.intersection(name)
    if invalid:
        raise InvalidName(f"database names cannot contain the character {sorted(invalid)[0]!r}")


def _check_collection_name(name: Any) -> None:
    """Check that a collection name is legal."""
    if not isinstance(name, str):
        raise TypeError(f"name must be an instance of str, not {type(name)}")
    if not name:
        raise InvalidName("collection names cannot be empty")
    if "\x00" in name:
        raise InvalidName("collection names must not contain the null character")
    if len(name.encode("utf-8")) > MAX_COLLECTION_NAME_LENGTH:
        raise InvalidName(
            f"collection names must not be longer than {MAX_COLLECTION_NAME_LENGTH} bytes"
        )


def _raise_last_error(response: Mapping[str, Any], msg: Optional[str]) -> NoReturn:
    errmsg = response.get("errmsg", response.get("$err", "unknown error"))
    if msg:
        errmsg = f"{msg}: {errmsg}"
    raise OperationFailure(errmsg, response.get("code"), response)


def _check_command_response(
    response: Mapping[str, Any],
    allowable_errors: Optional[Container[Union[int, str]]] = None,
    msg: Optional[str] = None,
) -> None:
    """Check the response to a command for errors."""
    if "ok" not in response:
        # Server didn't recognize our message as a command.
        raise OperationFailure(response.get("$err"), response.get("code"), response)  # type:ignore[arg-type]

    if response["ok"]:
        return

    details = response
    # Mongos returns the error details in a 'raw' object
    # for some errors.
    if "raw" in response:
        for shard in response["raw"].values():
            # Grab the first non-empty raw error from a shard.
            if shard.get("errmsg") and not shard.get("ok"):
                details = shard
                break

    errmsg = details.get("errmsg", "")
    if allowable_errors:
        if errmsg in allowable_errors or details.get("code") in allowable_errors:
            return

    # Server is "not master" or "recovering"
    if errmsg.startswith("not master") or errmsg.startswith("node is recovering"):
        raise AutoReconnect(errmsg, details)

    _raise_last_error(details, msg)
