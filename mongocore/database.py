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

"""Database level operations."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, NoReturn, Optional, Sequence, Union

from bson.codec_options import CodecOptions
from bson.son import SON
from mongocore import helpers
from mongocore.collection import Collection
from mongocore.lock import _create_lock
from mongocore.write_concern import WriteConcern

if TYPE_CHECKING:
    from mongocore.mongo_client import MongoClient


class Database:
    """A Mongo database."""

    def __init__(
        self,
        client: MongoClient,
        name: str,
        write_concern: Optional[WriteConcern] = None,
        codec_options: Optional[CodecOptions] = None,
    ) -> None:
        """Get a database by client and name.

        Raises :class:`TypeError` if `name` is not an instance of
        :class:`str`. Raises :class:`~mongocore.errors.InvalidName` if
        `name` is not a valid database name.

        :param client: A :class:`~mongocore.mongo_client.MongoClient` instance.
        :param name: The database name.
        :param write_concern: An instance of
            :class:`~mongocore.write_concern.WriteConcern`. If ``None`` (the
            default) client.write_concern is used.
        :param codec_options: An instance of
            :class:`~bson.codec_options.CodecOptions`. If ``None`` (the
            default) client.codec_options is used.
        """
        helpers._check_database_name(name)
        self.__client = client
        self.__name = name
        self.__write_concern = write_concern or client.write_concern
        self.__codec_options = codec_options or client.codec_options
        self.__lock = _create_lock()
        self.__collections: dict[str, Collection] = {}

    @property
    def client(self) -> MongoClient:
        """The client instance for this :class:`Database`."""
        return self.__client

    @property
    def name(self) -> str:
        """The name of this :class:`Database`."""
        return self.__name

    @property
    def write_concern(self) -> WriteConcern:
        return self.__write_concern

    @property
    def codec_options(self) -> CodecOptions:
        return self.__codec_options

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Database):
            return self.__client == other.client and self.__name == other.name
        return NotImplemented

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash((self.__client, self.__name))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.__client!r}, {self.__name!r})"

    def __getattr__(self, name: str) -> Collection:
        """Get a collection of this database by name.

        Raises InvalidName if an invalid collection name is used.

        :param name: the name of the collection to get
        """
        if name.startswith("_"):
            raise AttributeError(
                f"{type(self).__name__} has no attribute {name!r}. To access the {name}"
                f" collection, use database[{name!r}]."
            )
        return self.__getitem__(name)

    def __getitem__(self, name: str) -> Collection:
        """Get a collection of this database by name.

        Raises InvalidName if an invalid collection name is used.

        :param name: the name of the collection to get
        """
        with self.__lock:
            coll = self.__collections.get(name)
            if coll is None:
                coll = self.__collections[name] = Collection(self, name)
            return coll

    def get_collection(
        self,
        name: str,
        write_concern: Optional[WriteConcern] = None,
        codec_options: Optional[CodecOptions] = None,
    ) -> Collection:
        """Get a :class:`~mongocore.collection.Collection` with the given name
        and options.

        Unlike ``db[name]``, which always hands back the same handle, every
        call returns a new :class:`~mongocore.collection.Collection` with its
        own index cache.

        :param name: The name of the collection - a string.
        :param write_concern: An instance of
            :class:`~mongocore.write_concern.WriteConcern`. If ``None`` (the
            default) the :attr:`write_concern` of this :class:`Database` is
            used.
        :param codec_options: An instance of
            :class:`~bson.codec_options.CodecOptions`. If ``None`` (the
            default) the :attr:`codec_options` of this :class:`Database` is
            used.
        """
        return Collection(self, name, write_concern, codec_options)

    def command(
        self,
        command: Union[str, Mapping[str, Any]],
        value: Any = 1,
        check: bool = True,
        allowable_errors: Optional[Sequence[Union[str, int]]] = None,
        codec_options: Optional[CodecOptions] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Issue a MongoDB command.

        Send command `command` to the database and return the
        response. If `command` is an instance of :class:`str`
        then the command {`command`: `value`} will be sent.
        Otherwise, `command` must be an instance of
        :class:`dict` and will be sent as is.

        Any additional keyword arguments will be added to the final
        command document before it is sent.

        For example, a command like ``{buildinfo: 1}`` can be sent
        using:

        >>> db.command("buildinfo")

        For a command where the value matters, like ``{createIndexes:
        collection_name, indexes: [...]}`` we can do:

        >>> db.command("createIndexes", collection_name, indexes=[index])

        :param command: document representing the command to be issued,
            or the name of the command (for simple commands only).

            .. note:: the order of keys in the `command` document is
               significant (the "verb" must come first), so commands
               which require multiple keys (e.g. `findandmodify`)
               should be given as a :class:`~bson.son.SON` or dict.

        :param value: value to use for the command verb when
            `command` is passed as a string
        :param check: check the response for errors, raising
            :class:`~mongocore.errors.OperationFailure` if there are any
        :param allowable_errors: if `check` is ``True``, error messages
            or codes in this list will be ignored by error-checking
        :param codec_options: A :class:`~bson.codec_options.CodecOptions`
            instance used to decode the reply.
        :param kwargs: additional keyword arguments will
            be added to the command document before it is sent
        """
        if isinstance(command, str):
            command = SON([(command, value)])
        else:
            command = SON(command)
        command.update(kwargs)

        with self.__client._checkout() as conn:
            return conn.command(
                self.__name,
                command,
                codec_options or self.__codec_options,
                check,
                allowable_errors,
            )

    def drop_collection(self, name_or_collection: Union[str, Collection]) -> dict[str, Any]:
        """Drop a collection.

        :param name_or_collection: the name of a collection to drop or the
            collection object itself
        """
        name = name_or_collection
        if isinstance(name, Collection):
            name = name.name

        if not isinstance(name, str):
            raise TypeError("name_or_collection must be an instance of str or Collection")

        return self.command("drop", name, allowable_errors=["ns not found", 26])

    def __iter__(self) -> Database:
        return self

    def __next__(self) -> NoReturn:
        raise TypeError("'Database' object is not iterable")

    def __call__(self, *args: Any, **kwargs: Any) -> NoReturn:
        """This is only here so that some API misusages are easier to debug."""
        raise TypeError(
            "'Database' object is not callable. If you meant to "
            "call the '%s' method on a 'MongoClient' object it is "
            "failing because no such method exists." % self.__name
        )
