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

"""Collection level utilities for Mongo."""
from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    ContextManager,
    Iterable,
    Mapping,
    MutableMapping,
    NoReturn,
    Optional,
    Union,
)

from bson.codec_options import CodecOptions
from bson.objectid import ObjectId
from bson.son import SON
from mongocore import helpers
from mongocore.common import (
    COMMAND_NOT_FOUND_CODES,
    validate_boolean,
    validate_is_document_type,
)
from mongocore.errors import ArgumentOrderError, DocumentTooLarge, OperationFailure
from mongocore.index_cache import _IndexCache
from mongocore.message import (
    InsertFlags,
    RemoveFlags,
    UpdateFlags,
    _DeleteMessage,
    _InsertMessage,
    _UpdateMessage,
)
from mongocore.typings import DocumentConvertible, _DocumentIn, _IndexKeyHint
from mongocore.write_concern import WriteConcern

if TYPE_CHECKING:
    from mongocore.database import Database
    from mongocore.pool import Connection


class Collection:
    """A Mongo collection."""

    def __init__(
        self,
        database: Database,
        name: str,
        write_concern: Optional[WriteConcern] = None,
        codec_options: Optional[CodecOptions] = None,
    ) -> None:
        """Get a Mongo collection.

        The collection is created implicitly by the server on first write.

        Raises :class:`TypeError` if `name` is not an instance of
        :class:`str`. Raises :class:`~mongocore.errors.InvalidName` if `name`
        is not a valid collection name.

        :param database: the database to get a collection from
        :param name: the name of the collection to get
        :param write_concern: An instance of
            :class:`~mongocore.write_concern.WriteConcern`. If ``None`` (the
            default) database.write_concern is used.
        :param codec_options: An instance of
            :class:`~bson.codec_options.CodecOptions`. If ``None`` (the
            default) database.codec_options is used.
        """
        helpers._check_collection_name(name)
        if write_concern is None:
            write_concern = database.write_concern
        if not isinstance(write_concern, WriteConcern):
            raise TypeError("write_concern must be an instance of mongocore.write_concern.WriteConcern")
        if codec_options is None:
            codec_options = database.codec_options
        if not isinstance(codec_options, CodecOptions):
            raise TypeError("codec_options must be an instance of bson.codec_options.CodecOptions")

        self.__database = database
        self.__name = name
        self.__full_name = f"{database.name}.{name}"
        self.__write_concern = write_concern
        self.__codec_options = codec_options
        self.__index_cache = _IndexCache()
        #: Give a generated ``_id`` to every mutable document inserted
        #: without one.
        self.assign_ids_on_insert = True

    def __getattr__(self, name: str) -> Collection:
        """Get a sub-collection of this collection by name.

        Raises InvalidName if an invalid collection name is used.

        :param name: the name of the collection to get
        """
        if name.startswith("_"):
            full_name = f"{self.__name}.{name}"
            raise AttributeError(
                f"Collection has no attribute {name!r}. To access the {full_name}"
                f" collection, use database['{full_name}']."
            )
        return self.__getitem__(name)

    def __getitem__(self, name: str) -> Collection:
        return Collection(
            self.__database,
            f"{self.__name}.{name}",
            write_concern=self.__write_concern,
            codec_options=self.__codec_options,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.__database!r}, {self.__name!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Collection):
            return self.__database == other.database and self.__name == other.name
        return NotImplemented

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash((self.__database, self.__name))

    @property
    def full_name(self) -> str:
        """The full name of this :class:`Collection`.

        The full name is of the form `database_name.collection_name`.
        """
        return self.__full_name

    @property
    def name(self) -> str:
        """The name of this :class:`Collection`."""
        return self.__name

    @property
    def database(self) -> Database:
        """The :class:`~mongocore.database.Database` that this
        :class:`Collection` is a part of.
        """
        return self.__database

    @property
    def write_concern(self) -> WriteConcern:
        """The default :class:`~mongocore.write_concern.WriteConcern` of
        writes through this collection.
        """
        return self.__write_concern

    @property
    def codec_options(self) -> CodecOptions:
        return self.__codec_options

    def with_options(
        self,
        write_concern: Optional[WriteConcern] = None,
        codec_options: Optional[CodecOptions] = None,
    ) -> Collection:
        """Get a clone of this collection changing the specified settings.

          >>> coll1.write_concern
          WriteConcern()
          >>> from mongocore import WriteConcern
          >>> coll2 = coll1.with_options(write_concern=WriteConcern(w=0))
          >>> coll1.write_concern
          WriteConcern()
          >>> coll2.write_concern
          WriteConcern(w=0)

        The clone starts with an empty index cache.

        :param write_concern: An instance of
            :class:`~mongocore.write_concern.WriteConcern`. If ``None`` (the
            default) the :attr:`write_concern` of this :class:`Collection`
            is used.
        :param codec_options: An instance of
            :class:`~bson.codec_options.CodecOptions`. If ``None`` (the
            default) the :attr:`codec_options` of this :class:`Collection`
            is used.
        """
        coll = Collection(
            self.__database,
            self.__name,
            write_concern or self.__write_concern,
            codec_options or self.__codec_options,
        )
        coll.assign_ids_on_insert = self.assign_ids_on_insert
        return coll

    def _checkout(self) -> ContextManager[Connection]:
        return self.__database.client._checkout()

    def _write_concern_for(self, write_concern: Optional[WriteConcern]) -> WriteConcern:
        """The write concern of a single call: `write_concern` or our own."""
        if write_concern is None:
            return self.__write_concern
        if not isinstance(write_concern, WriteConcern):
            raise TypeError("write_concern must be an instance of mongocore.write_concern.WriteConcern")
        return write_concern

    def _prepare_insert(self, document: _DocumentIn) -> Mapping[str, Any]:
        if (
            self.assign_ids_on_insert
            and isinstance(document, MutableMapping)
            and "_id" not in document
        ):
            document["_id"] = ObjectId()
        return helpers._to_document(document)

    def insert(
        self,
        document: _DocumentIn,
        write_concern: Optional[WriteConcern] = None,
        continue_on_error: bool = False,
    ) -> Optional[dict[str, Any]]:
        """Insert a single document.

        Same as calling :meth:`insert_batch` with a one element list.

        :param document: The document to insert. A mutable mapping without
            an ``"_id"`` field gets one added automatically.
        :param write_concern: A :class:`~mongocore.write_concern.WriteConcern`
            used instead of :attr:`write_concern` for this call only.
        :param continue_on_error: Set the ``ContinueOnError`` flag.

        :return: The acknowledgment document, or ``None`` if write
            acknowledgement is disabled.
        """
        validate_is_document_type("document", document)
        return self.insert_batch(
            [document], write_concern=write_concern, continue_on_error=continue_on_error
        )

    def insert_batch(
        self,
        documents: Iterable[_DocumentIn],
        write_concern: Optional[WriteConcern] = None,
        continue_on_error: bool = False,
    ) -> Optional[dict[str, Any]]:
        """Insert an iterable of documents.

          >>> db.test.insert_batch({"x": i} for i in range(2))
          {'n': 0, 'ok': 1.0, 'err': None}

        `documents` is consumed lazily and sent in as many messages as
        needed to stay within the connection's maximum message size. The
        order of the documents is preserved. All messages go over one
        connection.

        Write errors reported by the server are not raised. They are left in
        the returned acknowledgment document(s).

        :param documents: An iterable of documents to insert.
        :param write_concern: A :class:`~mongocore.write_concern.WriteConcern`
            used instead of :attr:`write_concern` for this call only.
        :param continue_on_error: If ``True``, the database will not stop
            processing a message if one of its documents fails (e.g. due to
            a duplicate ``_id``).

        :return: ``None`` if write acknowledgement is disabled or nothing
            was sent, the acknowledgment document if one message was sent,
            and ``{"batches": [ack, ...]}`` in send order otherwise.
        """
        if isinstance(documents, (Mapping, DocumentConvertible, str, bytes)) or not isinstance(
            documents, Iterable
        ):
            raise TypeError("documents must be an iterable of documents, not a single document")
        write_concern = self._write_concern_for(write_concern)
        validate_boolean("continue_on_error", continue_on_error)
        flags = InsertFlags.CONTINUE_ON_ERROR if continue_on_error else InsertFlags.NONE

        acks = []
        with self._checkout() as conn:
            msg = _InsertMessage(
                self.__full_name, flags, conn.max_message_size, self.__codec_options
            )
            for document in documents:
                msg.append(self._prepare_insert(document))
                if not msg.overflowed:
                    continue
                if len(msg) == 1:
                    self._raise_insert_too_large(msg)
                last = msg.remove_last()
                acks.append(conn.send_write(msg, write_concern))
                msg.reset(last)
                if msg.overflowed:
                    self._raise_insert_too_large(msg)
            if len(msg):
                acks.append(conn.send_write(msg, write_concern))

        if not write_concern.acknowledged or not acks:
            return None
        if len(acks) == 1:
            return acks[0]
        return {"batches": acks}

    @staticmethod
    def _raise_insert_too_large(msg: _InsertMessage) -> NoReturn:
        raise DocumentTooLarge(
            "BSON document too large (%d bytes) - an insert message to this "
            "server can be at most %d bytes." % (msg.max_doc_size, msg.max_size)
        )

    def remove(
        self,
        spec_or_id: Any = None,
        multi: bool = True,
        write_concern: Optional[WriteConcern] = None,
    ) -> Optional[dict[str, Any]]:
        """Remove a document(s) from this collection.

        .. warning:: Calls to :meth:`remove` should be performed with
           care, as removed data cannot be restored.

        If `spec_or_id` is ``None``, all documents in this collection
        will be removed. A query of exactly ``{"_id": <ObjectId>}`` always
        removes a single document, whatever `multi` says.

        :param spec_or_id: a document specifying the documents to be
            removed OR any other type specifying the value of ``"_id"`` for
            the document to be removed
        :param multi: If ``True`` (the default) remove all documents
            matching `spec_or_id`, otherwise remove only the first matching
            document.
        :param write_concern: A :class:`~mongocore.write_concern.WriteConcern`
            used instead of :attr:`write_concern` for this call only.

        :return: A document describing the effect of the remove or ``None``
            if write acknowledgement is disabled.
        """
        query = helpers._to_remove_query(spec_or_id)
        validate_boolean("multi", multi)
        write_concern = self._write_concern_for(write_concern)

        flags = RemoveFlags.NONE if multi else RemoveFlags.SINGLE
        if helpers._is_single_id_query(query):
            flags = RemoveFlags.SINGLE

        msg = _DeleteMessage(self.__full_name, flags, query, self.__codec_options)
        with self._checkout() as conn:
            return conn.send_write(msg, write_concern)

    def remove_all(self, write_concern: Optional[WriteConcern] = None) -> Optional[dict[str, Any]]:
        """Remove every document in this collection. Indexes are kept."""
        return self.remove({}, write_concern=write_concern)

    def update(
        self,
        spec: _DocumentIn,
        document: _DocumentIn,
        upsert: bool = False,
        multi: bool = False,
        write_concern: Optional[WriteConcern] = None,
    ) -> Optional[dict[str, Any]]:
        """Update a document(s) in this collection.

        Raises :class:`TypeError` if either `spec` or `document` is not a
        document or `upsert` or `multi` is not an instance of ``bool``.
        Raises :class:`~mongocore.errors.ArgumentOrderError` if a top level
        key of `spec` starts with ``"$"``, which almost always means the
        query and the update were passed in the wrong order.

        :param spec: a document specifying elements which must be present
            for a document to be updated
        :param document: a document specifying the update to apply or the
            replacement document
        :param upsert: perform an upsert if ``True``
        :param multi: update all documents that match `spec`, rather than
            just the first matching document
        :param write_concern: A :class:`~mongocore.write_concern.WriteConcern`
            used instead of :attr:`write_concern` for this call only.

        :return: A document describing the effect of the update or ``None``
            if write acknowledgement is disabled.
        """
        query = helpers._to_document(spec)
        update = helpers._to_document(document)
        if helpers._has_modifiers(query):
            raise ArgumentOrderError(
                "update query contains an update modifier, "
                "the query and the update document may be swapped"
            )
        validate_boolean("upsert", upsert)
        validate_boolean("multi", multi)
        write_concern = self._write_concern_for(write_concern)

        flags = UpdateFlags.NONE
        if upsert:
            flags |= UpdateFlags.UPSERT
        if multi:
            flags |= UpdateFlags.MULTI

        msg = _UpdateMessage(self.__full_name, flags, query, update, self.__codec_options)
        with self._checkout() as conn:
            return conn.send_write(msg, write_concern)

    def save(
        self, to_save: _DocumentIn, write_concern: Optional[WriteConcern] = None
    ) -> Optional[dict[str, Any]]:
        """Save a document in this collection.

        If `to_save` already has an ``"_id"`` then an :meth:`update`
        (upsert) operation is performed and any existing document with
        that ``"_id"`` is overwritten. Otherwise a new ``"_id"`` becomes the
        document's first field and an :meth:`insert` is performed.

        A mutable mapping is saved in place, so it keeps the generated
        ``"_id"``. Any other document is copied first and is never modified.

        :param to_save: the document to be saved
        :param write_concern: A :class:`~mongocore.write_concern.WriteConcern`
            used instead of :attr:`write_concern` for this call only.
        """
        document: MutableMapping[str, Any]
        if isinstance(to_save, MutableMapping):
            document = to_save
        else:
            document = SON(helpers._to_document(to_save))

        if "_id" not in document:
            helpers._insert_id_first(document, ObjectId())
            return self.insert(document, write_concern=write_concern)
        return self.update(
            {"_id": document["_id"]}, document, upsert=True, write_concern=write_concern
        )

    def create_index(self, key_or_list: _IndexKeyHint, **kwargs: Any) -> str:
        """Creates an index on this collection.

        Takes a single key, a list of keys and/or (key, direction) pairs, or
        an ordered mapping of key to direction. The direction(s) should be
        one of (:data:`~mongocore.ASCENDING`, :data:`~mongocore.DESCENDING`,
        :data:`~mongocore.GEO2D`, :data:`~mongocore.HASHED`,
        :data:`~mongocore.TEXT`).

        To create a simple ascending index on the key ``'mike'`` we just
        use a string argument::

          >>> my_collection.create_index("mike")

        For a compound index on ``'mike'`` descending and ``'eliot'``
        ascending we need to use a list of tuples::

          >>> my_collection.create_index([("mike", mongocore.DESCENDING),
          ...                             ("eliot", mongocore.ASCENDING)])

        All optional index creation parameters should be passed as
        keyword arguments to this method. For example::

          >>> my_collection.create_index([("mike", mongocore.DESCENDING)],
          ...                            background=True)

        Valid options include, but are not limited to:

          - `name`: custom name to use for this index - if none is
            given, a name will be generated.
          - `unique`: if ``True``, creates a uniqueness constraint on the
            index.
          - `background`: if ``True``, this index should be created in the
            background.
          - `sparse`: if ``True``, omit from the index any documents that lack
            the indexed field.
          - `expireAfterSeconds`: <int> Used to create an expiring (TTL)
            collection.

        The ``createIndexes`` command is always sent, whether or not the
        index was seen before. Servers that do not know the command get an
        acknowledged insert into ``system.indexes`` instead. The index cache
        used by :meth:`ensure_index` is not consulted or updated.

        :param key_or_list: a single key or a list of (key, direction)
            pairs specifying the index to create
        :param kwargs: any additional index creation
            options (see the above list) should be passed as keyword
            arguments.

        :return: The name of the index.
        """
        keys = helpers._index_list(key_or_list)
        index_doc = helpers._index_document(keys)
        name = kwargs.pop("name", None) or helpers._gen_index_name(keys)
        index: SON[str, Any] = SON([("key", index_doc), ("name", name)])
        index.update(kwargs)

        try:
            self.__database.command("createIndexes", self.__name, indexes=[index])
        except OperationFailure as exc:
            if exc.code in COMMAND_NOT_FOUND_CODES:
                self.__insert_legacy_index(index)
            else:
                raise
        return name

    def __insert_legacy_index(self, index: SON[str, Any]) -> None:
        legacy: SON[str, Any] = SON(
            [("name", index["name"]), ("ns", self.__full_name), ("key", index["key"])]
        )
        for key, value in index.items():
            if key not in legacy:
                legacy[key] = value

        write_concern = self.__write_concern
        if not write_concern.acknowledged:
            write_concern = WriteConcern(w=1)
        indexes = self.__database.get_collection("system.indexes", write_concern=write_concern)
        indexes.assign_ids_on_insert = False
        result = indexes.insert(legacy)
        if result and result.get("err"):
            raise OperationFailure(result["err"], result.get("code"), result)

    def ensure_index(self, key_or_list: _IndexKeyHint, **kwargs: Any) -> Optional[str]:
        """Ensures that an index exists on this collection.

        Unlike :meth:`create_index`, which attempts to create an index
        unconditionally, :meth:`ensure_index` takes advantage of a cache of
        index names kept by this :class:`Collection` such that it only
        attempts to create indexes that might not already exist.

        Care must be taken when the database is being accessed through
        multiple clients at once. If an index is created using this
        collection and deleted by another client, :meth:`ensure_index` will
        not re-create the missing index until :meth:`reset_index_cache` is
        called.

        The cache belongs to this handle. ``db.coll`` and ``db["coll"]``
        return the same handle every time, while
        :meth:`~mongocore.database.Database.get_collection` and
        :meth:`with_options` start from an empty cache.

        Concurrent calls for the same index send a single create.

        See :meth:`create_index` for the accepted keys and options.

        :return: The specified or generated index name if :meth:`ensure_index`
            attempted to create the index, ``None`` if the index is already
            cached.
        """
        keys = helpers._index_list(key_or_list)
        name = kwargs.get("name") or helpers._gen_index_name(keys)
        kwargs["name"] = name
        if self.__index_cache.ensure(name, lambda: self.create_index(keys, **kwargs)):
            return name
        return None

    def drop_indexes(self) -> dict[str, Any]:
        """Drops all indexes on this collection.

        Can be used on non-existent collections or collections with no indexes.
        Raises OperationFailure on an error.
        """
        return self.drop_index("*")

    def drop_index(self, index_or_name: Union[str, _IndexKeyHint]) -> dict[str, Any]:
        """Drops the specified index on this collection.

        Can be used on non-existent collections or collections with no
        indexes.  Raises OperationFailure on an error (e.g. trying to
        drop an index that does not exist). `index_or_name`
        can be either an index name (as returned by `create_index`),
        or an index specifier (as passed to `create_index`). An index
        specifier should be a list of (key, direction) pairs or a mapping.

        The whole index cache is cleared, even if the command fails.

        .. warning::

          if a custom name was used on index creation (by
          passing the `name` parameter to :meth:`create_index` or
          :meth:`ensure_index`) the index **must** be dropped by name.

        :param index_or_name: index (or name of index) to drop
        """
        if isinstance(index_or_name, str):
            name = index_or_name
        else:
            name = helpers._gen_index_name(helpers._index_list(index_or_name))

        return self.__index_cache.invalidate(
            lambda: self.__database.command(
                "dropIndexes",
                self.__name,
                index=name,
                allowable_errors=["ns not found", 26],
            )
        )

    def reset_index_cache(self) -> None:
        """Forget every index :meth:`ensure_index` has seen."""
        self.__index_cache.clear()

    def index_information(self) -> dict[str, Any]:
        """Get information on this collection's indexes.

        Returns a dictionary where the keys are index names (as
        returned by create_index()) and the values are dictionaries
        containing information about each index. The dictionary is
        guaranteed to contain at least a single key, ``"key"`` which
        is a list of (key, direction) pairs specifying the index (as
        passed to create_index()). It will also contain any other
        metadata about the indexes, except for the ``"name"`` key, which
        is cleaned. Example output might look like this:

        >>> db.test.create_index("x", unique=True)
        'x_1'
        >>> db.test.index_information()
        {'_id_': {'key': [('_id', 1)]},
         'x_1': {'unique': True, 'key': [('x', 1)]}}
        """
        res = self.__database.command(
            "listIndexes",
            self.__name,
            cursor={},
            allowable_errors=["ns not found", 26],
            codec_options=self.__codec_options.with_options(document_class=SON),
        )
        info = {}
        for index in res.get("cursor", {}).get("firstBatch", []):
            index["key"] = list(index["key"].items())
            index = dict(index)
            info[index.pop("name")] = index
        return info

    def is_capped(self) -> NoReturn:
        """Capped collection checks are not supported by this driver core."""
        raise NotImplementedError("is_capped is not supported")

    def reindex(self) -> NoReturn:
        """Rebuilding indexes is not supported by this driver core."""
        raise NotImplementedError("reindex is not supported")

    def __iter__(self) -> Collection:
        return self

    def __next__(self) -> NoReturn:
        raise TypeError("'Collection' object is not iterable")

    def __call__(self, *args: Any, **kwargs: Any) -> NoReturn:
        """This is only here so that some API misusages are easier to debug."""
        if "." not in self.__name:
            raise TypeError(
                "'Collection' object is not callable. If you "
                "meant to call the '%s' method on a 'Database' "
                "object it is failing because no such method "
                "exists." % self.__name
            )
        raise TypeError(
            "'Collection' object is not callable. If you meant to "
            "call the '%s' method on a 'Collection' object it is "
            "failing because no such method exists." % self.__name.split(".")[-1]
        )
