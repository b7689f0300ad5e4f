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

"""Test the collection module."""
from __future__ import annotations

import threading
import time
import unittest
from types import MappingProxyType

import bson
from bson.errors import InvalidDocument
from bson.objectid import ObjectId
from bson.son import SON
from mongocore import ASCENDING, DESCENDING, GEO2D, InsertFlags, RemoveFlags, UpdateFlags, helpers
from mongocore.collection import Collection
from mongocore.errors import (
    ArgumentOrderError,
    AutoReconnect,
    DocumentTooLarge,
    InvalidName,
    OperationFailure,
)
from mongocore.message import OP_INSERT, OP_UPDATE
from mongocore.write_concern import WriteConcern

from test import MockClientTest
from test.mongocore_mocks import MockClient

# Length of an OP_INSERT to "mocktest.test" that holds no documents.
EMPTY_INSERT_LENGTH = 16 + 4 + len(b"mocktest.test\x00")


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y

    def to_document(self):
        return {"x": self.x, "y": self.y}


def sized_docs(count, fill=100):
    return [{"_id": i, "s": "x" * fill} for i in range(count)]


class TestCollectionNoConnect(MockClientTest):
    def test_collection(self):
        self.assertRaises(TypeError, Collection, self.db, 4)

        self.assertEqual(self.coll, Collection(self.db, "test"))
        self.assertEqual(self.coll, self.db["test"])
        self.assertNotEqual(self.coll, self.db.other)
        self.assertEqual(hash(self.coll), hash(self.db["test"]))
        self.assertEqual("mocktest.test", self.coll.full_name)
        self.assertEqual("test", self.coll.name)
        self.assertIs(self.db, self.coll.database)

    def test_collection_names(self):
        for name in ["", "te\x00st", "x" * 122, "é" * 61]:
            with self.assertRaises(InvalidName, msg=repr(name)):
                self.db[name]
        self.assertRaises(TypeError, Collection, self.db, None)
        for name in ["$cmd", "oplog.$main", "system.indexes", "x" * 121, "a.b.c", "é"]:
            self.assertEqual(name, self.db[name].name)
        # Only the server decides whether these are usable.
        for name in ["te$t", ".test", "test.", "tes..t"]:
            self.assertEqual(name, self.db[name].name)

    def test_getattr(self):
        self.assertIsInstance(self.coll.sub, Collection)
        self.assertEqual("test.sub", self.coll.sub.name)
        self.assertEqual("mocktest.test.sub", self.coll.sub.full_name)
        self.assertEqual(self.coll.sub, self.coll["sub"])
        self.assertEqual("test.sub.deeper", self.coll.sub["deeper"].name)
        with self.assertRaises(AttributeError) as context:
            self.coll._does_not_exist

        # Message should be:
        # "AttributeError: Collection has no attribute '_does_not_exist'. To
        # access the test._does_not_exist collection, use
        # database['test._does_not_exist']."
        self.assertIn("has no attribute '_does_not_exist'", str(context.exception))

    def test_repr(self):
        self.assertEqual(
            "Collection(Database(MockClient(host='localhost', port=27017), 'mocktest'), 'test')",
            repr(self.coll),
        )

    def test_iteration(self):
        with self.assertRaisesRegex(TypeError, "'Collection' object is not iterable"):
            for _ in self.coll:
                break

    def test_call(self):
        with self.assertRaisesRegex(TypeError, "no such method exists"):
            self.coll()
        with self.assertRaisesRegex(TypeError, "'find_one' method on a 'Collection'"):
            self.coll.find_one()

    def test_unsupported(self):
        self.assertRaises(NotImplementedError, self.coll.is_capped)
        self.assertRaises(NotImplementedError, self.coll.reindex)
        self.assertEqual(0, self.client.mock_checkouts)

    def test_options(self):
        self.assertEqual(WriteConcern(), self.coll.write_concern)
        self.assertIs(dict, self.coll.codec_options.document_class)
        coll = self.db.get_collection("test", write_concern=WriteConcern(w=0))
        self.assertFalse(coll.write_concern.acknowledged)
        self.assertEqual(WriteConcern(w=0), coll.sub.write_concern)
        self.assertRaises(TypeError, Collection, self.db, "test", write_concern={"w": 0})
        self.assertRaises(TypeError, Collection, self.db, "test", codec_options={})

    def test_with_options(self):
        coll = self.coll.with_options(write_concern=WriteConcern(w=0))
        self.assertEqual(WriteConcern(w=0), coll.write_concern)
        self.assertEqual(WriteConcern(), self.coll.write_concern)
        self.assertEqual(self.coll.codec_options, coll.codec_options)
        self.assertEqual(self.coll, coll)

        self.coll.assign_ids_on_insert = False
        self.assertFalse(self.coll.with_options().assign_ids_on_insert)


class TestInsert(MockClientTest):
    def test_insert_acknowledged(self):
        doc = {"x": 1}
        result = self.coll.insert(doc)
        self.assertEqual({"n": 1, "err": None, "ok": 1.0}, result)

        self.assertIsInstance(doc["_id"], ObjectId)
        (write,) = self.writes()
        self.assertEqual(OP_INSERT, write.op_code)
        self.assertEqual("mocktest.test", write.namespace)
        self.assertEqual(InsertFlags.NONE, write.flags)
        self.assertEqual([doc], write.documents)

        (gle,) = self.server.last_errors
        self.assertEqual(SON([("getlasterror", 1)]), gle)
        self.assertAllCheckedIn()

    def test_insert_keeps_existing_id(self):
        doc = {"_id": "custom", "x": 1}
        self.coll.insert(doc)
        self.assertEqual("custom", doc["_id"])
        self.assertEqual([doc], self.writes()[0].documents)

    def test_insert_immutable_documents_untouched(self):
        frozen = MappingProxyType({"x": 1})
        self.coll.insert(frozen)
        self.coll.insert(Point(1, 2))

        first, second = self.writes()
        self.assertEqual([{"x": 1}], first.documents)
        self.assertNotIn("_id", first.documents[0])
        self.assertEqual([{"x": 1, "y": 2}], second.documents)
        self.assertNotIn("_id", frozen)

    def test_insert_without_assigning_ids(self):
        self.coll.assign_ids_on_insert = False
        doc = {"x": 1}
        self.coll.insert(doc)
        self.assertNotIn("_id", doc)
        self.assertEqual([{"x": 1}], self.writes()[0].documents)

    def test_insert_type_errors(self):
        self.assertRaises(TypeError, self.coll.insert, 1)
        self.assertRaises(TypeError, self.coll.insert, "document")
        self.assertRaises(TypeError, self.coll.insert, [{"x": 1}])
        self.assertRaises(TypeError, self.coll.insert, {"x": 1}, write_concern={"w": 1})
        self.assertRaises(TypeError, self.coll.insert_batch, {"x": 1})
        self.assertRaises(TypeError, self.coll.insert_batch, Point(1, 2))
        self.assertRaises(TypeError, self.coll.insert_batch, "abc")
        self.assertRaises(TypeError, self.coll.insert_batch, 1)
        self.assertRaises(TypeError, self.coll.insert_batch, [{"x": 1}], continue_on_error=1)
        self.assertEqual([], self.writes())

    def test_insert_batch_bad_document(self):
        self.assertRaises(TypeError, self.coll.insert_batch, [{"x": 1}, 2])
        self.assertEqual([], self.writes())
        self.assertAllCheckedIn()

    def test_insert_batch_single_message(self):
        docs = [{"x": i} for i in range(5)]
        result = self.coll.insert_batch(docs)
        self.assertEqual({"n": 5, "err": None, "ok": 1.0}, result)
        (write,) = self.writes()
        self.assertEqual(docs, write.documents)
        for doc in docs:
            self.assertIn("_id", doc)

    def test_insert_batch_generator(self):
        result = self.coll.insert_batch({"x": i} for i in range(3))
        self.assertEqual(3, result["n"])
        self.assertEqual([0, 1, 2], [d["x"] for d in self.writes()[0].documents])

    def test_insert_batch_empty(self):
        self.assertIsNone(self.coll.insert_batch([]))
        self.assertIsNone(self.coll.insert_batch(iter([])))
        self.assertEqual([], self.writes())
        self.assertEqual([], self.server.last_errors)
        self.assertEqual(2, self.client.mock_checkouts)
        self.assertAllCheckedIn()

    def test_insert_unacknowledged(self):
        coll = self.coll.with_options(write_concern=WriteConcern(w=0))
        self.assertIsNone(coll.insert({"x": 1}))
        self.assertIsNone(coll.insert_batch([{"x": 1}, {"x": 2}]))
        self.assertEqual(2, len(self.writes()))
        self.assertEqual([], self.server.last_errors)

    def test_insert_per_call_write_concern(self):
        self.coll.insert({"x": 1}, write_concern=WriteConcern(w=2, wtimeout=100))
        self.assertIsNone(self.coll.insert({"x": 2}, write_concern=WriteConcern(w=0)))
        self.coll.insert({"x": 3})

        first, second = self.server.last_errors
        self.assertEqual("getlasterror", next(iter(first)))
        self.assertEqual({"getlasterror": 1, "wtimeout": 100, "w": 2}, first)
        self.assertEqual({"getlasterror": 1}, second)
        self.assertEqual(3, len(self.writes()))

    def test_insert_client_write_concern(self):
        client = MockClient(w="majority", journal=True)
        client.mocktest.test.insert({"x": 1})
        (gle,) = client.mock_server.last_errors
        self.assertEqual({"getlasterror": 1, "j": True, "w": "majority"}, gle)

    def test_continue_on_error(self):
        self.coll.insert_batch([{"x": 1}], continue_on_error=True)
        self.coll.insert({"x": 1})
        self.assertEqual(
            [InsertFlags.CONTINUE_ON_ERROR, InsertFlags.NONE], [w.flags for w in self.writes()]
        )

    def test_write_errors_are_returned(self):
        error = {"ok": 1.0, "err": "E11000 duplicate key error", "code": 11000, "n": 0}
        self.server.ack_handler = lambda write: error
        self.assertEqual(error, self.coll.insert({"_id": 1}))
        self.assertAllCheckedIn()


class TestInsertSplitting(unittest.TestCase):
    def setUp(self):
        self.docs = sized_docs(3)
        self.doc_size = len(bson.encode(self.docs[0]))

    def client(self, max_message_size, **kwargs):
        return MockClient(max_message_size=max_message_size, **kwargs)

    def test_exact_fit(self):
        client = self.client(EMPTY_INSERT_LENGTH + 3 * self.doc_size)
        result = client.mocktest.test.insert_batch(self.docs)
        self.assertEqual({"n": 3, "err": None, "ok": 1.0}, result)
        (write,) = client.mock_server.writes
        self.assertEqual(EMPTY_INSERT_LENGTH + 3 * self.doc_size, write.length)

    def test_split_into_batches(self):
        client = self.client(EMPTY_INSERT_LENGTH + 2 * self.doc_size)
        result = client.mocktest.test.insert_batch(self.docs)
        self.assertEqual(
            {
                "batches": [
                    {"n": 2, "err": None, "ok": 1.0},
                    {"n": 1, "err": None, "ok": 1.0},
                ]
            },
            result,
        )
        writes = client.mock_server.writes
        self.assertEqual([[0, 1], [2]], [[d["_id"] for d in w.documents] for w in writes])
        for write in writes:
            self.assertLessEqual(write.length, EMPTY_INSERT_LENGTH + 2 * self.doc_size)
        # Every batch is acknowledged.
        self.assertEqual(2, len(client.mock_server.last_errors))
        # All batches share one connection.
        self.assertEqual(1, client.mock_checkouts)
        self.assertEqual(1, client.mock_checkins)

    def test_one_document_per_message(self):
        client = self.client(EMPTY_INSERT_LENGTH + self.doc_size)
        result = client.mocktest.test.insert_batch(sized_docs(5))
        self.assertEqual(5, len(result["batches"]))
        self.assertEqual(
            [[i] for i in range(5)],
            [[d["_id"] for d in w.documents] for w in client.mock_server.writes],
        )

    def test_split_unacknowledged(self):
        client = self.client(EMPTY_INSERT_LENGTH + 2 * self.doc_size, w=0)
        self.assertIsNone(client.mocktest.test.insert_batch(self.docs))
        self.assertEqual(2, len(client.mock_server.writes))
        self.assertEqual([], client.mock_server.last_errors)

    def test_single_document_too_large(self):
        client = self.client(EMPTY_INSERT_LENGTH + self.doc_size - 1)
        self.assertRaises(DocumentTooLarge, client.mocktest.test.insert, self.docs[0])
        self.assertEqual([], client.mock_server.writes)
        self.assertEqual(client.mock_checkouts, client.mock_checkins)

    def test_later_document_too_large(self):
        client = self.client(EMPTY_INSERT_LENGTH + self.doc_size)
        docs = [self.docs[0], {"_id": 1, "s": "x" * 200}, self.docs[2]]
        self.assertRaises(DocumentTooLarge, client.mocktest.test.insert_batch, docs)
        # The documents before the oversized one were already sent.
        (write,) = client.mock_server.writes
        self.assertEqual([0], [d["_id"] for d in write.documents])

    def test_send_failure_mid_batch(self):
        client = self.client(EMPTY_INSERT_LENGTH + self.doc_size)
        server = client.mock_server

        def fail_next_send(write):
            server.fail_sends = True
            return server.default_ack(write)

        server.ack_handler = fail_next_send
        with self.assertRaises(AutoReconnect):
            client.mocktest.test.insert_batch(self.docs)
        # The first message was sent once and never resent.
        (write,) = server.writes
        self.assertEqual([0], [d["_id"] for d in write.documents])
        self.assertEqual(1, client.mock_checkouts)
        self.assertEqual(client.mock_checkouts, client.mock_checkins)
        (conn,) = client.mock_connections
        self.assertTrue(conn.closed)
        self.assertTrue(conn.sock.closed)

    def test_document_larger_than_max_bson_size(self):
        client = MockClient(max_bson_size=self.doc_size - 1)
        with self.assertRaisesRegex(DocumentTooLarge, "BSON document too large"):
            client.mocktest.test.insert(self.docs[0])
        self.assertEqual([], client.mock_server.writes)


class TestRemove(MockClientTest):
    def removed(self):
        return [(w.documents[0], w.flags) for w in self.writes()]

    def test_remove_everything(self):
        self.assertEqual({"n": 1, "err": None, "ok": 1.0}, self.coll.remove())
        self.coll.remove_all()
        self.coll.remove({})
        self.assertEqual([({}, RemoveFlags.NONE)] * 3, self.removed())
        (write, _, _) = self.writes()
        self.assertEqual("mocktest.test", write.namespace)

    def test_remove_multi(self):
        self.coll.remove({"x": 1})
        self.coll.remove({"x": 1}, multi=False)
        self.assertEqual(
            [({"x": 1}, RemoveFlags.NONE), ({"x": 1}, RemoveFlags.SINGLE)], self.removed()
        )

    def test_remove_by_id(self):
        oid = ObjectId()
        self.coll.remove(oid)
        self.coll.remove({"_id": oid}, multi=True)
        self.coll.remove("name")
        self.coll.remove({"_id": 5})
        self.assertEqual(
            [
                ({"_id": oid}, RemoveFlags.SINGLE),
                ({"_id": oid}, RemoveFlags.SINGLE),
                ({"_id": "name"}, RemoveFlags.NONE),
                ({"_id": 5}, RemoveFlags.NONE),
            ],
            self.removed(),
        )

    def test_remove_convertible(self):
        self.coll.remove(Point(1, 2), multi=False)
        self.assertEqual([({"x": 1, "y": 2}, RemoveFlags.SINGLE)], self.removed())

    def test_remove_unacknowledged(self):
        self.assertIsNone(self.coll.remove({"x": 1}, write_concern=WriteConcern(w=0)))
        self.assertEqual([], self.server.last_errors)
        self.assertEqual(1, len(self.writes()))

    def test_remove_type_errors(self):
        self.assertRaises(TypeError, self.coll.remove, {}, multi="yes")
        self.assertRaises(TypeError, self.coll.remove, {}, write_concern=0)
        self.assertEqual([], self.writes())


class TestUpdate(MockClientTest):
    def test_update(self):
        result = self.coll.update({"x": 1}, {"$set": {"y": 2}})
        self.assertEqual({"n": 1, "err": None, "ok": 1.0}, result)
        (write,) = self.writes()
        self.assertEqual(OP_UPDATE, write.op_code)
        self.assertEqual("mocktest.test", write.namespace)
        self.assertEqual(UpdateFlags.NONE, write.flags)
        self.assertEqual([{"x": 1}, {"$set": {"y": 2}}], write.documents)
        self.assertEqual(1, len(self.server.last_errors))

    def test_update_flags(self):
        self.coll.update({}, {"$inc": {"n": 1}}, upsert=True)
        self.coll.update({}, {"$inc": {"n": 1}}, multi=True)
        self.coll.update({}, {"$inc": {"n": 1}}, upsert=True, multi=True)
        self.assertEqual(
            [UpdateFlags.UPSERT, UpdateFlags.MULTI, UpdateFlags.UPSERT | UpdateFlags.MULTI],
            [w.flags for w in self.writes()],
        )
        self.assertEqual(3, self.writes()[2].flags)

    def test_update_convertible(self):
        self.coll.update(Point(1, 2), Point(3, 4))
        self.assertEqual([{"x": 1, "y": 2}, {"x": 3, "y": 4}], self.writes()[0].documents)

    def test_arguments_swapped(self):
        with self.assertRaises(ArgumentOrderError):
            self.coll.update({"$set": {"y": 2}}, {"x": 1})
        # Nothing touched the network.
        self.assertEqual(0, self.client.mock_checkouts)
        self.assertEqual([], self.writes())

    def test_non_string_query_key(self):
        with self.assertRaises(InvalidDocument):
            self.coll.update({1: "x"}, {"$set": {"y": 2}})
        self.assertEqual(0, self.client.mock_checkouts)
        self.assertEqual([], self.writes())
        self.assertFalse(helpers._has_modifiers({1: "x", "y": 2}))

    def test_modifiers_in_nested_query_allowed(self):
        self.coll.update({"x": {"$gt": 1}}, {"$set": {"y": 2}})
        self.assertEqual(1, len(self.writes()))

    def test_update_type_errors(self):
        self.assertRaises(TypeError, self.coll.update, {}, {}, upsert="yes")
        self.assertRaises(TypeError, self.coll.update, {}, {}, multi=1)
        self.assertRaises(TypeError, self.coll.update, 1, {})
        self.assertRaises(TypeError, self.coll.update, {}, [])
        self.assertEqual(0, self.client.mock_checkouts)

    def test_update_document_too_large(self):
        client = MockClient(max_bson_size=100)
        with self.assertRaises(DocumentTooLarge):
            client.mocktest.test.update({}, {"s": "x" * 200})
        self.assertEqual([], client.mock_server.writes)
        self.assertEqual(client.mock_checkouts, client.mock_checkins)

    def test_update_unacknowledged(self):
        coll = self.coll.with_options(write_concern=WriteConcern(w=0))
        self.assertIsNone(coll.update({}, {"x": 1}))
        self.assertEqual([], self.server.last_errors)


class TestSave(MockClientTest):
    def test_save_new_document(self):
        doc = {"x": 1, "y": 2}
        self.coll.save(doc)
        self.assertEqual(["_id", "x", "y"], list(doc))
        (write,) = self.writes()
        self.assertEqual(OP_INSERT, write.op_code)
        self.assertEqual(["_id", "x", "y"], list(write.documents[0]))
        self.assertEqual(doc["_id"], write.documents[0]["_id"])

    def test_save_existing_document(self):
        doc = {"_id": 7, "x": 1}
        result = self.coll.save(doc)
        self.assertEqual({"n": 1, "err": None, "ok": 1.0}, result)
        (write,) = self.writes()
        self.assertEqual(OP_UPDATE, write.op_code)
        self.assertEqual(UpdateFlags.UPSERT, write.flags)
        self.assertEqual([{"_id": 7}, {"_id": 7, "x": 1}], write.documents)

    def test_save_immutable_document(self):
        frozen = MappingProxyType({"x": 1})
        self.coll.save(frozen)
        point = Point(1, 2)
        self.coll.save(point)

        self.assertNotIn("_id", frozen)
        self.assertFalse(hasattr(point, "_id"))
        first, second = self.writes()
        self.assertEqual(["_id", "x"], list(first.documents[0]))
        self.assertEqual(["_id", "x", "y"], list(second.documents[0]))

    def test_save_with_write_concern(self):
        self.assertIsNone(self.coll.save({"x": 1}, write_concern=WriteConcern(w=0)))
        self.assertIsNone(self.coll.save({"_id": 1}, write_concern=WriteConcern(w=0)))
        self.assertEqual([], self.server.last_errors)

    def test_save_type_error(self):
        self.assertRaises(TypeError, self.coll.save, 5)
        self.assertEqual([], self.writes())


class TestIndexes(MockClientTest):
    def create_commands(self):
        return self.server.commands_named("createIndexes")

    def test_create_index(self):
        self.assertEqual("x_1", self.coll.create_index("x"))
        (command,) = self.create_commands()
        self.assertEqual(["createIndexes", "indexes"], list(command))
        self.assertEqual("test", command["createIndexes"])
        self.assertEqual([{"key": {"x": 1}, "name": "x_1"}], command["indexes"])
        self.assertEqual(("mocktest", command), self.server.commands[0])
        self.assertAllCheckedIn()

    def test_create_index_always_sends(self):
        self.coll.create_index("x")
        self.coll.create_index("x")
        self.assertEqual(2, len(self.create_commands()))
        # create_index does not feed ensure_index's cache.
        self.assertEqual("x_1", self.coll.ensure_index("x"))
        self.assertEqual(3, len(self.create_commands()))

    def test_create_index_specs(self):
        self.assertEqual(
            "x_1_y_-1", self.coll.create_index([("x", ASCENDING), ("y", DESCENDING)])
        )
        self.assertEqual("loc_2d", self.coll.create_index([("loc", GEO2D)]))
        self.assertEqual("a_1_b_1", self.coll.create_index(["a", "b"]))
        self.assertEqual("z_-1", self.coll.create_index(SON([("z", -1)])))
        self.assertEqual("f_1", self.coll.create_index([("f", 1.0)]))
        self.assertEqual(
            [
                SON([("x", 1), ("y", -1)]),
                {"loc": "2d"},
                SON([("a", 1), ("b", 1)]),
                {"z": -1},
                {"f": 1.0},
            ],
            [command["indexes"][0]["key"] for command in self.create_commands()],
        )
        self.assertEqual(
            ["x", "y"], list(self.create_commands()[0]["indexes"][0]["key"])
        )

    def test_create_index_options(self):
        name = self.coll.create_index("x", unique=True, name="by_x", sparse=True)
        self.assertEqual("by_x", name)
        (command,) = self.create_commands()
        self.assertEqual(
            [{"key": {"x": 1}, "name": "by_x", "unique": True, "sparse": True}],
            command["indexes"],
        )

    def test_create_index_invalid(self):
        self.assertRaises(TypeError, self.coll.create_index, 5)
        self.assertRaises(TypeError, self.coll.create_index, [("x", True)])
        self.assertRaises(TypeError, self.coll.create_index, [(1, 1)])
        self.assertRaises(ValueError, self.coll.create_index, [])
        self.assertEqual(0, self.client.mock_checkouts)

    def test_create_index_error(self):
        self.server.command_handlers["createIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "Index with name: x_1 already exists with different options",
            "code": 85,
        }
        with self.assertRaises(OperationFailure) as context:
            self.coll.create_index("x")
        self.assertEqual(85, context.exception.code)
        self.assertEqual([], self.writes())
        self.assertAllCheckedIn()

    def test_create_index_legacy_fallback(self):
        self.server.command_handlers["createIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "no such cmd: createIndexes",
            "code": 59,
        }
        self.assertEqual("x_1", self.coll.create_index("x", unique=True))
        (write,) = self.writes()
        self.assertEqual(OP_INSERT, write.op_code)
        self.assertEqual("mocktest.system.indexes", write.namespace)
        (index,) = write.documents
        self.assertEqual(["name", "ns", "key", "unique"], list(index))
        self.assertEqual(
            {"name": "x_1", "ns": "mocktest.test", "key": {"x": 1}, "unique": True}, index
        )
        self.assertEqual(1, len(self.server.last_errors))

    def test_create_index_legacy_fallback_is_acknowledged(self):
        self.server.command_handlers["createIndexes"] = lambda cmd: {"ok": 0.0, "errmsg": "?"}
        coll = self.coll.with_options(write_concern=WriteConcern(w=0))
        coll.create_index("x")
        (gle,) = self.server.last_errors
        self.assertEqual({"getlasterror": 1, "w": 1}, gle)

    def test_create_index_legacy_fallback_error(self):
        self.server.command_handlers["createIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "no such command",
            "code": 13390,
        }
        self.server.ack_handler = lambda write: {"ok": 1.0, "err": "bad index key", "code": 67}
        with self.assertRaises(OperationFailure) as context:
            self.coll.create_index("x")
        self.assertEqual(67, context.exception.code)

    def test_ensure_index(self):
        self.assertEqual("x_1", self.coll.ensure_index("x"))
        self.assertIsNone(self.coll.ensure_index("x"))
        self.assertIsNone(self.coll.ensure_index([("x", 1)]))
        self.assertEqual(1, len(self.create_commands()))

        self.assertEqual("x_-1", self.coll.ensure_index([("x", -1)]))
        self.assertEqual("custom", self.coll.ensure_index("x", name="custom"))
        self.assertIsNone(self.coll.ensure_index("y", name="custom"))
        self.assertEqual(3, len(self.create_commands()))

    def test_ensure_index_not_cached_on_failure(self):
        self.server.command_handlers["createIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "bad index key pattern",
            "code": 67,
        }
        self.assertRaises(OperationFailure, self.coll.ensure_index, "x")
        self.assertRaises(OperationFailure, self.coll.ensure_index, "x")
        self.assertEqual(2, len(self.create_commands()))

        del self.server.command_handlers["createIndexes"]
        self.assertEqual("x_1", self.coll.ensure_index("x"))
        self.assertIsNone(self.coll.ensure_index("x"))

    def test_ensure_index_concurrent(self):
        def slow_create(cmd):
            time.sleep(0.1)
            return {"ok": 1.0}

        self.server.command_handlers["createIndexes"] = slow_create
        results = []
        lock = threading.Lock()

        def ensure():
            name = self.coll.ensure_index("x")
            with lock:
                results.append(name)

        threads = [threading.Thread(target=ensure) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        self.assertEqual(1, len(self.create_commands()))
        self.assertEqual(["x_1"], [r for r in results if r is not None])
        self.assertEqual(8, len(results))

    def test_reset_index_cache(self):
        self.coll.ensure_index("x")
        self.coll.reset_index_cache()
        self.assertEqual("x_1", self.coll.ensure_index("x"))
        self.assertEqual(2, len(self.create_commands()))

    def test_index_cache_per_collection_object(self):
        self.coll.ensure_index("x")
        self.assertEqual("x_1", self.coll.with_options().ensure_index("x"))
        self.assertEqual("x_1", self.db.get_collection("test").ensure_index("x"))
        self.assertEqual(3, len(self.create_commands()))

    def test_index_cache_shared_by_named_access(self):
        self.assertEqual("x_1", self.client.mocktest.test.ensure_index("x"))
        self.assertIsNone(self.client.mocktest.test.ensure_index("x"))
        self.assertIsNone(self.client["mocktest"]["test"].ensure_index("x"))
        self.assertIsNone(self.coll.ensure_index("x"))
        self.assertEqual(1, len(self.create_commands()))

    def test_drop_index(self):
        self.coll.ensure_index("x")
        self.coll.ensure_index("y")
        self.assertEqual({"ok": 1.0}, self.coll.drop_index("x_1"))
        (command,) = self.server.commands_named("dropIndexes")
        self.assertEqual(SON([("dropIndexes", "test"), ("index", "x_1")]), command)
        self.assertEqual(["dropIndexes", "index"], list(command))

        # Dropping one index forgets them all.
        self.assertEqual("y_1", self.coll.ensure_index("y"))
        self.assertEqual("x_1", self.coll.ensure_index("x"))

    def test_drop_index_by_spec(self):
        self.coll.drop_index([("x", 1), ("y", -1)])
        self.coll.drop_index(SON([("z", 1)]))
        self.assertEqual(
            ["x_1_y_-1", "z_1"],
            [cmd["index"] for cmd in self.server.commands_named("dropIndexes")],
        )
        self.assertRaises(TypeError, self.coll.drop_index, 5)

    def test_drop_indexes(self):
        self.coll.ensure_index("x")
        self.coll.drop_indexes()
        (command,) = self.server.commands_named("dropIndexes")
        self.assertEqual("*", command["index"])
        self.assertEqual("x_1", self.coll.ensure_index("x"))

    def test_drop_index_missing_namespace(self):
        self.server.command_handlers["dropIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "ns not found",
            "code": 26,
        }
        response = self.coll.drop_index("x_1")
        self.assertEqual("ns not found", response["errmsg"])

    def test_drop_index_failure_clears_cache(self):
        self.coll.ensure_index("x")
        self.server.command_handlers["dropIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "index not found with name [y_1]",
            "code": 27,
        }
        with self.assertRaises(OperationFailure) as context:
            self.coll.drop_index("y_1")
        self.assertEqual(27, context.exception.code)
        self.assertEqual("x_1", self.coll.ensure_index("x"))
        self.assertEqual(2, len(self.create_commands()))
        self.assertAllCheckedIn()

    def test_index_information(self):
        def list_indexes(cmd):
            return {
                "cursor": {
                    "id": 0,
                    "ns": "mocktest.test",
                    "firstBatch": [
                        {"v": 2, "key": {"_id": 1}, "name": "_id_"},
                        {
                            "v": 2,
                            "key": SON([("x", 1), ("y", -1)]),
                            "name": "x_1_y_-1",
                            "unique": True,
                        },
                    ],
                },
                "ok": 1.0,
            }

        self.server.command_handlers["listIndexes"] = list_indexes
        info = self.coll.index_information()
        self.assertEqual(
            {
                "_id_": {"v": 2, "key": [("_id", 1)]},
                "x_1_y_-1": {"v": 2, "key": [("x", 1), ("y", -1)], "unique": True},
            },
            info,
        )
        (command,) = self.server.commands_named("listIndexes")
        self.assertEqual({"listIndexes": "test", "cursor": {}}, command)

    def test_index_information_missing_collection(self):
        self.server.command_handlers["listIndexes"] = lambda cmd: {
            "ok": 0.0,
            "errmsg": "ns does not exist: mocktest.test",
            "code": 26,
        }
        self.assertEqual({}, self.coll.index_information())


if __name__ == "__main__":
    unittest.main()
