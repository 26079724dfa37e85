import asyncio
import os
import shutil
import tempfile
import unittest

import grpc

from groupchat.proto import wire
from groupchat.server.db import Database
from groupchat.server.main import build_servicer
from groupchat.server.rpc import bearer_token


class Aborted(Exception):
    """Raised by FakeContext.abort, like grpc.aio's AbortError."""


class FakeContext:
    def __init__(self, token=None, raw_authorization=None):
        if raw_authorization is not None:
            self._metadata = (("authorization", raw_authorization),)
        elif token is not None:
            self._metadata = (("authorization", f"Bearer {token}"),)
        else:
            self._metadata = ()
        self.code = None
        self.details = None
        self.trailing_metadata = ()

    def invocation_metadata(self):
        return self._metadata

    async def abort(self, code, details="", trailing_metadata=()):
        self.code = code
        self.details = details
        self.trailing_metadata = trailing_metadata
        raise Aborted(code, details)


class TestRPCGroups(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        db = Database(os.path.join(self.temp_dir, "chat.sqlite3"))
        db.init_schema()
        self.service = build_servicer(db, page_size=2)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def call(self, method, request=None, token=None):
        context = FakeContext(token)
        return asyncio.run(getattr(self.service, method)(request or {}, context))

    def call_fails(self, method, request=None, token=None):
        context = FakeContext(token)
        with self.assertRaises(Aborted):
            asyncio.run(getattr(self.service, method)(request or {}, context))
        return context

    def register(self, username):
        return self.call("Register", {"username": username})

    def test_health(self):
        self.assertEqual(self.call("Health"), {"status": "healthy"})

    def test_register_and_authenticate(self):
        alice = self.register("alice")
        self.assertEqual(len(alice["token"]), 64)

        me = self.call("Authenticate", token=alice["token"])
        self.assertEqual(me, {"id": alice["id"], "username": "alice", "created_ts": alice["created_ts"]})

        public = self.call("GetUser", {"user_id": alice["id"]})
        self.assertNotIn("token", public)

    def test_register_errors(self):
        self.register("alice")
        ctx = self.call_fails("Register", {"username": "alice"})
        self.assertEqual(ctx.code, grpc.StatusCode.ALREADY_EXISTS)
        self.assertEqual(ctx.trailing_metadata, (("error-kind", "duplicate_username"),))

        ctx = self.call_fails("Register", {"username": "ab"})
        self.assertEqual(ctx.code, grpc.StatusCode.INVALID_ARGUMENT)

        ctx = self.call_fails("Register", {})
        self.assertEqual(ctx.code, grpc.StatusCode.INVALID_ARGUMENT)
        ctx = self.call_fails("Register", {"username": 42})
        self.assertEqual(ctx.code, grpc.StatusCode.INVALID_ARGUMENT)

    def test_unknown_lookups(self):
        self.assertEqual(self.call_fails("GetUser", {"user_id": "x"}).code, grpc.StatusCode.NOT_FOUND)
        self.assertEqual(self.call_fails("GetGroup", {"group_id": "x"}).code, grpc.StatusCode.NOT_FOUND)
        self.assertEqual(self.call_fails("GetMessage", {"message_id": "x"}).code, grpc.StatusCode.NOT_FOUND)
        self.assertEqual(self.call_fails("ListMembers", {"group_id": "x"}).code, grpc.StatusCode.NOT_FOUND)
        self.assertEqual(self.call_fails("Authenticate").code, grpc.StatusCode.UNAUTHENTICATED)

    def test_list_user_groups_rpc(self):
        u1 = self.register("user1")
        u2 = self.register("user2")
        g1 = self.call("CreateGroup", {"name": "#g1"}, token=u1["token"])
        self.call("JoinGroup", {"group_id": g1["id"]}, token=u2["token"])
        self.call("CreateGroup", {"name": "#g2"}, token=u2["token"])

        resp = self.call("ListUserGroups", token=u2["token"])
        names = sorted([g["name"] for g in resp["groups"]])
        self.assertEqual(names, ['#g1', '#g2'])

    def test_list_groups_rpc(self):
        u1 = self.register("user1")
        u2 = self.register("user2")
        self.call("CreateGroup", {"name": "#g1"}, token=u1["token"])
        self.call("CreateGroup", {"name": "#g2", "description": "second"}, token=u2["token"])

        resp = self.call("ListGroups")
        self.assertEqual([g["name"] for g in resp["groups"]], ['#g2', '#g1'])

    def test_create_group_requires_token(self):
        ctx = self.call_fails("CreateGroup", {"name": "Book Club"})
        self.assertEqual(ctx.code, grpc.StatusCode.UNAUTHENTICATED)

    def test_join_and_message_flow(self):
        alice = self.register("alice")
        bob = self.register("bob")
        group = self.call("CreateGroup", {"name": "Book Club"}, token=alice["token"])

        ctx = self.call_fails("SendMessage", {"group_id": group["id"], "content": "hi"}, token=bob["token"])
        self.assertEqual(ctx.code, grpc.StatusCode.PERMISSION_DENIED)

        joined = self.call("JoinGroup", {"group_id": group["id"]}, token=bob["token"])
        self.assertEqual(joined["membership"]["user_id"], bob["id"])
        ctx = self.call_fails("JoinGroup", {"group_id": group["id"]}, token=bob["token"])
        self.assertEqual(ctx.code, grpc.StatusCode.ALREADY_EXISTS)

        for i, token in enumerate([alice["token"], bob["token"], alice["token"]]):
            self.call("SendMessage", {"group_id": group["id"], "content": f"m{i}"}, token=token)

        # page_size=2 applies when limit is omitted
        page = self.call("GetMessages", {"group_id": group["id"]})
        self.assertEqual([m["content"] for m in page["messages"]], ["m1", "m2"])
        self.assertEqual(page["total"], 3)

        page = self.call("GetMessages", {"group_id": group["id"], "limit": 2, "offset": 2})
        self.assertEqual([m["content"] for m in page["messages"]], ["m0"])
        self.assertEqual(page["messages"][0]["username"], "alice")
        self.assertEqual((page["total"], page["limit"], page["offset"]), (3, 2, 2))

        members = self.call("ListMembers", {"group_id": group["id"]})
        self.assertEqual([m["username"] for m in members["members"]], ["alice", "bob"])

        ctx = self.call_fails("GetMessages", {"group_id": group["id"], "limit": "ten"})
        self.assertEqual(ctx.code, grpc.StatusCode.INVALID_ARGUMENT)

    def test_malformed_body_is_invalid_argument(self):
        self.assertIsNone(wire.decode(b"{not json"))
        self.assertIsNone(wire.decode(b"[1, 2]"))
        self.assertIsNone(wire.decode(b"\xff\xfe"))
        self.assertEqual(wire.decode(b""), {})

        context = FakeContext()
        with self.assertRaises(Aborted):
            asyncio.run(self.service.Register(wire.decode(b"{not json"), context))
        self.assertEqual(context.code, grpc.StatusCode.INVALID_ARGUMENT)
        self.assertEqual(context.trailing_metadata, (("error-kind", "validation_error"),))

    def test_bearer_token_extraction(self):
        self.assertEqual(bearer_token(FakeContext(raw_authorization="Bearer abc")), "abc")
        self.assertEqual(bearer_token(FakeContext(raw_authorization="abc")), "abc")
        self.assertEqual(bearer_token(FakeContext()), "")


if __name__ == '__main__':
    unittest.main()
