"""Tests for the host-side dispatcher, driven with raw wire messages."""

import asyncio
import logging

import pytest

from bridgerpc._internal.dispatcher import Dispatcher
from bridgerpc._internal.registry import Catalog, parse_object_id

from .fixtures.objects import Broken, Clock, Counter, Declared, Greeter, settle


@pytest.fixture
def sent():
    return []


@pytest.fixture
def dispatcher(sent):
    catalog = Catalog()
    catalog.add_factory("Counter", Counter)
    catalog.add_factory("Greeter", Greeter)
    catalog.add_factory("Declared", Declared)
    catalog.add_factory("Broken", Broken)
    catalog.add_service("clock", Clock())
    return Dispatcher(catalog, sent.append)


def create(dispatcher, sent, name, request_id=1):
    dispatcher.handle_message({"create": name, "id": request_id})
    return sent[-1]["result"]["objectId"]


class TestCreateLookup:
    def test_create_replies_with_description(self, dispatcher, sent):
        dispatcher.handle_message({"create": "Counter", "id": 1})
        assert sent == [{"id": 1, "result": {"methods": ["increment"], "objectId": "create#Counter#1#"}}]
        assert "create#Counter#1#" in dispatcher.registry

    def test_create_builds_fresh_instances(self, dispatcher, sent):
        first = create(dispatcher, sent, "Counter", 1)
        second = create(dispatcher, sent, "Counter", 2)
        assert dispatcher.registry.get(first).instance is not dispatcher.registry.get(second).instance

    def test_lookup_shares_instance_but_mints_new_ids(self, dispatcher, sent):
        dispatcher.handle_message({"lookup": "clock", "id": 1})
        dispatcher.handle_message({"lookup": "clock", "id": 2})
        first = sent[0]["result"]["objectId"]
        second = sent[1]["result"]["objectId"]
        assert first == "lookup#clock#1#"
        assert second == "lookup#clock#2#"
        assert dispatcher.registry.get(first).instance is dispatcher.registry.get(second).instance

    def test_sequence_shared_between_create_and_lookup(self, dispatcher, sent):
        ids = []
        for request_id, message in enumerate(
            [{"create": "Counter"}, {"lookup": "clock"}, {"create": "Greeter"}], start=1
        ):
            dispatcher.handle_message({**message, "id": request_id})
            ids.append(sent[-1]["result"]["objectId"])
        assert [parse_object_id(i)[2] for i in ids] == [1, 2, 3]

    def test_unknown_factory(self, dispatcher, sent):
        dispatcher.handle_message({"create": "Nope", "id": 5})
        assert sent[-1]["id"] == 5
        assert sent[-1]["error"]["type"] == "UnknownFactory"
        assert sent[-1]["error"]["origin"] == "bridge"
        assert len(dispatcher.registry) == 0

    def test_unknown_service(self, dispatcher, sent):
        dispatcher.handle_message({"lookup": "nope", "id": 6})
        assert sent[-1]["error"]["type"] == "UnknownService"

    def test_failing_constructor_is_method_error(self, dispatcher, sent):
        dispatcher.handle_message({"create": "Broken", "id": 7})
        assert sent[-1]["error"]["origin"] == "method"
        assert sent[-1]["error"]["type"] == "RuntimeError"
        assert len(dispatcher.registry) == 0

    def test_declared_methods(self, dispatcher, sent):
        dispatcher.handle_message({"create": "Declared", "id": 1})
        assert sent[-1]["result"]["methods"] == ["beta", "alpha"]


class TestInvoke:
    def test_sync_method(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "greet", "args": ["Ada", "?"], "id": 2})
        assert sent[-1] == {"id": 2, "objectId": object_id, "result": "Hello, Ada?"}

    def test_args_default_to_empty(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Counter")
        dispatcher.handle_message({"objectId": object_id, "method": "increment", "id": 2})
        assert sent[-1]["result"] == 1

    @pytest.mark.asyncio
    async def test_async_method_replies_after_completion(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message(
            {"objectId": object_id, "method": "slow_echo", "args": [{"k": [1, 2]}, 0.01], "id": 2}
        )
        assert len(sent) == 1
        await asyncio.sleep(0.05)
        assert sent[-1] == {"id": 2, "objectId": object_id, "result": {"k": [1, 2]}}

    @pytest.mark.asyncio
    async def test_async_replies_in_completion_order(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "slow_echo", "args": ["slow", 0.05], "id": 2})
        dispatcher.handle_message({"objectId": object_id, "method": "slow_echo", "args": ["fast", 0.0], "id": 3})
        await asyncio.sleep(0.1)
        assert [(m["id"], m["result"]) for m in sent[1:]] == [(3, "fast"), (2, "slow")]

    def test_unknown_object(self, dispatcher, sent):
        dispatcher.handle_message({"objectId": "create#Counter#99#", "method": "increment", "args": [], "id": 4})
        assert sent[-1]["error"]["type"] == "UnknownObject"
        assert sent[-1]["objectId"] == "create#Counter#99#"

    @pytest.mark.parametrize("method", ["missing", "emit", "subscribe", "secret", "_private", "__init__"])
    def test_unknown_method(self, dispatcher, sent, method):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": method, "args": [], "id": 2})
        assert sent[-1]["error"]["type"] == "UnknownMethod"

    def test_method_error_does_not_break_dispatcher(self, dispatcher, sent, caplog):
        caplog.set_level(logging.ERROR, logger="bridgerpc._internal.dispatcher")
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "fail", "args": ["boom"], "id": 2})
        error = sent[-1]["error"]
        assert error["origin"] == "method"
        assert error["type"] == "ValueError"
        assert error["message"] == "boom"
        assert "Traceback" in error["traceback"]
        assert any("RPC dispatch failed" in r.message for r in caplog.records)

        dispatcher.handle_message({"objectId": object_id, "method": "greet", "args": ["Bo"], "id": 3})
        assert sent[-1]["result"] == "Hello, Bo!"

    @pytest.mark.asyncio
    async def test_async_method_error(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "fail_later", "args": ["late"], "id": 2})
        await settle()
        assert sent[-1]["error"] == {
            "type": "RuntimeError",
            "message": "late",
            "origin": "method",
            "traceback": sent[-1]["error"]["traceback"],
        }

    def test_unserializable_result(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "unserializable", "args": [], "id": 2})
        assert sent[-1]["error"]["origin"] == "bridge"
        assert sent[-1]["error"]["type"] == "TypeError"

    def test_wrong_arity_is_bridge_error(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Counter")
        instance = dispatcher.registry.get(object_id).instance
        dispatcher.handle_message({"objectId": object_id, "method": "increment", "args": [1, 2], "id": 2})
        assert sent[-1]["error"]["origin"] == "bridge"
        assert sent[-1]["error"]["type"] == "TypeError"
        assert "traceback" not in sent[-1]["error"]
        assert instance.value == 0

    def test_missing_argument_is_bridge_error(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.handle_message({"objectId": object_id, "method": "greet", "args": [], "id": 2})
        assert sent[-1]["error"]["origin"] == "bridge"
        dispatcher.handle_message({"objectId": object_id, "method": "greet", "args": ["Ada", "."], "id": 3})
        assert sent[-1] == {"id": 3, "objectId": object_id, "result": "Hello, Ada."}


class TestEvents:
    def test_emission_forwarded(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Counter")
        dispatcher.handle_message({"objectId": object_id, "method": "increment", "args": [], "id": 2})
        assert sent[-2:] == [
            {"objectId": object_id, "method": "changed", "args": [1]},
            {"id": 2, "objectId": object_id, "result": 1},
        ]

    def test_every_lookup_receives_service_events(self, dispatcher, sent):
        dispatcher.handle_message({"lookup": "clock", "id": 1})
        dispatcher.handle_message({"lookup": "clock", "id": 2})
        clock = dispatcher.catalog.service("clock")
        sent.clear()
        clock.emit("tick", 5)
        assert sent == [
            {"objectId": "lookup#clock#1#", "method": "tick", "args": [5]},
            {"objectId": "lookup#clock#2#", "method": "tick", "args": [5]},
        ]

    def test_emission_stops_after_dispose(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        instance = dispatcher.registry.get(object_id).instance
        dispatcher.handle_message({"dispose": True, "objectId": object_id})
        sent.clear()
        instance.announce("hi")
        assert sent == []

    def test_multiple_args(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter")
        dispatcher.registry.get(object_id).instance.announce("a", 2, (3, 4))
        assert sent[-1] == {"objectId": object_id, "method": "announcement", "args": ["a", 2, [3, 4]]}


    def test_unserializable_event_does_not_fail_the_call(self, dispatcher, sent, caplog):
        object_id = create(dispatcher, sent, "Greeter")
        greeter = dispatcher.registry.get(object_id).instance
        seen = []
        greeter.subscribe(lambda event, args: seen.append(event))
        with caplog.at_level(logging.ERROR, logger="bridgerpc._internal.dispatcher"):
            greeter.announce(object())
        assert seen == ["announcement"]
        assert sent[-1]["result"]["objectId"] == object_id
        assert any("Dropped event" in r.getMessage() for r in caplog.records)

    def test_failed_send_does_not_starve_other_subscribers(self):
        delivered = []

        def send(message):
            if message.get("objectId") == "lookup#clock#1#" and "method" in message:
                raise ConnectionError("channel gone")
            delivered.append(message)

        catalog = Catalog()
        catalog.add_service("clock", Clock())
        dispatcher = Dispatcher(catalog, send)
        dispatcher.handle_message({"lookup": "clock", "id": 1})
        dispatcher.handle_message({"lookup": "clock", "id": 2})
        delivered.clear()
        dispatcher.handle_message({"objectId": "lookup#clock#1#", "method": "tick", "args": [], "id": 3})
        assert delivered == [
            {"objectId": "lookup#clock#2#", "method": "tick", "args": [1]},
            {"id": 3, "objectId": "lookup#clock#1#", "result": 1},
        ]


class TestDispose:
    def test_dispose_sends_no_reply(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Counter")
        count = len(sent)
        dispatcher.handle_message({"dispose": True, "objectId": object_id})
        assert len(sent) == count
        assert object_id not in dispatcher.registry

    def test_dispose_twice_and_unknown_are_noops(self, dispatcher, sent):
        keep = create(dispatcher, sent, "Counter", 1)
        drop = create(dispatcher, sent, "Counter", 2)
        count = len(sent)
        assert dispatcher.dispose(drop) is True
        assert dispatcher.dispose(drop) is False
        dispatcher.handle_message({"dispose": True, "objectId": "create#Nope#42#"})
        assert dispatcher.registry.ids() == [keep]
        assert len(sent) == count

    def test_invoke_after_dispose_fails(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Counter")
        dispatcher.handle_message({"dispose": True, "objectId": object_id})
        dispatcher.handle_message({"objectId": object_id, "method": "increment", "args": [], "id": 2})
        assert sent[-1]["error"]["type"] == "UnknownObject"

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, dispatcher, sent):
        object_id = create(dispatcher, sent, "Greeter", 1)
        dispatcher.handle_message({"lookup": "clock", "id": 2})
        dispatcher.handle_message({"objectId": object_id, "method": "slow_echo", "args": [1, 10], "id": 3})
        instance = dispatcher.registry.get(object_id).instance
        count = len(sent)
        dispatcher.close()
        await settle()
        assert len(dispatcher.registry) == 0
        instance.announce("ignored")
        dispatcher.catalog.service("clock").tick()
        assert len(sent) == count


class TestMalformed:
    def test_malformed_with_id_gets_error_reply(self, dispatcher, sent):
        dispatcher.handle_message({"objectId": 5, "method": "m", "args": [], "id": 8})
        assert sent == [
            {"id": 8, "error": {"type": "ProtocolViolation", "message": sent[0]["error"]["message"], "origin": "bridge"}}
        ]

    def test_malformed_without_id_is_dropped(self, dispatcher, sent, caplog):
        caplog.set_level(logging.ERROR, logger="bridgerpc._internal.dispatcher")
        dispatcher.handle_message("garbage")
        assert sent == []
        assert any("malformed" in r.message for r in caplog.records)
