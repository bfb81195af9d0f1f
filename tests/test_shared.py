"""Tests for the EventSource base class."""

from bridgerpc import EventSource, EventSourceProtocol


class Plain(EventSource):
    def __init__(self):
        # Deliberately skips super().__init__()
        self.value = 1


def test_subscribe_and_emit():
    source = EventSource()
    seen = []
    source.subscribe(lambda event, args: seen.append((event, args)))
    source.emit("changed", 1, "two")
    assert seen == [("changed", (1, "two"))]


def test_unsubscribe_removes_every_registration():
    source = EventSource()
    seen = []

    def listener(event, args):
        seen.append(event)

    source.subscribe(listener)
    source.subscribe(listener)
    source.unsubscribe(listener)
    source.emit("changed")
    assert seen == []


def test_unsubscribe_bound_method():
    class Sink:
        def __init__(self):
            self.events = []

        def record(self, event, args):
            self.events.append(event)

    source = EventSource()
    sink = Sink()
    source.subscribe(sink.record)
    source.unsubscribe(sink.record)
    source.emit("changed")
    assert sink.events == []


def test_emit_without_listeners():
    EventSource().emit("nobody-listening")


def test_subclass_without_super_init():
    source = Plain()
    seen = []
    source.subscribe(lambda event, args: seen.append(event))
    source.emit("changed")
    assert seen == ["changed"]


def test_satisfies_protocol():
    assert isinstance(EventSource(), EventSourceProtocol)
