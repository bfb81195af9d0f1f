"""Standalone demo: a host exposes a counter and a clock to a remote context."""

from __future__ import annotations

import argparse
import asyncio
import logging

import bridgerpc
from bridgerpc import EventSource, local_only

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


class Counter(EventSource):
    def __init__(self) -> None:
        super().__init__()
        self.value = 0

    def increment(self) -> int:
        self.value += 1
        self.emit("changed", self.value)
        return self.value

    @local_only
    def reset(self) -> None:
        self.value = 0


class Clock(EventSource):
    """Shared by every remote lookup of ``"clock"``."""

    def __init__(self) -> None:
        super().__init__()
        self.ticks = 0

    async def tick(self, delay: float = 0.05) -> int:
        await asyncio.sleep(delay)
        self.ticks += 1
        self.emit("tick", self.ticks)
        return self.ticks


async def remote_script(rpc) -> None:
    """What code inside the remote context does with the installed surface."""
    counter = await rpc.create("Counter")
    print(f"   Created {counter!r}")
    counter.on("changed", lambda value: print(f"   changed -> {value}"))
    for _ in range(3):
        await counter.increment()

    clock = await rpc.lookup("clock")
    clock.on("tick", lambda n: print(f"   tick #{n}"))
    print(f"   Ticks: {await asyncio.gather(clock.tick(), clock.tick())}")

    counter.dispose()
    try:
        await counter.increment()
    except bridgerpc.UnknownObject as exc:
        print(f"   After dispose: {exc}")


async def main(transport: str) -> None:
    server = bridgerpc.Server()
    server.register_factory(Counter)
    server.register_service("clock", Clock())

    if transport == "local":
        channel = bridgerpc.LocalChannel()
        await server.attach(channel)
        await remote_script(channel.rpc)
    else:
        host_end, remote_end = bridgerpc.socket_pair()
        channel = bridgerpc.TransportChannel(host_end)
        remote = bridgerpc.RemoteContext(remote_end)
        await remote.start()
        await server.attach(channel, {"call_timeout": 5.0})
        rpc = await remote.ready()
        await remote_script(rpc)
        channel.close()
        remote.close()

    print(f"   Objects still registered: {server.registered_ids()}")
    server.close()
    print("Done")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--transport", choices=("local", "socket"), default="local")
    args = parser.parse_args()
    asyncio.run(main(args.transport))
