"""
Pytest configuration and fixtures.

Add any shared fixtures or pytest configuration here.
"""

import logging
import sys

import pytest
import pytest_asyncio

from bridgerpc import LocalChannel, Server

from .fixtures.objects import Clock, Counter, Greeter


def pytest_configure(config):
    """Configure pytest with custom settings."""
    log_level = logging.DEBUG if config.getoption("--debug-bridgerpc") else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("bridgerpc").setLevel(log_level)

    custom_log_file = config.getoption("--bridgerpc-log-file")
    if custom_log_file:
        file_handler = logging.FileHandler(custom_log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--debug-bridgerpc",
        action="store_true",
        default=False,
        help="Enable debug logging for bridgerpc (shows every message crossing the channel)",
    )
    parser.addoption(
        "--bridgerpc-log-file",
        action="store",
        default=None,
        help="Log bridgerpc debug output to specified file",
    )


@pytest.fixture
def server():
    """Server with the standard test factories and a Clock service."""
    srv = Server()
    srv.register_factory(Counter)
    srv.register_factory(Greeter)
    srv.register_service("clock", Clock())
    yield srv
    srv.close()


@pytest_asyncio.fixture
async def bridge(server):
    """(server, rpc) pair connected through a LocalChannel."""
    channel = LocalChannel()
    await server.attach(channel)
    return server, channel.rpc
