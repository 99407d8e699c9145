"""Shared fixtures: an in-memory engine and a client wired to it."""
import pytest

from mcp_loadbalancer.configuration import (
    ConfigurationCache,
    ConfigurationClient,
    TransactionStore,
)
from mcp_loadbalancer.engine.base import EngineRunner
from mcp_loadbalancer.utils.audit_log import ChangeTracker


class FakeEngine(EngineRunner):
    """Engine runner answering from a command -> output table.

    Every invocation is recorded in ``calls`` as
    ``(command, transaction_id, args)``.
    """

    def __init__(self):
        super().__init__(binary="lbctl")
        self.responses: dict[str, str] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str, tuple]] = []

    async def run(self, command, transaction_id="", *args):
        self.calls.append((command, transaction_id, args))
        if command in self.failures:
            raise self.failures[command]
        return self.responses.get(command, "")

    def commands(self, prefix: str = "") -> list[str]:
        return [c for c, _, _ in self.calls if c.startswith(prefix)]

    def count(self, command: str) -> int:
        return sum(1 for c, _, _ in self.calls if c == command)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store(tmp_path):
    return TransactionStore(tmp_path / "state")


@pytest.fixture
def client(engine, store):
    return ConfigurationClient(
        runner=engine,
        transactions=store,
        cache=ConfigurationCache(enabled=True),
        tracker=ChangeTracker(user="test"),
    )


@pytest.fixture
def uncached_client(engine, store):
    return ConfigurationClient(
        runner=engine,
        transactions=store,
        cache=ConfigurationCache(enabled=False),
    )
