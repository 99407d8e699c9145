"""Tests for versions, concurrency tokens and transactions."""
import asyncio
import threading

import pytest

from mcp_loadbalancer.config import EngineSettings, Settings
from mcp_loadbalancer.configuration import (
    Backend,
    ConfigurationCache,
    ConfigurationClient,
    ConflictError,
    EngineError,
    NotFoundError,
    ValidationError,
)
from mcp_loadbalancer.engine import LocalEngineRunner

from conftest import FakeEngine


class TestVersions:
    """Tests for version lookup."""

    def test_initial_version(self, client):
        assert client.get_version() == 1

    def test_version_tracked_in_cache(self, client):
        client.get_version()
        assert client.cache.get_version("") == 1

    def test_transaction_baseline(self, client, store):
        transaction = store.create(1)
        store.increment_version()
        assert client.get_version(transaction.id) == 1
        assert client.get_version() == 2

    def test_unknown_transaction(self, client):
        with pytest.raises(NotFoundError):
            client.get_version("missing")


class TestConcurrencyToken:
    """Tests for check_transaction_or_version."""

    def test_neither(self, client):
        with pytest.raises(ValidationError, match="not specified"):
            client.check_transaction_or_version("", None)

    def test_both(self, client, store):
        transaction = store.create(1)
        with pytest.raises(ValidationError, match="Both"):
            client.check_transaction_or_version(transaction.id, 1)

    def test_current_version(self, client):
        client.check_transaction_or_version("", 1)

    def test_outdated_version(self, client, store):
        store.increment_version()
        with pytest.raises(ConflictError, match="given version is 1"):
            client.check_transaction_or_version("", 1)

    def test_zero_version_is_a_version(self, client):
        with pytest.raises(ConflictError):
            client.check_transaction_or_version("", 0)

    def test_open_transaction(self, client, store):
        transaction = store.create(1)
        client.check_transaction_or_version(transaction.id, None)

    def test_unknown_transaction(self, client):
        with pytest.raises(NotFoundError):
            client.check_transaction_or_version("missing", None)

    def test_failed_transaction(self, client, store):
        transaction = store.create(1)
        store.set_status(transaction.id, "failed")
        with pytest.raises(ValidationError, match="not in progress"):
            client.check_transaction_or_version(transaction.id, None)

    def test_outdated_transaction(self, client, store):
        transaction = store.create(1)
        store.increment_version()
        with pytest.raises(ConflictError, match="started at version 1"):
            client.check_transaction_or_version(transaction.id, None)


class TestTransactions:
    """Tests for the transaction lifecycle."""

    @pytest.mark.asyncio
    async def test_start(self, client, engine, store):
        transaction = await client.start_transaction(1)

        assert transaction.status == "in_progress"
        assert transaction.version == 1
        assert engine.calls == [("transaction-start", "", (transaction.id,))]
        assert client.get_transaction(transaction.id) == transaction

    @pytest.mark.asyncio
    async def test_start_outdated(self, client, engine, store):
        store.increment_version()
        with pytest.raises(ConflictError):
            await client.start_transaction(1)
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_start_engine_failure(self, client, engine, store):
        engine.failures["transaction-start"] = EngineError("engine busy")
        with pytest.raises(EngineError):
            await client.start_transaction(1)
        assert store.list_transactions() == []

    @pytest.mark.asyncio
    async def test_commit(self, client, engine, store):
        transaction = await client.start_transaction(1)

        committed = await client.commit_transaction(transaction.id)

        assert committed.status == "success"
        assert committed.version == 2
        assert ("transaction-commit", "", (transaction.id,)) in engine.calls
        assert store.get_version() == 2
        assert client.get_transactions() == []
        assert client.cache.get_version("") == 2

    @pytest.mark.asyncio
    async def test_commit_drops_global_cache(self, client, engine):
        engine.responses["l7-farm-dump"] = "be1\n"
        await client.backends.list()

        transaction = await client.start_transaction(1)
        await client.commit_transaction(transaction.id)
        result = await client.backends.list()

        assert engine.count("l7-farm-dump") == 2
        assert result.version == 2

    @pytest.mark.asyncio
    async def test_commit_outdated(self, client, store):
        first = await client.start_transaction(1)
        second = await client.start_transaction(1)
        await client.commit_transaction(first.id)

        with pytest.raises(ConflictError):
            await client.commit_transaction(second.id)

        assert store.get(second.id).status == "failed"
        assert store.get_version() == 2

    @pytest.mark.asyncio
    async def test_commit_failed_transaction(self, client, store):
        transaction = await client.start_transaction(1)
        store.set_status(transaction.id, "failed")
        with pytest.raises(ValidationError):
            await client.commit_transaction(transaction.id)

    @pytest.mark.asyncio
    async def test_commit_engine_failure(self, client, engine, store):
        transaction = await client.start_transaction(1)
        engine.failures["transaction-commit"] = EngineError("commit rejected")

        with pytest.raises(EngineError):
            await client.commit_transaction(transaction.id)

        assert store.get(transaction.id).status == "failed"
        assert store.get_version() == 1

    @pytest.mark.asyncio
    async def test_commit_missing(self, client, engine):
        with pytest.raises(NotFoundError):
            await client.commit_transaction("missing")
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_delete(self, client, engine, store):
        engine.responses["l7-farm-dump"] = "be1\n"
        transaction = await client.start_transaction(1)
        await client.backends.list(transaction_id=transaction.id)

        await client.delete_transaction(transaction.id)

        assert ("transaction-abort", "", (transaction.id,)) in engine.calls
        assert store.list_transactions() == []
        assert client.cache.stats()["transactions"] == 0
        assert client.cache.get_version(transaction.id) is None
        assert store.get_version() == 1

    @pytest.mark.asyncio
    async def test_delete_missing(self, client, engine):
        with pytest.raises(NotFoundError):
            await client.delete_transaction("missing")
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_get_transactions_by_status(self, client, store):
        first = await client.start_transaction(1)
        second = await client.start_transaction(1)
        store.set_status(second.id, "failed")

        assert [t.id for t in client.get_transactions("in_progress")] == [first.id]
        assert [t.id for t in client.get_transactions("failed")] == [second.id]

    @pytest.mark.asyncio
    async def test_writes_in_transaction(self, client, engine, store):
        transaction = await client.start_transaction(1)
        tid = transaction.id

        await client.backends.create({"name": "be2", "balance": "leastconn"}, transaction_id=tid)
        assert store.get_version() == 1
        assert engine.commands("transaction-") == ["transaction-start"]
        assert ("l7-farm-create", tid, ("be2",)) in engine.calls
        assert ("l7-farm-set", tid, ("be2", "balance", "leastconn")) in engine.calls

        await client.commit_transaction(tid)
        assert store.get_version() == 2

    @pytest.mark.asyncio
    async def test_transaction_sees_its_writes(self, client, engine):
        """An invalidation in a transaction is visible to its later reads."""
        transaction = await client.start_transaction(1)
        tid = transaction.id
        engine.responses["l7-farm-dump"] = "be1\n"
        await client.backends.list(transaction_id=tid)

        await client.backends.create({"name": "be2"}, transaction_id=tid)
        engine.responses["l7-farm-dump"] = "be1\n\nbe2\n"
        result = await client.backends.list(transaction_id=tid)

        assert [b.name for b in result.data] == ["be1", "be2"]
        assert result.version == 1

    @pytest.mark.asyncio
    async def test_write_after_commit_in_other_transaction(self, client):
        first = await client.start_transaction(1)
        second = await client.start_transaction(1)
        await client.commit_transaction(first.id)

        with pytest.raises(ConflictError):
            await client.backends.create({"name": "be2"}, transaction_id=second.id)

    @pytest.mark.asyncio
    async def test_delete_while_committing(self, client, engine, store):
        transaction = await client.start_transaction(1)
        store.reserve_commit(transaction.id)

        with pytest.raises(ValidationError, match="being committed"):
            await client.delete_transaction(transaction.id)
        assert "transaction-abort" not in engine.commands()

    @pytest.mark.asyncio
    async def test_implicit_write_refused_during_commit(self, client, engine, store):
        running = await client.start_transaction(1)
        store.reserve_commit(running.id)
        engine.calls.clear()

        with pytest.raises(ConflictError, match="being committed"):
            await client.backends.create({"name": "be2"}, version=1)

        implicit = engine.calls[0][2][0]
        assert ("transaction-abort", "", (implicit,)) in engine.calls
        assert [t.id for t in store.list_transactions()] == [running.id]


class SlowCommitEngine(FakeEngine):
    """Engine whose commits take long enough to overlap."""

    async def run(self, command, transaction_id="", *args):
        if command == "transaction-commit":
            await asyncio.sleep(0.2)
        return await super().run(command, transaction_id, *args)


class TestConcurrentCommits:
    """Tests for commits racing on the same baseline version."""

    @pytest.fixture
    def slow_client(self, store):
        return ConfigurationClient(
            runner=SlowCommitEngine(),
            transactions=store,
            cache=ConfigurationCache(enabled=True),
        )

    def test_commits_from_threads(self, slow_client, store):
        """Each thread drives the client from its own event loop."""
        first = asyncio.run(slow_client.start_transaction(1))
        second = asyncio.run(slow_client.start_transaction(1))
        outcomes = {}

        def commit(transaction_id):
            try:
                asyncio.run(slow_client.commit_transaction(transaction_id))
                outcomes[transaction_id] = "success"
            except ConflictError:
                outcomes[transaction_id] = "conflict"

        threads = [threading.Thread(target=commit, args=(t.id,)) for t in (first, second)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert not any(thread.is_alive() for thread in threads)
        assert sorted(outcomes.values()) == ["conflict", "success"]
        assert store.get_version() == 2

    @pytest.mark.asyncio
    async def test_commits_from_tasks(self, slow_client, store):
        first = await slow_client.start_transaction(1)
        second = await slow_client.start_transaction(1)

        results = await asyncio.gather(
            slow_client.commit_transaction(first.id),
            slow_client.commit_transaction(second.id),
            return_exceptions=True,
        )

        assert results[0].status == "success"
        assert isinstance(results[1], ConflictError)
        assert store.get_version() == 2
        assert store.get(second.id).status == "in_progress"

    @pytest.mark.asyncio
    async def test_retry_after_running_commit(self, slow_client, store):
        first = await slow_client.start_transaction(1)
        second = await slow_client.start_transaction(1)
        await asyncio.gather(
            slow_client.commit_transaction(first.id),
            slow_client.commit_transaction(second.id),
            return_exceptions=True,
        )

        with pytest.raises(ConflictError, match="started at version 1"):
            await slow_client.commit_transaction(second.id)
        assert store.get(second.id).status == "failed"


class TestValidate:
    """Tests for payload validation."""

    def test_dict(self, client):
        backend = client.validate(Backend, {"name": "be1", "balance": "roundrobin"})
        assert backend == Backend(name="be1", balance="roundrobin")

    def test_invalid(self, client):
        with pytest.raises(ValidationError):
            client.validate(Backend, {"name": "be1", "balance": "random"})

    def test_not_an_object(self, client):
        with pytest.raises(ValidationError):
            client.validate(Backend, ["be1"])

    def test_key_filled(self, client):
        assert client.validate(Backend, {}, key="be1").name == "be1"

    def test_key_mismatch(self, client):
        with pytest.raises(ValidationError, match="does not match"):
            client.validate(Backend, {"name": "be2"}, key="be1")

    def test_model_revalidated(self, client):
        backend = Backend(name="be1")
        backend.connect_timeout = -5
        with pytest.raises(ValidationError):
            client.validate(Backend, backend)


class TestFromSettings:
    """Tests for building a client from settings."""

    def test_from_settings(self, tmp_path):
        settings = Settings(
            engine=EngineSettings(mode="local", binary="/usr/sbin/lbctl", timeout=5),
            cache_enabled=False,
            use_validation=False,
            state_dir=tmp_path / "state",
        )

        client = ConfigurationClient.from_settings(settings)

        assert isinstance(client.runner, LocalEngineRunner)
        assert client.runner.binary == "/usr/sbin/lbctl"
        assert client.runner.timeout == 5
        assert client.cache.enabled is False
        assert client.use_validation is False
        assert (tmp_path / "state" / "transactions").is_dir()
