"""Tests for the MCP tool surface."""
import json

import pytest

from mcp_loadbalancer import server as lb_server


def payload(result) -> dict:
    assert len(result) == 1
    return json.loads(result[0].text)


@pytest.fixture
def tools(client, monkeypatch, tmp_path):
    monkeypatch.setattr(lb_server, "client", client)
    monkeypatch.setattr(lb_server, "audit_file", tmp_path / "audit.log")
    return lb_server.call_tool


class TestListTools:
    """Tests for the tool catalogue."""

    @pytest.mark.asyncio
    async def test_tool_names(self):
        tools = await lb_server.list_tools()
        assert {t.name for t in tools} == {
            "list_entities",
            "get_entity",
            "create_entity",
            "edit_entity",
            "delete_entity",
            "get_version",
            "start_transaction",
            "commit_transaction",
            "delete_transaction",
            "list_transactions",
            "get_audit_log",
            "engine_stats",
        }


class TestEntityTools:
    """Tests for entity tools."""

    @pytest.mark.asyncio
    async def test_list_entities(self, tools, engine):
        engine.responses["l7-farm-server-dump"] = "web1\n  address 10.0.0.1\n  port 80\n"

        data = payload(await tools("list_entities", {"entity_type": "server", "parent_name": "be1"}))

        assert data == {"_version": 1, "data": [{"name": "web1", "address": "10.0.0.1", "port": 80}]}

    @pytest.mark.asyncio
    async def test_get_tcp_rule(self, tools, engine):
        engine.responses["l7-farm-tcprspcont-show"] = "2\n  action reject\n"

        data = payload(await tools("get_entity", {
            "entity_type": "tcp_content_rule",
            "key": 2,
            "parent_type": "backend",
            "parent_name": "be1",
            "rule_type": "response",
        }))

        assert data == {"_version": 1, "data": {"id": 2, "action": "reject"}}

    @pytest.mark.asyncio
    async def test_create_entity(self, tools, engine):
        data = payload(await tools("create_entity", {
            "entity_type": "backend",
            "data": {"name": "be2", "balance": "roundrobin"},
            "version": 1,
        }))

        assert data["success"] is True
        assert "l7-farm-create" in engine.commands()

    @pytest.mark.asyncio
    async def test_edit_and_delete_tcp_rule(self, tools, engine):
        engine.responses["l7-service-tcpreqcont-show"] = "0\n  action accept\n"
        common = {
            "entity_type": "tcp_content_rule",
            "key": 0,
            "parent_type": "frontend",
            "parent_name": "fe1",
            "rule_type": "request",
        }

        edited = payload(await tools("edit_entity", {**common, "data": {"action": "reject"}, "version": 1}))
        deleted = payload(await tools("delete_entity", {**common, "version": 2}))

        assert edited["success"] is True
        assert deleted["success"] is True
        assert "l7-service-tcpreqcont-delete" in engine.commands()

    @pytest.mark.asyncio
    async def test_both_tokens_error(self, tools, client, engine):
        transaction = await client.start_transaction(1)
        engine.calls.clear()

        data = payload(await tools("create_entity", {
            "entity_type": "backend",
            "data": {"name": "be2"},
            "transaction_id": transaction.id,
            "version": 1,
        }))

        assert data["error"] == "validation_error"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_response_rule_under_frontend(self, tools, engine):
        data = payload(await tools("list_entities", {
            "entity_type": "tcp_content_rule",
            "parent_type": "frontend",
            "parent_name": "fe1",
            "rule_type": "response",
        }))
        assert data["error"] == "validation_error"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_tcp_rule_missing_rule_type(self, tools):
        data = payload(await tools("list_entities", {
            "entity_type": "tcp_content_rule",
            "parent_type": "backend",
            "parent_name": "be1",
        }))
        assert data["error"] == "validation_error"
        assert "rule_type" in data["message"]

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, tools):
        data = payload(await tools("list_entities", {"entity_type": "acl"}))
        assert data["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_not_found(self, tools):
        data = payload(await tools("get_entity", {"entity_type": "frontend", "key": "fe9"}))
        assert data["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_version_mismatch(self, tools):
        data = payload(await tools("delete_entity", {"entity_type": "site", "key": "www", "version": 9}))
        assert data["error"] == "version_mismatch"


class TestTransactionTools:
    """Tests for version and transaction tools."""

    @pytest.mark.asyncio
    async def test_transaction_flow(self, tools):
        assert payload(await tools("get_version", {})) == {"version": 1, "transaction_id": None}

        started = payload(await tools("start_transaction", {"version": 1}))
        tid = started["id"]
        assert started["status"] == "in_progress"

        listed = payload(await tools("list_transactions", {"status": "in_progress"}))
        assert [t["id"] for t in listed["transactions"]] == [tid]

        created = payload(await tools("create_entity", {
            "entity_type": "frontend",
            "data": {"name": "fe2"},
            "transaction_id": tid,
        }))
        assert created["success"] is True

        committed = payload(await tools("commit_transaction", {"transaction_id": tid}))
        assert committed == {"id": tid, "version": 2, "status": "success"}
        assert payload(await tools("get_version", {}))["version"] == 2

    @pytest.mark.asyncio
    async def test_delete_transaction(self, tools):
        started = payload(await tools("start_transaction", {"version": 1}))

        data = payload(await tools("delete_transaction", {"transaction_id": started["id"]}))

        assert data == {"success": True, "transaction_id": started["id"]}
        assert payload(await tools("list_transactions", {}))["total"] == 0

    @pytest.mark.asyncio
    async def test_commit_missing(self, tools):
        data = payload(await tools("commit_transaction", {"transaction_id": "missing"}))
        assert data["error"] == "not_found"


class TestMiscTools:
    """Tests for audit and statistics tools."""

    @pytest.mark.asyncio
    async def test_audit_log_empty(self, tools):
        data = payload(await tools("get_audit_log", {"limit": 5}))
        assert data["total_records"] == 0
        assert data["filters"]["limit"] == 5

    @pytest.mark.asyncio
    async def test_engine_stats(self, tools, engine):
        await tools("list_entities", {"entity_type": "backend"})
        await tools("list_entities", {"entity_type": "backend"})

        data = payload(await tools("engine_stats", {}))

        assert data["cache"]["hits"] == 1
        assert "Performance Summary" in data["engine"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        result = await tools("reboot", {})
        assert result[0].text == "Unknown tool: reboot"
