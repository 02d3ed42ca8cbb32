"""Wire-level integration tests for the MCP stdio contract."""

from __future__ import annotations

import json
import subprocess
import sys

_INITIALIZE = [
    {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-11-25",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "0"},
        },
    },
    {"jsonrpc": "2.0", "method": "notifications/initialized"},
]


def _run_mcp_exchange(env: dict[str, str], messages: list[dict]) -> list[dict]:
    proc = subprocess.Popen(
        [sys.executable, "-m", "resourcekeeper.server"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )

    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    for message in messages:
        proc.stdin.write(json.dumps(message) + "\n")
    proc.stdin.flush()

    # Keep stdin open until every request is answered: closing it early ends
    # the receive loop and drops responses still being produced.
    expected_ids = frozenset(msg["id"] for msg in messages if "id" in msg)
    responses: list[dict] = []
    seen_ids: set = set()
    while seen_ids < expected_ids:
        line = proc.stdout.readline()
        if not line:  # server exited before answering all requests
            break
        stripped = line.strip()
        if stripped:
            resp = json.loads(stripped)
            responses.append(resp)
            rid = resp.get("id")
            if rid is not None:
                seen_ids.add(rid)

    proc.stdin.close()
    proc.stderr.read()  # drain for reliable process shutdown
    proc.wait(timeout=10)
    proc.stdout.close()
    proc.stderr.close()

    return responses


def _response(responses: list[dict], request_id: int) -> dict:
    return next(response for response in responses if response.get("id") == request_id)


def test_initialize_and_tools_list_contract(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}}],
    )

    init_result = _response(responses, 1)["result"]
    assert init_result["serverInfo"]["name"] == "resourcekeeper"
    assert "tools" in init_result["capabilities"]

    tools_by_name = {tool["name"]: tool for tool in _response(responses, 2)["result"]["tools"]}
    assert set(tools_by_name) == {
        "list_resources",
        "set_resource_enabled",
        "get_resource_status",
        "refresh_resource",
        "host_event",
        "reset_resource",
        "clear_cache",
    }
    toggle_schema = tools_by_name["set_resource_enabled"]["inputSchema"]
    assert set(toggle_schema["required"]) == {"resource_id", "enabled"}


def test_list_resources_over_the_wire(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [
            *_INITIALIZE,
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "list_resources", "arguments": {}},
            },
        ],
    )

    result = _response(responses, 2)["result"]
    assert result.get("isError") is not True
    payload = json.loads(result["content"][0]["text"])
    assert [r["resource_id"] for r in payload["resources"]] == ["theme"]
    assert payload["resources"][0]["enabled"] is False


def test_resourcekeeper_error_serializes_to_structured_tool_error(
    subprocess_env: dict[str, str],
) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [
            *_INITIALIZE,
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "get_resource_status", "arguments": {"resource_id": "nope"}},
            },
        ],
    )

    result = _response(responses, 2)["result"]
    assert result["isError"] is True
    text_payload = result["content"][0]["text"]
    assert "Error executing tool" not in text_payload

    parsed = json.loads(text_payload)
    assert parsed["error"]["code"] == "RESOURCE_NOT_FOUND"
    assert parsed["error"]["recoverable"] is False
