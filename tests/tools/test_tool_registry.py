"""Tests for JSON dispatch of the bash/process tools through tools.registry."""

import json

import tools  # noqa: F401  registers bash + process
from tools.bash_tool import BASH_SCHEMA, create_bash_tool
from tools.process_registry import process_registry
from tools.process_tool import PROCESS_SCHEMA
from tools.registry import ToolRegistry, registry


class TestRegistration:
    def test_both_tools_registered(self):
        assert registry.names("terminal") == ["bash", "process"]

    def test_schemas(self):
        schemas = {s["function"]["name"]: s["function"] for s in registry.get_schemas("terminal")}
        assert schemas["bash"] is BASH_SCHEMA
        assert schemas["process"] is PROCESS_SCHEMA
        assert schemas["bash"]["parameters"]["required"] == ["command"]
        assert "remove" in schemas["process"]["parameters"]["properties"]["action"]["enum"]


class TestDispatch:
    def test_bash_returns_wire_json(self):
        payload = json.loads(registry.dispatch("bash", {"command": "echo hi"}))
        assert payload["content"][0]["text"] == "hi"
        assert payload["details"]["status"] == "completed"
        assert payload["details"]["exitCode"] == 0

    def test_background_then_poll_in_same_scope(self):
        started = json.loads(registry.dispatch(
            "bash", {"command": "echo bg", "background": True}, scope_key="agent:json",
        ))
        sid = started["details"]["sessionId"]
        assert started["details"]["status"] == "running"
        assert process_registry.get("agent:json", sid).done.wait(10)

        polled = json.loads(registry.dispatch(
            "process", {"action": "poll", "sessionId": sid}, scope_key="agent:json",
        ))
        assert polled["details"]["status"] == "completed"

        foreign = json.loads(registry.dispatch(
            "process", {"action": "poll", "sessionId": sid}, scope_key="agent:other",
        ))
        assert foreign["details"] == {"sessionId": sid, "status": "failed"}

    def test_elevated_error_becomes_error_payload(self):
        payload = json.loads(registry.dispatch("bash", {"command": "id", "elevated": True}))
        assert payload == {"error": "elevated is not available right now."}

    def test_prebuilt_tool_is_used(self):
        tool = create_bash_tool(max_output_chars=5)
        payload = json.loads(registry.dispatch("bash", {"command": "echo 1234567890"}, tool=tool))
        assert payload["details"]["status"] == "completed"

    def test_unknown_tool(self):
        assert json.loads(registry.dispatch("nope", {})) == {"error": "Unknown tool: nope"}

    def test_missing_action(self):
        payload = json.loads(registry.dispatch("process", {}))
        assert "Unknown process action" in payload["error"]


class TestToolRegistry:
    def test_plain_dict_results_are_encoded(self):
        reg = ToolRegistry()
        reg.register(name="echo", toolset="misc", schema={"name": "echo"}, handler=lambda args, **kw: args)
        assert json.loads(reg.dispatch("echo", {"a": 1})) == {"a": 1}
        assert reg.get("echo").toolset == "misc"
