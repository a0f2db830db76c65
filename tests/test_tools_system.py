"""
askstream - Tools System Tests

Verifies:
- ToolExecutionBridge confirmation state machine and last-proposal-wins
- Cancelled proposals never reach the deployment executor
- Deployer planner loop over a mocked OpenAI-compatible endpoint
- Tool name sanitation and the deployer toolbox
"""

import json

import httpx
import pytest

from askstream.adapters.agentic import create_agentic_strategy, deployer_system_prompt
from askstream.adapters.registry import StrategyRegistry
from askstream.core.errors import ConfirmationNotFoundError
from askstream.core.models import Role, SessionOutcome, StrategyKind
from askstream.routing import RequestSession, SessionDependencies, proposal_fallback_text
from askstream.services.deployer import InMemoryDeployerToolbox, InMemoryDeploymentExecutor
from askstream.streaming.sse import SSEChannel
from askstream.tools.bridge import (
    DeploymentExecutor,
    ExecutionResult,
    Resolution,
    ToolExecutionBridge,
    ToolState,
    summarize_arguments,
)
from askstream.tools.names import ToolStartFilter, resolve_tool_name
from askstream.tools.schema import ACTIONABLE_TOOLS, KNOWN_TOOLS, TOOLS_BY_NAME, openai_tools

from conftest import RecordingSleep, drain_channel, event_names, frames_of, make_request, sse_response


WALLET = "WaLLet1111111111111111111111111111111111111"


def tool_call_chunks(name, arguments, call_id="call_1"):
    """Planner stream announcing one tool call with arguments split in two deltas."""
    encoded = json.dumps(arguments)
    half = len(encoded) // 2
    return [
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": call_id, "function": {"name": name, "arguments": encoded[:half]}},
        ]}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"arguments": encoded[half:]}},
        ]}}]},
    ]


def content_chunks(text):
    return [{"choices": [{"delta": {"content": text}}]}]


class ExplodingExecutor(DeploymentExecutor):

    def __init__(self):
        self.calls = 0

    async def execute(self, action, arguments):
        self.calls += 1
        raise RuntimeError("chain unavailable")


def deployer_request(**kwargs):
    kwargs.setdefault("mode", "deployer")
    kwargs.setdefault("wallet_public_key", WALLET)
    kwargs.setdefault("thread_id", "thread-1")
    return make_request(query="deploy qwen 7b", model="self/qwen3:0.6b", **kwargs)


async def run_deployer(handler, request=None):
    jobs = {}
    executor = InMemoryDeploymentExecutor(jobs)
    bridge = ToolExecutionBridge(executor)
    strategy = create_agentic_strategy(
        "https://planner.test/v1",
        toolbox=InMemoryDeployerToolbox(jobs),
        transport=httpx.MockTransport(handler),
    )
    deps = SessionDependencies(
        registry=StrategyRegistry({StrategyKind.AGENTIC: strategy}),
        bridge=bridge,
        emitter_sleep=RecordingSleep(),
    )
    channel = SSEChannel()
    try:
        result = await RequestSession(request or deployer_request(), deps, channel).run()
    finally:
        await strategy.close()
    return result, await drain_channel(channel), bridge, executor


# ============================================================
# Bridge state machine
# ============================================================

class TestBridgeProposals:

    def test_propose_awaits_confirmation(self):
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        pending = bridge.propose("s1", "createJob", {"model": "m"}, prompt={"vram_gb": 8})

        assert pending.state == ToolState.AWAITING_CONFIRMATION
        assert pending.resolution == Resolution.PENDING
        assert bridge.get(pending.id) is pending
        assert bridge.pending_for("s1") is pending
        assert pending.to_wire() == {
            "id": pending.id,
            "toolname": "createJob",
            "args": {"model": "m"},
            "prompt": {"vram_gb": 8},
        }

    def test_last_proposal_wins(self):
        """A new proposal supersedes the unresolved one for the same session."""
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        first = bridge.propose("s1", "createJob", {"model": "a"})
        second = bridge.propose("s1", "stopJob", {"jobAddress": "j"})

        assert first.state == ToolState.CANCELLED
        assert first.resolution == Resolution.CANCELLED
        with pytest.raises(ConfirmationNotFoundError):
            bridge.get(first.id)
        assert bridge.pending_for("s1") is second
        assert len(bridge) == 1

    def test_sessions_are_independent(self):
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        a = bridge.propose("s1", "createJob", {})
        b = bridge.propose("s2", "createJob", {})

        assert bridge.get(a.id) is a
        assert bridge.get(b.id) is b
        assert len(bridge) == 2

    def test_unknown_id(self):
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        with pytest.raises(ConfirmationNotFoundError) as exc_info:
            bridge.get("confirm_missing")

        assert exc_info.value.status_code == 404


class FakeClock:

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestBridgeExpiry:

    def test_expired_id_not_found(self):
        clock = FakeClock()
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor(), ttl_seconds=60, clock=clock)
        pending = bridge.propose("sess_1", "createJob", {"model": "m"})

        clock.now += 59
        assert bridge.get(pending.id) is pending

        clock.now += 1
        with pytest.raises(ConfirmationNotFoundError):
            bridge.get(pending.id)
        assert pending.state == ToolState.CANCELLED
        assert bridge.pending_for("sess_1") is None
        assert len(bridge) == 0

    @pytest.mark.asyncio
    async def test_expired_confirmation_never_executes(self):
        clock = FakeClock()
        executor = InMemoryDeploymentExecutor()
        bridge = ToolExecutionBridge(executor, ttl_seconds=60, clock=clock)
        pending = bridge.propose("sess_1", "createJob", {"model": "m"})

        clock.now += 120
        with pytest.raises(ConfirmationNotFoundError):
            await bridge.confirm(pending.id)
        assert executor.calls == []

    def test_abandoned_sessions_are_evicted(self):
        """One-off session keys do not accumulate past the TTL."""
        clock = FakeClock()
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor(), ttl_seconds=60, clock=clock)
        for i in range(500):
            bridge.propose(f"sess_{i}", "createJob", {})
            clock.now += 1

        assert len(bridge) == 60
        latest = bridge.propose("sess_new", "createJob", {})
        assert len(bridge) == 60
        assert bridge.get(latest.id) is latest


class TestBridgeResolution:

    @pytest.mark.asyncio
    async def test_cancel_never_executes(self):
        executor = InMemoryDeploymentExecutor()
        bridge = ToolExecutionBridge(executor)
        pending = bridge.propose("s1", "createJob", {"model": "m"})

        turn = await bridge.cancel(pending.id)

        assert executor.calls == []
        assert turn.kind == Resolution.CANCELLED
        assert turn.content.startswith("[createJob cancelled]")
        assert "Nothing was executed." in turn.content
        assert pending.state == ToolState.CANCELLED
        assert len(bridge) == 0

    @pytest.mark.asyncio
    async def test_confirm_executes_once(self):
        executor = InMemoryDeploymentExecutor()
        bridge = ToolExecutionBridge(executor)
        pending = bridge.propose("s1", "createJob", {"model": "m", "userPublicKey": WALLET})

        turn = await bridge.confirm(pending.id)

        assert len(executor.calls) == 1
        assert executor.calls[0]["action"] == "createJob"
        assert turn.kind == Resolution.APPROVED
        assert turn.content.startswith("[createJob approved]")
        assert pending.state == ToolState.SUCCEEDED

        with pytest.raises(ConfirmationNotFoundError):
            await bridge.confirm(pending.id)
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_unsuccessful_execution_is_failed(self):
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        pending = bridge.propose("s1", "stopJob", {"jobAddress": "job_missing"})

        turn = await bridge.confirm(pending.id)

        assert turn.kind == Resolution.FAILED
        assert "Job not found: job_missing" in turn.content
        assert pending.state == ToolState.FAILED

    @pytest.mark.asyncio
    async def test_executor_exception_is_failed(self):
        executor = ExplodingExecutor()
        bridge = ToolExecutionBridge(executor)
        pending = bridge.propose("s1", "createJob", {})

        turn = await bridge.confirm(pending.id)

        assert executor.calls == 1
        assert turn.kind == Resolution.FAILED
        assert turn.content.startswith("[createJob failed]")
        assert "chain unavailable" in turn.content

    @pytest.mark.asyncio
    async def test_follow_up_turn_is_user_turn(self):
        bridge = ToolExecutionBridge(InMemoryDeploymentExecutor())
        pending = bridge.propose("s1", "createJob", {}, metadata={"model": "self/qwen3:0.6b"})

        turn = await bridge.cancel(pending.id)
        chat = turn.to_chat_turn()

        assert chat.role == Role.USER
        assert chat.content == turn.content
        assert turn.metadata == {"model": "self/qwen3:0.6b"}


class TestSummarizeArguments:

    def test_skips_empty_values(self):
        assert summarize_arguments("createJob", {"model": "x", "market": None}) == "createJob(model=x)"

    def test_no_arguments(self):
        assert summarize_arguments("getModels", {}) == "getModels"

    def test_long_values_truncated(self):
        summary = summarize_arguments("createJob", {"requirements": "r" * 200})
        assert summary.endswith("...)")
        assert len(summary) < 120


# ============================================================
# Deployer sessions
# ============================================================

class TestDeployerProposal:
    """Planner proposes createJob; the user cancels it."""

    @pytest.mark.asyncio
    async def test_proposal_then_cancel(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return sse_response(tool_call_chunks("createJob", {"model": "Qwen/Qwen2.5-7B-Instruct"}))

        result, frames, bridge, executor = await run_deployer(handler)

        assert len(requests) == 1
        assert result.outcome == SessionOutcome.COMPLETED
        assert ("event", "executing: createJob") in frames
        assert json.loads(frames_of(frames, "toolsUsed")[0]) == ["createJob"]

        wire = json.loads(frames_of(frames, "toolExecute")[0])
        assert wire["toolname"] == "createJob"
        assert wire["args"]["userPublicKey"] == WALLET
        assert wire["args"]["market"] == "nvidia-a4000"
        assert executor.calls == []

        turn = await bridge.cancel(wire["id"])

        assert executor.calls == []
        assert turn.kind == Resolution.CANCELLED
        assert turn.session_key == "thread-1"
        assert turn.metadata["wallet_public_key"] == WALLET
        assert turn.metadata["chats"][-1] == {"role": "user", "content": "deploy qwen 7b"}

    @pytest.mark.asyncio
    async def test_proposal_then_confirm(self):
        def handler(request):
            return sse_response(tool_call_chunks("createJob", {"model": "Qwen/Qwen2.5-7B-Instruct"}))

        result, frames, bridge, executor = await run_deployer(handler)
        wire = json.loads(frames_of(frames, "toolExecute")[0])

        turn = await bridge.confirm(wire["id"])

        assert turn.kind == Resolution.APPROVED
        assert executor.calls[0]["arguments"]["model"] == "Qwen/Qwen2.5-7B-Instruct"
        assert len(executor.jobs) == 1

    @pytest.mark.asyncio
    async def test_silent_proposal_gets_fallback_text(self):
        def handler(request):
            return sse_response(tool_call_chunks("createJob", {"model": "Qwen/Qwen2.5-7B-Instruct"}))

        _, frames, _, _ = await run_deployer(handler)

        expected = proposal_fallback_text("createJob")
        assert "".join(frames_of(frames, "llmResult")) == expected
        assert frames_of(frames, "finalResult") == [expected]

    @pytest.mark.asyncio
    async def test_terminal_frames_after_tool_execute(self):
        def handler(request):
            return sse_response(tool_call_chunks("createJob", {"model": "Qwen/Qwen2.5-7B-Instruct"}))

        _, frames, _, _ = await run_deployer(handler)

        names = event_names(frames)
        assert names[-4:] == ["finalResult", "toolExecute", "Duration", "event"]
        assert names.index("toolsUsed") < names.index("finalResult")

    @pytest.mark.asyncio
    async def test_planner_request_shape(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return sse_response(content_chunks("Hi."))

        await run_deployer(handler)

        body = bodies[0]
        assert body["model"] == "qwen3:0.6b"
        assert body["tool_choice"] == "auto"
        assert {t["function"]["name"] for t in body["tools"]} == set(KNOWN_TOOLS)
        assert WALLET in body["messages"][0]["content"]
        assert body["messages"][-1] == {"role": "user", "content": "deploy qwen 7b"}


class TestDeployerLoop:

    @pytest.mark.asyncio
    async def test_read_only_tool_feeds_next_step(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            if len(bodies) == 1:
                return sse_response(tool_call_chunks("getWalletBalance", {}))
            return sse_response(content_chunks("Your balance is 0 SOL."))

        result, frames, bridge, _ = await run_deployer(handler)

        assert len(bodies) == 2
        tool_message = bodies[1]["messages"][-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "call_1"
        assert json.loads(tool_message["content"])["userPublicKey"] == WALLET

        assert frames_of(frames, "finalResult") == ["Your balance is 0 SOL."]
        assert json.loads(frames_of(frames, "toolsUsed")[0]) == ["getWalletBalance"]
        assert frames_of(frames, "toolExecute") == []
        assert len(bridge) == 0

    @pytest.mark.asyncio
    async def test_sanitized_tool_name(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            if len(bodies) == 1:
                return sse_response(tool_call_chunks("getModels<|channel|>commentary", {}))
            return sse_response(content_chunks("Here are the models."))

        _, frames, _, _ = await run_deployer(handler)

        assert ("event", "executing: getModels") in frames

    @pytest.mark.asyncio
    async def test_step_limit(self):
        calls = []

        def handler(request):
            calls.append(request)
            return sse_response(tool_call_chunks("listGpuMarkets", {}, call_id=f"call_{len(calls)}"))

        result, frames, _, _ = await run_deployer(handler)

        assert len(calls) == 6
        assert result.outcome == SessionOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_invalid_arguments_reported_to_planner(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            if len(bodies) == 1:
                chunk = {"choices": [{"delta": {"tool_calls": [
                    {"index": 0, "id": "call_x", "function": {"name": "getJob", "arguments": "{not json"}},
                ]}}]}
                return sse_response([chunk])
            return sse_response(content_chunks("Sorry."))

        _, frames, _, _ = await run_deployer(handler)

        error = json.loads(bodies[1]["messages"][-1]["content"])["error"]
        assert error.startswith("Failed to parse tool call arguments as JSON")
        assert frames_of(frames, "finalResult") == ["Sorry."]


class TestDeployerPrompt:

    def test_wallet_line(self):
        assert f"**Wallet:** {WALLET}" in deployer_system_prompt(WALLET)

    def test_missing_wallet(self):
        prompt = deployer_system_prompt(None, custom_prompt="Be brief.")
        assert "No wallet connected" in prompt
        assert 'userPublicKey="WALLET_REQUIRED"' in prompt
        assert prompt.endswith("Be brief.")


# ============================================================
# Tool names
# ============================================================

class TestToolNames:

    def test_exact_name(self):
        resolved = resolve_tool_name("getJob")
        assert resolved.valid and resolved.name == "getJob" and not resolved.sanitized

    def test_channel_token_stripped(self):
        resolved = resolve_tool_name("createJob<|channel|>commentary")

        assert resolved.valid
        assert resolved.name == "createJob"
        assert resolved.sanitized

    def test_text_before_angle(self):
        assert resolve_tool_name("stopJob <junk").name == "stopJob"

    @pytest.mark.parametrize("raw", ["unknownTool", "", None, 42])
    def test_invalid(self, raw):
        assert not resolve_tool_name(raw).valid

    def test_filter_drops_repeated_sanitized_start(self):
        start_filter = ToolStartFilter()

        assert start_filter.accept("getJob<|channel|>x").valid
        repeated = start_filter.accept("getJob<|channel|>y")
        assert not repeated.valid
        assert repeated.sanitized
        assert start_filter.accept("getJob").valid


# ============================================================
# Toolbox and schemas
# ============================================================

class TestDeployerToolbox:

    @pytest.mark.asyncio
    async def test_create_job_is_prepared_not_run(self):
        jobs = {}
        toolbox = InMemoryDeployerToolbox(jobs)

        output = await toolbox.call("createJob", {"model": "Qwen/Qwen2.5-7B-Instruct", "userPublicKey": WALLET})

        assert output["tool_execute"] is True
        assert output["args"]["market"] == "nvidia-a4000"
        assert output["args"]["marketPubKey"] == "7fnuvPYzfd961iRDPRgMSKLrUf1QjTGnn7viu3P12Zuc"
        assert output["args"]["timeoutSeconds"] == 3600
        assert output["prompt"]["estimated_cost_usd"] == 0.128
        assert jobs == {}

    @pytest.mark.asyncio
    async def test_missing_required_argument(self):
        output = await InMemoryDeployerToolbox().call("createJob", {"model": "x"})
        assert output == {"error": "Missing required arguments: userPublicKey"}

    @pytest.mark.asyncio
    async def test_stop_unknown_job(self):
        output = await InMemoryDeployerToolbox().call("stopJob", {"jobAddress": "job_1", "userPublicKey": WALLET})
        assert output == {"error": "Job not found: job_1"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        assert await InMemoryDeployerToolbox().call("dropTables", {}) == {"error": "Unknown tool: dropTables"}

    @pytest.mark.asyncio
    async def test_estimate_cost(self):
        output = await InMemoryDeployerToolbox().call(
            "estimateJobCost", {"market": "nvidia-3090", "timeoutSeconds": 7200}
        )
        assert output["estimated_cost_usd"] == 0.384

    @pytest.mark.asyncio
    async def test_jobs_shared_with_executor(self):
        jobs = {}
        toolbox = InMemoryDeployerToolbox(jobs)
        executor = InMemoryDeploymentExecutor(jobs)

        created = await executor.execute("createJob", {"model": "m", "userPublicKey": WALLET})
        address = created.data["jobAddress"]
        listed = await toolbox.call("getAllJobs", {"userPublicKey": WALLET})
        stop = await toolbox.call("stopJob", {"jobAddress": address, "userPublicKey": WALLET})

        assert [job["address"] for job in listed["jobs"]] == [address]
        assert stop["tool_execute"] is True

    @pytest.mark.asyncio
    async def test_executor_extend(self):
        executor = InMemoryDeploymentExecutor()
        created = await executor.execute("createJob", {"model": "m"})
        address = created.data["jobAddress"]

        result = await executor.execute("extendJobRuntime", {"jobAddress": address, "extensionSeconds": 600})

        assert result.success
        assert executor.jobs[address]["timeoutSeconds"] == 4200


class TestSchemas:

    def test_actionable_tools(self):
        assert ACTIONABLE_TOOLS == {"createJob", "extendJobRuntime", "stopJob"}

    def test_openai_format(self):
        tools = openai_tools()

        assert all(t["type"] == "function" for t in tools)
        assert {t["function"]["name"] for t in tools} == set(KNOWN_TOOLS)
        create = next(t for t in tools if t["function"]["name"] == "createJob")
        assert create["function"]["parameters"]["required"] == ["userPublicKey"]
        assert create["function"]["parameters"]["properties"]["timeoutSeconds"]["default"] == 3600

    def test_defaults_and_missing(self):
        schema = TOOLS_BY_NAME["stopJob"]

        assert schema.missing_arguments({"jobAddress": ""}) == ["jobAddress", "userPublicKey"]
        assert TOOLS_BY_NAME["createJob"].with_defaults({"model": "m"}) == {"timeoutSeconds": 3600, "model": "m"}

    def test_execution_result_defaults(self):
        result = ExecutionResult(True)
        assert result.result_summary == ""
        assert result.data == {}
