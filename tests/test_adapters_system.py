"""
askstream - Adapters System Tests

Verifies:
- Gemini wire conversion, payloads and the non-streaming reasoning variant
- OpenAI-compatible payloads, headers and completions
- Upstream SSE decoding
- Strategy registry wiring in stub and live configurations
"""

import json

import httpx
import pytest

from askstream.adapters.agentic import AgenticStrategy
from askstream.adapters.base import AdapterConfig, GenerationInput, iter_sse_data
from askstream.adapters.canned import CannedStrategy
from askstream.adapters.gemini import (
    GeminiReasoningStrategy,
    GeminiStrategy,
    THINKING_BUDGET,
    extract_parts,
    to_gemini_contents,
)
from askstream.adapters.openai_compat import SelfHostedStrategy
from askstream.adapters.registry import StrategyRegistry, build_registry
from askstream.adapters.stub import STUB_RESPONSE, StubStrategy
from askstream.core.config import RunMode, Settings
from askstream.core.errors import AuthOrQuotaError, TransientUpstreamError
from askstream.core.models import (
    ChatTurn,
    EventKind,
    GenerationParams,
    Role,
    SELF_HOSTED_THROTTLE,
    StrategyKind,
)
from askstream.routing import dispatch
from askstream.services.deployer import InMemoryDeployerToolbox
from askstream.streaming.cancellation import CancellationSignal
from askstream.streaming.parser import AUTO_MARKERS, DEFAULT_MARKERS

from conftest import make_request, sse_body, sse_response


GEMINI_URL = "https://gemini.test/v1beta"
SELF_URL = "https://self.test/v1"


def gen_for(request, thinking=False):
    return GenerationInput(request=request, route=dispatch(request.mode, request.model, thinking))


async def collect(events):
    return [event async for event in events]


# ============================================================
# Gemini
# ============================================================

class TestGeminiWire:

    def test_contents_split_system(self):
        system, contents = to_gemini_contents([
            {"role": "system", "content": "a"},
            {"role": "system", "content": "b"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "model", "content": "again"},
        ])

        assert system == "a\n\nb"
        assert [c["role"] for c in contents] == ["user", "model", "model"]
        assert contents[0]["parts"] == [{"text": "hi"}]

    def test_no_system(self):
        system, _ = to_gemini_contents([{"role": "user", "content": "hi"}])
        assert system is None

    def test_extract_parts(self):
        data = {"candidates": [{"content": {"parts": [
            {"text": "think ", "thought": True},
            {"text": "answer"},
            {"text": ""},
        ]}}]}
        assert extract_parts(data) == ("answer", "think ")

    def test_extract_parts_empty(self):
        assert extract_parts({}) == ("", "")
        assert extract_parts({"candidates": [{}]}) == ("", "")


class TestGeminiStrategy:

    def test_payload(self):
        strategy = GeminiStrategy(AdapterConfig(api_key="k", base_url=GEMINI_URL))
        request = make_request(params=GenerationParams(temperature=0.2, max_tokens=100, stop=["END"]))
        gen = gen_for(request)

        payload = strategy._payload(gen, strategy.build_messages(gen))

        assert payload["generationConfig"] == {
            "temperature": 0.2,
            "maxOutputTokens": 100,
            "topP": 1.0,
            "stopSequences": ["END"],
        }
        assert payload["systemInstruction"]["parts"][0]["text"].startswith("<user_metadata>")
        assert payload["contents"][-1] == {"role": "user", "parts": [{"text": "userQuery: 2+2?"}]}

    def test_think_protocol_needs_support(self):
        strategy = GeminiStrategy(AdapterConfig(api_key="k"))

        supported = gen_for(make_request(model="gemini/gemini-2.5-flash", thinking=True))
        unsupported = gen_for(make_request(model="gemini/gemini-2.0-flash", thinking=True))

        assert strategy.build_messages(supported)[0]["content"].startswith('Begin output with "<think>"')
        assert strategy.build_messages(unsupported)[0]["content"].startswith("<user_metadata>")

    def test_profile_markers(self):
        strategy = GeminiStrategy(AdapterConfig(api_key="k"))

        assert strategy.markers_for(gen_for(make_request(model="mode/auto"))) == AUTO_MARKERS
        assert strategy.markers_for(gen_for(make_request(model="mode/zero"))) == DEFAULT_MARKERS
        assert strategy.markers_for(gen_for(make_request())) == DEFAULT_MARKERS

    def test_profile_messages(self):
        strategy = GeminiStrategy(AdapterConfig(api_key="k"))
        messages = strategy.build_messages(gen_for(make_request(model="mode/auto")))

        assert len(messages) == 2
        assert "<RESULT>" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_missing_key(self):
        strategy = GeminiStrategy(AdapterConfig(base_url=GEMINI_URL, transport=httpx.MockTransport(lambda r: httpx.Response(200))))
        gen = gen_for(make_request())
        try:
            with pytest.raises(AuthOrQuotaError):
                await strategy.open(gen, strategy.build_messages(gen))
        finally:
            await strategy.close()

    @pytest.mark.asyncio
    async def test_profile_uses_backing_model(self):
        seen = []

        def handler(request):
            seen.append(request)
            return sse_response([])

        strategy = GeminiStrategy(AdapterConfig(api_key="k", base_url=GEMINI_URL, transport=httpx.MockTransport(handler)))
        gen = gen_for(make_request(model="mode/zero"))
        try:
            events = await collect(await strategy.open(gen, strategy.build_messages(gen)))
        finally:
            await strategy.close()

        assert seen[0].url.path == "/v1beta/models/gemini-2.5-flash-lite:streamGenerateContent"
        assert [e.kind for e in events] == [EventKind.END]


class TestGeminiReasoningStrategy:

    @pytest.mark.asyncio
    async def test_single_call_reasoning_then_text(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [
                {"text": "step one", "thought": True},
                {"text": "final"},
            ]}}]})

        strategy = GeminiReasoningStrategy(AdapterConfig(api_key="k", base_url=GEMINI_URL, transport=httpx.MockTransport(handler)))
        gen = gen_for(make_request(model="gemini/gemini-2.5-flash"), thinking=True)
        try:
            events = await collect(await strategy.open(gen, strategy.build_messages(gen)))
        finally:
            await strategy.close()

        assert [(e.kind, e.payload) for e in events] == [
            (EventKind.REASONING_DELTA, "step one"),
            (EventKind.TEXT_DELTA, "final"),
            (EventKind.END, ""),
        ]
        assert len(seen) == 1
        assert seen[0].url.path.endswith(":generateContent")
        config = json.loads(seen[0].content)["generationConfig"]
        assert config["thinkingConfig"] == {"thinkingBudget": THINKING_BUDGET, "includeThoughts": True}

    def test_short_history_without_think_preamble(self):
        strategy = GeminiReasoningStrategy(AdapterConfig(api_key="k"))
        chats = [ChatTurn(Role.USER if i % 2 == 0 else Role.MODEL, f"turn {i}") for i in range(8)]
        gen = gen_for(make_request(model="gemini/gemini-2.5-flash", thinking=True, chats=chats))

        messages = strategy.build_messages(gen)

        assert [m["content"] for m in messages[1:-1]] == ["turn 5", "turn 6", "turn 7"]
        assert not messages[0]["content"].startswith("Begin output")


# ============================================================
# OpenAI-compatible
# ============================================================

class TestSelfHostedStrategy:

    def test_payload_and_headers(self):
        strategy = SelfHostedStrategy(AdapterConfig(api_key="env-key", base_url=SELF_URL))
        request = make_request(
            model="self/mistral-7b",
            params=GenerationParams(presence_penalty=0.5, frequency_penalty=0.1),
            api_keys={"self_hosted": "header-key"},
        )
        gen = gen_for(request)

        payload = strategy._payload(gen, strategy.build_messages(gen), stream=True)

        assert payload["model"] == "mistral-7b"
        assert payload["stream"] is True
        assert payload["presence_penalty"] == 0.5
        assert payload["frequency_penalty"] == 0.1
        assert "stop" not in payload
        assert strategy._headers(gen)["Authorization"] == "Bearer header-key"
        assert payload["messages"][2]["role"] == "assistant"

    def test_no_penalty_models(self):
        self_hosted = SelfHostedStrategy(AdapterConfig())
        request = make_request(
            model="gemini/gemini-2.5-flash",
            params=GenerationParams(presence_penalty=0.5),
        )
        gen = gen_for(request)

        payload = self_hosted._payload(gen, self_hosted.build_messages(gen), stream=False)

        assert "presence_penalty" not in payload

    def test_no_authorization_without_key(self):
        strategy = SelfHostedStrategy(AdapterConfig(base_url=SELF_URL))
        assert "Authorization" not in strategy._headers(gen_for(make_request(model="self/qwen3:4b")))

    def test_throttle(self):
        assert SelfHostedStrategy(AdapterConfig()).throttle == SELF_HOSTED_THROTTLE
        assert SelfHostedStrategy.supports_retry is True

    @pytest.mark.asyncio
    async def test_complete(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["stream"] is False
            return httpx.Response(200, json={"choices": [{"message": {
                "content": "answer",
                "reasoning_content": "why",
            }}]})

        strategy = SelfHostedStrategy(AdapterConfig(base_url=SELF_URL, transport=httpx.MockTransport(handler)))
        gen = gen_for(make_request(model="self/qwen3:0.6b"))
        try:
            completion = await strategy.complete(gen, strategy.build_messages(gen))
        finally:
            await strategy.close()

        assert completion.text == "answer"
        assert completion.reasoning == "why"

    @pytest.mark.asyncio
    async def test_open_cold_start_raises_transient(self):
        strategy = SelfHostedStrategy(AdapterConfig(
            base_url=SELF_URL,
            transport=httpx.MockTransport(lambda r: httpx.Response(503, headers={"x-model-status": "warming"})),
        ))
        gen = gen_for(make_request(model="self/qwen3:0.6b"))
        try:
            with pytest.raises(TransientUpstreamError):
                await strategy.open(gen, strategy.build_messages(gen))
        finally:
            await strategy.close()

    @pytest.mark.asyncio
    async def test_events(self):
        chunks = [
            {"choices": [{"delta": {"reasoning_content": "r"}}]},
            {"choices": [{"delta": {"content": "a"}}]},
            {"choices": []},
        ]
        strategy = SelfHostedStrategy(AdapterConfig(
            base_url=SELF_URL,
            transport=httpx.MockTransport(lambda r: sse_response(chunks)),
        ))
        gen = gen_for(make_request(model="self/qwen3:0.6b"))
        try:
            events = await collect(await strategy.open(gen, strategy.build_messages(gen)))
        finally:
            await strategy.close()

        assert [e.kind for e in events] == [EventKind.REASONING_DELTA, EventKind.TEXT_DELTA, EventKind.END]


# ============================================================
# Upstream SSE decoding
# ============================================================

class TestIterSseData:

    @pytest.mark.asyncio
    async def test_skips_noise_and_stops_at_done(self):
        raw = (
            b": keep-alive\n\n"
            b"data: {\"n\": 1}\n\n"
            b"data: not json\n\n"
            b"data: [1, 2]\n\n"
            b"data:\n\n"
            b"data: {\"n\": 2}\n\n"
            b"data: [DONE]\n\n"
            b"data: {\"n\": 3}\n\n"
        )
        response = httpx.Response(200, content=raw)

        items = [item async for item in iter_sse_data(response, "test")]

        assert items == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_stops_when_cancelled(self):
        signal = CancellationSignal()
        signal.cancel("client gone")
        response = httpx.Response(200, content=sse_body([{"n": 1}]))

        items = [item async for item in iter_sse_data(response, "test", signal)]

        assert items == []


# ============================================================
# Canned and stub
# ============================================================

class TestCannedStrategy:

    @pytest.mark.asyncio
    async def test_responses(self):
        strategy = CannedStrategy()
        for model, expected in [
            ("mode/deep", "the deep research result"),
            ("mode/deep-research", "the deep research result"),
            ("mode/pro-search", "pro search"),
        ]:
            gen = gen_for(make_request(model=model))
            events = await collect(await strategy.open(gen, strategy.build_messages(gen)))
            assert events[0].payload == expected
            assert (await strategy.complete(gen, [])).text == expected

    @pytest.mark.asyncio
    async def test_supports_fallback(self):
        agentic = AgenticStrategy(AdapterConfig(), toolbox=InMemoryDeployerToolbox())
        try:
            assert CannedStrategy().supports_fallback
            assert not agentic.supports_fallback
        finally:
            await agentic.close()


class TestStubStrategy:

    @pytest.mark.asyncio
    async def test_default_chunks(self):
        strategy = StubStrategy()
        gen = gen_for(make_request())
        events = await collect(await strategy.open(gen, strategy.build_messages(gen)))

        assert "".join(e.payload for e in events if e.kind == EventKind.TEXT_DELTA) == STUB_RESPONSE
        assert events[-1].kind == EventKind.END


# ============================================================
# Registry
# ============================================================

class TestRegistry:

    def test_stub_registry(self):
        registry = build_registry(Settings(mode=RunMode.TEST, use_stub_adapters=True))

        assert set(registry.kinds()) == set(StrategyKind)
        assert isinstance(registry.get(StrategyKind.HOSTED), StubStrategy)
        assert isinstance(registry.get(StrategyKind.CANNED), CannedStrategy)

    @pytest.mark.asyncio
    async def test_live_registry(self):
        registry = build_registry(Settings(mode=RunMode.LOCAL, gemini_api_key="k"))
        try:
            assert type(registry.get(StrategyKind.HOSTED)) is GeminiStrategy
            assert type(registry.get(StrategyKind.HOSTED_REASONING)) is GeminiReasoningStrategy
            assert type(registry.get(StrategyKind.SELF_HOSTED)) is SelfHostedStrategy
            assert type(registry.get(StrategyKind.AGENTIC)) is AgenticStrategy
            gen = gen_for(make_request(model="self/qwen3:4b", mode="deployer"))
            assert registry.get(StrategyKind.AGENTIC).model_for(gen) == "qwen3:4b"
        finally:
            await registry.close()

    def test_missing_kind(self):
        registry = StrategyRegistry({})
        with pytest.raises(KeyError):
            registry.get(StrategyKind.HOSTED)

    def test_register(self):
        registry = StrategyRegistry({})
        stub = StubStrategy()
        registry.register(StrategyKind.HOSTED, stub)

        assert registry.get(StrategyKind.HOSTED) is stub
