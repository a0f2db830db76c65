"""
askstream - Context System Tests

Verifies:
- History trimming against token budgets
- System instructions and upstream message assembly
- Runtime configuration loading and production guardrails
- Credit and thread stores
"""

from datetime import date

import pytest

from askstream.core.config import (
    RunMode,
    Settings,
    get_run_mode,
    load_settings,
    validate_runtime_config,
)
from askstream.core.context import (
    HISTORY_MARKER,
    NO_HISTORY_TEXT,
    ContextBudget,
    ContextCutter,
    TrimResult,
    estimate_tokens,
)
from askstream.core.errors import CreditsExhaustedError
from askstream.core.models import AskRequest, ChatTurn, ContextSettings, GeoInfo, Role
from askstream.core.prompts import (
    AUTO_SYSTEM,
    ZERO_SYSTEM,
    build_messages,
    build_profile_messages,
    system_instruction,
    user_metadata,
)
from askstream.services.stores import CreditIdentity, InMemoryCreditStore, InMemoryThreadStore


def turns(count, chars):
    """Alternating user/model turns of a fixed length, numbered for identification."""
    result = []
    for i in range(count):
        role = Role.USER if i % 2 == 0 else Role.MODEL
        body = f"{i}:" + "x" * (chars - len(f"{i}:"))
        result.append(ChatTurn(role, body))
    return result


# ============================================================
# Context trimming
# ============================================================

class TestContextCutter:

    def test_everything_fits(self):
        history = turns(3, 20)
        trimmed = ContextCutter.get_recent_conversations(history, ContextBudget())

        assert trimmed.turns == history
        assert not trimmed.truncated

    def test_keeps_newest_within_budget(self):
        history = turns(10, 400)  # 100 tokens each
        budget = ContextBudget(min_chats=2, max_tokens=250, absolute_max_tokens=2000)

        trimmed = ContextCutter.get_recent_conversations(history, budget)

        assert trimmed.turns == history[-2:]
        assert trimmed.truncated

    def test_min_chats_overrides_token_budget(self):
        history = turns(3, 2000)  # 500 tokens each
        budget = ContextBudget(min_chats=2, max_tokens=100, absolute_max_tokens=5000)

        trimmed = ContextCutter.get_recent_conversations(history, budget)

        assert trimmed.turns == history[-2:]
        assert trimmed.truncated

    def test_min_chats_larger_than_history(self):
        history = turns(2, 10)
        trimmed = ContextCutter.get_recent_conversations(history, ContextBudget(min_chats=8))

        assert trimmed.turns == history
        assert not trimmed.truncated

    def test_crop_from_end(self):
        history = turns(2, 4000)  # 1000 tokens each
        budget = ContextBudget(min_chats=2, max_tokens=100, absolute_max_tokens=1000, truncate_from="end")

        trimmed = ContextCutter.get_recent_conversations(history, budget)

        assert trimmed.truncated
        for original, cropped in zip(history, trimmed.turns):
            assert cropped.content == original.content[:2000] + " ...[truncated]"
            assert cropped.role == original.role

    def test_crop_from_start(self):
        history = turns(2, 4000)
        budget = ContextBudget(min_chats=2, max_tokens=100, absolute_max_tokens=1000, truncate_from="start")

        trimmed = ContextCutter.get_recent_conversations(history, budget)

        assert trimmed.turns[0].content == "...[truncated] " + history[0].content[-2000:]

    def test_small_turns_not_cropped(self):
        history = [ChatTurn(Role.USER, "short"), ChatTurn(Role.MODEL, "y" * 8000)]
        budget = ContextBudget(min_chats=2, max_tokens=100, absolute_max_tokens=1000)

        trimmed = ContextCutter.get_recent_conversations(history, budget)

        assert trimmed.turns[0].content == "short"
        assert trimmed.turns[1].content.startswith("...[truncated] ")

    def test_empty_history(self):
        trimmed = ContextCutter.get_recent_conversations([], ContextBudget())
        assert trimmed.turns == []
        assert trimmed.render() == NO_HISTORY_TEXT


class TestTrimResult:

    def test_render_transcript(self):
        result = TrimResult(turns=[ChatTurn(Role.USER, "hi"), ChatTurn(Role.MODEL, "hello")])
        assert result.render() == "user: hi\nmodel: hello"

    def test_render_marks_truncation(self):
        result = TrimResult(turns=[ChatTurn(Role.USER, "hi")], truncated=True)
        assert result.render() == HISTORY_MARKER + "user: hi"


class TestBudget:

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_defaults_from_settings(self):
        budget = ContextBudget.from_settings(ContextSettings())
        assert budget == ContextBudget(min_chats=8, max_tokens=3000, absolute_max_tokens=5000, truncate_from="end")

    def test_overrides_from_settings(self):
        settings = ContextSettings(prev_chat_limit=2, max_context_tokens=50, absolute_max_tokens=80, truncate_from="start")
        budget = ContextBudget.from_settings(settings)

        assert (budget.min_chats, budget.max_tokens, budget.absolute_max_tokens) == (2, 50, 80)
        assert budget.truncate_from == "start"


# ============================================================
# Prompts
# ============================================================

class TestSystemInstruction:

    def test_metadata_block(self):
        request = AskRequest(
            query="q",
            model="gemini/gemini-2.0-flash",
            geo=GeoInfo(country="NP", region="Bagmati", city="Kathmandu"),
        )
        text = user_metadata(request, today=date(2025, 3, 7))

        assert "Current Date := 7 March 2025" in text
        assert "Geo Location := NP | Bagmati | Kathmandu" in text
        assert "Provider: gemini \t Model: gemini-2.0-flash" in text

    def test_unknown_geo(self):
        text = user_metadata(AskRequest(query="q", model="x"), today=date(2025, 1, 1))
        assert "Geo Location := Unknown | Unknown | Unknown" in text
        assert "Provider: N/A" in text

    def test_think_preamble_only_when_requested(self):
        request = AskRequest(query="q", model="gemini/gemini-2.5-flash")

        assert system_instruction(request, with_think_protocol=True).startswith('Begin output with "<think>"')
        assert system_instruction(request).startswith("<user_metadata>")

    def test_custom_prompt(self):
        request = AskRequest(query="q", model="gemini/x", custom_prompt="Answer like a pirate")
        assert 'custom prompt: "Answer like a pirate"' in system_instruction(request)


class TestBuildMessages:

    def test_order(self):
        request = AskRequest(
            query="2+2?",
            model="gemini/gemini-2.0-flash",
            chats=[ChatTurn(Role.USER, "hi"), ChatTurn(Role.MODEL, "hello")],
        )
        messages = build_messages(request, "SYSTEM")

        assert messages == [
            {"role": "system", "content": "SYSTEM"},
            {"role": "user", "content": "hi"},
            {"role": "model", "content": "hello"},
            {"role": "user", "content": "userQuery: 2+2?"},
        ]

    def test_assistant_role_for_openai_backends(self):
        request = AskRequest(query="q", model="self/x", chats=[ChatTurn(Role.MODEL, "prior")])
        messages = build_messages(request, "S", model_role="assistant")

        assert messages[1] == {"role": "assistant", "content": "prior"}

    def test_tool_context_before_query(self):
        request = AskRequest(query="news?", model="gemini/x")
        messages = build_messages(request, "S", context={"webSearch": {"answer": "none"}})

        assert messages[-2]["content"].startswith(
            "Context you can use for response generation : Tool outputs:\n"
        )
        assert '"webSearch"' in messages[-2]["content"]
        assert messages[-1]["content"] == "userQuery: news?"

    def test_history_is_trimmed(self):
        request = AskRequest(
            query="q",
            model="gemini/x",
            chats=turns(20, 2000),
            context=ContextSettings(prev_chat_limit=2, max_context_tokens=100),
        )
        messages = build_messages(request, "S")

        assert len(messages) == 1 + 2 + 1


class TestProfileMessages:

    def test_auto_profile(self):
        request = AskRequest(query="capital of India?", model="mode/auto")
        messages = build_profile_messages(request, "auto")

        assert messages[0] == {"role": "system", "content": AUTO_SYSTEM}
        user = messages[1]["content"]
        assert NO_HISTORY_TEXT in user
        assert "--- CURRENT QUERY ---\ncapital of India?" in user
        assert user.endswith("--- USER CUSTOM INSTRUCTIONS ---\nNone")

    def test_zero_profile_with_tool_outputs(self):
        request = AskRequest(
            query="q",
            model="mode/zero",
            chats=[ChatTurn(Role.USER, "earlier")],
            custom_prompt="be brief",
        )
        messages = build_profile_messages(request, "zero", context={"webSearch": {"results": []}})

        assert messages[0]["content"] == ZERO_SYSTEM
        user = messages[1]["content"]
        assert "user: earlier" in user
        assert "be brief" in user
        assert "--- TOOL OUTPUTS ---\nTool outputs:\n" in user


# ============================================================
# Configuration
# ============================================================

class TestRunMode:

    @pytest.mark.parametrize("raw,expected", [
        ("local", RunMode.LOCAL),
        ("PROD", RunMode.PROD),
        ("production", RunMode.PROD),
        ("test", RunMode.TEST),
    ])
    def test_modes(self, monkeypatch, raw, expected):
        monkeypatch.setenv("MODE", raw)
        assert get_run_mode() == expected

    def test_default_is_prod(self, monkeypatch):
        monkeypatch.delenv("MODE", raising=False)
        assert get_run_mode() == RunMode.PROD

    def test_invalid_mode(self, monkeypatch):
        monkeypatch.setenv("MODE", "staging")
        with pytest.raises(ValueError):
            get_run_mode()


class TestLoadSettings:

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("MODE", "local")
        monkeypatch.setenv("GOOGLE_GENERATIVE_AI_API_KEY", "g-key")
        monkeypatch.setenv("GEMINI_BASE_URL", "https://gemini.test/v1beta/")
        monkeypatch.setenv("USE_STUB_ADAPTERS", "yes")
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("DEPLOYER_PLANNER_MODEL", "qwen3:4b")

        settings = load_settings()

        assert settings.mode == RunMode.LOCAL
        assert settings.gemini_api_key == "g-key"
        assert settings.gemini_base_url == "https://gemini.test/v1beta"
        assert settings.use_stub_adapters is True
        assert settings.retry_max_attempts == 5
        assert settings.planner_model == "qwen3:4b"
        assert settings.provider_keys()["gemini"] == "g-key"

    def test_non_integer_rejected(self, monkeypatch):
        monkeypatch.setenv("MODE", "local")
        monkeypatch.setenv("CREDITS_IP_LIMIT", "ten")

        with pytest.raises(ValueError, match="CREDITS_IP_LIMIT"):
            load_settings()


class TestRuntimeGuardrails:

    def test_stub_adapters_rejected_in_prod(self):
        with pytest.raises(RuntimeError, match="USE_STUB_ADAPTERS"):
            validate_runtime_config(Settings(mode=RunMode.PROD, use_stub_adapters=True))

    def test_wildcard_cors_rejected_in_prod(self):
        with pytest.raises(RuntimeError, match="CORS_ALLOW_ORIGINS"):
            validate_runtime_config(Settings(mode=RunMode.PROD, cors_allow_origins=["*"]))

    def test_zero_attempts_rejected_in_prod(self):
        with pytest.raises(RuntimeError, match="RETRY_MAX_ATTEMPTS"):
            validate_runtime_config(Settings(mode=RunMode.PROD, retry_max_attempts=0))

    def test_local_mode_relaxed(self):
        validate_runtime_config(Settings(mode=RunMode.LOCAL, use_stub_adapters=True, cors_allow_origins=["*"]))


# ============================================================
# Stores
# ============================================================

class TestCreditStore:

    @pytest.mark.asyncio
    async def test_ip_bucket(self):
        store = InMemoryCreditStore(auth_limit=3, ip_limit=1)
        identity = CreditIdentity(ip="10.0.0.1")

        assert await store.remaining(identity) == 1
        assert await store.deduct(identity, 1) == 0
        with pytest.raises(CreditsExhaustedError) as exc_info:
            await store.ensure_available(identity)

        assert exc_info.value.status_code == 402

    @pytest.mark.asyncio
    async def test_balance_never_negative(self):
        store = InMemoryCreditStore(auth_limit=3, ip_limit=1)
        user = CreditIdentity(user_id="u1")

        assert await store.deduct(user, 5) == 0
        assert await store.remaining(user) == 0

    @pytest.mark.asyncio
    async def test_identities_are_separate(self):
        store = InMemoryCreditStore(auth_limit=3, ip_limit=1)
        await store.deduct(CreditIdentity(ip="10.0.0.1"), 1)

        assert await store.ensure_available(CreditIdentity(user_id="u1")) == 3
        assert await store.remaining(CreditIdentity(ip="10.0.0.2")) == 1

    @pytest.mark.asyncio
    async def test_zero_cost_is_free(self):
        store = InMemoryCreditStore(ip_limit=2)
        identity = CreditIdentity(ip="10.0.0.1")

        assert await store.deduct(identity, 0) == 2
        assert await store.deduct(identity, -3) == 2

    def test_identity_keys(self):
        assert CreditIdentity(user_id="u1", ip="1.2.3.4").key == "user:ID:u1"
        assert CreditIdentity(ip="1.2.3.4").key == "user:IP:1.2.3.4"
        assert CreditIdentity().key == "user:IP:unknown"


class TestThreadStore:

    @pytest.mark.asyncio
    async def test_append_and_get(self):
        store = InMemoryThreadStore()
        await store.append("t1", [ChatTurn(Role.USER, "q")])
        await store.append("t1", [ChatTurn(Role.MODEL, "a")])

        history = await store.get("t1")
        history.clear()

        assert [t.content for t in await store.get("t1")] == ["q", "a"]
        assert await store.get("missing") == []
