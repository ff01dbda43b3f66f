"""Tests for GenerationSession."""

import pytest

from aware_chat.config.base import GenerationConfig, SamplingConfig
from aware_chat.errors import EngineFault, EngineNotReady, SessionCancelled
from aware_chat.generation.session import GenerationSession, SessionState, build_chat_messages
from aware_chat.models.chat import Message, MessageRole

from conftest import ScriptedEngine


async def drain(stream):
    return [fragment async for fragment in stream]


@pytest.fixture
def history():
    return [Message(role=MessageRole.USER, content="Hi")]


class TestBuildChatMessages:
    def test_system_prompt_first(self, history):
        messages = build_chat_messages(history, "Be brief.")

        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
        ]

    def test_empty_system_prompt_omitted(self, history):
        history.append(Message(role=MessageRole.ASSISTANT, content="Hello!"))

        messages = build_chat_messages(history, "")

        assert [m["role"] for m in messages] == ["user", "assistant"]


class TestGenerationSession:
    """Tests for GenerationSession class."""

    @pytest.mark.asyncio
    async def test_natural_completion(self, history, sampling):
        engine = ScriptedEngine(["Hel", "lo!"])
        session = GenerationSession(engine)

        fragments = await drain(session.open(history, "sys", sampling))

        assert fragments == ["Hel", "lo!"]
        assert session.text == "Hello!"
        assert session.state is SessionState.EXHAUSTED
        assert session.finish_reason == "completed"
        assert session.activations() == engine.activations
        assert engine.streams[0].closed
        assert engine.last_messages[0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_engine_not_ready(self, history, sampling):
        session = GenerationSession(ScriptedEngine(["x"], ready=False))

        with pytest.raises(EngineNotReady):
            session.open(history, "", sampling)
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_cannot_reopen(self, history, sampling):
        session = GenerationSession(ScriptedEngine(["a"]))
        await drain(session.open(history, "", sampling))

        with pytest.raises(RuntimeError):
            session.open(history, "", sampling)

    @pytest.mark.asyncio
    async def test_stop_sequence_ends_stream(self, history):
        engine = ScriptedEngine(["Done", "<|im_", "end|>", "ignored"])
        sampling = SamplingConfig(temperature=0.0, stop_sequences={"<|im_end|>"})
        session = GenerationSession(engine)

        fragments = await drain(session.open(history, "", sampling))

        assert fragments == ["Done", "<|im_", "end|>"]
        assert session.finish_reason == "stop_sequence"
        assert engine.streams[0].emitted == 3
        assert session.activations() is not None

    @pytest.mark.asyncio
    async def test_emitted_token_cap(self, history, sampling):
        engine = ScriptedEngine(["a"] * 10)
        session = GenerationSession(engine, GenerationConfig(max_emitted_tokens=4))

        fragments = await drain(session.open(history, "", sampling))

        assert fragments == ["a"] * 4
        assert session.finish_reason == "token_cap"
        assert session.state is SessionState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_activations_before_exhaustion(self, history, sampling):
        session = GenerationSession(ScriptedEngine(["a", "b"]))
        stream = session.open(history, "", sampling)

        assert await stream.__anext__() == "a"
        with pytest.raises(RuntimeError):
            session.activations()
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_cancel_stops_fragments(self, history, sampling):
        engine = ScriptedEngine(["a", "b", "c"])
        session = GenerationSession(engine)
        stream = session.open(history, "", sampling)

        assert await stream.__anext__() == "a"
        await session.cancel()
        remaining = await drain(stream)

        assert remaining == []
        assert session.state is SessionState.CANCELLED
        assert engine.streams[0].closed
        with pytest.raises(SessionCancelled):
            session.activations()

    @pytest.mark.asyncio
    async def test_engine_error_becomes_fault(self, history, sampling):
        engine = ScriptedEngine(["a", "b", "c"], fail_at=2)
        session = GenerationSession(engine)
        received = []

        with pytest.raises(EngineFault, match="decoder crashed"):
            async for fragment in session.open(history, "", sampling):
                received.append(fragment)

        assert received == ["a", "b"]
        assert session.text == "ab"
        assert session.state is SessionState.FAILED
        assert engine.streams[0].closed
