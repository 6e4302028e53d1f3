"""Unit tests for motivational text generation (pungpung/services/text_generation.py)"""
import json
import pytest
import pybreaker
from unittest.mock import AsyncMock, MagicMock

from pungpung.resilience.circuit_breaker import TEXT_GENERATION_BREAKER
from pungpung.services.text_generation import (
    FALLBACK_TIP,
    CongratulationPayload,
    ExerciseTipPayload,
    MotivationTextGenerator,
    fallback_congratulation,
)


def completion(content: str):
    """Chat completion response carrying `content`"""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def generator(openai_client):
    return MotivationTextGenerator(client=openai_client, model="gpt-4o-mini")


@pytest.fixture
def payload():
    return CongratulationPayload(
        student_name="김하늘",
        level_name="체력 유망주",
        total_xp=600,
        next_level_threshold=800
    )


@pytest.fixture
def tip_payload():
    return ExerciseTipPayload(
        grade="3학년",
        gender="female",
        level_name="움직새싹",
        xp=40,
        goals={"스쿼트": 20}
    )


# ============================================================================
# Congratulation Tests
# ============================================================================

@pytest.mark.asyncio
async def test_congratulate_uses_model_text(generator, openai_client, payload):
    openai_client.chat.completions.create.return_value = completion(
        json.dumps({"message": "와! <level>체력 유망주</level> 달성! 🎉"})
    )

    text = await generator.congratulate(payload)

    assert text == "와! <level>체력 유망주</level> 달성! 🎉"
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "김하늘" in kwargs["messages"][1]["content"]
    assert "800 XP" in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_congratulate_falls_back_on_error(generator, openai_client, payload):
    """Test an API failure returns the static message"""
    openai_client.chat.completions.create.side_effect = TimeoutError("timed out")

    text = await generator.congratulate(payload)

    assert text == fallback_congratulation(payload)


@pytest.mark.asyncio
async def test_congratulate_falls_back_on_empty_message(generator, openai_client, payload):
    openai_client.chat.completions.create.return_value = completion(json.dumps({"message": "  "}))

    assert await generator.congratulate(payload) == fallback_congratulation(payload)


@pytest.mark.asyncio
async def test_congratulate_falls_back_on_invalid_json(generator, openai_client, payload):
    openai_client.chat.completions.create.return_value = completion("축하해요!")

    assert await generator.congratulate(payload) == fallback_congratulation(payload)


@pytest.mark.asyncio
async def test_unconfigured_generator_uses_fallback_without_tripping_breaker(payload):
    """Test a missing API key is not counted as a service failure"""
    generator = MotivationTextGenerator(api_key="")

    for _ in range(10):
        assert await generator.congratulate(payload) == fallback_congratulation(payload)

    assert generator.client is None
    assert TEXT_GENERATION_BREAKER.current_state == pybreaker.STATE_CLOSED


@pytest.mark.asyncio
async def test_open_circuit_skips_the_model(generator, openai_client, payload):
    """Test an OPEN breaker goes straight to the static message"""
    TEXT_GENERATION_BREAKER.open()

    text = await generator.congratulate(payload)

    assert text == fallback_congratulation(payload)
    openai_client.chat.completions.create.assert_not_awaited()


def test_fallback_congratulation_at_top_level():
    payload = CongratulationPayload(
        student_name="김하늘",
        level_name="전설의 운동왕",
        total_xp=1800,
        next_level_threshold=None
    )
    assert "최고 등급" in fallback_congratulation(payload)


def test_fallback_congratulation_shows_remaining_xp(payload):
    assert "200 XP" in fallback_congratulation(payload)


# ============================================================================
# Exercise Tip Tests
# ============================================================================

@pytest.mark.asyncio
async def test_exercise_tip_parses_model_json(generator, openai_client, tip_payload):
    openai_client.chat.completions.create.return_value = completion(json.dumps({
        "title": "플랭크로 코어 튼튼!",
        "detail": "팔꿈치를 어깨 아래에 두고 20초 버텨요.",
        "reasoning": "스쿼트와 함께 하면 좋아요."
    }))

    tip = await generator.exercise_tip(tip_payload)

    assert tip.title == "플랭크로 코어 튼튼!"
    prompt = openai_client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
    assert "3학년" in prompt
    assert "스쿼트 20" in prompt


@pytest.mark.asyncio
async def test_exercise_tip_missing_fields_falls_back(generator, openai_client, tip_payload):
    """Test a response without the required fields uses the static tip"""
    openai_client.chat.completions.create.return_value = completion(json.dumps({"title": "only a title"}))

    assert await generator.exercise_tip(tip_payload) == FALLBACK_TIP
