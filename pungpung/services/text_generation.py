"""Motivational text generation

Wraps the OpenAI chat API for the two pieces of copy the engine asks for:
a level-up congratulation and a personalized exercise tip. Every request
degrades to static Korean copy when the model is unreachable, slow, returns
junk, or the circuit breaker is open. Nothing here touches domain state.
"""

import json
import logging
import time
from typing import Any, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from pungpung.config import OPENAI_API_KEY, TEXT_MODEL, TEXT_TIMEOUT_SECONDS
from pungpung.exceptions import TextGenerationError
from pungpung.resilience.circuit_breaker import TEXT_GENERATION_BREAKER, with_circuit_breaker
from pungpung.resilience.fallback import FallbackStrategy, execute_with_fallbacks
from pungpung.resilience.metrics import record_api_call

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a super friendly and encouraging PE coach for elementary school "
    "students in Korea. Always answer in Korean with simple, positive, "
    "age-appropriate language and a few fun emojis. Return valid JSON only."
)


class CongratulationPayload(BaseModel):
    """Input for a level-up message"""
    student_name: str
    level_name: str
    total_xp: int
    next_level_threshold: Optional[int] = None  # None at the top level


class ExerciseTipPayload(BaseModel):
    """Input for a personalized exercise tip"""
    grade: str
    gender: str
    level_name: str
    xp: int
    goals: dict[str, int] = Field(default_factory=dict)  # exercise name -> target


class ExerciseTip(BaseModel):
    """Exercise recommendation shown on the student dashboard"""
    title: str
    detail: str
    reasoning: str = ""


def fallback_congratulation(payload: CongratulationPayload) -> str:
    """Static level-up message"""
    if payload.next_level_threshold is None:
        return (
            f"{payload.student_name}님, 최고 등급인 {payload.level_name}이 되었어요! "
            f"정말 대단해요! 👑"
        )
    return (
        f"{payload.student_name}님, {payload.level_name} 등급이 된 것을 축하해요! 🎉 "
        f"다음 레벨까지 {payload.next_level_threshold - payload.total_xp} XP 남았어요. 💪"
    )


FALLBACK_TIP = ExerciseTip(
    title="바른 자세 스쿼트 도전!",
    detail=(
        "발을 어깨너비로 벌리고, 의자에 앉듯이 엉덩이를 뒤로 빼면서 천천히 앉았다 일어나요. "
        "무릎이 발끝보다 너무 앞으로 나가지 않게 조심해요! 하루 10번씩 해볼까요?"
    ),
    reasoning="스쿼트는 다리 힘을 길러주고 어디서나 할 수 있는 운동이에요."
)


class MotivationTextGenerator:
    """Generates congratulation messages and exercise tips"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = TEXT_MODEL,
        api_key: str = OPENAI_API_KEY
    ):
        self.model = model
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, timeout=TEXT_TIMEOUT_SECONDS)
        self.client = client
        if self.client is None:
            logger.warning("OPENAI_API_KEY not set - all generated text uses static fallbacks")

    async def _complete_json(self, prompt: str) -> dict[str, Any]:
        """Run one chat completion and parse its JSON body"""
        if self.client is None:
            raise TextGenerationError("Text generation is not configured")
        return await self._request_json(prompt)

    @with_circuit_breaker(TEXT_GENERATION_BREAKER)
    async def _request_json(self, prompt: str) -> dict[str, Any]:
        start = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.9
            )
            content = response.choices[0].message.content or ""
            data = json.loads(content)
        except Exception:
            record_api_call("text_generation", success=False, duration=time.monotonic() - start)
            raise

        record_api_call("text_generation", success=True, duration=time.monotonic() - start)
        if not isinstance(data, dict):
            raise TextGenerationError("Model returned non-object JSON")
        return data

    async def _generate_congratulation(self, payload: CongratulationPayload) -> str:
        if payload.next_level_threshold is None:
            progress = "This is the highest level."
        else:
            remaining = payload.next_level_threshold - payload.total_xp
            progress = f"The next level starts at {payload.next_level_threshold} XP ({remaining} XP to go)."

        prompt = f"""A student just reached a new level. Write a short congratulation (1-2 sentences).
Wrap the level name in <level> tags, e.g. <level>{payload.level_name}</level>.
Vary the phrasing and emojis each time.

Student name: {payload.student_name}
New level: {payload.level_name}
Total XP: {payload.total_xp}
{progress}

Return JSON: {{"message": "..."}}"""

        data = await self._complete_json(prompt)
        message = str(data.get("message", "")).strip()
        if not message:
            raise TextGenerationError("Model returned an empty message")
        return message

    async def _static_congratulation(self, payload: CongratulationPayload) -> str:
        return fallback_congratulation(payload)

    async def congratulate(self, payload: CongratulationPayload) -> str:
        """
        Level-up congratulation text

        Never raises: failures return the static message.
        """
        strategies = [
            FallbackStrategy("openai", self._generate_congratulation, priority=1),
            FallbackStrategy("static", self._static_congratulation, priority=2),
        ]
        return await execute_with_fallbacks(strategies, payload)

    async def _generate_tip(self, payload: ExerciseTipPayload) -> ExerciseTip:
        goals = ", ".join(f"{name} {target}" for name, target in payload.goals.items()) or "none set"
        prompt = f"""Recommend one exercise or exercise tip for this student.
Relate it to squats, planks, walking/running, jump rope or general activity.
Focus on simple actions, correct form for injury prevention, or making exercise fun.

Grade: {payload.grade}
Gender: {payload.gender}
Level: {payload.level_name} ({payload.xp} XP)
Today's goals: {goals}

Return JSON: {{"title": "...", "detail": "...", "reasoning": "why this suits the student"}}"""

        data = await self._complete_json(prompt)
        return ExerciseTip.model_validate(data)

    async def _static_tip(self, payload: ExerciseTipPayload) -> ExerciseTip:
        return FALLBACK_TIP

    async def exercise_tip(self, payload: ExerciseTipPayload) -> ExerciseTip:
        """Personalized exercise tip; the static tip on any failure"""
        strategies = [
            FallbackStrategy("openai", self._generate_tip, priority=1),
            FallbackStrategy("static", self._static_tip, priority=2),
        ]
        return await execute_with_fallbacks(strategies, payload)
