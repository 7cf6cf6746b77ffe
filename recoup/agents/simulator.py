"""对话模拟器 —— 机器人脚本与一个画像之间的有界多轮对话。
/ Conversation simulator — a bounded multi-turn dialogue between the bot script and one persona.

机器人只知道 / The bot only knows:
1. 脚本 / The script
2. 目前为止的对话 / The transcript so far
3. 画像的沟通风格与对债务的态度 / The persona's communication style and attitude

客户知道完整画像与对话。 / The customer knows the full persona and the transcript.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from recoup.primitives.models import ConversationTurn, Persona, TestingConfig
from recoup.prompts import (
    BOT_OPENING_PROMPT,
    BOT_REPLY_PROMPT,
    BOT_SYSTEM_PROMPT,
    CUSTOMER_REPLY_PROMPT,
    CUSTOMER_SYSTEM_PROMPT,
    FALLBACK_BOT_OPENING,
    FALLBACK_BOT_REPLY,
    FALLBACK_CUSTOMER_REPLY,
)

logger = logging.getLogger(__name__)

_LABELS = {"bot": "Bot", "customer": "Customer"}


def format_transcript(conversation: List[ConversationTurn]) -> str:
    return "\n".join(
        f"{_LABELS.get(t.speaker, t.speaker)}: {t.message}" for t in conversation
    )


class ConversationSimulator:
    """对话模拟器：脚本在实例生命周期内不变。 / The script is fixed for the simulator's lifetime."""

    def __init__(
        self,
        bot_caller: Callable[..., Awaitable[str]],
        customer_caller: Callable[..., Awaitable[str]],
        script: str,
        config: Optional[TestingConfig] = None,
    ):
        self._bot_caller = bot_caller
        self._customer_caller = customer_caller
        self.script = script
        self._config = config or TestingConfig()

    async def run(self, persona: Persona) -> List[ConversationTurn]:
        """运行一次对话，终止后返回全部发言。 / Run one conversation and return every turn."""
        conversation: List[ConversationTurn] = []
        max_turns = self._config.max_conversation_turns

        logger.info(f"开始对话: {persona.name} ({persona.persona_type})")

        for round_index in range(max_turns):
            if round_index == 0:
                bot_message = await self._bot_opening()
            else:
                bot_message = await self._bot_reply(conversation, persona)
            conversation.append(
                ConversationTurn(len(conversation) + 1, "bot", bot_message)
            )
            if self.should_end(bot_message, conversation):
                logger.info("对话由机器人结束")
                break

            customer_message = await self._customer_reply(conversation, persona)
            conversation.append(
                ConversationTurn(len(conversation) + 1, "customer", customer_message)
            )
            if self.should_end(customer_message, conversation):
                logger.info("对话由客户结束")
                break

        logger.info(f"对话完成: {len(conversation)} 条发言")
        return conversation

    def should_end(self, message: str, conversation: List[ConversationTurn]) -> bool:
        """终止短语检测；机器人发言数超过上限时也终止。"""
        lowered = message.lower()
        if any(phrase in lowered for phrase in self._config.end_phrases):
            return True
        bot_turns = sum(1 for t in conversation if t.speaker == "bot")
        return bot_turns > self._config.max_conversation_turns

    # =========================================================================
    # 发言生成 / Utterance generation
    # =========================================================================

    async def _bot_opening(self) -> str:
        return await self._generate(
            self._bot_caller,
            BOT_SYSTEM_PROMPT,
            BOT_OPENING_PROMPT.format(script=self.script),
            FALLBACK_BOT_OPENING,
            "机器人开场白",
        )

    async def _bot_reply(
        self, conversation: List[ConversationTurn], persona: Persona,
    ) -> str:
        prompt = BOT_REPLY_PROMPT.format(
            script=self.script,
            transcript=format_transcript(conversation),
            communication_style=persona.communication_style,
            attitude_towards_debt=persona.attitude_towards_debt,
        )
        return await self._generate(
            self._bot_caller, BOT_SYSTEM_PROMPT, prompt,
            FALLBACK_BOT_REPLY, "机器人回复",
        )

    async def _customer_reply(
        self, conversation: List[ConversationTurn], persona: Persona,
    ) -> str:
        prompt = CUSTOMER_REPLY_PROMPT.format(
            name=persona.name,
            age=persona.age,
            occupation=persona.occupation,
            persona_type=persona.persona_type,
            communication_style=persona.communication_style,
            financial_situation=persona.financial_situation,
            reason_for_default=persona.reason_for_default,
            attitude_towards_debt=persona.attitude_towards_debt,
            personality_traits=", ".join(persona.personality_traits),
            likely_responses="; ".join(persona.likely_responses),
            negotiation_approach=persona.negotiation_approach,
            pain_points=", ".join(persona.pain_points),
            triggers=", ".join(persona.triggers),
            preferred_outcome=persona.preferred_outcome,
            transcript=format_transcript(conversation),
        )
        return await self._generate(
            self._customer_caller, CUSTOMER_SYSTEM_PROMPT, prompt,
            FALLBACK_CUSTOMER_REPLY, "客户回复",
        )

    @staticmethod
    async def _generate(
        caller: Callable[..., Awaitable[str]],
        system_prompt: str,
        user_prompt: str,
        fallback: str,
        what: str,
    ) -> str:
        try:
            raw = await caller(system_prompt=system_prompt, user_prompt=user_prompt)
        except Exception as e:
            logger.warning(f"{what}生成失败，使用兜底文本: {e}")
            return fallback
        text = (raw or "").strip() if isinstance(raw, str) else ""
        if not text:
            logger.warning(f"{what}为空，使用兜底文本")
            return fallback
        return text
