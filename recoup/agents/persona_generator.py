"""画像生成器 —— 为测试生成合成欠款客户。 / Persona generator — synthetic debtors for testing.

每个画像对应一个原型（persona_type）。生成失败或输出不可解析时，
返回固定的兜底画像并打上请求的原型标签，测试循环永不因此停滞。
/ One persona per archetype. On failure the fixed fallback persona is returned,
tagged with the requested archetype, so the loop never stalls.
"""

import logging
import random
from typing import Awaitable, Callable, List, Optional, Sequence

from recoup.primitives.models import Persona, TestingConfig
from recoup.primitives.responses import parse_persona
from recoup.prompts import (
    FALLBACK_PERSONA_FIELDS,
    PERSONA_SYSTEM_PROMPT,
    PERSONA_USER_PROMPT,
)

logger = logging.getLogger(__name__)


def fallback_persona(persona_type: str) -> Persona:
    return Persona.from_dict({**FALLBACK_PERSONA_FIELDS, "persona_type": persona_type})


class PersonaGenerator:
    """画像生成器。 / Persona generator."""

    def __init__(
        self,
        llm_caller: Callable[..., Awaitable[str]],
        config: Optional[TestingConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self._llm_caller = llm_caller
        self._config = config or TestingConfig()
        self._rng = rng or random.Random()

    @property
    def persona_types(self) -> Sequence[str]:
        return self._config.persona_types

    async def generate(self, persona_type: str) -> Persona:
        """为一个原型生成画像；永不抛出。 / Generate one persona; never raises."""
        try:
            raw = await self._llm_caller(
                system_prompt=PERSONA_SYSTEM_PROMPT,
                user_prompt=PERSONA_USER_PROMPT.format(persona_type=persona_type),
            )
            persona = parse_persona(raw, persona_type)
        except Exception as e:
            logger.warning(f"画像生成失败，使用兜底画像 (type={persona_type}): {e}")
            return fallback_persona(persona_type)

        logger.info(f"画像已生成: {persona.name} ({persona_type})")
        return persona

    async def generate_many(self, count: Optional[int] = None) -> List[Persona]:
        """批量生成画像。 / Generate a batch of personas.

        count 为 None 时按顺序遍历全部原型各生成一个；否则有放回地
        均匀随机抽取 count 个原型。
        / With no count, one persona per archetype in order; otherwise `count`
        archetypes drawn uniformly at random with replacement.
        """
        if count is None:
            types = list(self.persona_types)
        else:
            types = [self._rng.choice(self.persona_types) for _ in range(count)]
        return await self.generate_for(types)

    async def generate_for(self, persona_types: Sequence[str]) -> List[Persona]:
        """按给定原型顺序逐个生成。"""
        personas = []
        for i, persona_type in enumerate(persona_types):
            logger.info(f"生成画像 {i + 1}/{len(persona_types)}: {persona_type}")
            personas.append(await self.generate(persona_type))
        return personas
