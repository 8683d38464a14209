from __future__ import annotations

from typing import Protocol


class LLMProvider(Protocol):
    async def complete(self, messages: list[dict], *, temperature: float | None = None) -> str:
        ...
