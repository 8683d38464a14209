from __future__ import annotations


class FakeLLMProvider:
    def __init__(self, response: str = '{"insights": []}') -> None:
        # Deterministic response keeps tests stable without external calls.
        self._response = response
        self.calls: list[list[dict]] = []

    async def complete(self, messages: list[dict], *, temperature: float | None = None) -> str:
        # Record prompts so tests can assert on what was sent upstream.
        _ = temperature
        self.calls.append(messages)
        return self._response
