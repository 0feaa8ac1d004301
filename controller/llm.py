from __future__ import annotations

from typing import Callable

from openai import OpenAI

from config.store import BotConfig


class ModelNotConfiguredError(RuntimeError):
    pass


def make_openai_complete(config: BotConfig, *, client: OpenAI | None = None) -> Callable[[str], str]:
    """Adapt the OpenAI chat API to the plain complete(prompt) -> text shape."""
    if client is None:
        if not config.openai_api_key:
            raise ModelNotConfiguredError("OpenAI API key not configured")
        client = OpenAI(api_key=config.openai_api_key)

    model = config.openai_model
    temperature = float(config.openai_temperature)

    def complete(prompt: str) -> str:
        resp = client.chat.completions.create(
            model=model,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return (resp.choices[0].message.content or "").strip()

    return complete
