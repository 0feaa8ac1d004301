from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from bot import build_runtime  # noqa: E402
from config.store import BotConfig  # noqa: E402
from config.store import ConfigStore  # noqa: E402
from controller.models import TurnRequest  # noqa: E402
from controller.responder import generate_response  # noqa: E402


class _RecordingModel:
    def __init__(self):
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return f"reply #{len(self.prompts)}"


async def _run(runtime, model: _RecordingModel) -> None:
    first = TurnRequest(message="I work as a mechanic", user_id="42", channel_id="7", guild_id="1", user_name="sam")
    second = TurnRequest(message="what do I do?", user_id="42", channel_id="7", guild_id="1", user_name="sam")
    await generate_response(first, deps=runtime.deps)
    await generate_response(second, deps=runtime.deps)

    if "sam: I work as a mechanic" not in model.prompts[-1]:
        raise RuntimeError("Second prompt is missing the remembered first turn")

    stats = await runtime.admin.stats("1")
    if stats["total_memories"] != 2:
        raise RuntimeError(f"Expected 2 stored turns, got {stats['total_memories']}")


def _main() -> int:
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "memory.db")
        store = ConfigStore(BotConfig(db_path=db_path, enable_memory=True))
        model = _RecordingModel()
        runtime = build_runtime(store, complete=model)
        if not runtime.memory.available:
            raise RuntimeError("Memory storage failed to initialize")
        asyncio.run(_run(runtime, model))

    print("Smoke wiring check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
