from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass

from config.defaults import DM_GUILD_SENTINEL
from config.store import ConfigStore
from controller.llm import make_openai_complete
from controller.models import TurnRequest
from controller.responder import ResponderDeps
from controller.responder import generate_response
from jobs.service import maintenance_loop
from memory.admin_service import MemoryAdminService
from memory.service import MemoryService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Runtime:
    config_store: ConfigStore
    memory: MemoryService
    admin: MemoryAdminService
    deps: ResponderDeps


def build_runtime(config_store: ConfigStore, *, complete=None, describe_images=None) -> Runtime:
    config = config_store.snapshot()
    memory = MemoryService(
        config.db_path,
        config_provider=lambda: config_store.snapshot().memory_config(),
    )
    memory.initialize()

    if complete is None:
        complete = make_openai_complete(config)

    deps = ResponderDeps(
        config_store=config_store,
        memory=memory,
        complete=complete,
        describe_images=describe_images,
    )
    return Runtime(config_store=config_store, memory=memory, admin=MemoryAdminService(memory), deps=deps)


async def _console_chat(runtime: Runtime) -> None:
    user_id = os.getenv("EMBER_CONSOLE_USER_ID", "1").strip() or "1"
    user_name = os.getenv("EMBER_CONSOLE_USER_NAME", "console").strip() or "console"
    maintenance = asyncio.create_task(maintenance_loop(memory=runtime.memory, config_store=runtime.config_store))
    try:
        while True:
            line = await asyncio.to_thread(input, f"{user_name}> ")
            text = line.strip()
            if not text:
                continue
            if text in {"/quit", "/exit"}:
                break
            request = TurnRequest(
                message=text,
                user_id=user_id,
                channel_id="console",
                guild_id=DM_GUILD_SENTINEL,
                user_name=user_name,
            )
            try:
                reply = await generate_response(request, deps=runtime.deps)
            except Exception as e:
                print(f"(error: {e})")
                continue
            print(reply)
    except EOFError:
        pass
    finally:
        maintenance.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await maintenance


def main() -> int:
    logging.basicConfig(
        level=os.getenv("EMBER_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    runtime = build_runtime(ConfigStore.from_env())
    asyncio.run(_console_chat(runtime))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
