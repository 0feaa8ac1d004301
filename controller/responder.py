from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable

from config.store import ConfigStore
from controller.models import TurnRequest
from controller.prompt_assembly import build_prompt
from memory.context import assemble_context
from memory.context import extract_mentioned_user_ids
from memory.context import remember_exchange
from memory.extraction import extract_and_store_facts
from memory.service import MemoryService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponderDeps:
    config_store: ConfigStore
    memory: MemoryService | None
    # complete(prompt) -> reply text; errors propagate to the caller
    complete: Callable[[str], str]
    # describe_images(urls, message) -> text description
    describe_images: Callable[[list[str], str], str] | None = None


async def generate_response(request: TurnRequest, *, deps: ResponderDeps) -> str:
    config = deps.config_store.snapshot()
    memory_config = config.memory_config()
    use_memory = bool(memory_config.enable_memory and request.should_remember and deps.memory is not None)

    mentioned = extract_mentioned_user_ids(request.message, exclude=[request.user_id])

    context = ""
    if use_memory:
        context = await assemble_context(
            deps.memory,
            request.user_id,
            request.channel_id,
            request.guild_id,
            memory_config,
            mentioned_user_ids=mentioned,
        )

    prompt = build_prompt(
        config.system_prompt,
        config.persona(),
        context,
        request.message,
        request.user_name,
    )

    try:
        reply = await asyncio.to_thread(deps.complete, prompt)
    except Exception as exc:
        logger.error("[LLM] completion failed user=%s channel=%s: %s", request.user_id, request.channel_id, exc)
        raise

    if use_memory:
        await remember_exchange(
            deps.memory,
            user_id=request.user_id,
            channel_id=request.channel_id,
            guild_id=request.guild_id,
            user_message=request.message,
            bot_response=reply,
            user_name=request.user_name,
            config=memory_config,
            mentioned_user_ids=mentioned,
        )
        if config.enable_fact_extraction:
            await extract_and_store_facts(
                deps.memory,
                deps.complete,
                user_id=request.user_id,
                guild_id=request.guild_id,
                channel_id=request.channel_id,
                user_name=request.user_name,
                user_message=request.message,
                bot_response=reply,
                config=memory_config,
            )

    return reply


async def generate_response_with_images(request: TurnRequest, *, deps: ResponderDeps) -> str:
    if not request.image_urls:
        return await generate_response(request, deps=deps)

    config = deps.config_store.snapshot()
    if not config.enable_image_processing or deps.describe_images is None:
        return await generate_response(request, deps=deps)

    analysis = await asyncio.to_thread(deps.describe_images, list(request.image_urls), request.message)
    combined = f"{request.message}\n\nImage Analysis:\n{analysis}"
    return await generate_response(replace(request, message=combined), deps=deps)
