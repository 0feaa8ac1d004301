from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class PersonaConfig:
    personality_traits: dict[str, int] = field(default_factory=dict)
    communication_style: str = ""
    selected_tones: list[str] = field(default_factory=list)
    use_emojis: bool = False
    roleplay_mode: bool = False
    character_description: str = ""
    custom_instructions: str = ""
    response_length: str = "medium"


@dataclass(slots=True)
class TurnRequest:
    message: str
    user_id: str
    channel_id: str
    guild_id: str
    user_name: str
    image_urls: list[str] = field(default_factory=list)
    should_remember: bool = True
