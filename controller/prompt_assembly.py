from __future__ import annotations

from config.defaults import RESPONSE_LENGTH_GUIDE
from controller.models import PersonaConfig

ROLEPLAY_DIRECTIVE = "You are roleplaying as this character. Stay in character throughout the conversation."
EMOJI_DIRECTIVE = "Feel free to use emojis in your responses to make them more engaging."


def response_length_guidance(response_length: str | None) -> str:
    key = (response_length or "").strip().lower()
    return RESPONSE_LENGTH_GUIDE.get(key, RESPONSE_LENGTH_GUIDE["medium"])


def format_personality_traits(traits: dict[str, int] | None) -> str:
    if not traits:
        return ""
    return ", ".join(f"{name}: {value}/10" for name, value in traits.items())


def build_system_prompt(base_system_prompt: str, persona: PersonaConfig) -> str:
    prompt = base_system_prompt or ""

    traits = format_personality_traits(persona.personality_traits)
    if traits:
        prompt += f"\n\nPersonality traits: {traits}"

    if persona.communication_style:
        prompt += f"\nCommunication style: {persona.communication_style}"

    tones = [t for t in (persona.selected_tones or []) if t]
    if tones:
        prompt += f"\nTone: {', '.join(tones)}"

    if persona.use_emojis:
        prompt += f"\n{EMOJI_DIRECTIVE}"

    if persona.roleplay_mode and persona.character_description:
        prompt += f"\n\nCharacter Description: {persona.character_description}"
        prompt += f"\n{ROLEPLAY_DIRECTIVE}"

    if persona.custom_instructions:
        prompt += f"\n\nAdditional Instructions: {persona.custom_instructions}"

    prompt += f"\n\nResponse Length: {response_length_guidance(persona.response_length)}"
    return prompt


def build_prompt(
    base_system_prompt: str,
    persona: PersonaConfig,
    assembled_context: str,
    user_message: str,
    user_name: str,
) -> str:
    prompt = build_system_prompt(base_system_prompt, persona)
    if assembled_context:
        prompt += f"\n\nConversation Context:\n{assembled_context}"
    prompt += f"\n\nUser ({user_name}): {user_message}"
    prompt += "\n\nAssistant:"
    return prompt
