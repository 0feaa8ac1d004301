from __future__ import annotations

import unittest

from controller.models import PersonaConfig
from controller.prompt_assembly import EMOJI_DIRECTIVE
from controller.prompt_assembly import ROLEPLAY_DIRECTIVE
from controller.prompt_assembly import build_prompt
from controller.prompt_assembly import build_system_prompt
from controller.prompt_assembly import response_length_guidance

MEDIUM = "Provide moderate length responses (2-4 sentences)."


class SystemPromptTests(unittest.TestCase):
    def test_bare_persona_only_adds_response_length(self):
        self.assertEqual(
            build_system_prompt("You are a bot.", PersonaConfig()),
            f"You are a bot.\n\nResponse Length: {MEDIUM}",
        )

    def test_full_persona_section_order(self):
        persona = PersonaConfig(
            personality_traits={"humor": 8, "formality": 2},
            communication_style="casual",
            selected_tones=["Witty", "", "Warm"],
            use_emojis=True,
            roleplay_mode=True,
            character_description="A retired pirate.",
            custom_instructions="Never mention the treasure.",
            response_length="short",
        )

        self.assertEqual(
            build_system_prompt("Base.", persona),
            "Base."
            "\n\nPersonality traits: humor: 8/10, formality: 2/10"
            "\nCommunication style: casual"
            "\nTone: Witty, Warm"
            f"\n{EMOJI_DIRECTIVE}"
            "\n\nCharacter Description: A retired pirate."
            f"\n{ROLEPLAY_DIRECTIVE}"
            "\n\nAdditional Instructions: Never mention the treasure."
            "\n\nResponse Length: Keep responses brief and to the point (1-2 sentences).",
        )

    def test_character_is_hidden_when_roleplay_is_off(self):
        persona = PersonaConfig(roleplay_mode=False, character_description="A retired pirate.")
        prompt = build_system_prompt("Base.", persona)
        self.assertNotIn("pirate", prompt)
        self.assertNotIn(ROLEPLAY_DIRECTIVE, prompt)

    def test_roleplay_without_description_adds_nothing(self):
        prompt = build_system_prompt("Base.", PersonaConfig(roleplay_mode=True))
        self.assertNotIn("Character Description", prompt)

    def test_unknown_response_length_falls_back_to_medium(self):
        self.assertEqual(response_length_guidance("epic"), MEDIUM)
        self.assertEqual(response_length_guidance(None), MEDIUM)
        self.assertEqual(
            response_length_guidance("LONG"),
            "Give detailed and comprehensive responses when appropriate.",
        )


class FullPromptTests(unittest.TestCase):
    def test_context_block_is_omitted_when_empty(self):
        prompt = build_prompt("Base.", PersonaConfig(), "", "hello", "alice")
        self.assertEqual(prompt, f"Base.\n\nResponse Length: {MEDIUM}\n\nUser (alice): hello\n\nAssistant:")
        self.assertNotIn("Conversation Context", prompt)

    def test_context_sits_between_system_prompt_and_message(self):
        prompt = build_prompt("Base.", PersonaConfig(), "Known facts about this user:\n- job: mechanic", "hi", "sam")
        self.assertEqual(
            prompt,
            f"Base.\n\nResponse Length: {MEDIUM}"
            "\n\nConversation Context:\nKnown facts about this user:\n- job: mechanic"
            "\n\nUser (sam): hi"
            "\n\nAssistant:",
        )


if __name__ == "__main__":
    unittest.main()
