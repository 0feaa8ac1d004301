from __future__ import annotations

import os
import tempfile
import unittest

from memory.context import assemble_context
from memory.context import extract_mentioned_user_ids
from memory.context import remember_exchange
from memory.models import Fact
from memory.models import MemoryConfig
from memory.models import MemoryEntry
from memory.models import MemoryResult
from memory.service import MemoryService

DAY = 86400
NOW = 1_771_200_000


def _entry(i: int, *, age_days: float = 0, importance: float = 0.5, entry_type: str = "conversation") -> MemoryEntry:
    return MemoryEntry(
        id=i,
        user_id="1",
        channel_id="10",
        guild_id="100",
        user_message=f"q{i}",
        bot_response=f"a{i}",
        user_name="alice",
        created_ts=int(NOW - age_days * DAY),
        entry_type=entry_type,
        importance=importance,
    )


def _fact(user_id: str, value: str, fact_type: str = "hobby", confidence: float = 1.0) -> Fact:
    return Fact(id=None, user_id=user_id, guild_id="100", fact_type=fact_type, value=value, confidence=confidence, created_ts=NOW)


class _FakeMemory:
    """Returns canned rows; newest first, like the real store."""

    def __init__(self, *, turns=(), facts=None, prefs=(), failing=()):
        self.turns = list(turns)
        self.facts = dict(facts or {})
        self.prefs = list(prefs)
        self.failing = set(failing)
        self.fact_calls: list[tuple[str, int]] = []
        self.recorded: list[dict] = []

    async def get_recent_turns(self, user_id, channel_id, guild_id, limit):
        if "turns" in self.failing:
            return MemoryResult.failure([], "boom")
        return MemoryResult.success(self.turns[:limit])

    async def get_facts(self, user_id, guild_id, limit=10):
        self.fact_calls.append((str(user_id), limit))
        if "facts" in self.failing:
            return MemoryResult.failure([], "boom")
        return MemoryResult.success(self.facts.get(str(user_id), [])[:limit])

    async def get_preferences(self, user_id, guild_id, limit):
        return MemoryResult.success(self.prefs[:limit])

    async def record_turn(self, user_id, channel_id, guild_id, user_message, bot_response, user_name, **kwargs):
        if "write" in self.failing:
            return MemoryResult.failure(None, "disk full")
        self.recorded.append({"user_id": user_id, "user_message": user_message, **kwargs})
        return MemoryResult.success(len(self.recorded))


class MentionParsingTests(unittest.TestCase):
    def test_mentions_in_order_without_duplicates_or_self(self):
        text = "hey <@222222> and <@!333333>, also <@222222> and me <@111111>"
        self.assertEqual(extract_mentioned_user_ids(text, exclude=["111111"]), ["222222", "333333"])

    def test_non_user_mentions_are_ignored(self):
        self.assertEqual(extract_mentioned_user_ids("<#123456> <@&654321> @everyone"), [])


class AssembleContextTests(unittest.IsolatedAsyncioTestCase):
    async def test_sections_render_in_fixed_order(self):
        memory = _FakeMemory(
            turns=[_entry(2), _entry(1)],
            facts={"1": [_fact("1", "plays chess")], "222222": [_fact("222222", "Bob", fact_type="name")]},
            prefs=[_entry(9, entry_type="preference")],
        )
        cfg = MemoryConfig(enable_memory=True)

        context = await assemble_context(memory, "1", "10", "100", cfg, mentioned_user_ids=["222222"], now_ts=NOW)

        self.assertEqual(
            context,
            "Recent conversation:\n"
            "alice: q1\nAssistant: a1\n"
            "alice: q2\nAssistant: a2\n\n"
            "Known facts about this user:\n- hobby: plays chess\n\n"
            "Known preferences:\n- q9\n\n"
            "Known facts about <@222222>:\n- name: Bob",
        )

    async def test_other_fact_type_has_no_label(self):
        memory = _FakeMemory(facts={"1": [_fact("1", "has two cats", fact_type="other")]})
        context = await assemble_context(memory, "1", "10", "100", MemoryConfig(enable_memory=True), now_ts=NOW)
        self.assertEqual(context, "Known facts about this user:\n- has two cats")

    async def test_empty_memory_gives_empty_context(self):
        context = await assemble_context(_FakeMemory(), "1", "10", "100", MemoryConfig(enable_memory=True), now_ts=NOW)
        self.assertEqual(context, "")

    async def test_failed_section_is_skipped(self):
        memory = _FakeMemory(turns=[_entry(1)], facts={"1": [_fact("1", "plays chess")]}, failing={"turns"})
        context = await assemble_context(memory, "1", "10", "100", MemoryConfig(enable_memory=True), now_ts=NOW)
        self.assertEqual(context, "Known facts about this user:\n- hobby: plays chess")

    async def test_mentioned_user_facts_respect_flag_and_limit(self):
        memory = _FakeMemory(facts={"222222": [_fact("222222", f"f{i}") for i in range(5)]})

        off = MemoryConfig(enable_memory=True, include_facts_for_mentioned_users=False)
        self.assertEqual(await assemble_context(memory, "1", "10", "100", off, mentioned_user_ids=["222222"], now_ts=NOW), "")

        on = MemoryConfig(enable_memory=True, max_mentioned_user_facts=2)
        context = await assemble_context(
            memory, "1", "10", "100", on, mentioned_user_ids=["222222", "222222", "1"], now_ts=NOW
        )
        self.assertEqual(context, "Known facts about <@222222>:\n- hobby: f0\n- hobby: f1")
        self.assertEqual(memory.fact_calls.count(("222222", 2)), 1)

    async def test_decay_drops_stale_turns_and_weak_facts(self):
        memory = _FakeMemory(
            turns=[_entry(3, age_days=0), _entry(2, age_days=5), _entry(1, age_days=45, importance=1.0)],
            facts={"1": [_fact("1", "sure thing", confidence=1.0), _fact("1", "maybe", confidence=0.05)]},
        )
        cfg = MemoryConfig(enable_memory=True, decay_enabled=True, decay_factor=0.5, decay_threshold=0.1, decay_max_days=30)

        context = await assemble_context(memory, "1", "10", "100", cfg, now_ts=NOW)

        # 0.5 * e^-2.5 ~= 0.041 falls under the threshold; 45 days is past max age
        self.assertEqual(
            context,
            "Recent conversation:\nalice: q3\nAssistant: a3\n\n"
            "Known facts about this user:\n- hobby: sure thing",
        )

    async def test_decay_disabled_keeps_old_turns(self):
        memory = _FakeMemory(turns=[_entry(1, age_days=400)])
        context = await assemble_context(memory, "1", "10", "100", MemoryConfig(enable_memory=True), now_ts=NOW)
        self.assertIn("alice: q1", context)


class ContextWithStorageTests(unittest.IsolatedAsyncioTestCase):
    async def test_cap_of_two_renders_last_two_turns_chronologically(self):
        with tempfile.TemporaryDirectory() as tmp:
            cfg = MemoryConfig(enable_memory=True, context_message_count=2)
            memory = MemoryService(os.path.join(tmp, "memory.db"), config_provider=lambda: cfg)
            self.assertTrue(memory.initialize())
            for text in ("A", "B", "C"):
                await memory.record_turn("1", "10", "100", text, f"re {text}", "alice")

            context = await assemble_context(memory, "1", "10", "100", cfg)

        self.assertEqual(context, "Recent conversation:\nalice: B\nAssistant: re B\nalice: C\nAssistant: re C")


class RememberExchangeTests(unittest.IsolatedAsyncioTestCase):
    async def test_subject_is_first_mentioned_other_user(self):
        memory = _FakeMemory()
        ok = await remember_exchange(
            memory,
            user_id="1",
            channel_id="10",
            guild_id="100",
            user_message="what does <@222222> do?",
            bot_response="they fix cars",
            user_name="alice",
            config=MemoryConfig(enable_memory=True),
            mentioned_user_ids=["1", "222222"],
        )
        self.assertTrue(ok)
        self.assertEqual(memory.recorded[0]["subject_user_id"], "222222")

    async def test_write_failure_is_swallowed(self):
        memory = _FakeMemory(failing={"write"})
        with self.assertLogs("memory.context", level="WARNING"):
            ok = await remember_exchange(
                memory,
                user_id="1",
                channel_id="10",
                guild_id="100",
                user_message="hi",
                bot_response="hello",
                user_name="alice",
                config=MemoryConfig(enable_memory=True),
            )
        self.assertFalse(ok)


if __name__ == "__main__":
    unittest.main()
