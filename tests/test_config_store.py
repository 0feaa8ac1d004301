from __future__ import annotations

import json
import os
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

from config.store import BotConfig
from config.store import ConfigError
from config.store import ConfigStore
from config.store import load_bot_config


class LoadBotConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config.json"

    def test_missing_file_falls_back_to_defaults(self):
        config, warning = load_bot_config(self.path)
        self.assertEqual(config, BotConfig())
        self.assertIn("not found", warning)

    def test_defaults_match_documented_values(self):
        cfg = BotConfig().memory_config()
        self.assertEqual(cfg.context_message_count, 100)
        self.assertEqual(cfg.max_user_facts, 15)
        self.assertEqual(cfg.max_mentioned_user_facts, 5)
        self.assertTrue(cfg.include_facts_for_mentioned_users)
        self.assertFalse(cfg.decay_enabled)

    def test_camel_case_json_is_loaded(self):
        self.path.write_text(
            json.dumps(
                {
                    "enableMemory": True,
                    "contextMessageCount": 20,
                    "maxUserFacts": "7",
                    "memoryDecayEnabled": "true",
                    "selectedTones": ["Calm"],
                    "personalityTraits": {"humor": 14},
                }
            ),
            encoding="utf-8",
        )

        config, warning = load_bot_config(self.path)

        self.assertIsNone(warning)
        self.assertTrue(config.enable_memory)
        self.assertEqual(config.context_message_count, 20)
        self.assertEqual(config.max_user_facts, 7)
        self.assertTrue(config.memory_decay_enabled)
        self.assertEqual(config.selected_tones, ("Calm",))
        self.assertEqual(config.personality_traits, {"humor": 10})

    def test_yaml_file_is_accepted(self):
        yaml_path = Path(self._tmp.name) / "config.yaml"
        yaml_path.write_text("enableMemory: true\nresponseLength: short\n", encoding="utf-8")

        config, warning = load_bot_config(yaml_path)

        self.assertIsNone(warning)
        self.assertTrue(config.enable_memory)
        self.assertEqual(config.persona().response_length, "short")

    def test_invalid_keys_are_skipped_with_warning(self):
        self.path.write_text(
            json.dumps({"contextMessageCount": -3, "maxUserFacts": 4, "mystery": 1}),
            encoding="utf-8",
        )

        config, warning = load_bot_config(self.path)

        self.assertEqual(config.context_message_count, 100)
        self.assertEqual(config.max_user_facts, 4)
        self.assertIn("contextMessageCount", warning)
        self.assertIn("mystery", warning)

    def test_non_mapping_file_is_rejected(self):
        self.path.write_text("[1, 2, 3]", encoding="utf-8")
        config, warning = load_bot_config(self.path)
        self.assertEqual(config, BotConfig())
        self.assertIn("Invalid config format", warning)


class ConfigStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config.json"

    def test_update_swaps_snapshot_and_persists(self):
        store = ConfigStore(path=self.path)
        before = store.snapshot()

        after = store.update({"maxUserFacts": 3, "enable_memory": True})

        self.assertEqual(before.max_user_facts, 15)
        self.assertEqual(after.max_user_facts, 3)
        self.assertIs(store.snapshot(), after)
        saved = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(saved["maxUserFacts"], 3)
        self.assertTrue(saved["enableMemory"])

        reloaded, warning = load_bot_config(self.path)
        self.assertIsNone(warning)
        self.assertEqual(reloaded, after)

    def test_bad_update_leaves_snapshot_untouched(self):
        store = ConfigStore(path=self.path)
        with self.assertRaises(ConfigError) as ctx:
            store.update({"maxUserFacts": 3, "contextMessageCount": "lots"})
        self.assertEqual(ctx.exception.code, "invalid_value")
        self.assertEqual(store.snapshot().max_user_facts, 15)
        self.assertFalse(self.path.exists())

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(ConfigError) as ctx:
            ConfigStore().update({"nope": 1}, persist=False)
        self.assertEqual(ctx.exception.code, "unknown_key")

    def test_save_without_path_raises(self):
        with self.assertRaises(ConfigError):
            ConfigStore().save()

    def test_concurrent_updates_all_succeed_and_file_matches_memory(self):
        store = ConfigStore(path=self.path)
        errors: list[BaseException] = []
        start = threading.Barrier(24)

        def worker(n: int) -> None:
            start.wait()
            try:
                store.update({"maxUserFacts": n})
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 25)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        saved = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(saved["maxUserFacts"], store.snapshot().max_user_facts)
        self.assertEqual([p.name for p in self.path.parent.iterdir()], ["config.json"])

    def test_failed_write_leaves_snapshot_untouched(self):
        blocker = Path(self._tmp.name) / "blocker"
        blocker.write_text("x", encoding="utf-8")
        store = ConfigStore(path=blocker / "config.json")

        with self.assertRaises(OSError):
            store.update({"maxUserFacts": 3})
        self.assertEqual(store.snapshot().max_user_facts, 15)

    def test_snapshot_traits_are_read_only(self):
        config = ConfigStore().snapshot()
        with self.assertRaises(TypeError):
            config.personality_traits["humor"] = 10
        self.assertEqual(ConfigStore().snapshot().personality_traits["humor"], 5)

        persona = config.persona()
        persona.personality_traits["humor"] = 9
        self.assertEqual(config.personality_traits["humor"], 5)

    def test_env_overrides_file(self):
        self.path.write_text(json.dumps({"enableMemory": False, "dbPath": "from-file.db"}), encoding="utf-8")
        env = {
            "EMBER_CONFIG_PATH": str(self.path),
            "EMBER_DB_PATH": "from-env.db",
            "EMBER_ENABLE_MEMORY": "1",
            "OPENAI_MODEL": "gpt-4o-mini",
        }
        with mock.patch.dict(os.environ, env):
            store = ConfigStore.from_env()

        config = store.snapshot()
        self.assertEqual(config.db_path, "from-env.db")
        self.assertTrue(config.enable_memory)
        self.assertEqual(config.openai_model, "gpt-4o-mini")


if __name__ == "__main__":
    unittest.main()
