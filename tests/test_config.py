from __future__ import annotations

from dataclasses import replace
import os
from pathlib import Path
import tempfile
import unittest

from autoplayer.config import (
    ConfigError,
    default_config,
    load_config,
    validate_config,
    with_overrides,
)


class ConfigTests(unittest.TestCase):
    def _write_config(self, root: Path, body: str = "") -> Path:
        config_dir = root / "config"
        config_dir.mkdir(parents=True, exist_ok=True)
        settings = body or """
[runtime]
state_file = "likubuddy-state.txt"
events_file = "runtime/events/autoplay_events.jsonl"
status_file = "runtime/autoplay_status.json"

[loop]
game = "dino"
poll_interval_ms = 25
max_cycles = 100
max_invalid_reads = 5

[input]
window_title = "LikuBuddy Game Hub"
fallback_titles = ["Liku", "node"]
min_interval_ms = 30

[engines.dino]
jump_distance_min = 3
jump_distance_max = 8
jump_cooldown_ms = 350
"""
        cfg_path = config_dir / "settings.toml"
        cfg_path.write_text(settings.strip() + "\n", encoding="utf-8")
        return cfg_path

    def test_load_reads_sections_and_defaults(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            root = Path(td)
            cfg = load_config(self._write_config(root))
            self.assertEqual(cfg.loop.game, "dino")
            self.assertEqual(cfg.loop.poll_interval_ms, 25)
            self.assertEqual(cfg.loop.max_cycles, 100)
            self.assertFalse(cfg.loop.dry_run)
            self.assertEqual(cfg.engines.dino.jump_distance_min, 3)
            self.assertEqual(cfg.engines.dino.jump_distance_max, 8)
            self.assertEqual(cfg.engines.dino.bat_safe_distance, 3)
            self.assertEqual(cfg.engines.snake.turn_cooldown_ms, 60)
            self.assertEqual(cfg.input.fallback_titles, ["Liku", "node"])
            self.assertEqual(cfg.project_root, root.resolve())

    def test_resolve_expands_env_and_user(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            root = Path(td)
            cfg = load_config(self._write_config(root))

            env_path = cfg.resolve("$HOME/tmp/state.txt")
            self.assertTrue(str(env_path).startswith(str(Path(os.environ["HOME"]))))

            user_path = cfg.resolve("~/tmp/state2.txt")
            self.assertTrue(str(user_path).startswith(str(Path(os.environ["HOME"]))))

            rel_path = cfg.resolve(cfg.runtime.state_file)
            self.assertTrue(rel_path.is_relative_to(root.resolve()))

    def test_project_root_detection_from_non_config_location(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            root = Path(td)
            cfg_path = self._write_config(root)

            alt_path = root / "runtime" / "tmp" / "alt_settings.toml"
            alt_path.parent.mkdir(parents=True, exist_ok=True)
            alt_path.write_text(cfg_path.read_text(encoding="utf-8"), encoding="utf-8")
            (root / "src" / "autoplayer").mkdir(parents=True, exist_ok=True)

            cfg = load_config(alt_path)
            self.assertTrue(cfg.resolve("runtime/autoplay_status.json").is_relative_to(root.resolve()))

    def test_missing_file_raises(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            with self.assertRaises(FileNotFoundError):
                load_config(Path(td) / "nope.toml")

    def test_unparseable_number_is_config_error(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            cfg_path = self._write_config(Path(td), '[loop]\npoll_interval_ms = "fast"\n')
            with self.assertRaises(ConfigError):
                load_config(cfg_path)

    def test_wrong_value_types_are_rejected_not_converted(self) -> None:
        bodies = {
            '[loop]\ndry_run = "false"\n': "loop.dry_run",
            "[loop]\nverbose = 1\n": "loop.verbose",
            "[loop]\npoll_interval_ms = 30.9\n": "loop.poll_interval_ms",
            "[loop]\nmax_cycles = true\n": "loop.max_cycles",
            '[input]\nsend_timeout_seconds = "0.5"\n': "input.send_timeout_seconds",
            '[input]\nfallback_titles = "Liku"\n': "input.fallback_titles",
            "[engines.dino]\njump_cooldown_ms = 400.0\n": "engines.dino.jump_cooldown_ms",
        }
        for body, field_name in bodies.items():
            with self.subTest(field=field_name):
                with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
                    cfg_path = self._write_config(Path(td), body)
                    with self.assertRaises(ConfigError) as ctx:
                        load_config(cfg_path)
                    self.assertIn(field_name, str(ctx.exception))

    def test_integer_seconds_are_accepted_as_floats(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            cfg = load_config(self._write_config(Path(td), "[input]\nsend_timeout_seconds = 1\n"))
            self.assertEqual(cfg.input.send_timeout_seconds, 1.0)

    def test_malformed_toml_is_config_error(self) -> None:
        with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
            cfg_path = self._write_config(Path(td), "[loop\npoll_interval_ms = \n")
            with self.assertRaises(ConfigError) as ctx:
                load_config(cfg_path)
            self.assertIn("malformed TOML", str(ctx.exception))

    def test_section_that_is_not_a_table_is_config_error(self) -> None:
        for body, section in (("loop = 3\n", "[loop]"), ("engines = { dino = 5 }\n", "[dino]")):
            with self.subTest(section=section):
                with tempfile.TemporaryDirectory(prefix="autoplayer-config-") as td:
                    cfg_path = self._write_config(Path(td), body)
                    with self.assertRaises(ConfigError) as ctx:
                        load_config(cfg_path)
                    self.assertIn(section, str(ctx.exception))

    def test_validate_rejects_bad_values_without_coercing(self) -> None:
        cfg = default_config("/tmp")
        self.assertIs(validate_config(cfg), cfg)

        with self.assertRaises(ConfigError) as ctx:
            validate_config(with_overrides(cfg, poll_interval_ms=0))
        self.assertIn("poll_interval_ms", str(ctx.exception))

        with self.assertRaises(ConfigError) as ctx:
            validate_config(with_overrides(cfg, game="pong"))
        self.assertIn("loop.game", str(ctx.exception))

        with self.assertRaises(ConfigError):
            validate_config(with_overrides(cfg, max_cycles=-1))

        inverted = replace(
            cfg,
            engines=replace(cfg.engines, dino=replace(cfg.engines.dino, jump_distance_min=9, jump_distance_max=4)),
        )
        with self.assertRaises(ConfigError) as ctx:
            validate_config(inverted)
        self.assertIn("jump_distance_max", str(ctx.exception))

    def test_overrides_only_touch_given_fields(self) -> None:
        cfg = default_config("/tmp")
        out = with_overrides(cfg, game="Snake", dry_run=True, state_file="other.txt")
        self.assertEqual(out.loop.game, "snake")
        self.assertTrue(out.loop.dry_run)
        self.assertEqual(out.loop.poll_interval_ms, cfg.loop.poll_interval_ms)
        self.assertEqual(out.runtime.state_file, "other.txt")
        self.assertEqual(cfg.runtime.state_file, "likubuddy-state.txt")


if __name__ == "__main__":
    unittest.main()
