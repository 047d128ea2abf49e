import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from chatgpt_bridge import config as config_module

ENV_KEYS = [env_name for env_name, _ in config_module.ENV_OVERRIDES.values()]


class TestGetConfig(unittest.TestCase):
    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self._config_path = Path(self._temp_dir.name) / "config.json"
        self._orig_config_file = config_module.CONFIG_FILE
        config_module.CONFIG_FILE = str(self._config_path)
        self.env_patcher = patch.dict(os.environ, {})
        self.env_patcher.start()
        for key in ENV_KEYS:
            os.environ.pop(key, None)
        self.print_patcher = patch.object(config_module, "debug_print")
        self.print_patcher.start()

    def tearDown(self):
        self.print_patcher.stop()
        self.env_patcher.stop()
        config_module.CONFIG_FILE = self._orig_config_file
        self._temp_dir.cleanup()

    def test_defaults_without_file(self):
        config = config_module.get_config()
        self.assertEqual(config["server_port"], 3000)
        self.assertEqual(config["max_requests_per_minute"], 60)
        self.assertEqual(config["max_tokens_per_minute"], 40000)
        self.assertEqual(config["session_token"], "")
        self.assertTrue(config["probe_local_proxies"])

    def test_file_values(self):
        self._config_path.write_text(
            json.dumps({"session_token": "from-file", "max_requests_per_minute": 5}),
            encoding="utf-8",
        )
        config = config_module.get_config()
        self.assertEqual(config["session_token"], "from-file")
        self.assertEqual(config["max_requests_per_minute"], 5)

    def test_environment_overrides_file(self):
        self._config_path.write_text(json.dumps({"max_tokens_per_minute": 10}), encoding="utf-8")
        os.environ["MAX_TOKENS_PER_MINUTE"] = "2500"
        os.environ["CHATGPT_AUTHORIZATION"] = "Bearer env"
        os.environ["PROBE_LOCAL_PROXIES"] = "false"
        config = config_module.get_config()
        self.assertEqual(config["max_tokens_per_minute"], 2500)
        self.assertEqual(config["authorization"], "Bearer env")
        self.assertFalse(config["probe_local_proxies"])

    def test_unparseable_numbers_use_defaults(self):
        os.environ["SERVER_PORT"] = "not-a-port"
        self._config_path.write_text(json.dumps({"max_requests_per_minute": "lots"}), encoding="utf-8")
        config = config_module.get_config()
        self.assertEqual(config["server_port"], 3000)
        self.assertEqual(config["max_requests_per_minute"], 60)

    def test_invalid_json_file_uses_defaults(self):
        self._config_path.write_text("{broken", encoding="utf-8")
        config = config_module.get_config()
        self.assertEqual(config["max_requests_per_minute"], 60)

    def test_changes_are_picked_up_without_restart(self):
        self._config_path.write_text(json.dumps({"max_requests_per_minute": 1}), encoding="utf-8")
        self.assertEqual(config_module.get_config()["max_requests_per_minute"], 1)
        self._config_path.write_text(json.dumps({"max_requests_per_minute": 2}), encoding="utf-8")
        self.assertEqual(config_module.get_config()["max_requests_per_minute"], 2)

    def test_load_env_file(self):
        env_path = Path(self._temp_dir.name) / ".env"
        env_path.write_text("CHATGPT_SESSION_TOKEN=from-dotenv\n", encoding="utf-8")
        self.assertTrue(config_module.load_env_file(str(env_path)))
        self.assertEqual(config_module.get_config()["session_token"], "from-dotenv")

    def test_missing_env_file(self):
        self.assertFalse(config_module.load_env_file(str(Path(self._temp_dir.name) / "missing.env")))


if __name__ == "__main__":
    unittest.main()
