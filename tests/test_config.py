"""
Tests for token storage, client config and the bot config loader.
"""
import json
import textwrap
from unittest.mock import MagicMock

import pytest
import yaml

from bot_base import AuditLogger, BotConfig, ConfigError, md, truncate, utc_now
from pkg.vanguard.config import DEFAULT_API_BASE_URL, ClientConfig, ensure_valid_url
from pkg.vanguard.schema import StatusChangeIntent
from pkg.vanguard.storage import MemoryTokenStore, TokenStore


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TokenStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTokenStore:

    def test_missing_file(self, tmp_path):
        assert TokenStore(str(tmp_path / "auth.json")).get() is None

    def test_set_get_clear(self, tmp_path):
        store = TokenStore(str(tmp_path / "nested" / "auth.json"))
        store.set("abc")
        assert store.get() == "abc"
        assert json.loads(store.path.read_text()) == {"authToken": "abc"}
        assert not store.path.with_suffix(".json.tmp").exists()
        store.clear()
        assert store.get() is None
        store.clear()  # idempotent

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text("{not json")
        assert TokenStore(str(path)).get() is None

    def test_memory_store(self):
        store = MemoryTokenStore("x")
        assert store.get() == "x"
        store.clear()
        assert store.get() is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ClientConfig
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("VANGUARD_API_BASE_URL", "VANGUARD_TIMEOUT", "VANGUARD_TOKEN_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestClientConfig:

    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.api_base_url == "http://localhost:5000/api"
        assert cfg.max_retries == 3
        assert cfg.remark_max_length == 30

    def test_ensure_valid_url(self):
        assert ensure_valid_url("api.example.com") == "http://api.example.com"
        assert ensure_valid_url("https://x") == "https://x"
        assert ensure_valid_url("") is None

    def test_load_api_section(self, tmp_path):
        path = tmp_path / "vanguard.yaml"
        path.write_text(textwrap.dedent("""\
            api:
              api_base_url: vanguard.example.com/api/
              timeout: 10
              unknown_key: ignored
        """))
        cfg = ClientConfig.load(str(path))
        assert cfg.api_base_url == "http://vanguard.example.com/api"
        assert cfg.timeout == 10

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = ClientConfig.load(str(tmp_path / "nope.yaml"))
        assert cfg.timeout == 30.0

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VANGUARD_API_BASE_URL", "https://prod.example.com/api")
        monkeypatch.setenv("VANGUARD_TIMEOUT", "5")
        monkeypatch.setenv("VANGUARD_TOKEN_PATH", str(tmp_path / "t.json"))
        cfg = ClientConfig().apply_env()
        assert cfg.api_base_url == "https://prod.example.com/api"
        assert cfg.timeout == 5.0
        assert cfg.token_path == str(tmp_path / "t.json")

    def test_empty_base_url_falls_back_to_default(self, tmp_path):
        path = tmp_path / "vanguard.yaml"
        path.write_text("api:\n  api_base_url: ''\n")
        assert ClientConfig.load(str(path)).api_base_url == DEFAULT_API_BASE_URL
        assert ClientConfig(api_base_url="").apply_env().api_base_url == DEFAULT_API_BASE_URL


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BotConfig / AuditLogger
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def write_bot_config(tmp_path, bots_section=None):
    audit = tmp_path / "logs" / "audit.jsonl"
    bots_section = bots_section if bots_section is not None else {
        "task_bot": {"token_env": "TEST_VANGUARD_BOT_TOKEN", "allowed_users": [111, 222]},
    }
    path = tmp_path / "vanguard.yaml"
    path.write_text(yaml.safe_dump({
        "global": {"audit_log": str(audit)},
        "api": {"api_base_url": "http://api.local/api", "remark_max_length": 20},
        "bots": bots_section,
    }))
    return path


class TestBotConfig:

    def test_loads(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_VANGUARD_BOT_TOKEN", "tok")
        cfg = BotConfig.load(str(write_bot_config(tmp_path)), "task_bot")
        assert cfg.token == "tok"
        assert cfg.api.api_base_url == "http://api.local/api"
        assert cfg.api.remark_max_length == 20
        assert cfg.is_authorized(111)
        assert not cfg.is_authorized(999)
        assert cfg.audit_log.exists()

    def test_unknown_bot(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_VANGUARD_BOT_TOKEN", "tok")
        with pytest.raises(ConfigError, match="not found"):
            BotConfig.load(str(write_bot_config(tmp_path)), "other_bot")

    def test_missing_token_env(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_VANGUARD_BOT_TOKEN", raising=False)
        with pytest.raises(ConfigError, match="TEST_VANGUARD_BOT_TOKEN"):
            BotConfig.load(str(write_bot_config(tmp_path)), "task_bot")

    def test_no_token_env_configured(self, tmp_path):
        path = write_bot_config(tmp_path, {"task_bot": {"allowed_users": []}})
        with pytest.raises(ConfigError, match="no token_env"):
            BotConfig.load(str(path), "task_bot")


class TestAuditLogger:

    def setup_method(self):
        self.user = MagicMock()
        self.user.id = 1
        self.user.username = "amy"

    def entries(self, log):
        return [json.loads(line) for line in log.read_text().splitlines()]

    def test_records_intent_source_and_target(self, tmp_path):
        log = tmp_path / "audit.jsonl"
        audit = AuditLogger(log, "task_bot")
        intent = StatusChangeIntent(task_id="t1", task_name="Essay",
                                    source_status="in-progress", target_status="on-hold")
        audit.record_intent(self.user, intent, "confirmed", remark="Sick")
        entry = self.entries(log)[0]
        assert entry["bot"] == "task_bot"
        assert entry["user_id"] == 1
        assert entry["command"] == "move"
        assert entry["task_id"] == "t1"
        assert (entry["source"], entry["target"], entry["remark"]) == ("in-progress", "on-hold", "Sick")

    def test_omits_missing_remark(self, tmp_path):
        log = tmp_path / "audit.jsonl"
        intent = StatusChangeIntent(task_id="t1", task_name="Essay",
                                    source_status="not-started", target_status="completed")
        AuditLogger(log, "task_bot").record_intent(self.user, intent, "cancelled")
        assert "remark" not in self.entries(log)[0]

    def test_record_action_and_plain(self, tmp_path):
        log = tmp_path / "audit.jsonl"
        audit = AuditLogger(log, "task_bot")
        action = MagicMock(kind="delete", task_id="t2", task_name="Quiz")
        audit.record_action(self.user, action, "cancelled")
        audit.record(self.user, "login", "stored")
        entries = self.entries(log)
        assert entries[0]["command"] == "delete"
        assert entries[0]["task_name"] == "Quiz"
        assert entries[1]["command"] == "login"
        assert entries[1]["task_id"] == ""


def test_truncate_and_timestamp():
    assert truncate("short") == "short"
    assert "truncated" in truncate("x" * 4000)
    assert utc_now().endswith("Z")


def test_md_escapes_markdown():
    assert md("lab_report *v2*") == "lab\\_report \\*v2\\*"
    assert md(3) == "3"
