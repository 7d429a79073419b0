"""Tests for plugin configuration loading and updates."""

import json
import threading
from pathlib import Path

import pytest

from autonav.config import (
    FileWatcherPluginConfig,
    PluginConfig,
    SlackPluginConfig,
    expand_env_vars,
    load_plugin_config,
    merge_section,
    normalize_update_keys,
    read_plugin_config_data,
    resolve_credentials,
    save_plugin_config_data,
    update_plugin_section,
)
from autonav.exceptions import ConfigError, PluginConfigError

SAMPLE_PLUGINS_JSON = {
    "slack": {
        "enabled": False,
        "workspace": "acme",
        "channels": ["general"],
        "token": "${SLACK_TOKEN}",
    },
    "file_watcher": {
        "enabled": True,
        "paths": ["./knowledge-base"],
        "ignorePatterns": ["**/drafts/**"],
        "pollInterval": 500,
    },
    "linear": {"enabled": True, "team": "ENG"},
}


@pytest.fixture
def plugins_file(tmp_path: Path) -> Path:
    """A plugins.json with a Slack section, a watcher and a custom plugin."""
    path = tmp_path / ".claude" / "plugins.json"
    path.parent.mkdir()
    path.write_text(json.dumps(SAMPLE_PLUGINS_JSON))
    return path


class TestEnvExpansion:
    """Tests for ${VAR} expansion and token fallbacks."""

    def test_expand_nested(self) -> None:
        """Test expansion in nested dicts and lists."""
        data = {"token": "${TOKEN}", "paths": ["$HOME_DIR/docs"], "count": 3}

        result = expand_env_vars(data, {"TOKEN": "xoxb-1", "HOME_DIR": "/home/nav"})

        assert result == {"token": "xoxb-1", "paths": ["/home/nav/docs"], "count": 3}

    def test_unset_variable_left_alone(self) -> None:
        """Test that unknown variables keep their placeholder."""
        assert expand_env_vars("${MISSING}", {}) == "${MISSING}"

    def test_resolve_credentials_fills_missing_token(self) -> None:
        """Test SLACK_BOT_TOKEN fallback for an unexpanded placeholder."""
        config = PluginConfig(slack=SlackPluginConfig(enabled=True, token="${SLACK_TOKEN}"))

        resolved = resolve_credentials(config, {"SLACK_BOT_TOKEN": "xoxb-env"})

        assert resolved.slack is not None
        assert resolved.slack.token == "xoxb-env"

    def test_resolve_credentials_keeps_explicit_token(self) -> None:
        """Test that a configured token wins over the environment."""
        config = PluginConfig(slack=SlackPluginConfig(enabled=True, token="xoxb-file"))

        resolved = resolve_credentials(config, {"SLACK_BOT_TOKEN": "xoxb-env"})

        assert resolved.slack.token == "xoxb-file"


class TestLoading:
    """Tests for reading plugins.json."""

    def test_load_camel_case_and_custom_sections(self, plugins_file: Path) -> None:
        """Test camelCase fields and unknown plugin kinds."""
        config = load_plugin_config(plugins_file, expand_env=False)

        assert config.file_watcher is not None
        assert config.file_watcher.ignore_patterns == ["**/drafts/**"]
        assert config.file_watcher.poll_interval == 500
        assert config.custom["linear"] == {"enabled": True, "team": "ENG"}
        assert config.enabled_plugins() == ["file_watcher"]

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """Test that a missing file means all plugins disabled."""
        config = load_plugin_config(tmp_path / "nope.json")

        assert config.enabled_plugins() == []

    def test_corrupt_file_falls_back(self, tmp_path: Path) -> None:
        """Test that invalid JSON falls back to defaults."""
        path = tmp_path / "plugins.json"
        path.write_text("{not json")

        config = load_plugin_config(path)

        assert config == PluginConfig()

    def test_raw_read_rejects_corrupt_file(self, tmp_path: Path) -> None:
        """Test the raw reader reports corruption instead of hiding it."""
        path = tmp_path / "plugins.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError):
            read_plugin_config_data(path)

    def test_file_watcher_poll_interval_floor(self) -> None:
        """Test the watcher rejects an absurdly small interval."""
        with pytest.raises(ValueError):
            FileWatcherPluginConfig(poll_interval=1)


class TestUpdates:
    """Tests for the shallow merge and persisted updates."""

    def test_merge_keeps_untouched_fields(self) -> None:
        """Test {enabled:false, channels:[general]} + {enabled:true}."""
        merged = merge_section({"enabled": False, "channels": ["general"]}, {"enabled": True})

        assert merged == {"enabled": True, "channels": ["general"]}

    def test_merge_replaces_nested_values(self) -> None:
        """Test that nested values are replaced, not merged."""
        merged = merge_section({"options": {"a": 1, "b": 2}}, {"options": {"a": 3}})

        assert merged == {"options": {"a": 3}}

    def test_normalize_snake_case_keys(self) -> None:
        """Test snake_case update keys map to on-disk aliases."""
        result = normalize_update_keys(
            "slack", {"thread_notifications": False, "summaryFrequency": "weekly", "extra": 1}
        )

        assert result == {"threadNotifications": False, "summaryFrequency": "weekly", "extra": 1}

    def test_update_persists_and_preserves_placeholders(self, plugins_file: Path) -> None:
        """Test an update writes the merged section and keeps ${VAR} tokens."""
        merged = update_plugin_section(plugins_file, "slack", {"enabled": True})

        on_disk = json.loads(plugins_file.read_text())
        assert merged == on_disk["slack"]
        assert on_disk["slack"] == {
            "enabled": True,
            "workspace": "acme",
            "channels": ["general"],
            "token": "${SLACK_TOKEN}",
        }
        assert on_disk["linear"] == {"enabled": True, "team": "ENG"}

    def test_update_creates_missing_file(self, tmp_path: Path) -> None:
        """Test updating when no configuration exists yet."""
        path = tmp_path / ".claude" / "plugins.json"

        update_plugin_section(path, "github", {"enabled": True, "owner": "acme"})

        assert json.loads(path.read_text()) == {"github": {"enabled": True, "owner": "acme"}}

    def test_invalid_update_is_rejected(self, plugins_file: Path) -> None:
        """Test the merged section is validated before writing."""
        before = plugins_file.read_text()

        with pytest.raises(PluginConfigError):
            update_plugin_section(plugins_file, "slack", {"channels": "general"})

        assert plugins_file.read_text() == before

    def test_concurrent_updates_do_not_lose_writes(self, plugins_file: Path) -> None:
        """Test that parallel updates to different keys all land."""
        keys = [f"key{i}" for i in range(8)]

        threads = [
            threading.Thread(target=update_plugin_section, args=(plugins_file, "email", {key: True}))
            for key in keys
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        section = json.loads(plugins_file.read_text())["email"]
        assert all(section[key] is True for key in keys)

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """Test atomic save cleans up after itself."""
        path = tmp_path / "plugins.json"

        save_plugin_config_data(path, {"slack": {"enabled": True}})

        assert [p.name for p in tmp_path.iterdir()] == ["plugins.json"]
