"""Tests for the TOML store configuration."""

from pathlib import Path

import pytest

from localhistory.config import (
    CONFIG_FILENAME,
    HistoryConfig,
    RemoteConfig,
    ScopedOverride,
    Settings,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("LOCALHISTORY_STORE_PATH", "LOCALHISTORY_REMOTE_URL", "LOCALHISTORY_REMOTE_KEY"):
        monkeypatch.delenv(var, raising=False)


class TestGetNumber:
    def test_defaults(self, tmp_path):
        config = HistoryConfig(path=tmp_path)
        assert config.get_number(Settings.MAX_ENTRIES) == 50
        assert config.get_number(Settings.MERGE_PERIOD) == 10

    def test_store_wide_setting(self, tmp_path):
        config = HistoryConfig(path=tmp_path, settings={Settings.MAX_ENTRIES: 3})
        assert config.get_number(Settings.MAX_ENTRIES, Path("/w/a.txt")) == 3

    def test_first_matching_override_wins(self, tmp_path):
        config = HistoryConfig(
            path=tmp_path,
            settings={Settings.MAX_ENTRIES: 20},
            overrides=[
                ScopedOverride("*.log", {Settings.MAX_ENTRIES: 2}),
                ScopedOverride("/var/*", {Settings.MAX_ENTRIES: 7}),
            ],
        )
        assert config.get_number(Settings.MAX_ENTRIES, Path("/var/app.log")) == 2
        assert config.get_number(Settings.MAX_ENTRIES, Path("/var/app.txt")) == 7
        assert config.get_number(Settings.MAX_ENTRIES, Path("/home/a.txt")) == 20
        assert config.get_number(Settings.MAX_ENTRIES) == 20

    def test_override_without_key_falls_through(self, tmp_path):
        config = HistoryConfig(
            path=tmp_path,
            overrides=[ScopedOverride("*.log", {Settings.MERGE_PERIOD: 0})],
        )
        assert config.get_number(Settings.MAX_ENTRIES, Path("/a.log")) == 50
        assert config.get_number(Settings.MERGE_PERIOD, Path("/a.log")) == 0

    def test_negative_clamps_to_zero(self, tmp_path):
        config = HistoryConfig(path=tmp_path, settings={Settings.MERGE_PERIOD: -5})
        assert config.get_number(Settings.MERGE_PERIOD) == 0

    def test_unknown_key(self, tmp_path):
        with pytest.raises(KeyError):
            HistoryConfig(path=tmp_path).get_number("colour")

    def test_history_home(self, tmp_path):
        assert HistoryConfig(path=tmp_path).history_home == tmp_path / "History"


class TestLoadSave:
    def test_round_trip(self, tmp_path):
        config = HistoryConfig(
            path=tmp_path,
            settings={Settings.MAX_ENTRIES: 5},
            overrides=[ScopedOverride("*.log", {Settings.MERGE_PERIOD: 0})],
            remote=RemoteConfig("https://api.example.com", "secret"),
        )
        save_config(config)

        loaded = load_config(tmp_path)

        assert loaded.settings[Settings.MAX_ENTRIES] == 5
        assert loaded.settings[Settings.MERGE_PERIOD] == 10
        assert loaded.overrides[0].pattern == "*.log"
        assert loaded.overrides[0].values == {Settings.MERGE_PERIOD: 0}
        assert loaded.remote == RemoteConfig("https://api.example.com", "secret")
        assert loaded.created == config.created

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_non_number_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[history]\nmax_file_entries = "lots"\n')
        with pytest.raises(ValueError, match="must be a number"):
            load_config(tmp_path)

    def test_bool_is_not_a_number(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[history]\nmerge_period = true\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_override_needs_pattern(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[[history.overrides]]\nmax_file_entries = 3\n")
        with pytest.raises(ValueError, match="pattern"):
            load_config(tmp_path)

    def test_load_or_create(self, tmp_path):
        store = tmp_path / "store"

        created = load_or_create_config(store)

        assert (store / CONFIG_FILENAME).exists()
        assert created.remote is None
        assert load_or_create_config(store).created == created.created


class TestEnvironment:
    def test_default_store_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOCALHISTORY_STORE_PATH", str(tmp_path))
        assert get_default_store_path() == tmp_path.resolve()

    def test_default_store_path(self):
        assert get_default_store_path() == Path.home() / ".localhistory"

    def test_remote_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOCALHISTORY_REMOTE_URL", "https://env.example.com")
        monkeypatch.setenv("LOCALHISTORY_REMOTE_KEY", "env-key")

        config = load_or_create_config(tmp_path)

        assert config.remote == RemoteConfig("https://env.example.com", "env-key")
        # Environment values are not persisted
        assert "env.example.com" not in (tmp_path / CONFIG_FILENAME).read_text()

    def test_env_key_overrides_toml_key(self, tmp_path, monkeypatch):
        save_config(HistoryConfig(path=tmp_path, remote=RemoteConfig("https://api.example.com", "toml-key")))
        monkeypatch.setenv("LOCALHISTORY_REMOTE_KEY", "env-key")

        config = load_config(tmp_path)

        assert config.remote == RemoteConfig("https://api.example.com", "env-key")
