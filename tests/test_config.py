"""Tests for medbot.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from medbot.config import GambleConfig, MedbotConfig, load_config

from conftest import make_config_dict

REPO_ROOT = Path(__file__).resolve().parent.parent


class TestMedbotConfig:
    """Model parsing and validation."""

    def test_defaults(self):
        cfg = MedbotConfig()
        assert cfg.login.host == "irc.chat.twitch.tv"
        assert cfg.login.port == 6667
        assert cfg.connection.tick_interval_ms == 200
        assert (cfg.currency.name, cfg.currency.plural, cfg.currency.units) == ("gold", "gold", "g")
        assert cfg.currency.reward_idles is False
        assert (cfg.experience.active_exp, cfg.experience.idle_exp) == (5, 1)
        assert cfg.settings.leaderboard_top == 3
        assert cfg.dictionary.new_rank_message == "{0} got a new rank: [{1}] {2}!"

    def test_full_config(self, sample_config_dict: dict):
        cfg = MedbotConfig(**sample_config_dict)
        assert cfg.login.channel == "testchannel"
        assert cfg.blacklist == ["NightBot"]

    def test_login_names_normalised(self):
        cfg = MedbotConfig(login={"bot_name": "MedBot", "channel": "#SomeChannel"})
        assert cfg.login.bot_name == "medbot"
        assert cfg.login.channel == "somechannel"

    def test_invalid_tick_interval(self):
        with pytest.raises(ValidationError):
            MedbotConfig(**make_config_dict(connection={"tick_interval_ms": 0}))


class TestGambleNormalisation:
    """Odds leaving no room for a loss fall back to 20/2."""

    def test_valid_odds_kept(self):
        cfg = GambleConfig(win_percentage=30, bonus_win_percentage=5)
        assert (cfg.win_percentage, cfg.bonus_win_percentage) == (30, 5)

    @pytest.mark.parametrize("win,bonus", [(98, 2), (90, 20), (100, 0)])
    def test_normalised(self, win: int, bonus: int):
        cfg = GambleConfig(win_percentage=win, bonus_win_percentage=bonus)
        assert (cfg.win_percentage, cfg.bonus_win_percentage) == (20, 2)


class TestLoadConfig:
    """YAML loading with env var expansion."""

    def test_load(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(make_config_dict()))
        cfg = load_config(str(path))
        assert cfg.login.bot_name == "medbot"

    def test_env_expansion(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MEDBOT_TEST_OAUTH", "abc123")
        path = tmp_path / "config.yaml"
        path.write_text(
            "login:\n"
            "  oauth: ${MEDBOT_TEST_OAUTH}\n"
            "  channel: ${MEDBOT_TEST_UNSET:-fallback}\n"
        )
        cfg = load_config(str(path))
        assert cfg.login.oauth == "abc123"
        assert cfg.login.channel == "fallback"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_example_config_is_valid(self, monkeypatch):
        monkeypatch.setenv("MEDBOT_OAUTH", "x")
        monkeypatch.setenv("MEDBOT_CHANNEL", "somechannel")
        cfg = load_config(str(REPO_ROOT / "config.example.yaml"))
        assert cfg.login.channel == "somechannel"
        assert "nightbot" in cfg.blacklist
