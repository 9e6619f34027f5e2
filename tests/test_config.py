"""
tests/test_config.py — config.yaml Loader Tests
================================================
"""

from __future__ import annotations

import pytest

from questline.config import load_config
from questline.services.collaborators import build_collaborators, load_collaborator


def _write(tmp_path, body: str):
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, (
            "community_name: Test\n"
            "guild_id: 100\n"
            "admin_role_id: 200\n"
        )))
        assert cfg.guild_id == 100
        assert cfg.bot_prefix == "!"
        assert cfg.timezone == "UTC"
        assert cfg.tracking_cache_ttl_seconds == 300
        assert cfg.reset_interval_hours == 1.0
        assert cfg.reset_initial_delay_seconds == 60
        assert cfg.currency_ledger is None

    def test_quest_and_collaborator_sections(self, tmp_path):
        cfg = load_config(_write(tmp_path, (
            "community_name: Test\n"
            "guild_id: '100'\n"
            "admin_role_id: 200\n"
            "quests:\n"
            "  timezone: Europe/Berlin\n"
            "  tracking_cache_ttl_seconds: 60\n"
            "  reward_timeout_seconds: 2.5\n"
            "  notify_completions: false\n"
            "collaborators:\n"
            "  currency_ledger: 'economy.ledger:CoinLedger'\n"
            "  experience_ledger: ''\n"
        )))
        assert cfg.guild_id == 100
        assert cfg.timezone == "Europe/Berlin"
        assert cfg.tracking_cache_ttl_seconds == 60
        assert cfg.reward_timeout_seconds == 2.5
        assert cfg.notify_completions is False
        assert cfg.currency_ledger == "economy.ledger:CoinLedger"
        assert cfg.experience_ledger is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "community_name: Test\n"))


class TestCollaboratorLoading:
    def test_empty_path(self):
        assert load_collaborator(None) is None
        assert load_collaborator("") is None

    def test_colon_path_instantiates_class(self):
        instance = load_collaborator("collections:OrderedDict")
        assert type(instance).__name__ == "OrderedDict"

    def test_dotted_path(self):
        instance = load_collaborator("collections.Counter")
        assert type(instance).__name__ == "Counter"

    def test_bad_module_raises(self):
        with pytest.raises(ImportError):
            load_collaborator("no_such_module_here:Ledger")

    def test_invalid_path(self):
        with pytest.raises(ValueError):
            load_collaborator("ledger")

    def test_notifier_dropped_when_disabled(self, cfg):
        from dataclasses import replace

        quiet = replace(cfg, notify_completions=False)
        collaborators = build_collaborators(quiet, roles="roles", notifier="notifier")
        assert collaborators.notifier is None
        assert collaborators.roles == "roles"
        assert collaborators.currency is None
