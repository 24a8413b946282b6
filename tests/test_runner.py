"""Tests for the diagnostic command line."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from timeline_resolver.runner import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_UNRESOLVED,
    build_arg_parser,
    main,
    metadata_from_args,
    validate_arguments,
)


@pytest.fixture
def offline_config(tmp_path, monkeypatch):
    """Config file with local stores, no reference locales and no inference providers."""
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        f"ephemeral_cache_path: {tmp_path / 'ephemeral.json'}\n"
        f"durable_store_path: {tmp_path / 'store.json'}\n"
        "reference_locales: []\n"
        "providers:\n"
        "  - name: deepseek\n"
        "    enabled: false\n"
        "  - name: gemini\n"
        "    enabled: false\n",
        encoding="utf-8",
    )
    return str(path)


def _output_entries(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]


class TestArguments:
    """Tests for argument parsing and validation."""

    def test_override_years(self):
        args = build_arg_parser().parse_args(["603", "--override", "1939", "1945"])
        assert args.override == [1939, 1945]
        assert validate_arguments(args) is None

    def test_override_needs_single_subject(self):
        args = build_arg_parser().parse_args(["603", "604", "--override", "2199"])
        assert "exactly one" in validate_arguments(args)

    def test_override_too_many_years(self):
        args = build_arg_parser().parse_args(["603", "--override", "1", "2", "3"])
        assert validate_arguments(args) is not None

    def test_sentinel_override_needs_label(self):
        args = build_arg_parser().parse_args(["603", "--override"])
        assert "--label" in validate_arguments(args)

    def test_title_needs_single_subject(self):
        args = build_arg_parser().parse_args(["1", "2", "--title", "Dunkirk"])
        assert validate_arguments(args) is not None

    def test_metadata_from_args(self):
        args = build_arg_parser().parse_args(
            ["42", "--title", "Last Samurai", "--year", "2003", "--genre", "Drama", "--genre", "War"]
        )
        meta = metadata_from_args("42", args)
        assert meta.release_year == 2003
        assert meta.genres == ["Drama", "War"]


class TestMain:
    """End-to-end runs against local stores."""

    def test_resolves_from_supplied_metadata(self, offline_config, capsys):
        code = main(
            [
                "999001",
                "--config",
                offline_config,
                "--title",
                "Last Samurai",
                "--year",
                "2003",
                "--overview",
                "The story is set in 1876, as Japan modernises.",
            ]
        )
        entries = _output_entries(capsys)

        assert code == EXIT_OK
        assert entries[0]["start_year"] == 1876
        assert entries[0]["reliability"] == "high"

    def test_unresolved_subject_exit_code(self, offline_config, capsys):
        code = main(["999002", "--config", offline_config, "--title", "Quiet Days", "--overview", "Two friends talk."])
        entries = _output_entries(capsys)

        assert code == EXIT_UNRESOLVED
        assert entries[0]["period_label"] == "UNKNOWN"
        assert entries[0]["reliability"] == "low"

    def test_override_persists(self, offline_config, capsys):
        assert main(["603", "--config", offline_config, "--override", "2199", "--notes", "checked"]) == EXIT_OK
        override = _output_entries(capsys)[0]
        assert override["reliability"] == "verified"
        assert override["source"] == "user_supplied"

        # a later run is served from the cache without touching the tiers
        assert main(["603", "--config", offline_config, "--title", "Anything"]) == EXIT_OK
        assert _output_entries(capsys)[0]["start_year"] == 2199

    def test_sentinel_override(self, offline_config, capsys):
        assert main(["11", "--config", offline_config, "--override", "--label", "LONG_AGO"]) == EXIT_OK
        assert _output_entries(capsys)[0]["period_label"] == "LONG_AGO"

    def test_invalid_override_is_an_error(self, offline_config):
        assert main(["603", "--config", offline_config, "--override", "1945", "1939"]) == EXIT_ERROR

    def test_missing_tmdb_key_is_an_error(self, offline_config):
        assert main(["603", "--config", offline_config]) == EXIT_ERROR

    def test_missing_config_file(self, tmp_path):
        assert main(["603", "--config", str(tmp_path / "absent.yaml")]) == EXIT_ERROR

    def test_validation_error(self, offline_config):
        assert main(["1", "2", "--config", offline_config, "--override", "2000"]) == EXIT_ERROR

    def test_unreadable_durable_store_is_an_error(self, offline_config, tmp_path):
        (tmp_path / "store.json").write_text("{broken", encoding="utf-8")
        assert main(["603", "--config", offline_config, "--title", "Dunkirk"]) == EXIT_ERROR

    def test_tmdb_transport_error_is_an_error(self, offline_config, monkeypatch, capsys):
        monkeypatch.setenv("TMDB_API_KEY", "key")
        monkeypatch.setattr(
            "timeline_resolver.metadata.TMDbMetadataClient.fetch",
            AsyncMock(side_effect=httpx.ConnectError("refused")),
        )
        assert main(["603", "--config", offline_config]) == EXIT_ERROR
        assert _output_entries(capsys) == []
