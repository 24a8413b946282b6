"""Tests for the core data model."""

from __future__ import annotations

import pytest

from timeline_resolver.models import (
    LONG_AGO,
    NO_PERIOD,
    UNKNOWN,
    AttributionEntry,
    Confidence,
    GenreFamily,
    Outcome,
    Reliability,
    Source,
    TierResult,
    format_period,
    format_year,
    has_genre,
)


class TestReliability:
    """Tests for reliability finality."""

    @pytest.mark.parametrize(
        "reliability,final",
        [
            (Reliability.VERIFIED, True),
            (Reliability.HIGH, True),
            (Reliability.MEDIUM, False),
            (Reliability.LOW, False),
        ],
    )
    def test_is_final(self, reliability, final):
        """Only Verified and High are final."""
        assert reliability.is_final is final


class TestConfidenceParse:
    """Tests for lenient confidence parsing."""

    def test_parses_case_insensitively(self):
        """Provider output like 'High ' maps to Confidence.HIGH."""
        assert Confidence.parse("High ") is Confidence.HIGH

    def test_unknown_value_falls_back(self):
        """Unrecognised values use the default."""
        assert Confidence.parse("certain") is Confidence.MEDIUM
        assert Confidence.parse(None, default=Confidence.LOW) is Confidence.LOW

    def test_enum_passthrough(self):
        """An existing Confidence is returned unchanged."""
        assert Confidence.parse(Confidence.LOW) is Confidence.LOW


class TestSourceTags:
    """Tests for derived provider source tags."""

    def test_provider_tags(self):
        """Rate-limit and error tags are suffixed with the provider name."""
        assert Source.rate_limit("gemini") == "gemini_rate_limit"
        assert Source.error("deepseek") == "deepseek_error"


class TestGenreMatching:
    """Tests for genre family matching across locales."""

    def test_english_tag(self):
        """English genre names match their family."""
        assert GenreFamily.FANTASY.matches(["Drama", "Fantasy"])

    def test_japanese_tag(self):
        """Japanese genre names match their family."""
        assert GenreFamily.SCIENCE_FICTION.matches(["サイエンスフィクション"])
        assert GenreFamily.ANIMATION.matches(["アニメーション"])

    def test_word_boundary(self):
        """'war' must not match inside an unrelated word."""
        assert not GenreFamily.WAR.matches(["Software Drama"])
        assert GenreFamily.WAR.matches(["War"])

    def test_has_genre_any_family(self):
        """has_genre is true when any family matches."""
        assert has_genre(["History"], GenreFamily.WAR, GenreFamily.HISTORY)
        assert not has_genre(None, GenreFamily.WAR)


class TestFormatting:
    """Tests for period label formatting."""

    def test_single_year(self):
        assert format_period(1944) == "1944"

    def test_range(self):
        assert format_period(1939, 1945) == "1939-1945"

    def test_same_start_and_end(self):
        """A range of one year renders as that year."""
        assert format_period(1944, 1944) == "1944"

    def test_bc_year(self):
        """Negative years render in BC notation."""
        assert format_year(-44) == "44 BC"
        assert format_period(-323, -30) == "323 BC-30 BC"

    def test_missing_start(self):
        assert format_period(None) == UNKNOWN


class TestSubjectMetadata:
    """Tests for subject metadata helpers."""

    def test_release_year(self, make_metadata):
        assert make_metadata(release_date="1997-12-19").release_year == 1997
        assert make_metadata(release_date=None).release_year is None

    def test_combined_text_lowercases_everything(self, make_metadata):
        """Titles and both synopses are joined and lowercased."""
        meta = make_metadata(
            title="Dunkirk", original_title="", overview="In 1940...", overview_secondary="ダンケルク"
        )
        assert meta.combined_text() == "dunkirk\nin 1940...\nダンケルク"


class TestTierResult:
    """Tests for tier result usability."""

    def test_year_is_usable(self):
        result = TierResult(outcome=Outcome.RESOLVED, source="pattern", start_year=1944)
        assert result.usable

    def test_answer_sentinel_is_usable(self):
        assert TierResult.sentinel(NO_PERIOD, "pattern").usable

    def test_unknown_is_not_usable(self):
        """UNKNOWN means failure, not an answer."""
        result = TierResult(outcome=Outcome.RESOLVED, source="x", period_label=UNKNOWN)
        assert not result.usable

    def test_failed_outcome_is_not_usable(self):
        result = TierResult(outcome=Outcome.ERROR, source="x", start_year=1944)
        assert not result.usable


class TestAttributionEntry:
    """Tests for entry invariants and serialisation."""

    def test_rejects_non_sentinel_label_without_year(self, make_entry):
        """A free-text label requires a start year."""
        with pytest.raises(ValueError):
            make_entry(start_year=None, period_label="1940s")

    def test_accepts_sentinel_without_year(self, make_entry):
        entry = make_entry(start_year=None, period_label=LONG_AGO)
        assert entry.start_year is None

    def test_rejects_additional_years_without_start(self, make_entry):
        with pytest.raises(ValueError):
            make_entry(start_year=None, period_label=UNKNOWN, additional_years=(1944,))

    def test_empty_additional_years_normalised(self, make_entry):
        """An empty tuple is stored as None."""
        assert make_entry(additional_years=()).additional_years is None

    def test_rejects_empty_subject_id(self, make_entry):
        with pytest.raises(ValueError):
            make_entry(subject_id="")

    def test_dict_round_trip(self, make_entry):
        """to_dict/from_dict preserve every stored field."""
        entry = make_entry(start_year=1863, end_year=1944, additional_years=(1944,), notes="n")
        assert AttributionEntry.from_dict(entry.to_dict()) == entry

    def test_pending_placeholder(self, make_metadata):
        """Pending placeholders carry the label but are never final."""
        entry = AttributionEntry.pending(make_metadata(subject_id="9"), label="…")
        assert entry.is_pending
        assert entry.period_label == "…"
        assert entry.source == Source.PENDING
        assert not entry.is_final
