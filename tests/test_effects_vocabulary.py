"""
Unit tests for the effect vocabulary
"""

import logging

import pytest

from medsafety.knowledge.effects_vocabulary import (
    ALLOWED_EFFECTS,
    AliasUsageLogger,
    describe_effect,
    is_valid_effect,
    normalize_all,
    normalize_effect,
    validate_effects
)


class TestNormalizeEffect:
    """Test tag normalization"""

    @pytest.mark.parametrize("alias,canonical", [
        ("QT_prolonging", "qt_prolonging"),
        ("GI_bleeding", "gi_bleeding"),
        ("PPI_effects", "ppi_effects"),
        ("SIADH", "siadh"),
        ("CNS_effects", "cns_effects"),
    ])
    def test_legacy_aliases_map_to_canonical(self, alias, canonical):
        """Test legacy spellings are rewritten"""
        assert normalize_effect(alias) == canonical

    def test_canonical_tags_pass_through(self):
        """Test canonical tags are returned unchanged"""
        for tag in ALLOWED_EFFECTS:
            assert normalize_effect(tag) == tag

    def test_unknown_tag_falls_back_to_lowercase(self):
        """Test unknown input is lowercased, not rejected"""
        assert normalize_effect("  Made_Up ") == "made_up"
        assert not is_valid_effect("Made_Up")

    def test_non_string_input(self):
        """Test non-string input never raises"""
        assert normalize_effect(None) == ""
        assert normalize_effect(42) == ""
        assert not is_valid_effect(None)

    def test_alias_callback_only_for_rewrites(self):
        """Test the alias callback fires for legacy spellings only"""
        calls = []
        normalize_effect("QT_prolonging", lambda a, c: calls.append((a, c)))
        normalize_effect("qt_prolonging", lambda a, c: calls.append((a, c)))

        assert calls == [("QT_prolonging", "qt_prolonging")]

    def test_all_tags_are_snake_case(self):
        """Test the vocabulary is lowercase snake_case"""
        for tag in ALLOWED_EFFECTS:
            assert tag == tag.lower()
            assert " " not in tag


class TestValidateEffects:
    """Test list validation"""

    def test_mixed_list(self):
        """Test valid, aliased, invalid and junk entries together"""
        result = validate_effects(["sedating", "GI_bleeding", "made_up", "", 5, "sedating"])

        assert result.valid is False
        assert result.invalid == ["made_up"]
        assert result.normalized == ["sedating", "gi_bleeding"]

    def test_empty_input_is_valid(self):
        """Test None and empty lists"""
        assert validate_effects(None).valid
        assert validate_effects([]).normalized == []

    def test_normalize_all_drops_invalid(self):
        """Test normalize_all returns the canonical set and the dropped tags"""
        effects, dropped = normalize_all(["SIADH", "bogus"])

        assert effects == frozenset({"siadh"})
        assert dropped == ["bogus"]

    def test_describe_effect(self):
        """Test descriptions resolve through aliases"""
        assert "QT" in describe_effect("QT_prolonging")
        assert describe_effect("bogus") is None


class TestAliasUsageLogger:
    """Test the deprecation side channel"""

    def test_warns_once_per_alias(self, caplog):
        """Test repeated aliases produce one warning"""
        aliases = AliasUsageLogger()

        with caplog.at_level(logging.WARNING):
            validate_effects(["QT_prolonging", "QT_prolonging"], aliases)
            validate_effects(["QT_prolonging", "SIADH"], aliases)

        warnings = [r for r in caplog.records if "Deprecated effect alias" in r.getMessage()]
        assert len(warnings) == 2
        assert aliases.seen == frozenset({"QT_prolonging", "SIADH"})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
