"""Unit tests for text normalization helpers."""

from datetime import date

import pytest

from hemicycle.lib.text_utils import (
    as_list,
    as_optional_str,
    classify_intervention,
    extract_keywords,
    extract_tags,
    guess_group_position,
    normalize_name,
    normalize_outcome,
    parse_date,
    sanitize_text,
    slugify,
    to_int,
)


class TestSanitizeText:
    """Test markup stripping and entity decoding."""

    def test_strips_tags_then_decodes_entities(self):
        """Test tags are removed before entities are decoded."""
        assert sanitize_text("<p>L&#39;article&nbsp;2 est <b>supprim&eacute;</b>.</p>") == "L'article 2 est supprimé."

    def test_decoded_markup_is_kept_as_text(self):
        """Test escaped markup survives as literal text since tags go first."""
        assert sanitize_text("a &lt;b&gt; c") == "a <b> c"

    def test_hex_entities(self):
        """Test hexadecimal character references."""
        assert sanitize_text("caf&#x00E9;") == "café"

    def test_whitespace_collapsed(self):
        """Test runs of whitespace become a single space."""
        assert sanitize_text("  un\n\n  deux\t trois ") == "un deux trois"

    def test_empty_results_are_none(self):
        """Test empty and markup-only input give None."""
        assert sanitize_text(None) is None
        assert sanitize_text("<br/>  ") is None


class TestSlugAndNames:
    """Test slug and name normalization."""

    @pytest.mark.parametrize("parts,expected", [
        (("Jean-Luc", "Mélenchon"), "jean-luc-melenchon"),
        (("Éric", "Coquerel"), "eric-coquerel"),
        (("Marie", "d'Aubigné  (LFI)"), "marie-d-aubigne-lfi"),
        (("", "Larcher"), "larcher"),
    ])
    def test_slugify(self, parts, expected):
        """Test slugs are lower-case, accent-free and dash separated."""
        assert slugify(*parts) == expected

    def test_normalize_name(self):
        """Test names lose accents, hyphens and apostrophes."""
        assert normalize_name("Saint-Étienne d’Arc") == "saint etienne d arc"
        assert normalize_name(None) == ""


class TestOptionalFields:
    """Test coercion of string-or-object upstream fields."""

    @pytest.mark.parametrize("value,expected", [
        ("PA123", "PA123"),
        ({"#text": "PA123"}, "PA123"),
        ({"@xsi:nil": "true"}, None),
        (12, "12"),
        ("  ", None),
        (None, None),
        ([], None),
        (True, None),
    ])
    def test_as_optional_str(self, value, expected):
        """Test every known shape maps to one optional string."""
        assert as_optional_str(value) == expected

    def test_as_list(self):
        """Test single objects are wrapped and None becomes empty."""
        assert as_list({"a": 1}) == [{"a": 1}]
        assert as_list([1, 2]) == [1, 2]
        assert as_list(None) == []

    def test_to_int(self):
        """Test integer parsing with a default."""
        assert to_int(" 42 ") == 42
        assert to_int("n/a") == 0
        assert to_int(None, default=-1) == -1

    def test_parse_date(self):
        """Test ISO timestamps keep their date part."""
        assert parse_date("2024-03-12T10:00:00+01:00") == date(2024, 3, 12)
        assert parse_date("12/03/2024") is None
        assert parse_date(None) is None


class TestClassification:
    """Test keyword tags, group positions and outcomes."""

    def test_extract_tags(self):
        """Test ballot titles map to thematic tags."""
        tags = extract_tags("Projet de loi de finances pour 2025 : budget de la Sécurité sociale")
        assert "budget" in tags
        assert "securite" in tags
        assert extract_tags(None) == []

    def test_extract_keywords_capped(self):
        """Test speech keywords are capped."""
        content = "budget police hôpital climat immigration emploi école justice europe agriculture"
        assert len(extract_keywords(content)) == 5

    @pytest.mark.parametrize("label,expected", [
        ("La France insoumise - Nouveau Front Populaire", "gauche"),
        ("Socialistes et apparentés", "centre_gauche"),
        ("Ensemble pour la République", "centre"),
        ("Droite Républicaine", "droite"),
        ("Rassemblement National", "extreme_droite"),
        (None, "centre"),
    ])
    def test_guess_group_position(self, label, expected):
        """Test group labels map to a position bucket."""
        assert guess_group_position(label) == expected

    @pytest.mark.parametrize("label,expected", [
        ("Adopté", "adopte"),
        ("Adopté sans modification", "adopte"),
        ("Adopté avec modifications", "adopte_modifie"),
        ("Rejeté", "rejete"),
        ("Retiré", "retire"),
        ("Tombé", "tombe"),
        ("Non soutenu", "non_soutenu"),
        ("Irrecevable", "irrecevable"),
        ("En traitement", None),
        (None, None),
    ])
    def test_normalize_outcome(self, label, expected):
        """Test amendment outcome labels map to canonical outcomes."""
        assert normalize_outcome(label) == expected

    def test_classify_intervention(self):
        """Test speeches are typed from their content."""
        assert classify_intervention("Ma question s'adresse au ministre") == "question"
        assert classify_intervention("Au titre des explications de vote") == "explication_vote"
        assert classify_intervention("Cet amendement est essentiel") == "intervention"
