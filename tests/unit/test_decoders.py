"""Unit tests for the four format decoders."""

import json
import logging
from datetime import date

import pytest

from conftest import amd_line
from hemicycle.errors import ArchiveError, MissingTableError
from hemicycle.lib.decoders import (
    decode_ameli_dump,
    decode_archive,
    decode_directory,
    decode_flat_json,
    decode_registry,
    extract_archive,
)
from hemicycle.lib.decoders.archive import iter_files, record_under
from hemicycle.lib.decoders.relational_csv import REGISTRY_FILES, parse_spend
from hemicycle.lib.decoders.sql_dump import unescape_copy


class TestArchiveDecoder:
    """Test the archive-of-records decoder."""

    def test_counts_valid_and_malformed_files(self, make_zip, tmp_path):
        """Test N valid and M malformed files give N records and M skipped."""
        members = {f"json/acteur/PA{i}.json": {"acteur": {"uid": f"PA{i}"}} for i in range(5)}
        members["json/acteur/broken1.json"] = "{not json"
        members["json/acteur/broken2.json"] = '{"acteur": '
        archive = make_zip("deputes.zip", members)

        result = decode_archive(archive, tmp_path / "out", parse=record_under("acteur"))

        assert len(result.records) == 5
        assert result.skipped == 2
        assert sorted(result.skipped_files) == ["broken1.json", "broken2.json"]
        assert result.files_seen == 7

    def test_malformed_file_does_not_stop_later_files(self, make_zip, tmp_path):
        """Test files after a malformed one are still decoded."""
        archive = make_zip("a.zip", {
            "a.json": {"v": 1},
            "b.json": "garbage",
            "c.json": {"v": 3},
        })
        result = decode_archive(archive, tmp_path / "out")
        assert [r["v"] for r in result.records] == [1, 3]

    def test_record_without_key_is_ignored_not_skipped(self, make_zip, tmp_path):
        """Test documents lacking the record key are counted as ignored."""
        archive = make_zip("a.zip", {
            "a.json": {"amendement": {"uid": "A1"}},
            "b.json": {"other": {}},
        })
        result = decode_archive(archive, tmp_path / "out", parse=record_under("amendement"))
        assert result.records == [{"uid": "A1"}]
        assert result.ignored == 1
        assert result.skipped == 0

    def test_pattern_filters_files(self, make_zip, tmp_path):
        """Test only files matching the pattern are parsed."""
        archive = make_zip("a.zip", {"a.json": {"v": 1}, "readme.txt": "hello"})
        result = decode_archive(archive, tmp_path / "out")
        assert result.files_seen == 1

    def test_sort_and_limit(self, make_zip, tmp_path):
        """Test sort_key with reverse and limit keep the highest numbered files."""
        archive = make_zip("s.zip", {f"json/VTANR5L17V{i}.json": {"scrutin": {"numero": str(i)}} for i in range(1, 12)})
        result = decode_archive(
            archive, tmp_path / "out", subdir="json", parse=record_under("scrutin"),
            sort_key=lambda p: int(p.stem.split("V")[-1]), reverse=True, limit=3,
        )
        assert [r["numero"] for r in result.records] == ["11", "10", "9"]

    def test_missing_subdir_raises(self, make_zip, tmp_path):
        """Test a missing sub-directory is a source-level error."""
        archive = make_zip("a.zip", {"a.json": {}})
        with pytest.raises(MissingTableError):
            decode_archive(archive, tmp_path / "out", subdir="json")

    def test_corrupt_archive_raises(self, tmp_path):
        """Test a file that is neither zip nor tar raises ArchiveError."""
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"this is not an archive")
        with pytest.raises(ArchiveError):
            extract_archive(bogus, tmp_path / "out")

    def test_unsafe_member_path_rejected(self, make_zip, tmp_path):
        """Test members escaping the destination directory are rejected."""
        archive = make_zip("evil.zip", {"../escape.json": {}})
        with pytest.raises(ArchiveError, match="Unsafe path"):
            extract_archive(archive, tmp_path / "out")

    def test_tar_archive(self, make_tar, tmp_path):
        """Test tar archives are extracted like zip archives."""
        archive = make_tar("AN_1.taz", {"CRI_1.xml": "<CompteRendu/>"})
        root = extract_archive(archive, tmp_path / "out")
        assert [p.name for p in iter_files(root, "CRI_*.xml")] == ["CRI_1.xml"]

    def test_iter_files_walks_nested_directories_in_order(self, tmp_path):
        """Test deep trees are walked depth-first in name order."""
        for path in ["b/2.json", "a/x/1.json", "a/0.json", "c.json"]:
            target = tmp_path / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("{}")
        names = [p.relative_to(tmp_path).as_posix() for p in iter_files(tmp_path)]
        assert names == ["c.json", "a/0.json", "a/x/1.json", "b/2.json"]

    def test_decode_directory_requires_directory(self, tmp_path):
        """Test decoding a missing directory raises MissingTableError."""
        with pytest.raises(MissingTableError):
            decode_directory(tmp_path / "missing")

    def test_list_records_are_flattened(self, tmp_path):
        """Test a parser returning a list contributes every element."""
        (tmp_path / "a.json").write_text(json.dumps([{"v": 1}, {"v": 2}]))
        result = decode_directory(tmp_path)
        assert len(result.records) == 2


class TestFlatJsonDecoder:
    """Test the flat-JSON decoder shapes."""

    def test_keyed_list(self):
        """Test {"amendements": [...]} returns its elements."""
        assert decode_flat_json({"amendements": [{"id": 1}, {"id": 2}]}) == [{"id": 1}, {"id": 2}]

    def test_bare_array(self):
        """Test a bare array is returned as is."""
        assert decode_flat_json([{"id": 1}]) == [{"id": 1}]

    def test_unknown_shape_returns_empty_with_warning(self, caplog):
        """Test an unrecognized object yields an empty list and a warning."""
        with caplog.at_level(logging.WARNING):
            assert decode_flat_json({"foo": 1}) == []
        assert "Unknown flat JSON structure" in caplog.text

    def test_items_key(self):
        """Test the generic items key."""
        assert decode_flat_json('{"items": [1, 2, 3]}') == [1, 2, 3]

    def test_nested_wrapper_single_object(self):
        """Test a nested wrapper holding one object yields a one-element list."""
        document = {"export": {"amendements": {"amendement": {"uid": "A1"}}}}
        assert decode_flat_json(document) == [{"uid": "A1"}]

    def test_nested_wrapper_list(self):
        """Test a nested wrapper holding a list yields the list."""
        document = {"export": {"amendements": {"amendement": [{"uid": "A1"}, {"uid": "A2"}]}}}
        assert len(decode_flat_json(document)) == 2

    def test_bytes_input(self):
        """Test raw bytes are decoded as UTF-8 JSON."""
        assert decode_flat_json(b'[{"nom": "L\xc3\xa9on"}]') == [{"nom": "Léon"}]

    def test_invalid_json_does_not_raise(self):
        """Test invalid JSON text returns an empty list."""
        assert decode_flat_json("{oops") == []

    def test_custom_list_keys(self):
        """Test sources can declare their own list keys."""
        assert decode_flat_json({"votes": [{"vote": "p"}]}, list_keys=("votes",)) == [{"vote": "p"}]

    def test_scalar_document(self):
        """Test a scalar JSON document is an unknown shape."""
        assert decode_flat_json("42") == []


class TestRelationalCsvDecoder:
    """Test the relational CSV decoder joins."""

    def test_children_belong_to_their_root(self, write_registry, sample_registry_tables):
        """Test nested children only carry rows whose foreign key matches the root."""
        result = decode_registry(write_registry(sample_registry_tables))
        orgs = {o["id"]: o for o in result.organizations}

        assert orgs["1001"]["sectors"] == ["Énergie"]
        assert orgs["1002"]["sectors"] == ["Agriculture"]
        assert orgs["1001"]["collaborator_count"] == 2
        assert orgs["1002"]["collaborator_count"] == 1
        assert [a["id"] for a in orgs["1001"]["activities"]] == ["A1"]
        assert [a["id"] for a in orgs["1002"]["activities"]] == ["A2"]

    def test_action_details_are_joined_through_link_table(self, write_registry, sample_registry_tables):
        """Test action types, targets and decisions reach the activity through observations."""
        result = decode_registry(write_registry(sample_registry_tables))
        activity = next(o for o in result.organizations if o["id"] == "1001")["activities"][0]

        assert activity["action_id"] == "ACT1"
        assert activity["domains"] == ["Énergie"]
        assert activity["action_types"] == ["Rendez-vous"]
        assert activity["decisions"] == ["Projet de loi énergie"]
        assert activity["targets"] == [{"type": "Député", "name": "Commission des affaires économiques"}]

    def test_limit_applies_to_root_before_joins(self, write_registry, sample_registry_tables):
        """Test a limit keeps the first roots and only their children."""
        result = decode_registry(write_registry(sample_registry_tables), limit=1)
        assert [o["id"] for o in result.organizations] == ["1001"]
        activity_ids = [a["id"] for o in result.organizations for a in o["activities"]]
        assert activity_ids == ["A1"]

    def test_exercise_spend_and_employees(self, write_registry, sample_registry_tables):
        """Test exercise budgets come from the lower bound, else from the label."""
        result = decode_registry(write_registry(sample_registry_tables))
        orgs = {o["id"]: o for o in result.organizations}
        assert orgs["1001"]["exercises"][0]["spend"] == 75000.0
        assert orgs["1001"]["exercises"][0]["employees"] == 4
        assert orgs["1002"]["exercises"][0]["spend"] == 10000.0

    def test_ragged_rows_do_not_abort(self, write_registry, sample_registry_tables):
        """Test rows with too many fields are truncated and counted."""
        csv_dir = write_registry(sample_registry_tables)
        path = csv_dir / REGISTRY_FILES["organizations"]
        path.write_text(
            path.read_text(encoding="utf-8") + "1003;Extra SA;;;Autre;;;;;surplus;more\n",
            encoding="utf-8",
        )
        result = decode_registry(csv_dir)
        assert result.ragged_rows == 1
        assert "1003" in {o["id"] for o in result.organizations}

    def test_embedded_quotes(self, write_registry, sample_registry_tables):
        """Test quoted fields holding the delimiter are read whole."""
        csv_dir = write_registry(sample_registry_tables)
        path = csv_dir / REGISTRY_FILES["organizations"]
        path.write_text(
            path.read_text(encoding="utf-8") + '1004;"Dupont; Fils et ""Associés""";;;Autre;;;;\n',
            encoding="utf-8",
        )
        result = decode_registry(csv_dir)
        names = {o["id"]: o["name"] for o in result.organizations}
        assert names["1004"] == 'Dupont; Fils et "Associés"'

    def test_missing_table_raises(self, write_registry, sample_registry_tables):
        """Test a missing table is a source-level error."""
        csv_dir = write_registry(sample_registry_tables)
        (csv_dir / REGISTRY_FILES["targets"]).unlink()
        with pytest.raises(MissingTableError):
            decode_registry(csv_dir)

    def test_parse_spend(self):
        """Test budget parsing from the bound column and from labels."""
        assert parse_spend("1500", "") == 1500.0
        assert parse_spend("", "≥ 75 000 € et < 100 000 €") == 75000.0
        assert parse_spend("", "") is None


class TestAmeliDumpDecoder:
    """Test the streaming dump decoder."""

    def test_recency_filter(self, ameli_dump_lines):
        """Test 3 amendments before the cutoff and 2 after keep only the 2 recent ones."""
        result = decode_ameli_dump(ameli_dump_lines, min_date=date(2023, 1, 1), max_amendments=100)
        assert sorted(result.amendments) == ["4", "5"]
        assert result.filtered == 3

    def test_authors_linked_after_stream(self, ameli_dump_lines):
        """Test author links and senator matricules are merged whatever the block order."""
        result = decode_ameli_dump(ameli_dump_lines, min_date=date(2023, 1, 1), max_amendments=100)
        authors = result.amendments["4"]["authors"]
        assert len(authors) == 1
        assert authors[0]["matricule"] == "19950A"
        assert authors[0]["last_name"] == "Dupont"

    def test_outcome_labels_joined(self, ameli_dump_lines):
        """Test the outcome table is joined by sort id."""
        result = decode_ameli_dump(ameli_dump_lines, min_date=date(2023, 1, 1), max_amendments=100)
        assert result.amendments["4"]["sort_label"] == "Rejeté"
        assert result.amendments["5"]["sort_code"] == "A"

    def test_text_is_sanitized(self, ameli_dump_lines):
        """Test markup is stripped and entities decoded in free text."""
        amendment = decode_ameli_dump(ameli_dump_lines, min_date=date(2023, 1, 1), max_amendments=100).amendments["4"]
        assert amendment["body"] == "Supprimer l'alinéa 2."
        assert amendment["summary"] == "Objet : cohérence"

    def test_short_line_is_counted_not_fatal(self, ameli_dump_lines):
        """Test a truncated line is skipped and counted."""
        lines = list(ameli_dump_lines)
        lines.insert(lines.index("COPY public.amd (id, ...) FROM stdin;") + 1, "6\tonly\tthree")
        result = decode_ameli_dump(lines, min_date=date(2023, 1, 1), max_amendments=100)
        assert result.skipped_lines == 1
        assert len(result.amendments) == 2

    def test_max_amendments(self, ameli_dump_lines):
        """Test the amendment cap bounds the output."""
        result = decode_ameli_dump(ameli_dump_lines, min_date=date(2000, 1, 1), max_amendments=2)
        assert len(result.amendments) == 2

    def test_reads_file_path(self, ameli_dump_lines, tmp_path):
        """Test the decoder streams a dump file from disk."""
        path = tmp_path / "ameli.sql"
        path.write_text("\n".join(ameli_dump_lines) + "\n", encoding="latin-1")
        result = decode_ameli_dump(path, min_date=date(2023, 1, 1), max_amendments=100)
        assert result.lines_read == len(ameli_dump_lines)
        assert sorted(result.amendments) == ["4", "5"]

    def test_escaped_backslash_is_not_combined(self, ameli_dump_lines):
        """Test an escaped backslash followed by 'n' stays a backslash and a letter."""
        line = amd_line("6", "2024-01-10").split("\t")
        line[19] = "C:\\\\new\\tdossier"
        lines = list(ameli_dump_lines)
        lines.insert(lines.index("COPY public.amd (id, ...) FROM stdin;") + 1, "\t".join(line))

        result = decode_ameli_dump(lines, min_date=date(2023, 1, 1), max_amendments=100)

        assert result.amendments["6"]["summary"] == "C:\\new dossier"


class TestUnescapeCopy:
    """Test COPY text escape decoding."""

    def test_single_pass(self):
        """Test each escape is decoded once, left to right."""
        assert unescape_copy("a\\\\nb") == "a\\nb"
        assert unescape_copy("a\\nb") == "a\nb"
        assert unescape_copy("\\\\\\\\") == "\\\\"
        assert unescape_copy("col1\\tcol2\\r") == "col1\tcol2\r"

    def test_unknown_escape_is_literal(self):
        """Test an escaped ordinary character stands for itself."""
        assert unescape_copy("l\\'alin\\éa") == "l'alinéa"

    def test_plain_text_unchanged(self):
        """Test text without backslashes is returned as is."""
        assert unescape_copy("Objet : cohérence") == "Objet : cohérence"
