from datetime import datetime

import pytest

import atlas_submittals.etl.extractor as extractor_module
from atlas_submittals.data.dto import RawSheet, Severity
from atlas_submittals.domain.models import DocumentRecord, Priority, ShopDrawingRecord
from atlas_submittals.etl.extractor import RecordExtractor
from atlas_submittals.etl.headers import HeaderDetector

from conftest import DOC_HEADER, FIXED_NOW


def _extract(schema, rows, vocabulary="atlas", project="atlas", now=lambda: FIXED_NOW):
    sheet = RawSheet("Log", [tuple(r) for r in rows])
    detection = HeaderDetector(schema).detect(sheet)
    extractor = RecordExtractor(schema, vocabulary=vocabulary, project=project, now=now)
    return extractor.extract(sheet, detection)


def _codes(result):
    return [d.code for d in result.diagnostics]


def test_scenario_minimal_sheet(doc_schema):
    result = _extract(doc_schema, [[], ["SN", "STATUS", "DOC_NAME"], [1, "Code 1", "Design Spec"]])

    assert result.header_row_index == 1
    assert len(result.records) == 1
    record = result.records[0]
    assert isinstance(record, DocumentRecord)
    assert record.title == "Design Spec"
    assert record.current_status == "CODE1"
    assert record.serial_number == "1"
    assert record.source_row == 3
    assert record.id == 1


def test_document_log_fields_are_normalized(doc_schema, doc_sheet):
    detection = HeaderDetector(doc_schema).detect(doc_sheet)
    result = RecordExtractor(doc_schema, now=lambda: FIXED_NOW).extract(doc_sheet, detection)

    assert [r.external_id for r in result.records] == ["DOC-001", "DOC-002", "DOC-003"]
    first, second, third = result.records
    assert first.submitted_date == datetime(2023, 3, 15)
    assert first.priority == Priority.HIGH
    assert first.category == "Project Submittal"
    assert second.category == "Closeout Submittal"
    assert second.current_status == "UR(ATJV)"
    assert second.priority == Priority.MEDIUM
    assert third.category == "General"
    assert third.current_status == "RTN(AS)"
    assert third.submitted_date == datetime(2023, 4, 2)
    assert first.last_updated == FIXED_NOW
    # discipline, documentType and system are not in this log
    assert _codes(result).count("missing_column") == 3
    assert first.discipline == "General"
    assert first.document_type == "Unknown"
    assert not result.errors


def test_row_level_fallbacks_emit_warnings(doc_schema):
    rows = [
        DOC_HEADER,
        [1, None, None, "Acme", None, "Code 1", 5, "urgent"],
        [2, None, "Valve Datasheet", "Acme", None, "see email", "tomorrow-ish", None],
    ]
    result = _extract(doc_schema, rows)

    assert len(result.records) == 2
    first, second = result.records
    assert first.title == "Document 1"
    assert first.submitted_date == FIXED_NOW
    assert first.priority == Priority.MEDIUM
    assert second.current_status == "see email"

    by_code = {}
    for d in result.diagnostics:
        by_code.setdefault(d.code, []).append(d.row_number)
    assert by_code["title_placeholder"] == [2]
    assert by_code["date_fallback"] == [2, 3]
    assert by_code["invalid_priority"] == [2]
    assert by_code["unrecognized_status"] == [3]
    assert all(d.severity == Severity.WARNING for d in result.diagnostics)


def test_header_echo_and_blank_rows_are_skipped(doc_schema):
    rows = [
        DOC_HEADER,
        [1, "D-1", "Spec", "Acme", None, "Code 1", 45000, None],
        [None, None, None, None],
        DOC_HEADER,
        ["S.N", None, "Document Name"],
        [2, "D-2", "Manual", "Acme", None, "Code 2", 45001, None],
    ]
    result = _extract(doc_schema, rows)

    assert [r.title for r in result.records] == ["Spec", "Manual"]
    assert [r.id for r in result.records] == [1, 2]
    echoes = [d for d in result.diagnostics if d.code == "header_echo"]
    assert [d.row_number for d in echoes] == [4, 5]


def test_values_that_look_like_other_headers_are_kept(doc_schema):
    rows = [
        DOC_HEADER,
        [1, "D-1", "Title", "Acme", None, "Code 1", 45000, None],
        [2, "D-2", "Description", "Acme", None, "Code 2", 45001, None],
    ]
    result = _extract(doc_schema, rows)

    assert [r.title for r in result.records] == ["Title", "Description"]
    assert "header_echo" not in _codes(result)


def test_missing_column_warnings_name_the_real_fallback(doc_schema):
    result = _extract(doc_schema, [["SN", "STATUS", "DOC_NAME"], [1, "Code 1", "Design Spec"]])
    messages = {
        d.message.split("'")[1]: d.message for d in result.diagnostics if d.code == "missing_column"
    }

    assert messages["priority"].endswith("defaulting to 'medium'")
    assert messages["submissionDate"].endswith("defaulting to the extraction time")
    assert messages["documentNumber"].endswith("defaulting to a content-derived id")
    assert messages["vendor"].endswith("defaulting to 'Unknown'")
    assert messages["discipline"].endswith("defaulting to 'General'")
    assert not any("'N/A'" in m for m in messages.values())


def test_one_bad_row_does_not_sink_the_batch(doc_schema, monkeypatch):
    real_parse_priority = extractor_module.parse_priority

    def exploding(raw):
        if raw == "boom":
            raise RuntimeError("priority parser exploded")
        return real_parse_priority(raw)

    monkeypatch.setattr(extractor_module, "parse_priority", exploding)
    rows = [DOC_HEADER] + [
        [i, f"D-{i}", f"Doc {i}", "Acme", None, "Code 1", 45000, "boom" if i == 3 else "low"]
        for i in range(1, 6)
    ]
    result = _extract(doc_schema, rows)

    assert len(result.records) == 4
    assert [r.id for r in result.records] == [1, 2, 3, 4]
    assert [r.external_id for r in result.records] == ["D-1", "D-2", "D-4", "D-5"]
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.code == "row_failed"
    assert error.row_number == 4
    assert "exploded" in error.message
    assert not result.failed


def test_extraction_is_idempotent(doc_schema, doc_sheet):
    detection = HeaderDetector(doc_schema).detect(doc_sheet)
    extractor = RecordExtractor(doc_schema, now=lambda: FIXED_NOW)
    first = extractor.extract(doc_sheet, detection)
    second = extractor.extract(doc_sheet, detection)
    assert first.records == second.records
    assert first.diagnostics == second.diagnostics


def test_synthesized_ids_are_stable_and_unique(doc_schema):
    rows = [
        ["SN", "Document Name", "Status"],
        [1, "Spec", "Code 1"],
        [1, "Spec", "Code 1"],
        [2, "Manual", "Code 2"],
    ]
    result = _extract(doc_schema, rows)
    ids = [r.external_id for r in result.records]
    assert ids[0].startswith("DOC-")
    assert ids[1] == f"{ids[0]}-2"
    assert len(set(ids)) == 3

    later = _extract(doc_schema, rows, now=lambda: datetime(2030, 1, 1))
    assert [r.external_id for r in later.records] == ids


def test_duplicate_source_identifiers_are_reported(doc_schema):
    rows = [
        DOC_HEADER,
        [1, "D-1", "Spec", "Acme", None, "Code 1", 45000, None],
        [2, "D-1", "Spec rev B", "Acme", None, "Code 2", 45001, None],
    ]
    result = _extract(doc_schema, rows)
    dupes = [d for d in result.diagnostics if d.code == "duplicate_external_id"]
    assert len(result.records) == 2
    assert len(dupes) == 1
    assert dupes[0].row_number == 3


def test_no_data_rows_is_a_sheet_level_error(doc_schema):
    result = _extract(doc_schema, [DOC_HEADER, [None] * len(DOC_HEADER)])
    assert result.records == []
    assert "no_data_rows" in _codes(result)
    assert result.failed


def test_shop_drawings_use_drawing_number_as_title_fallback(shop_schema):
    rows = [
        ["Shop Drawing Log"],
        ["No.", "Drawing No.", "Drawing Title", "System", "Sub-System", "Building", "Floor", "Current Status"],
        [1, "SD-ELE-001", None, "Electrical", "LV", "B1", "L2", "Code 2"],
        [2, "SD-MEC-004", "Chiller Plant Layout", "Mechanical", None, None, None, "AR (ATJV)"],
        [3, None, None, "Mechanical", None, None, None, "Pending"],
    ]
    result = _extract(shop_schema, rows)

    first, second, third = result.records
    assert isinstance(first, ShopDrawingRecord)
    assert first.title == "SD-ELE-001"
    assert first.drawing_number == "SD-ELE-001"
    assert first.sub_system == "LV"
    assert first.floor == "L2"
    assert second.building == "N/A"
    assert second.current_status == "AR(ATJV)"
    assert third.title == "Shop Drawing 3"
    assert third.external_id.startswith("SD-")
    assert third.drawing_number == "N/A"
    assert [d.row_number for d in result.diagnostics if d.code == "title_placeholder"] == [5]


def test_emct_vocabulary_reads_numeric_codes(doc_schema):
    rows = [["SN", "Document Name", "Status"], [1, "Spec", 1], [2, "Manual", "B"]]
    result = _extract(doc_schema, rows, vocabulary="emct", project="emct")
    assert [r.current_status for r in result.records] == ["CODE1", "CODE2"]
    assert {r.project for r in result.records} == {"emct"}
    assert "unrecognized_status" not in _codes(result)


def test_records_serialize_with_camel_case(doc_schema):
    result = _extract(doc_schema, [["SN", "Document Name", "Status"], [1, "Spec", "Code 1"]])
    payload = result.records[0].model_dump(mode="json", by_alias=True)
    assert payload["externalId"].startswith("DOC-")
    assert payload["currentStatus"] == "CODE1"
    assert payload["kind"] == "document"
    assert "submittedDate" in payload
