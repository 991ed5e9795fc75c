from datetime import datetime, timezone

import pytest

from pipelinehub.services.audit_log import build_pipeline_changelog, merge_changelog, record_change


def test_record_change_prepends_without_touching_input(make_entry):
    entry = make_entry("P0001-25")
    first = record_change([], "addition", entry, "Added", "admin@example.com", datetime(2025, 1, 1, tzinfo=timezone.utc))
    second = record_change(first, "change", entry, "Edited", "admin@example.com", datetime(2025, 1, 2, tzinfo=timezone.utc))

    assert [c.type for c in second] == ["change", "addition"]
    assert len(first) == 1
    assert second[0].projectName == "Spring Launch"
    assert second[0].date.startswith("2025-01-02")


def test_unknown_change_type_is_rejected(make_entry):
    with pytest.raises(ValueError):
        record_change([], "rename", make_entry("P0001-25"), "?", "someone")


def test_changelog_is_rebuilt_from_timestamps(make_entry):
    created = datetime(2025, 1, 5, tzinfo=timezone.utc)
    updated = datetime(2025, 2, 1, tzinfo=timezone.utc)
    entries = [
        make_entry("P0001-25", createdAt=created, updatedAt=updated, createdBy="pm@example.com"),
        make_entry("P0002-25"),
    ]

    changes = build_pipeline_changelog(entries, "system")

    assert [(c.type, c.projectCode) for c in changes] == [("change", "P0001-25"), ("addition", "P0001-25")]
    assert changes[1].user == "pm@example.com"


def test_merge_dedupes_and_sorts_recent_first(make_entry):
    entry = make_entry("P0001-25", createdAt=datetime(2025, 1, 5, tzinfo=timezone.utc))
    additions = build_pipeline_changelog([entry], "system")
    existing = [c.model_dump(mode="json") for c in additions]
    newer = {"type": "change", "projectCode": "P0001-25", "date": "2025-03-01T00:00:00+00:00", "description": "x"}

    merged = merge_changelog([*existing, newer], additions)

    assert len(merged) == 2
    assert merged[0]["date"] == newer["date"]


def test_changelog_compares_naive_and_aware_timestamps(make_entry):
    entry = make_entry(
        "P0001-25",
        createdAt=datetime(2025, 1, 5, tzinfo=timezone.utc),
        updatedAt=datetime(2025, 1, 5, 9, 0),
    )

    changes = build_pipeline_changelog([entry], "system")

    assert [c.type for c in changes] == ["change", "addition"]
