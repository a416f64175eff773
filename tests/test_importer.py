from __future__ import annotations

import json
from pathlib import Path

import pytest

from groupcast.errors import BulkImportError
from groupcast.importer import merge_candidates, parse_bulk_import, placeholder_name
from groupcast.models import CandidateEntity, DispatchTarget
from groupcast.targets import default_targets_path, load_targets, save_targets


def test_urls_and_bare_ids_get_placeholder_names() -> None:
    assert parse_bulk_import("https://x/groups/123456789, 987654321012") == [
        CandidateEntity("123456789", "Group 123456789"),
        CandidateEntity("987654321012", "Group 987654321012"),
    ]


def test_free_text_is_deduplicated_in_first_appearance_order() -> None:
    text = """
    https://www.facebook.com/groups/555556666/?ref=share
    111112222; 555556666
    https://www.facebook.com/groups/named-slug/  1234  hello
    https://www.facebook.com/groups/777778888#about
    """
    assert [candidate.id for candidate in parse_bulk_import(text)] == ["555556666", "111112222", "777778888"]


def test_json_array_keeps_given_names() -> None:
    text = json.dumps(
        [
            {"id": "111112222", "name": "  Alpha  "},
            {"id": 333334444},
            {"id": "111112222", "name": "Duplicate"},
            {"name": "No id"},
            "not an object",
        ]
    )
    assert parse_bulk_import(text) == [
        CandidateEntity("111112222", "Alpha"),
        CandidateEntity("333334444", placeholder_name("333334444")),
    ]


def test_json_without_usable_entries_falls_back_to_text_scan() -> None:
    assert parse_bulk_import("[123456789]") == [CandidateEntity("123456789", "Group 123456789")]


@pytest.mark.parametrize("text", ["", "   ", "hello world", "https://www.facebook.com/groups/slug-only/ 1234"])
def test_inputs_without_ids_raise(text: str) -> None:
    with pytest.raises(BulkImportError):
        parse_bulk_import(text)


def test_merge_candidates_appends_only_new_ids() -> None:
    existing = [DispatchTarget("1", "One", selected=False)]
    merged, added = merge_candidates(
        existing, [CandidateEntity("1", "Renamed"), CandidateEntity("2", "Two"), CandidateEntity("2", "Again")]
    )

    assert added == 1
    assert merged == [DispatchTarget("1", "One", selected=False), DispatchTarget("2", "Two", selected=True)]
    assert existing == [DispatchTarget("1", "One", selected=False)]


def test_targets_file_round_trip(tmp_path: Path) -> None:
    path = default_targets_path(tmp_path / "config.toml")
    assert path == tmp_path / "targets.json"
    assert load_targets(path) == []

    targets = [DispatchTarget("1", "Café Club"), DispatchTarget("2", "Two", selected=False)]
    save_targets(path, targets)

    assert load_targets(path) == targets
    assert not (tmp_path / "targets.json.tmp").exists()


@pytest.mark.parametrize("body", ["{not json", '{"id": "1"}'])
def test_corrupt_targets_file_raises(tmp_path: Path, body: str) -> None:
    path = tmp_path / "targets.json"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(BulkImportError, match="targets file|JSON array"):
        load_targets(path)
