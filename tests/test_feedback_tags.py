from __future__ import annotations

from feedback_tags import FEEDBACK_TAGS, approved_tag_counts, catalogue, validate_tags


def test_catalogue_lists_every_tag_with_id() -> None:
    items = catalogue()
    assert len(items) == len(FEEDBACK_TAGS)
    first = items[0]
    assert first["id"] == "great_chemistry"
    assert {"label", "emoji", "kind"} <= set(first)


def test_validate_tags_dedupes_and_reports_unknown() -> None:
    clean, bad = validate_tags(["quick_responses", "bogus", "quick_responses", " "])
    assert clean == ["quick_responses"]
    assert bad == ["bogus"]
    assert validate_tags("creative_writing,slow_responses") == (["creative_writing", "slow_responses"], [])
    assert validate_tags(None) == ([], [])


def test_tag_counts_only_use_approved_feedback() -> None:
    rows = [
        {"is_approved": True, "tags": ["quick_responses", "creative_writing"]},
        {"is_approved": True, "tags": ["quick_responses"]},
        {"is_approved": False, "tags": ["slow_responses"]},
        {"is_approved": True, "tags": ["not_a_tag"]},
    ]
    counts = approved_tag_counts(rows)
    assert counts == {"quick_responses": 2, "creative_writing": 1}
    assert list(counts)[0] == "quick_responses"
