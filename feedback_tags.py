"""feedback_tags.py

Catalogue of the tags a partner can attach to post-session feedback.
"""

from __future__ import annotations

from typing import Any, Iterable

FEEDBACK_TAGS: dict[str, dict[str, str]] = {
    "great_chemistry": {"label": "Great Chemistry", "emoji": "💫", "kind": "positive"},
    "interesting_story": {"label": "Interesting Story", "emoji": "📖", "kind": "positive"},
    "quick_responses": {"label": "Quick Responses", "emoji": "⚡", "kind": "positive"},
    "creative_writing": {"label": "Creative Writing", "emoji": "✨", "kind": "positive"},
    "good_character_development": {"label": "Good Character Development", "emoji": "🎭", "kind": "positive"},
    "slow_responses": {"label": "Slow Responses", "emoji": "🐌", "kind": "negative"},
    "poor_communication": {"label": "Poor Communication", "emoji": "📵", "kind": "negative"},
    "inconsistent_character": {"label": "Inconsistent Character", "emoji": "🔄", "kind": "negative"},
}


def catalogue() -> list[dict]:
    return [{"id": k, **v} for k, v in FEEDBACK_TAGS.items()]


def validate_tags(tags: Any) -> tuple[list[str], list[str]]:
    """Return (known tags de-duplicated in order, unknown tags)."""
    if tags is None:
        return [], []
    if isinstance(tags, str):
        tags = [t for t in tags.split(",")]
    clean: list[str] = []
    bad: list[str] = []
    for t in tags:
        t = str(t).strip()
        if not t:
            continue
        if t not in FEEDBACK_TAGS:
            bad.append(t)
        elif t not in clean:
            clean.append(t)
    return clean, bad


def approved_tag_counts(feedback_rows: Iterable[dict]) -> dict[str, int]:
    """Tag -> count across approved feedback only, most frequent first."""
    counts: dict[str, int] = {}
    for row in feedback_rows:
        if not row.get("is_approved"):
            continue
        for t in row.get("tags") or []:
            if t in FEEDBACK_TAGS:
                counts[t] = counts.get(t, 0) + 1
    return dict(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))
