"""
Merge and de-duplication of research items.

Stored research collections are only ever appended to. Each merge takes the
previously stored items plus a fresh batch and returns a superset with no
duplicates under the record type's identity rule:

    - Q&A: question text AND answer text, compared case-insensitively after
      trimming. The same question with a different answer is kept.
    - Reviews: the provider-assigned review id. Items without an id are
      dropped.
"""

from dataclasses import dataclass
from typing import Any, Generic, Hashable, Iterable, Optional, TypeVar

from src.models.schemas import QnAItem, ReviewItem, utc_now

T = TypeVar("T")


@dataclass
class MergeResult(Generic[T]):
    items: list[T]
    added: int = 0
    duplicates: int = 0


def qna_identity(item: QnAItem) -> tuple[str, str]:
    return (item.question.strip().lower(), (item.answer or "").strip().lower())


def review_identity(item: ReviewItem) -> Optional[str]:
    return item.id.strip() if item.id and item.id.strip() else None


def merge_qna(existing: Iterable[QnAItem], incoming: Iterable[QnAItem]) -> MergeResult[QnAItem]:
    """Append incoming Q&A pairs whose (question, answer) pair is not stored yet."""
    items = list(existing)
    seen: set[Hashable] = {qna_identity(q) for q in items}
    added = duplicates = 0

    for item in incoming:
        key = qna_identity(item)
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        items.append(item)
        added += 1

    return MergeResult(items=items, added=added, duplicates=duplicates)


def merge_reviews(existing: Iterable[ReviewItem], incoming: Iterable[ReviewItem]) -> MergeResult[ReviewItem]:
    """Append incoming reviews with an id that is not stored yet; id-less reviews are dropped."""
    items: list[ReviewItem] = []
    seen: set[str] = set()
    for item in existing:
        key = review_identity(item)
        if key is None or key in seen:
            continue
        seen.add(key)
        items.append(item)

    added = duplicates = 0
    for item in incoming:
        key = review_identity(item)
        if key is None:
            continue
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        items.append(item)
        added += 1

    return MergeResult(items=items, added=added, duplicates=duplicates)


def merge_provenance(
    raw: Optional[dict[str, Any]],
    source: str,
    received: int,
    added: int,
    **extra: Any,
) -> dict[str, Any]:
    """
    Record one merge in the provenance blob.

    Counters accumulate per source and keys written by earlier merges are
    kept; ``extra`` values replace the source's previous extras.
    """
    merged = dict(raw or {})
    sources = dict(merged.get("sources") or {})
    entry = dict(sources.get(source) or {})

    entry["received"] = int(entry.get("received", 0)) + received
    entry["added"] = int(entry.get("added", 0)) + added
    entry["merges"] = int(entry.get("merges", 0)) + 1
    entry["last_merged_at"] = utc_now().isoformat()
    entry.update(extra)

    sources[source] = entry
    merged["sources"] = sources
    merged["last_source"] = source
    return merged


__all__ = [
    "MergeResult",
    "qna_identity",
    "review_identity",
    "merge_qna",
    "merge_reviews",
    "merge_provenance",
]
