"""
Listing export formatting.

Renders the confirmed text of a listing as Markdown or JSON for review and
hand-off.
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from src.config.settings import get_settings
from src.models.schemas import (
    BULLET_SECTION_TYPES,
    Listing,
    ListingSection,
    SectionType,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

SECTION_LABELS = {
    SectionType.TITLE.value: "Title",
    SectionType.DESCRIPTION.value: "Description",
    SectionType.SEARCH_TERMS.value: "Search Terms",
    SectionType.SUBJECT_MATTER.value: "Subject Matter",
    SectionType.BACKEND_ATTRIBUTES.value: "Backend Attributes",
}


def _section_order(section_type: str) -> int:
    order = [SectionType.TITLE.value, *BULLET_SECTION_TYPES, *list(SECTION_LABELS)[1:]]
    return order.index(section_type) if section_type in order else len(order)


def format_sections_table(sections: list[ListingSection]) -> str:
    """
    Create formatted markdown table of section status.

    | Section | Variants | Selected | Confirmed |
    |---------|----------|----------|-----------|
    | title | 5 | 1 | yes |
    """
    if not sections:
        return "*No sections generated.*"

    header = "| Section | Variants | Selected | Confirmed |\n|---------|----------|----------|-----------|"
    rows = []
    for section in sorted(sections, key=lambda s: _section_order(s.section_type)):
        confirmed = "yes" if section.is_approved else "no"
        rows.append(
            f"| {section.section_type} | {len(section.variations)} | "
            f"{section.selected_variation + 1} | {confirmed} |"
        )
    return header + "\n" + "\n".join(rows)


def _escape(text: str) -> str:
    return text.replace("|", "-")


class ListingFormatter:
    """Format listings for the CLI and for export files."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = output_dir or get_settings().data_dir / "exports"

    def to_dict(self, listing: Listing, sections: list[ListingSection]) -> dict[str, Any]:
        by_type = {s.section_type: s for s in sections}
        bullets = [
            by_type[t].confirmed_text() for t in BULLET_SECTION_TYPES if t in by_type
        ]
        return {
            "listing_id": listing.id,
            "product_name": listing.product_name,
            "brand": listing.brand,
            "asin": listing.asin,
            "phase": listing.phase,
            "model_used": listing.model_used,
            "tokens_used": listing.tokens_used,
            "title": self._text(by_type, SectionType.TITLE.value, listing.title),
            "bullets": bullets or list(listing.bullet_points),
            "description": self._text(by_type, SectionType.DESCRIPTION.value, listing.description),
            "search_terms": self._text(by_type, SectionType.SEARCH_TERMS.value, listing.search_terms),
            "subject_matter": self._text(
                by_type, SectionType.SUBJECT_MATTER.value, listing.subject_matter[0] if listing.subject_matter else None
            ),
            "backend_attributes": listing.backend_attributes or {},
            "keyword_coverage_score": listing.keyword_coverage.coverage_score if listing.keyword_coverage else None,
        }

    @staticmethod
    def _text(by_type: dict[str, ListingSection], section_type: str, fallback: Optional[str]) -> str:
        section = by_type.get(section_type)
        if section is not None:
            return section.confirmed_text()
        return fallback or ""

    def to_json(self, listing: Listing, sections: list[ListingSection]) -> str:
        return json.dumps(self.to_dict(listing, sections), indent=2, ensure_ascii=False)

    def to_markdown(self, listing: Listing, sections: list[ListingSection]) -> str:
        """
        Render a listing as Markdown.

        Confirmed text is shown per section (human edit, else the selected
        variant), followed by the section status table.
        """
        data = self.to_dict(listing, sections)
        lines = [
            f"# {_escape(listing.product_name or 'Listing')} ({listing.brand})",
            "",
            f"**Phase:** {listing.phase}  ",
            f"**Model:** {listing.model_used or 'N/A'}  ",
            f"**Tokens used:** {listing.tokens_used:,}",
        ]
        if data["keyword_coverage_score"] is not None:
            lines.append(f"**Keyword coverage:** {data['keyword_coverage_score']:.0f}%")

        lines += ["", "## Title", "", data["title"] or "*Not generated.*", "", "## Bullet Points", ""]
        if data["bullets"]:
            lines += [f"{i}. {b}" for i, b in enumerate(data["bullets"], 1) if b]
        else:
            lines.append("*Not generated.*")

        for key, label in (
            ("description", "Description"),
            ("search_terms", "Search Terms"),
            ("subject_matter", "Subject Matter"),
        ):
            lines += ["", f"## {label}", "", data[key] or "*Not generated.*"]

        if data["backend_attributes"]:
            lines += ["", "## Backend Attributes", ""]
            for name, values in data["backend_attributes"].items():
                lines.append(f"- **{name.replace('_', ' ')}:** {', '.join(values)}")

        lines += ["", "## Sections", "", format_sections_table(sections), ""]
        return "\n".join(lines)

    def save(
        self,
        listing: Listing,
        sections: list[ListingSection],
        format_type: str = "markdown",
    ) -> Path:
        """Write the export under ``output_dir`` and return its path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        slug = re.sub(r"[^a-z0-9]+", "_", (listing.product_name or listing.id).lower()).strip("_")[:40]
        base_name = f"{slug}_{timestamp}"

        if format_type == "json":
            file_path = self.output_dir / f"{base_name}.json"
            file_path.write_text(self.to_json(listing, sections), encoding="utf-8")
        elif format_type == "markdown":
            file_path = self.output_dir / f"{base_name}.md"
            file_path.write_text(self.to_markdown(listing, sections), encoding="utf-8")
        else:
            raise ValueError(f"Unsupported format: {format_type}")

        logger.info("Saved listing export", path=str(file_path), format=format_type)
        return file_path


__all__ = ["SECTION_LABELS", "format_sections_table", "ListingFormatter"]
