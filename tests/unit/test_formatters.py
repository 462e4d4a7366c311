import json

import pytest

from src.models.schemas import KeywordCoverage, Listing, ListingSection
from src.utils.formatters import ListingFormatter, format_sections_table


@pytest.fixture
def listing():
    return Listing(
        id="listing-1",
        category_id="cat-1",
        country_id="us",
        product_name="Insulated Water Bottle",
        brand="Acme",
        phase="description",
        model_used="claude-sonnet-4-20250514",
        tokens_used=6000,
        keyword_coverage=KeywordCoverage(coverage_score=70),
        backend_attributes={"material_type": ["Stainless Steel"]},
    )


@pytest.fixture
def sections():
    return [
        ListingSection(listing_id="listing-1", section_type="bullet_2", variations=["Second bullet"]),
        ListingSection(
            listing_id="listing-1",
            section_type="title",
            variations=["Title A", "Title B"],
            selected_variation=1,
        ),
        ListingSection(listing_id="listing-1", section_type="bullet_1", variations=["First bullet"],
                       final_text="Edited first bullet"),
        ListingSection(listing_id="listing-1", section_type="description", variations=["Description A"]),
    ]


def test_sections_table_is_ordered(sections):
    table = format_sections_table(sections)
    rows = table.splitlines()[2:]

    assert [row.split("|")[1].strip() for row in rows] == ["title", "bullet_1", "bullet_2", "description"]
    assert "| title | 2 | 2 | no |" in table
    assert "| bullet_1 | 1 | 1 | yes |" in table
    assert format_sections_table([]) == "*No sections generated.*"


def test_to_dict_uses_confirmed_text(listing, sections, tmp_path):
    data = ListingFormatter(tmp_path).to_dict(listing, sections)

    assert data["title"] == "Title B"
    assert data["bullets"] == ["Edited first bullet", "Second bullet"]
    assert data["description"] == "Description A"
    assert data["search_terms"] == ""
    assert data["keyword_coverage_score"] == 70


def test_to_dict_falls_back_to_listing_fields(listing, tmp_path):
    listing.title = "Stored title"
    listing.bullet_points = ["Stored bullet"]

    data = ListingFormatter(tmp_path).to_dict(listing, [])

    assert data["title"] == "Stored title"
    assert data["bullets"] == ["Stored bullet"]


def test_to_markdown(listing, sections, tmp_path):
    text = ListingFormatter(tmp_path).to_markdown(listing, sections)

    assert text.startswith("# Insulated Water Bottle (Acme)")
    assert "**Keyword coverage:** 70%" in text
    assert "1. Edited first bullet" in text
    assert "## Search Terms\n\n*Not generated.*" in text
    assert "- **material type:** Stainless Steel" in text
    assert "| Section | Variants | Selected | Confirmed |" in text


def test_save_writes_export(listing, sections, tmp_path):
    formatter = ListingFormatter(tmp_path / "exports")

    md_path = formatter.save(listing, sections)
    json_path = formatter.save(listing, sections, format_type="json")

    assert md_path.suffix == ".md"
    assert md_path.name.startswith("insulated_water_bottle_")
    assert json.loads(json_path.read_text(encoding="utf-8"))["listing_id"] == "listing-1"


def test_save_unsupported_format(listing, tmp_path):
    with pytest.raises(ValueError, match="Unsupported format"):
        ListingFormatter(tmp_path).save(listing, [], format_type="pdf")


def test_default_output_dir_from_settings(mock_settings):
    assert ListingFormatter().output_dir == mock_settings.data_dir / "exports"
