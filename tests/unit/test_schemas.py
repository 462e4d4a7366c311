import pytest
from pydantic import ValidationError

from src.models.schemas import (
    BackendPhaseResult,
    BulletVariantSet,
    Country,
    KeywordAnalysisResult,
    KeywordCoverage,
    ListingSection,
    PlacedKeyword,
    ResearchAnalysis,
    bullet_section,
    flatten_bullet,
    format_backend_attributes,
    validate_asin,
)


def test_validate_asin_normalizes_case():
    assert validate_asin(" b07xyz1234 ") == "B07XYZ1234"


@pytest.mark.parametrize("asin", ["", "B07XYZ123", "B07XYZ12345", "B07-YZ1234"])
def test_validate_asin_rejects(asin):
    with pytest.raises(ValueError, match="Invalid ASIN format"):
        validate_asin(asin)


def test_confirmed_text_prefers_final_text():
    section = ListingSection(
        listing_id="l1",
        section_type="title",
        variations=["first", "second"],
        selected_variation=1,
        final_text="  edited by hand  ",
    )
    assert section.confirmed_text() == "edited by hand"
    assert section.is_approved is True


def test_confirmed_text_falls_back_to_selected_variant():
    section = ListingSection(listing_id="l1", section_type="title", variations=["a", "b"], selected_variation=1)
    assert section.confirmed_text() == "b"
    assert section.is_approved is False


def test_confirmed_text_out_of_range_selection_is_empty():
    section = ListingSection(listing_id="l1", section_type="title", variations=["a"], selected_variation=4)
    assert section.confirmed_text() == ""


def test_section_requires_variants():
    with pytest.raises(ValidationError):
        ListingSection(listing_id="l1", section_type="title", variations=[])


def test_bullet_section_bounds():
    assert bullet_section(1) == "bullet_1"
    assert bullet_section(10) == "bullet_10"
    with pytest.raises(ValueError):
        bullet_section(11)


def test_flatten_bullet_strategy_set_order():
    bullet = BulletVariantSet.model_validate({
        "seo": {"concise": "s1", "medium": "s2", "longer": "s3"},
        "benefit": {"concise": "b1", "medium": "b2", "longer": "b3"},
        "balanced": {"concise": "c1", "medium": "c2", "longer": "c3"},
    })
    assert flatten_bullet(bullet) == ["s1", "s2", "s3", "b1", "b2", "b3", "c1", "c2", "c3"]


def test_flatten_bullet_plain_shapes():
    assert flatten_bullet(None) == []
    assert flatten_bullet("one") == ["one"]
    assert flatten_bullet(["a", "b"]) == ["a", "b"]
    assert flatten_bullet({"seo": {"concise": "x"}})[0] == "x"


def test_placed_keyword_position_is_string():
    keyword = PlacedKeyword.model_validate({"keyword": "bottle", "position": 3})
    assert keyword.position == "3"


def test_keyword_coverage_camel_case_payload():
    coverage = KeywordCoverage.model_validate({"placed": [], "remaining": [], "coverageScore": "55"})
    assert coverage.coverage_score == 55.0
    assert coverage.to_payload()["coverageScore"] == 55.0


def test_subject_matter_variants_join_by_index():
    result = BackendPhaseResult.model_validate({
        "subjectMatter": [["a1", "a2", "a3"], ["b1", "b2"]],
    })
    assert result.subject_matter_variants() == ["a1; b1", "a2; b2", "a3; "]


def test_format_backend_attributes():
    text = format_backend_attributes({"material_type": ["Steel", "Plastic"], "color": ["Blue"]})
    assert text == "material type: Steel, Plastic\ncolor: Blue"


def test_analysis_result_tagged_from_type():
    analysis = ResearchAnalysis.model_validate({
        "category_id": "c",
        "country_id": "us",
        "analysis_type": "keyword_analysis",
        "result": {"titleKeywords": ["bottle"], "someFutureField": 1},
    })
    assert isinstance(analysis.result, KeywordAnalysisResult)
    assert analysis.result.title_keywords == ["bottle"]
    assert analysis.source is None


def test_country_provider_domain():
    country = Country(name="United Kingdom", code="UK", amazon_domain="amazon.co.uk")
    assert country.provider_domain == "co.uk"


def test_country_bullet_count_bounds():
    with pytest.raises(ValidationError):
        Country(name="X", code="X", amazon_domain="amazon.com", bullet_count=11)
