"""
Listing generation prompts.

Every phase prompt is built from the same research context block (product
facts, character limits, keyword/review/Q&A/competitor intelligence and the
optional listing to optimize), followed by the keyword placement tracker
carried between phases and the phase-specific task and output format.

Prompt Categories:
    1. Title phase (5 title variations)
    2. Bullets phase (planning matrix + 9 variants per bullet)
    3. Description phase (descriptions + search terms)
    4. Backend phase (subject matter + backend attributes)
    5. Single-shot listing (all of the above at once, used by batches)
"""

from enum import Enum
from typing import Any, Optional

from src.models.schemas import (
    KeywordCoverage,
    ListingGenerationInput,
    OptimizationMode,
)


# =============================================================================
# Configuration
# =============================================================================

class ListingPromptType(str, Enum):
    """Types of listing generation prompts."""
    TITLE_PHASE = "title_phase"
    BULLETS_PHASE = "bullets_phase"
    DESCRIPTION_PHASE = "description_phase"
    BACKEND_PHASE = "backend_phase"
    FULL_LISTING = "full_listing"


PLACED_KEYWORD_LIMIT = 30
LOW_PRIORITY_KEYWORD_LIMIT = 20
HIGH_RELEVANCY = 0.6
MEDIUM_RELEVANCY = 0.4


# =============================================================================
# System Prompt
# =============================================================================

LISTING_COPYWRITER_SYSTEM = """You are an expert Amazon listing copywriter and optimizer. You write listings that rank in Amazon's A9/A10 search algorithm and convert shoppers, grounded strictly in the research data you are given.

Your operating rules:
1. Every keyword decision is backed by the supplied keyword research
2. Customer language from reviews and Q&A is echoed, never invented
3. Character limits are hard limits
4. You answer with a single valid JSON object and nothing else"""


# =============================================================================
# Shared Context
# =============================================================================

RESEARCH_CONTEXT_TEMPLATE = """=== PRODUCT INFO ===
Product: {product_name}
Brand: {brand}
ASIN: {asin}
Category: {category_name}
Marketplace: {marketplace}
Language: ALL content MUST be written in {language}
Attributes:
{attributes}

=== CHARACTER LIMITS (STRICT: do not exceed) ===
Title: {title_limit} characters max
Each Bullet Point: {bullet_limit} characters max ({bullet_count} bullets)
Description: {description_limit} characters max
Search Terms: {search_terms_limit} characters max (backend only, not visible to customers)

=== KEYWORD INTELLIGENCE ===
{keyword_section}

=== CUSTOMER REVIEW INSIGHTS ===
{review_section}

=== Q&A / CUSTOMER CONCERNS ===
{qna_section}{competitor_section}{market_section}{existing_section}"""


def _join(values: list[Any], sep: str = ", ", default: str = "N/A") -> str:
    rendered = [str(v) for v in values if v not in (None, "")]
    return sep.join(rendered) or default


def _label(item: Any, *keys: str) -> str:
    """First non-empty field among ``keys``, looking at declared and extra fields."""
    extra = getattr(item, "model_extra", None) or {}
    for key in keys:
        value = getattr(item, key, None) or extra.get(key)
        if value:
            return str(value)
    return ""


def format_attributes(attributes: dict[str, str]) -> str:
    lines = [f"  - {k}: {v}" for k, v in attributes.items() if k and v]
    return "\n".join(lines) or "  (none provided)"


def format_keyword_section(data: ListingGenerationInput) -> str:
    analysis = data.keyword_analysis
    if analysis is None:
        return "No keyword data available. Use general best practices for Amazon listings in this category."

    intents = "\n  ".join(
        f"{p.category} ({p.priority or 'n/a'})"
        + (f" | Pain points: {', '.join(p.pain_points)}" if p.pain_points else "")
        for p in analysis.customer_intent_patterns
    ) or "N/A"
    features = _join([f"{f.feature} ({f.priority or 'n/a'})" for f in analysis.feature_demand])

    lines = []
    if analysis.executive_summary:
        lines.append(f"Executive Summary: {analysis.executive_summary}")
    lines.extend([
        f"Must-include title keywords (by search volume priority): {_join(analysis.title_keywords)}",
        f"Bullet point keywords to weave in: {_join(analysis.bullet_keywords)}",
        f"Backend search term keywords: {_join(analysis.search_term_keywords)}",
        f"Customer intent patterns:\n  {intents}",
        f"Key feature demand signals: {features}",
    ])
    if analysis.bullet_keyword_map:
        mapping = "\n  ".join(
            f"Bullet {b.bullet_number}: {', '.join(b.keywords)}" + (f" | Focus: {b.focus}" if b.focus else "")
            for b in analysis.bullet_keyword_map
        )
        lines.append(f"Per-bullet keyword mapping:\n  {mapping}")
    if analysis.rufus_question_anticipation:
        questions = "\n  ".join(analysis.rufus_question_anticipation[:6])
        lines.append(f"Rufus AI questions to preemptively answer:\n  {questions}")
    return "\n".join(lines)


def format_review_section(data: ListingGenerationInput) -> str:
    analysis = data.review_analysis
    if analysis is None:
        return "No review data available. Focus on general product benefits."

    def themes(items, limit):
        return _join([
            _label(t, "theme", "strength", "weakness")
            + (f" ({t.mentions} mentions)" if t.mentions is not None else "")
            for t in items[:limit]
        ])

    strategy = "\n  ".join(
        f'Bullet {b.bullet_number}: Focus on "{b.focus}"'
        + (f" | Evidence: {b.evidence}" if b.evidence else "")
        + (f" | Addresses: {b.customer_pain_point}" if b.customer_pain_point else "")
        for b in analysis.bullet_strategy
    ) or "N/A"

    lines = []
    if analysis.executive_summary:
        lines.append(f"Executive Summary: {analysis.executive_summary}")
    lines.extend([
        f"Product strengths to highlight: {themes(analysis.strengths, 8)}",
        f"Top use cases to emphasize: {_join(analysis.use_cases[:6])}",
        f"Customer language that resonates: {_join(analysis.positive_language[:8])}",
        f"Weaknesses to preemptively address: {themes(analysis.weaknesses, 4)}",
        f"Bullet strategy from review analysis:\n  {strategy}",
    ])
    return "\n".join(lines)


def format_qna_section(data: ListingGenerationInput) -> str:
    analysis = data.qna_analysis
    if analysis is None:
        return "No Q&A data available."

    concerns = "\n  ".join(
        c.concern + (f" | Suggested: {c.suggested_response}" if c.suggested_response else "")
        for c in analysis.customer_concerns[:6]
    ) or "N/A"
    gaps = _join([g.gap + (f" ({g.importance})" if g.importance else "") for g in analysis.content_gaps])
    faqs = "\n  ".join(f"Q: {f.question} / A: {f.answer}" for f in analysis.faq_for_description[:4]) or "N/A"

    lines = []
    if analysis.executive_summary:
        lines.append(f"Executive Summary: {analysis.executive_summary}")
    lines.extend([
        f"Top customer concerns to address in listing:\n  {concerns}",
        f"Content gaps to fill: {gaps}",
        f"FAQ to weave into description:\n  {faqs}",
    ])
    if analysis.high_risk_questions:
        lines.append(
            "High-risk questions to preemptively address:\n  "
            + "\n  ".join(analysis.high_risk_questions[:4])
        )
    return "\n".join(lines)


def format_competitor_section(data: ListingGenerationInput) -> str:
    analysis = data.competitor_analysis
    if analysis is None:
        return ""

    gaps = "\n  ".join(
        g.gap
        + (f": {g.opportunity}" if g.opportunity else "")
        + (f" ({g.priority})" if g.priority else "")
        for g in analysis.differentiation_gaps[:5]
    ) or "N/A"
    return (
        "\n\n=== COMPETITOR INTELLIGENCE ===\n"
        f"Executive Summary: {analysis.executive_summary or 'N/A'}\n"
        f"Competitor title patterns to learn from (and differentiate against):\n  "
        f"{_join(analysis.title_patterns[:5], sep=chr(10) + '  ')}\n"
        f"Common bullet themes across competitors: {_join(analysis.bullet_themes[:6])}\n"
        f"Differentiation gaps to exploit:\n  {gaps}\n"
        f"Our unique selling propositions:\n  {_join(analysis.usps[:4], sep=chr(10) + '  ')}"
    )


def format_market_section(data: ListingGenerationInput) -> str:
    analysis = data.market_intelligence
    if analysis is None:
        return ""
    return (
        "\n\n=== MARKET INTELLIGENCE ===\n"
        f"Executive Summary: {analysis.executive_summary or 'N/A'}\n"
        f"Customer pain points: {_join(analysis.customer_pain_points[:6])}\n"
        f"Opportunities: {_join(analysis.opportunities[:6])}\n"
        f"Buying decision factors: {_join(analysis.buying_factors[:6])}"
    )


EXISTING_LISTING_TEMPLATE = """

=== EXISTING LISTING TO {heading} ===
{intro}

Current Title: {title}
Current Bullets:
{bullets}
Current Description: {description}

{instructions}"""

OPTIMIZE_INSTRUCTIONS = """OPTIMIZATION INSTRUCTIONS:
1. Score the existing listing 1-10 on keyword coverage, benefit communication, readability and competitive positioning
2. Identify missing high-volume keywords that should be added
3. Replace weak or generic phrases with specific, compelling ones
4. Preserve elements that are already strong
5. Your variations are OPTIMIZED versions of this listing, not entirely new listings"""

BASED_ON_INSTRUCTIONS = """REFERENCE INSTRUCTIONS:
1. Use the existing listing as factual reference for features and specifications
2. Write new copy; do not reuse its sentences
3. Keep every verified product fact it states"""


def format_existing_section(data: ListingGenerationInput) -> str:
    existing = data.existing_listing_text
    if existing is None or data.optimization_mode == OptimizationMode.NEW.value:
        return ""

    optimize = data.optimization_mode == OptimizationMode.OPTIMIZE_EXISTING.value
    bullets = "\n".join(f"  Bullet {i}: {b}" for i, b in enumerate(existing.bullets, 1)) or "  (none)"
    return EXISTING_LISTING_TEMPLATE.format(
        heading="OPTIMIZE" if optimize else "USE AS REFERENCE",
        intro=(
            "This is an OPTIMIZATION task. Analyze the existing listing first, then generate optimized versions."
            if optimize
            else "A listing for a similar product exists. Use it as a reference, not a draft."
        ),
        title=existing.title or "(none)",
        bullets=bullets,
        description=existing.description or "(none)",
        instructions=OPTIMIZE_INSTRUCTIONS if optimize else BASED_ON_INSTRUCTIONS,
    )


def build_research_context(data: ListingGenerationInput) -> str:
    """Shared context block included in every generation prompt."""
    limits = data.char_limits
    return RESEARCH_CONTEXT_TEMPLATE.format(
        product_name=data.product_name,
        brand=data.brand,
        asin=data.asin or "Not provided",
        category_name=data.category_name,
        marketplace=data.marketplace,
        language=data.language,
        attributes=format_attributes(data.attributes),
        title_limit=limits.title,
        bullet_limit=limits.bullet,
        bullet_count=limits.bullet_count,
        description_limit=limits.description,
        search_terms_limit=limits.search_terms,
        keyword_section=format_keyword_section(data),
        review_section=format_review_section(data),
        qna_section=format_qna_section(data),
        competitor_section=format_competitor_section(data),
        market_section=format_market_section(data),
        existing_section=format_existing_section(data),
    )


# =============================================================================
# Keyword Placement Tracker
# =============================================================================

def _remaining_line(kw) -> str:
    return (
        f'    - "{kw.keyword}" (SV: {kw.search_volume}, rel: {kw.relevancy})'
        f" -> {kw.suggested_placement or 'any'}"
    )


def format_keyword_coverage(coverage: Optional[KeywordCoverage]) -> str:
    """
    Render the placement tracker carried between phases.

    Placed keywords are capped at 30 lines; remaining keywords are grouped by
    relevancy (high >= 0.6, medium 0.4-0.6, low < 0.4 capped at 20).
    """
    if coverage is None:
        return ""

    placed = "\n".join(
        f'  - "{kw.keyword}" -> {kw.placed_in}'
        + (f" ({kw.position})" if kw.position else "")
        + f" [SV: {kw.search_volume}, rel: {kw.relevancy}]"
        for kw in coverage.placed[:PLACED_KEYWORD_LIMIT]
    )

    high = [kw for kw in coverage.remaining if kw.relevancy >= HIGH_RELEVANCY]
    medium = [kw for kw in coverage.remaining if MEDIUM_RELEVANCY <= kw.relevancy < HIGH_RELEVANCY]
    low = [kw for kw in coverage.remaining if kw.relevancy < MEDIUM_RELEVANCY]

    remaining = ""
    if high:
        remaining += "\n  HIGH PRIORITY (relevancy >= 0.6):\n" + "\n".join(map(_remaining_line, high))
    if medium:
        remaining += "\n  MEDIUM PRIORITY (relevancy 0.4-0.6):\n" + "\n".join(map(_remaining_line, medium))
    if low:
        remaining += "\n  LOWER PRIORITY (relevancy < 0.4):\n" + "\n".join(
            map(_remaining_line, low[:LOW_PRIORITY_KEYWORD_LIMIT])
        )

    return (
        "\n=== KEYWORD PLACEMENT TRACKER ===\n"
        f"Current coverage score: {coverage.coverage_score}/100\n\n"
        "Keywords already placed (do not waste space repeating these unless natural):\n"
        f"{placed or '  (none yet, this is the first phase)'}\n\n"
        "Keywords still needing placement (PRIORITIZE these):"
        f"{remaining or chr(10) + '  (all keywords placed)'}\n"
    )


def format_confirmed_bullets(bullets: list[str]) -> str:
    return "\n".join(f"  Bullet {i}: {b}" for i, b in enumerate(bullets, 1))


# =============================================================================
# Output Formats
# =============================================================================

KEYWORD_COVERAGE_FORMAT = """  "keywordCoverage": {
    "placed": [
      { "keyword": "keyword text", "searchVolume": 18000, "relevancy": 0.95, "placedIn": "title", "position": "first 80 chars" }
    ],
    "remaining": [
      { "keyword": "keyword text", "searchVolume": 5000, "relevancy": 0.7, "suggestedPlacement": "bullet_1" }
    ],
    "coverageScore": 25
  }"""

BULLET_VARIANTS_FORMAT = """    {
      "seo": { "concise": "...", "medium": "...", "longer": "..." },
      "benefit": { "concise": "...", "medium": "...", "longer": "..." },
      "balanced": { "concise": "...", "medium": "...", "longer": "..." }
    }"""

PLANNING_MATRIX_FORMAT = """  "planningMatrix": [
    {
      "bulletNumber": 1,
      "primaryFocus": "Main theme for this bullet",
      "qnaGapsAddressed": ["gap 1"],
      "reviewThemes": ["theme 1"],
      "priorityKeywords": ["kw1", "kw2"],
      "rufusQuestionTypes": ["question type 1"]
    }
  ]"""

SUBJECT_MATTER_FORMAT = """  "subjectMatter": [
    ["field 1 var 1", "field 1 var 2", "field 1 var 3"],
    ["field 2 var 1", "field 2 var 2", "field 2 var 3"],
    ["field 3 var 1", "field 3 var 2", "field 3 var 3"]
  ],
  "backendAttributes": {
    "material": ["value1", "value2"],
    "target_audience": ["value1"],
    "special_features": ["value1", "value2"],
    "recommended_uses": ["value1", "value2"],
    "included_components": ["value1"]
  }"""

BULLET_LENGTH_RULES = """For EACH bullet, generate 3 strategies x 3 lengths = 9 variations:
- SEO strategy: keyword-dense, search-optimized
- Benefit strategy: emotional, customer-focused, addresses pain points
- Balanced strategy: keywords and benefits naturally combined
- Concise: 110-140 characters
- Medium: 140-180 characters
- Longer: 180-{bullet_limit} characters (NEVER exceed)"""


# =============================================================================
# Phase Prompts
# =============================================================================

TITLE_PHASE_USER = """{context}

=== YOUR TASK: GENERATE 5 TITLE VARIATIONS ===

Title is the HIGHEST WEIGHT element in Amazon's search algorithm. Place the most important, highest-volume keywords here.
- First 80 characters: the highest relevancy (0.8-1.0) and highest search volume keywords
- Remaining characters: medium-high relevancy (0.6-0.8) keywords
- All titles MUST start with "{brand}"

Generate 5 DISTINCT title variations (each under {title_limit} characters):
1. SEO-dense: maximum keyword coverage while readable
2. Benefit-focused: lead with customer benefits, weave keywords naturally
3. Balanced: keywords and benefits combined
4. Feature-rich: specific product features and specifications
5. Concise: short, punchy, premium feel

=== OUTPUT FORMAT ===
{{
  "titles": ["title 1", "title 2", "title 3", "title 4", "title 5"],
{coverage_format}
}}

=== KEYWORD COVERAGE TRACKING RULES ===
1. "placed": every research keyword that appears in ANY of your titles
2. "remaining": every research keyword not in any title, with a suggested placement for the bullets phase
3. coverageScore: 0-100 share of total keyword value covered by titles alone (typically 20-35)

=== RULES ===
1. ALL content in {language}
2. STRICT limit: {title_limit} characters per title
3. Return only valid JSON, no markdown fences or explanation"""


BULLETS_PHASE_USER = """{context}

=== CONFIRMED TITLE (already finalized, reference for consistency) ===
{confirmed_title}
{coverage_block}
=== YOUR TASK: PLANNING MATRIX + {bullet_count} BULLET POINTS ===

STEP 1: create a planningMatrix entry for each bullet (1-{bullet_count}): primary focus, Q&A gaps addressed, review themes leveraged, priority keywords from the "remaining" list, Rufus question types answered.

Keyword placement for bullets:
- Bullets 1-2: high relevancy keywords (0.6-0.8) that did not fit in the title
- Bullets 3-4: medium relevancy keywords (0.4-0.6)
- Bullet 5: remaining medium keywords and critical Q&A gaps

STEP 2: {length_rules}

=== OUTPUT FORMAT ===
{{
{planning_format},
  "bullets": [
{bullet_format}
  ],
{coverage_format}
}}

=== KEYWORD COVERAGE TRACKING RULES ===
1. "placed": MERGE the previously placed keywords WITH the keywords placed in bullets
2. "remaining": only keywords in neither the title nor any bullet
3. coverageScore: cumulative (title + bullets), typically 55-70

=== RULES ===
1. Bullets start with a CAPITALIZED benefit phrase followed by a dash or colon
2. No two bullets share a primary focus
3. Generate exactly {bullet_count} bullets, each with all 9 variations
4. ALL content in {language}
5. Return only valid JSON, no markdown fences or explanation"""


DESCRIPTION_PHASE_USER = """{context}

=== CONFIRMED CONTENT (already finalized) ===
Title: {confirmed_title}

Bullets:
{confirmed_bullets}
{coverage_block}
=== YOUR TASK: 3 DESCRIPTION VARIATIONS + 3 SEARCH TERM VARIATIONS ===

DESCRIPTION:
- Weave the remaining medium-relevancy keywords into flowing paragraphs
- Address Q&A gaps not yet covered by the bullets
- Readable and compelling, not keyword-stuffed
- {description_limit} characters max

SEARCH TERMS (backend, the final sweep):
- No brand name, no ASINs, no commas (space-separated)
- Misspellings, synonyms, long-tail variations
- {search_terms_limit} characters max

=== OUTPUT FORMAT ===
{{
  "descriptions": ["SEO variation", "Benefit variation", "Balanced variation"],
  "searchTerms": ["variation 1", "variation 2", "variation 3"],
{coverage_format}
}}

=== RULES ===
1. "placed" MERGES all previously placed keywords with those placed now; coverageScore is cumulative, aim for 90+
2. ALL content in {language}
3. Return only valid JSON, no markdown fences or explanation"""


BACKEND_PHASE_USER = """{context}

=== CONFIRMED CONTENT (all finalized sections) ===
Title: {confirmed_title}

Bullets:
{confirmed_bullets}

Description: {confirmed_description}

Search Terms: {confirmed_search_terms}
{coverage_block}
=== YOUR TASK: SUBJECT MATTER + BACKEND ATTRIBUTES ===

SUBJECT MATTER: 3 fields, each under 50 characters, 3 variations of each field.

BACKEND ATTRIBUTES: data-driven values for at least material, target_audience, special_features, recommended_uses and included_components. Add category-specific fields when relevant. Up to 5 values per field in priority order.

=== OUTPUT FORMAT ===
{{
{subject_format},
{coverage_format}
}}

=== RULES ===
1. "placed" MERGES all previously placed keywords; coverageScore is the final cumulative score, aim for 95+
2. ALL content in {language}
3. Return only valid JSON, no markdown fences or explanation"""


FULL_LISTING_USER = """{context}

=== PLANNING PHASE ===
Before writing, create a planningMatrix entry for each bullet (1-{bullet_count}) so each bullet has a distinct purpose.

=== OUTPUT FORMAT ===
{{
{planning_format},
  "title": ["SEO-dense title", "Benefit-focused title", "Balanced title", "Feature-rich title", "Concise title"],
  "bullets": [
{bullet_format}
  ],
  "description": ["SEO variation", "Benefit variation", "Balanced variation"],
  "searchTerms": ["variation 1", "variation 2", "variation 3"],
{subject_format}
}}

=== RULES ===
1. Exactly 5 DISTINCT titles, all starting with "{brand}", each under {title_limit} characters
2. {length_rules}
3. Exactly {bullet_count} bullets, each starting with a CAPITALIZED benefit phrase
4. Description: 3 variations, {description_limit} characters max each
5. Search terms: space-separated, no brand, no ASINs, {search_terms_limit} characters max
6. Subject matter: 3 fields x 3 variations, each under 50 characters
7. ALL content in {language}
8. Return only valid JSON, no markdown fences or explanation"""


def _common(data: ListingGenerationInput) -> dict[str, Any]:
    limits = data.char_limits
    return {
        "context": build_research_context(data),
        "brand": data.brand,
        "language": data.language,
        "title_limit": limits.title,
        "bullet_count": limits.bullet_count,
        "description_limit": limits.description,
        "search_terms_limit": limits.search_terms,
        "length_rules": BULLET_LENGTH_RULES.format(bullet_limit=limits.bullet),
        "coverage_format": KEYWORD_COVERAGE_FORMAT,
        "planning_format": PLANNING_MATRIX_FORMAT,
        "bullet_format": BULLET_VARIANTS_FORMAT,
        "subject_format": SUBJECT_MATTER_FORMAT,
    }


def format_title_prompt(data: ListingGenerationInput) -> tuple[str, str]:
    """
    Format the title phase prompt.

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    return LISTING_COPYWRITER_SYSTEM, TITLE_PHASE_USER.format(**_common(data))


def format_bullets_prompt(
    data: ListingGenerationInput,
    confirmed_title: str,
    coverage: KeywordCoverage,
) -> tuple[str, str]:
    user_prompt = BULLETS_PHASE_USER.format(
        **_common(data),
        confirmed_title=confirmed_title,
        coverage_block=format_keyword_coverage(coverage),
    )
    return LISTING_COPYWRITER_SYSTEM, user_prompt


def format_description_prompt(
    data: ListingGenerationInput,
    confirmed_title: str,
    confirmed_bullets: list[str],
    coverage: KeywordCoverage,
) -> tuple[str, str]:
    user_prompt = DESCRIPTION_PHASE_USER.format(
        **_common(data),
        confirmed_title=confirmed_title,
        confirmed_bullets=format_confirmed_bullets(confirmed_bullets),
        coverage_block=format_keyword_coverage(coverage),
    )
    return LISTING_COPYWRITER_SYSTEM, user_prompt


def format_backend_prompt(
    data: ListingGenerationInput,
    confirmed_title: str,
    confirmed_bullets: list[str],
    confirmed_description: str,
    confirmed_search_terms: str,
    coverage: KeywordCoverage,
) -> tuple[str, str]:
    user_prompt = BACKEND_PHASE_USER.format(
        **_common(data),
        confirmed_title=confirmed_title,
        confirmed_bullets=format_confirmed_bullets(confirmed_bullets),
        confirmed_description=confirmed_description,
        confirmed_search_terms=confirmed_search_terms,
        coverage_block=format_keyword_coverage(coverage),
    )
    return LISTING_COPYWRITER_SYSTEM, user_prompt


def format_full_listing_prompt(data: ListingGenerationInput) -> tuple[str, str]:
    """Single-shot prompt covering every section."""
    return LISTING_COPYWRITER_SYSTEM, FULL_LISTING_USER.format(**_common(data))


__all__ = [
    "ListingPromptType",
    "LISTING_COPYWRITER_SYSTEM",
    "build_research_context",
    "format_keyword_coverage",
    "format_title_prompt",
    "format_bullets_prompt",
    "format_description_prompt",
    "format_backend_prompt",
    "format_full_listing_prompt",
]
