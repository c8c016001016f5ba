import json

import pytest

from product_insight.extractors.identity_resolver import (
    CandidateScorer,
    ConfirmedIdentityCache,
    MAX_CANDIDATES,
    PageExtractor,
    code_on_page,
    deduplicate_candidates,
    is_valid_code,
    rank_candidates,
    score_candidate,
)
from product_insight.models.schemas import IdentityCandidate

CODE = "4006381333931"


def candidate(**kwargs) -> IdentityCandidate:
    values = {
        "name": "Stabilo Boss Original",
        "source_url": "https://www.example.com/p/1",
        "source_domain": "example.com",
    }
    values.update(kwargs)
    return IdentityCandidate(**values)


# =============================================================================
# Checksum
# =============================================================================

@pytest.mark.parametrize(
    "code, valid",
    [
        ("4006381333931", True),
        ("3017620422003", True),
        ("4006381333930", False),
        ("400638133393", False),
        ("40063813339311", False),
        ("40063813339a1", False),
        ("", False),
    ],
)
def test_is_valid_code(code, valid):
    assert is_valid_code(code) is valid


def test_is_valid_code_rejects_non_strings():
    assert is_valid_code(4006381333931) is False


def test_code_on_page_requires_whole_word():
    assert code_on_page("<td>EAN: 4006381333931</td>", CODE)
    assert not code_on_page("<td>14006381333931</td>", CODE)
    assert not code_on_page("<td>nothing here</td>", CODE)


# =============================================================================
# Page Extraction
# =============================================================================

def test_extract_prefers_json_ld_product():
    ld = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "WebPage", "name": "Lookup page"},
            {
                "@type": "Product",
                "name": "Boss Original Highlighter Yellow",
                "brand": {"@type": "Brand", "name": "STABILO"},
                "category": "Office Supplies",
            },
        ],
    }
    html = f"""
    <html><head>
      <title>Something else - UPCitemdb</title>
      <script type="application/ld+json">{json.dumps(ld)}</script>
    </head><body></body></html>
    """

    identity = PageExtractor.extract(html)

    assert identity.name == "Boss Original Highlighter Yellow"
    assert identity.brand == "STABILO"
    assert identity.category == "Office Supplies"


def test_extract_falls_back_to_title_and_meta():
    html = """
    <html><head>
      <title>Stabilo Boss Original - UPCitemdb</title>
      <meta name="brand" content="Stabilo">
      <script type="application/ld+json">{not valid json</script>
    </head></html>
    """

    identity = PageExtractor.extract(html)

    assert identity.name == "Stabilo Boss Original"
    assert identity.brand == "Stabilo"
    assert identity.category is None


def test_extract_fills_missing_json_ld_fields_per_field():
    ld = {"@type": ["Product", "Thing"], "name": "Nutella 400g"}
    html = f"""
    <html><head>
      <meta property="product:brand" content="Ferrero">
      <script type="application/ld+json">{json.dumps([ld])}</script>
    </head></html>
    """

    identity = PageExtractor.extract(html)

    assert identity.name == "Nutella 400g"
    assert identity.brand == "Ferrero"


def test_extract_returns_empty_identity_for_bare_page():
    identity = PageExtractor.extract("<html><body><p>hello</p></body></html>")
    assert identity.name is None
    assert identity.brand is None


@pytest.mark.parametrize(
    "ld_type",
    [
        {"@id": "schema:Product"},
        ["Thing", {"@id": "schema:Product"}],
        None,
        42,
    ],
)
def test_extract_ignores_non_string_json_ld_types(ld_type):
    ld = {"@type": ld_type, "name": "Not a product node"}
    html = f"""
    <html><head>
      <title>Stabilo Boss Original - EANdata</title>
      <script type="application/ld+json">{json.dumps(ld)}</script>
    </head></html>
    """

    identity = PageExtractor.extract(html)

    assert identity.name == "Stabilo Boss Original"


# =============================================================================
# Scoring
# =============================================================================

def test_score_all_signals_is_capped_at_one():
    c = candidate(
        brand="Stabilo",
        category="Office",
        source_domain="upcitemdb.com",
        matched_on_source=True,
    )
    assert score_candidate(c, CODE) == 1.0


def test_score_components():
    assert score_candidate(candidate(), CODE) == 0.2
    assert score_candidate(candidate(matched_on_source=True), CODE) == 0.7
    assert score_candidate(candidate(source_domain="world.openfoodfacts.org"), CODE) == 0.4
    assert score_candidate(candidate(brand="Stabilo", category="Office"), CODE) == 0.4


def test_region_keyword_bonus():
    belgian = candidate(name="Chocolat Belgium Edition")
    assert CandidateScorer.region_matches(belgian, "5412345678905")
    assert score_candidate(belgian, "5412345678905") == 0.3
    assert score_candidate(belgian, CODE) == 0.2


def test_score_is_deterministic():
    c = candidate(brand="Stabilo", matched_on_source=True)
    assert score_candidate(c, CODE) == score_candidate(c.model_copy(), CODE)


def test_rank_filters_sorts_and_limits():
    candidates = [
        candidate(name="Weak", source_domain="example.com"),
        candidate(name="Medium", matched_on_source=True),
        candidate(name="Strong", matched_on_source=True, source_domain="eandata.com"),
        candidate(name="Also Strong", matched_on_source=True, source_domain="barcodelookup.com", brand="B"),
        candidate(name="Fourth", matched_on_source=True, brand="B"),
    ]

    ranked = rank_candidates(candidates, CODE)

    assert len(ranked) == MAX_CANDIDATES
    assert [c.name for c in ranked] == ["Also Strong", "Strong", "Fourth"]
    assert all(c.score >= 0.6 for c in ranked)
    assert ranked == sorted(ranked, key=lambda c: c.score, reverse=True)


def test_rank_empty_when_nothing_reaches_threshold():
    assert rank_candidates([candidate(), candidate(name="Other")], CODE) == []


# =============================================================================
# Deduplication
# =============================================================================

def test_deduplicate_first_occurrence_wins():
    first = candidate(name="Stabilo Boss", source_url="https://example.com/1")
    repeat = candidate(name="STABILO BOSS", source_url="https://example.com/2")
    other_domain = candidate(name="Stabilo Boss", source_domain="eandata.com")

    unique = deduplicate_candidates([first, repeat, other_domain])

    assert unique == [first, other_domain]


def test_deduplicate_is_idempotent():
    items = [candidate(), candidate(), candidate(name="Other")]
    once = deduplicate_candidates(items)
    assert deduplicate_candidates(once) == once


# =============================================================================
# Confirmed Identity Cache
# =============================================================================

def test_cache_confirm_and_forget():
    cache = ConfirmedIdentityCache()
    cache.confirm(CODE, "Stabilo Boss Original")

    assert CODE in cache
    assert cache.get(CODE) == "Stabilo Boss Original"
    assert len(cache) == 1

    cache.forget(CODE)
    assert cache.get(CODE) is None
    assert len(cache) == 0


def test_cache_save_and_load(tmp_path):
    path = tmp_path / "nested" / "identities.json"
    cache = ConfirmedIdentityCache({CODE: "Stabilo Boss Original"})

    cache.save(path)
    loaded = ConfirmedIdentityCache.load(path)

    assert loaded.to_dict() == {CODE: "Stabilo Boss Original"}


def test_cache_load_missing_file_is_empty(tmp_path):
    assert len(ConfirmedIdentityCache.load(tmp_path / "missing.json")) == 0


def test_cache_load_rejects_non_object(tmp_path):
    path = tmp_path / "identities.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        ConfirmedIdentityCache.load(path)
