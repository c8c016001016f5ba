import pytest

from product_insight.analyzers.prompts import SYSTEM_INSTRUCTION
from product_insight.analyzers.task_registry import (
    CONFIDENCE_FIELD,
    TASK_IDS,
    TASK_REGISTRY,
    UnknownTaskError,
    fallback_confidence,
    get_task_name,
    get_task_spec,
)
from product_insight.models.schemas import (
    CodeValidation,
    CoherenceCheck,
    EnrichedContext,
    WebSearchResult,
)


@pytest.fixture
def incoherent_context(code_product):
    return EnrichedContext(
        product_id=code_product.identifier,
        kind=code_product.kind,
        code_validation=CodeValidation(code=code_product.identifier, is_valid=True),
        coherence=CoherenceCheck(coherence_score=0.1, is_coherent=False, issues=["Brand not found in sources"]),
        search_results=(
            WebSearchResult(title="Stabilo Boss", url="https://upcitemdb.com/a", content="highlighter"),
            WebSearchResult(title="Second", url="https://eandata.com/b", content="yellow"),
            WebSearchResult(title="Third", url="https://example.com/c", content="ink"),
        ),
    )


def test_registry_has_nine_tasks_in_order():
    assert TASK_IDS == (
        "categorizer",
        "competitor",
        "seo_optimizer",
        "trends",
        "price_optimizer",
        "content_enhancer",
        "description_generator",
        "seo_generator",
        "marketing_generator",
    )
    assert all(spec.task_id == task_id for task_id, spec in TASK_REGISTRY.items())


@pytest.mark.parametrize("task_id", TASK_IDS)
def test_every_fallback_passes_its_own_validation(task_id):
    spec = get_task_spec(task_id)
    payload = spec.fallback()

    assert spec.validate(payload)
    assert payload[CONFIDENCE_FIELD] < spec.default_confidence


@pytest.mark.parametrize("task_id", TASK_IDS)
def test_minimal_outputs_validate(task_id, valid_outputs):
    assert get_task_spec(task_id).validate(valid_outputs[task_id])


def test_fallback_confidence():
    assert fallback_confidence(0.8) == 0.4
    assert fallback_confidence(0.5) == 0.3
    assert fallback_confidence(0.2) == 0.3


def test_fallback_returns_fresh_copies():
    spec = get_task_spec("categorizer")
    first = spec.fallback()
    first["tags"].append("mutated")

    assert "mutated" not in spec.fallback()["tags"]
    assert CONFIDENCE_FIELD not in spec.fallback_payload


@pytest.mark.parametrize(
    "task_id,data",
    [
        ("categorizer", {"tags": []}),
        ("categorizer", {"main_category": "", "tags": []}),
        ("competitor", {"competitors": "none", "market_position": "Budget"}),
        ("price_optimizer", {"pricing_strategy": "Premium"}),
        ("description_generator", {"descriptions": {"medium": "no short one"}}),
        ("seo_generator", ["not", "an", "object"]),
    ],
)
def test_validation_rejects_incomplete_output(task_id, data):
    spec = get_task_spec(task_id)

    assert not spec.validate(data)
    assert spec.validation_errors(data)


def test_validation_allows_extra_keys():
    data = {"main_category": "Audio", "tags": ["x"], "extra": {"anything": 1}}

    assert get_task_spec("categorizer").validate(data)


def test_unknown_task():
    with pytest.raises(UnknownTaskError):
        get_task_spec("horoscope")
    assert get_task_name("horoscope") == "horoscope"
    assert get_task_name("seo_generator") == "SEO Content Generator"


# =============================================================================
# Prompts
# =============================================================================

def test_prompt_without_context(name_product):
    prompt = get_task_spec("trends").build_prompt(name_product)

    assert "Product: Wireless Mouse X200 (Wireless Mouse X200)" in prompt
    assert "Coherence warning" not in prompt
    assert '"current_trends"' in prompt


def test_categorizer_prompt_embeds_validation_and_warning(code_product, incoherent_context):
    prompt = get_task_spec("categorizer").build_prompt(code_product, incoherent_context)

    assert "Stabilo Boss Original Highlighter (4006381333931)" in prompt
    assert "Code validation:" in prompt
    assert "Coherence warning: Brand not found in sources" in prompt
    assert "Market Info:" in prompt
    assert "https://upcitemdb.com/a" in prompt
    assert "https://example.com/c" not in prompt


def test_competitor_prompt_uses_three_snippets_without_validation(code_product, incoherent_context):
    prompt = get_task_spec("competitor").build_prompt(code_product, incoherent_context)

    assert "Code validation:" not in prompt
    assert "Market Data:" in prompt
    assert "https://example.com/c" in prompt


def test_system_instruction_requires_json():
    assert "JSON" in SYSTEM_INSTRUCTION
