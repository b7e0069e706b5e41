"""Tests for the photo risk factor engine."""

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest
from anthropic import APIConnectionError

from kypipeline.core.errors import AnalysisUnavailable
from kypipeline.core.llm.anthropic_provider import AnthropicPhotoAnalyzer
from kypipeline.core.safety.risk import (
    FLAG_WEIGHTS,
    RiskFlags,
    analyze_photo,
    compute_factor,
    extract_flags,
)

FLAG_NAMES = list(FLAG_WEIGHTS)


def test_no_photo_is_neutral():
    assert compute_factor(None) == 1.0


def test_no_flags_set_is_exactly_one():
    assert compute_factor(RiskFlags()) == 1.0


def test_all_flags_clamped_to_ceiling():
    """Weights sum to 1.6 but the factor is capped at 1.5."""
    flags = RiskFlags(**{name: True for name in FLAG_NAMES})
    assert compute_factor(flags) == 1.5


@pytest.mark.parametrize(
    "name,expected",
    [
        ("open_edges", 1.1),
        ("heavy_equipment_near_people", 1.15),
        ("third_party_visible", 1.15),
        ("safety_barrier_missing", 1.1),
        ("height_difference_detected", 1.1),
    ],
)
def test_single_flag_weights(name, expected):
    assert compute_factor(RiskFlags(**{name: True})) == expected


def test_factor_bounded_and_monotonic_over_all_combinations():
    """Every combination stays in [1.0, 1.5]; turning a flag on never lowers it."""
    for combo in itertools.product([False, True], repeat=len(FLAG_NAMES)):
        flags = dict(zip(FLAG_NAMES, combo))
        factor = compute_factor(RiskFlags(**flags))
        assert 1.0 <= factor <= 1.5

        for name in FLAG_NAMES:
            if not flags[name]:
                raised = compute_factor(RiskFlags(**{**flags, name: True}))
                assert raised >= factor


def test_two_decimal_rounding():
    flags = RiskFlags(open_edges=True, heavy_equipment_near_people=True, third_party_visible=True)
    assert compute_factor(flags) == 1.4


def test_flags_serialize_camel_case():
    dumped = RiskFlags(open_edges=True).model_dump(by_alias=True)
    assert dumped == {
        "openEdges": True,
        "heavyEquipmentNearPeople": False,
        "thirdPartyVisible": False,
        "safetyBarrierMissing": False,
        "heightDifferenceDetected": False,
    }


class TestExtractFlags:
    def test_plain_json(self):
        flags = extract_flags('{"open_edges": true, "third_party_visible": false}')
        assert flags.open_edges is True
        assert flags.third_party_visible is False
        assert flags.heavy_equipment_near_people is False

    def test_json_wrapped_in_prose(self):
        text = '分析結果は以下の通りです。\n{"safety_barrier_missing": true}\n以上です。'
        assert extract_flags(text).safety_barrier_missing is True

    def test_json_in_code_fence(self):
        text = 'Here you go:\n```json\n{"height_difference_detected": true}\n```'
        assert extract_flags(text).height_difference_detected is True

    def test_camel_case_and_string_values(self):
        flags = extract_flags('{"heavyEquipmentNearPeople": "yes", "openEdges": "TRUE"}')
        assert flags.heavy_equipment_near_people is True
        assert flags.open_edges is True

    def test_unknown_and_malformed_values_default_false(self):
        flags = extract_flags('{"open_edges": "maybe", "third_party_visible": null, "crane": true}')
        assert flags == RiskFlags()

    def test_no_json_raises_analysis_unavailable(self):
        with pytest.raises(AnalysisUnavailable):
            extract_flags("I cannot analyze this image.")

    def test_json_array_is_not_an_analysis(self):
        with pytest.raises(AnalysisUnavailable):
            extract_flags("[true, false]")


@pytest.mark.asyncio
async def test_analyze_photo_without_url_skips_analyzer():
    """No photo means neutral factor and no analyzer call."""
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock()

    result = await analyze_photo("  ", analyzer)

    assert result.image_factor == 1.0
    assert result.details == RiskFlags()
    analyzer.analyze.assert_not_called()


@pytest.mark.asyncio
async def test_analyze_photo_computes_factor():
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock(return_value='{"open_edges": true, "third_party_visible": true}')

    result = await analyze_photo("https://example.com/site.jpg", analyzer)

    analyzer.analyze.assert_awaited_once_with("https://example.com/site.jpg")
    assert result.image_factor == 1.25
    assert result.details.open_edges is True


@pytest.mark.asyncio
async def test_analyzer_failure_is_not_replaced_with_neutral():
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock(side_effect=ConnectionError("down"))

    with pytest.raises(AnalysisUnavailable):
        await analyze_photo("https://example.com/site.jpg", analyzer)


@pytest.mark.asyncio
async def test_missing_analyzer_with_photo_raises():
    with pytest.raises(AnalysisUnavailable):
        await analyze_photo("https://example.com/site.jpg", None)


def _anthropic_response(text: str):
    block = MagicMock()
    block.type = "text"
    block.text = text
    response = MagicMock()
    response.content = [block]
    return response


@pytest.mark.asyncio
async def test_anthropic_analyzer_sends_image_url():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_anthropic_response('{"open_edges": true}'))
    analyzer = AnthropicPhotoAnalyzer(api_key="test-key", model="test-model", client=client)

    text = await analyzer.analyze("https://example.com/site.jpg")

    assert text == '{"open_edges": true}'
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    image_block = kwargs["messages"][0]["content"][0]
    assert image_block == {"type": "image", "source": {"type": "url", "url": "https://example.com/site.jpg"}}


@pytest.mark.asyncio
async def test_anthropic_analyzer_api_error_becomes_analysis_unavailable():
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=APIConnectionError(request=MagicMock()))
    analyzer = AnthropicPhotoAnalyzer(api_key="test-key", client=client)

    with pytest.raises(AnalysisUnavailable):
        await analyzer.analyze("https://example.com/site.jpg")


@pytest.mark.asyncio
async def test_anthropic_analyzer_empty_response():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_anthropic_response("   "))
    analyzer = AnthropicPhotoAnalyzer(api_key="test-key", client=client)

    with pytest.raises(AnalysisUnavailable):
        await analyzer.analyze("https://example.com/site.jpg")
