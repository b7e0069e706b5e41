"""Image-derived risk factor (photo correction multiplier).

A site photo is analyzed for five hazard conditions. Each detected
condition raises the multiplier by a fixed weight above the 1.0 baseline,
and the result is capped at 1.5 so that one photo can never push a score
more than 50% above baseline. The factor is consumed by score aggregation
elsewhere; nothing here is persisted.

Provides:
- RiskFlags: The five hazard booleans
- RiskAnalysis: Factor plus the flags it was computed from
- compute_factor: Bounded multiplier for a set of flags
- extract_flags: Best-effort flag parse of free-form analyzer output
- analyze_photo: Full photo -> factor workflow against an analyzer
"""

import json
import re
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from kypipeline.core.errors import AnalysisUnavailable, UpstreamUnavailable
from kypipeline.core.llm.client import PhotoAnalyzer

logger = structlog.get_logger()

BASE_FACTOR = 1.0
MAX_FACTOR = 1.5

FLAG_WEIGHTS: dict[str, float] = {
    "open_edges": 0.10,
    "heavy_equipment_near_people": 0.15,
    "third_party_visible": 0.15,
    "safety_barrier_missing": 0.10,
    "height_difference_detected": 0.10,
}

_TRUTHY_STRINGS = {"true", "yes", "y", "1"}


class RiskFlags(BaseModel):
    """Hazard conditions detected in one photo. Serializes as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    open_edges: bool = False
    heavy_equipment_near_people: bool = False
    third_party_visible: bool = False
    safety_barrier_missing: bool = False
    height_difference_detected: bool = False


class RiskAnalysis(BaseModel):
    """Result of analyzing one photo."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_factor: float
    details: RiskFlags


def compute_factor(flags: Optional[RiskFlags]) -> float:
    """Compute the bounded photo multiplier.

    Accumulates at full precision, clamps to MAX_FACTOR, then rounds to two
    decimals. No flags at all (no photo) is the neutral factor.

    Args:
        flags: Detected hazards, or None when no photo was supplied

    Returns:
        Multiplier in [1.0, 1.5]
    """
    if flags is None:
        return BASE_FACTOR

    factor = BASE_FACTOR
    for name, weight in FLAG_WEIGHTS.items():
        if getattr(flags, name):
            factor += weight

    return round(min(factor, MAX_FACTOR), 2)


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return False


def _find_json_object(text: str) -> Optional[dict]:
    """Locate a JSON object in text that may carry prose or code fences."""
    candidates = [text.strip()]
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_flags(text: Optional[str]) -> RiskFlags:
    """Parse hazard flags out of an analyzer's free-form response.

    Unknown keys are ignored and missing or non-boolean flags default to
    False. Both snake_case and camelCase keys are accepted.

    Args:
        text: Raw analyzer output

    Returns:
        RiskFlags with every field populated

    Raises:
        AnalysisUnavailable: If no JSON object can be recovered at all
    """
    parsed = _find_json_object(text or "")
    if parsed is None:
        raise AnalysisUnavailable("photo analyzer returned no parseable JSON object")

    values = {}
    for name in FLAG_WEIGHTS:
        raw = parsed.get(name, parsed.get(to_camel(name)))
        values[name] = _coerce_flag(raw)

    return RiskFlags(**values)


async def analyze_photo(
    image_url: Optional[str],
    analyzer: Optional[PhotoAnalyzer],
) -> RiskAnalysis:
    """Analyze one photo and compute its risk factor.

    An absent or blank image URL short-circuits to the neutral result
    without contacting the analyzer. Analyzer failures are never replaced
    with the neutral factor; they propagate as AnalysisUnavailable.

    Args:
        image_url: Publicly reachable photo URL
        analyzer: Photo analyzer (only required when a URL is given)

    Returns:
        RiskAnalysis with factor and flags

    Raises:
        AnalysisUnavailable: If the analyzer is unreachable or unparseable
    """
    url = (image_url or "").strip()
    if not url:
        return RiskAnalysis(image_factor=compute_factor(None), details=RiskFlags())

    if analyzer is None:
        raise AnalysisUnavailable("photo analyzer is not configured")

    try:
        text = await analyzer.analyze(url)
    except UpstreamUnavailable:
        raise
    except Exception as e:
        logger.error("photo_analysis_failed", error=str(e))
        raise AnalysisUnavailable(f"photo analyzer call failed: {e}") from e

    flags = extract_flags(text)
    factor = compute_factor(flags)
    logger.info("photo_analyzed", image_factor=factor, **flags.model_dump())

    return RiskAnalysis(image_factor=factor, details=flags)
