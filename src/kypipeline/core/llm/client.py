"""Photo analyzer abstraction.

Provides a protocol-based interface for vision providers, so the risk
engine depends only on "give me the analyzer's text for this photo" and
providers can be swapped or faked in tests.
"""

from typing import Protocol, runtime_checkable


ANALYSIS_PROMPT = """この建設現場写真を安全管理視点で分析し、
以下のキーだけを持つJSONオブジェクトで返してください。説明文は不要です。

{
  "open_edges": boolean,
  "heavy_equipment_near_people": boolean,
  "third_party_visible": boolean,
  "safety_barrier_missing": boolean,
  "height_difference_detected": boolean
}
"""


@runtime_checkable
class PhotoAnalyzer(Protocol):
    """Protocol for providers that inspect a site photo for hazards."""

    async def analyze(self, image_url: str) -> str:
        """Analyze one photo.

        Args:
            image_url: Publicly reachable photo URL

        Returns:
            The provider's raw text answer (expected to contain a JSON object
            of hazard booleans, possibly wrapped in prose)
        """
        ...
