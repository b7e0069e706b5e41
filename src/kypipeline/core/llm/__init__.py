"""Photo analyzer abstraction with provider support."""

from .client import ANALYSIS_PROMPT, PhotoAnalyzer
from .anthropic_provider import AnthropicPhotoAnalyzer

__all__ = [
    "ANALYSIS_PROMPT",
    "PhotoAnalyzer",
    "AnthropicPhotoAnalyzer",
]
