"""Anthropic Claude photo analyzer.

Implements the PhotoAnalyzer protocol using the Anthropic SDK's vision
support, passing the photo by URL.
"""

from anthropic import APIError, AsyncAnthropic

from kypipeline.core.errors import AnalysisUnavailable, ConfigurationError

from .client import ANALYSIS_PROMPT


class AnthropicPhotoAnalyzer:
    """Claude-backed hazard analyzer for site photos."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        client: AsyncAnthropic | None = None,
    ):
        """Initialize the analyzer.

        Args:
            api_key: Anthropic API key
            model: Vision-capable model identifier
            client: Pre-built client (tests inject a fake here)

        Raises:
            ConfigurationError: If no API key is provided
        """
        if not api_key and client is None:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
        self.model = model
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def analyze(self, image_url: str) -> str:
        """Ask Claude for the hazard booleans of one photo.

        Args:
            image_url: Publicly reachable photo URL

        Returns:
            Concatenated text blocks of the response

        Raises:
            AnalysisUnavailable: If the API call fails or returns no text
        """
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image", "source": {"type": "url", "url": image_url}},
                    {"type": "text", "text": ANALYSIS_PROMPT},
                ],
            }
        ]

        try:
            response = await self.client.messages.create(
                model=self.model,
                messages=messages,
                max_tokens=512,
            )
        except APIError as e:
            raise AnalysisUnavailable(f"photo analyzer request failed: {e}") from e

        text = "".join(
            getattr(block, "text", None) or ""
            for block in response.content
            if block.type == "text"
        )
        if not text.strip():
            raise AnalysisUnavailable("photo analyzer returned an empty response")

        return text
