"""Gemini client used for peak-moment detection."""
import logging
from typing import Optional, Protocol

from google import genai
from google.genai import types

from reelmaker.config import settings
from reelmaker.errors import DetectionError

logger = logging.getLogger(__name__)


class DetectionClient(Protocol):
    """Anything that can answer a prompt about a video with free-form text."""

    async def generate(self, prompt: str, video_bytes: bytes, mime_type: str) -> str:
        ...


class GeminiDetectionClient:
    """
    Sends a video and an instruction to Gemini and returns the raw answer.

    The video is sent inline with the request. Any failure of the call itself
    is raised as DetectionError; interpreting the answer is left to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[genai.Client] = None,
    ):
        """
        Initialize the Gemini client.

        Args:
            api_key: Gemini API key (defaults to settings.gemini_api_key)
            model: Model name (defaults to settings.gemini_model)
            client: Preconfigured genai.Client, mainly for tests
        """
        self.model = model or settings.gemini_model
        if client is None:
            api_key = api_key or settings.gemini_api_key
            if not api_key:
                raise DetectionError(
                    "Gemini API key is required. Set GEMINI_API_KEY or pass api_key."
                )
            client = genai.Client(api_key=api_key)
        self.client = client

    async def generate(self, prompt: str, video_bytes: bytes, mime_type: str = "video/mp4") -> str:
        """
        Ask the model about a video.

        Args:
            prompt: Instruction text
            video_bytes: Raw video file content
            mime_type: MIME type of the video

        Returns:
            The model's text answer ("" if it returned no text)

        Raises:
            DetectionError: If the request fails
        """
        logger.info(f"Analyzing {len(video_bytes) / (1024 * 1024):.1f}MB video with {self.model}")
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=types.Content(
                    role="user",
                    parts=[
                        types.Part(text=prompt),
                        types.Part(
                            inline_data=types.Blob(data=video_bytes, mime_type=mime_type)
                        ),
                    ]
                )
            )
        except Exception as e:
            raise DetectionError(f"Gemini request failed: {e}") from e

        return response.text or ""
