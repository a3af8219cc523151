import asyncio
import base64
import logging
from typing import Any, Optional

from google import genai
from google.genai import types

from flyerdeck.agents.config import GEMINI_DETECTION_MODEL, GEMINI_IMAGE_MODEL, IMAGE_SIZE
from flyerdeck.agents.generation.exceptions import ErrorCategory, RegenerationError
from flyerdeck.models.assets import ImagePayload

logger = logging.getLogger(__name__)

NO_CANDIDATES_MESSAGE = "画像を生成できませんでした（候補なし）。"
NO_PARTS_MESSAGE = "画像を生成できませんでした（パーツなし）。"
NO_IMAGE_DATA_MESSAGE = "画像を生成できませんでした（画像データなし）。"

# Block and finish reasons reported by the API
REASON_CATEGORIES = {
    "SAFETY": ErrorCategory.SAFETY,
    "IMAGE_SAFETY": ErrorCategory.SAFETY,
    "RECITATION": ErrorCategory.COPYRIGHT,
    "IMAGE_RECITATION": ErrorCategory.COPYRIGHT,
    "BLOCKLIST": ErrorCategory.CONTENT_BLOCKED,
    "PROHIBITED_CONTENT": ErrorCategory.CONTENT_BLOCKED,
    "IMAGE_PROHIBITED_CONTENT": ErrorCategory.CONTENT_BLOCKED,
    "SPII": ErrorCategory.CONTENT_BLOCKED,
}


def _reason_name(reason: Any) -> str:
    if reason is None:
        return ""
    return getattr(reason, "name", None) or str(reason)


def response_category(response: Any, candidate: Any = None) -> ErrorCategory:
    """Category for a response that carried no image.

    A blocked prompt counts as blocked content unless the API names a more
    specific reason.
    """
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _reason_name(getattr(feedback, "block_reason", None))
    if block_reason:
        return REASON_CATEGORIES.get(block_reason, ErrorCategory.CONTENT_BLOCKED)
    if candidate is not None:
        finish_reason = _reason_name(getattr(candidate, "finish_reason", None))
        return REASON_CATEGORIES.get(finish_reason, ErrorCategory.GENERIC)
    return ErrorCategory.GENERIC


class GeminiImageService:
    """Wrapper around the Gemini client for flyer analysis and image regeneration.

    One instance is shared read-only by every extraction in a pipeline; it holds
    no per-request state.
    """

    def __init__(
        self,
        api_key: Optional[str],
        image_model: str = GEMINI_IMAGE_MODEL,
        detection_model: str = GEMINI_DETECTION_MODEL,
        client: Any = None,
    ):
        self.api_key = api_key
        self.image_model = image_model
        self.detection_model = detection_model
        self._client = client
        if self._client is None and api_key:
            self._client = genai.Client(api_key=api_key)
        self.is_available = self._client is not None

        if not self.is_available:
            logger.warning("GOOGLE_GENERATIVE_AI_API_KEY not set. Gemini image features disabled.")

    def _require_client(self):
        if not self.is_available:
            raise RegenerationError("Gemini API not configured", category=ErrorCategory.GENERIC)
        return self._client

    async def generate_json(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        temperature: float = 0.5,
    ) -> Optional[str]:
        """Send an image plus instruction to the vision model and return its JSON text."""
        client = self._require_client()

        contents = [
            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            prompt,
        ]
        config = types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            safety_settings=[
                types.SafetySetting(
                    category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
                    threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
                )
            ],
        )

        # google-genai is sync; wrap in thread to keep interface async
        def _invoke():
            return client.models.generate_content(
                model=self.detection_model,
                contents=contents,
                config=config,
            )

        response = await asyncio.to_thread(_invoke)
        return getattr(response, "text", None)

    async def regenerate_image(
        self,
        image: ImagePayload,
        prompt: str,
        aspect_ratio: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ImagePayload:
        """Redraw ``image`` following ``prompt`` and return the first inline image.

        Provider exceptions propagate; a response without an image raises
        RegenerationError.
        """
        client = self._require_client()

        image_config = types.ImageConfig(image_size=IMAGE_SIZE)
        if aspect_ratio:
            image_config = types.ImageConfig(aspect_ratio=aspect_ratio, image_size=IMAGE_SIZE)

        contents = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type or "image/png"),
            prompt,
        ]
        config = types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            temperature=temperature,
            image_config=image_config,
        )

        def _invoke():
            return client.models.generate_content(
                model=self.image_model,
                contents=contents,
                config=config,
            )

        response = await asyncio.to_thread(_invoke)
        return self.extract_image_from_response(response, prompt, aspect_ratio)

    @staticmethod
    def extract_image_from_response(
        response: Any,
        prompt: str,
        aspect_ratio: Optional[str] = None,
    ) -> ImagePayload:
        """Pull the first inline image part out of a generate_content response."""
        candidates = getattr(response, "candidates", None)
        if not candidates:
            raise RegenerationError(NO_CANDIDATES_MESSAGE, category=response_category(response))

        candidate = candidates[0]
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None)
        if not parts:
            raise RegenerationError(NO_PARTS_MESSAGE, category=response_category(response, candidate))

        for part in parts:
            inline = getattr(part, "inline_data", None)
            if inline is None:
                continue
            mime_type = getattr(inline, "mime_type", None) or ""
            if not mime_type.startswith("image/"):
                continue
            data = getattr(inline, "data", None)
            if not data:
                continue
            if isinstance(data, str):
                # Some SDK versions hand back base64 text
                data = base64.b64decode(data)
            return ImagePayload(
                data=bytes(data),
                mime_type=mime_type or "image/png",
                prompt=prompt,
                aspect_ratio=aspect_ratio,
            )

        raise RegenerationError(NO_IMAGE_DATA_MESSAGE, category=response_category(response, candidate))
