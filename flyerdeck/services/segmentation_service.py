import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from flyerdeck.agents.config import SEGMENTATION_BASE_URL, SEGMENTATION_ENDPOINT, PROVIDER_HTTP_TIMEOUT
from flyerdeck.agents.generation.exceptions import MediaProcessingError

logger = logging.getLogger(__name__)


@dataclass
class SegmentationCandidate:
    mask_url: Optional[str]
    score: Optional[float] = None
    box: Optional[List[float]] = None


@dataclass
class SegmentationResult:
    candidates: List[SegmentationCandidate] = field(default_factory=list)


class SegmentationService:
    """REST client for the hosted SAM-3 segmentation model on fal."""

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = SEGMENTATION_ENDPOINT,
        base_url: str = SEGMENTATION_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint.strip("/")
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=PROVIDER_HTTP_TIMEOUT)
        self.is_available = bool(api_key)

        if not self.is_available:
            logger.warning("FAL_KEY not set. Segmentation-based detection disabled.")

    async def segment(self, image_url: str, prompt: str) -> SegmentationResult:
        """Run the model on ``image_url`` (http or data URL) with a short text prompt."""
        if not self.is_available:
            raise MediaProcessingError("Segmentation API not configured")

        payload = {
            "image_url": image_url,
            "prompt": prompt,
            "return_multiple_masks": True,
            "include_scores": True,
            "include_boxes": True,
        }
        response = await self._http.post(
            f"{self.base_url}/{self.endpoint}",
            json=payload,
            headers={"Authorization": f"Key {self.api_key}"},
        )
        response.raise_for_status()
        return self.parse_response(response.json())

    @staticmethod
    def parse_response(body: Dict[str, Any]) -> SegmentationResult:
        masks = body.get("masks") or []
        metadata = body.get("metadata") or []

        candidates = []
        for i, mask in enumerate(masks):
            meta = metadata[i] if i < len(metadata) and isinstance(metadata[i], dict) else {}
            score = meta.get("score")
            box = meta.get("box")
            candidates.append(SegmentationCandidate(
                mask_url=mask.get("url") if isinstance(mask, dict) else None,
                score=float(score) if isinstance(score, (int, float)) else None,
                box=list(box) if isinstance(box, (list, tuple)) else None,
            ))
        return SegmentationResult(candidates=candidates)

    async def aclose(self) -> None:
        await self._http.aclose()
