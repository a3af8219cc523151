import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from flyerdeck.agents import config
from flyerdeck.services.gemini_image_service import GeminiImageService
from flyerdeck.services.google_maps_service import GoogleMapsService
from flyerdeck.services.segmentation_service import SegmentationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderContext:
    """Long-lived provider clients, built once and passed explicitly.

    The clients carry no request state, so concurrent pipelines can share one
    context safely.
    """
    gemini: GeminiImageService
    segmentation: SegmentationService
    maps: GoogleMapsService
    http: httpx.AsyncClient

    @classmethod
    def from_env(cls, http: Optional[httpx.AsyncClient] = None) -> "ProviderContext":
        http = http or httpx.AsyncClient(timeout=config.PROVIDER_HTTP_TIMEOUT, follow_redirects=True)
        context = cls(
            gemini=GeminiImageService(config.get_gemini_api_key()),
            segmentation=SegmentationService(config.get_fal_api_key(), http_client=http),
            maps=GoogleMapsService(config.get_google_maps_api_key(), http_client=http),
            http=http,
        )
        logger.info(
            "Provider context ready (gemini=%s, segmentation=%s, maps=%s)",
            context.gemini.is_available,
            context.segmentation.is_available,
            context.maps.is_available,
        )
        return context

    async def aclose(self) -> None:
        await self.http.aclose()
