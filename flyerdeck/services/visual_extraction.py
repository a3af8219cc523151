"""
Visual extraction: detect -> select best box -> crop -> regenerate.

Each call to ``extract`` owns its result. Failures at any stage come back as
an ``ExtractedAsset`` with ``error`` set so sibling assets and the rest of the
slide run are unaffected.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from flyerdeck.agents.config import CROP_PADDING, PROPERTY_IMAGE_ASPECT_RATIO
from flyerdeck.agents.generation.exceptions import (
    OVERSIZED_IMAGE_REASON,
    CropError,
    ImageFetchError,
    ImageFormatError,
    user_message_for,
)
from flyerdeck.models.assets import ASSET_LABELS, AssetKind, ExtractedAsset, ImagePayload
from flyerdeck.services.gemini_image_service import GeminiImageService
from flyerdeck.services.providers import ProviderContext
from flyerdeck.services.region_detector import RegionDetector, build_detectors
from flyerdeck.utils.geometry import pad, select_best_box, to_normalized_region
from flyerdeck.utils.images import crop_region, fetch_image

logger = logging.getLogger(__name__)


PROPERTY_PHOTO_REGENERATION_PROMPT = """この画像は不動産チラシ（マイソク）から切り出した建物の外観写真です。
切り出しの際に、周囲のラベル・別の写真・文字・ぼやけた余白が入り込んでいる可能性があります。

【タスク】
建物の外観写真だけを、きれいな写真として再生成してください。

【制約】
- 生成するのは建物の外観のみ。ラベル、文字、他の写真、ぼやけた部分は含めない
- 建物の形状、階数、外観デザインは元の写真に忠実に保つ
- 人物は含めない

【スタイル】
- プロの不動産写真のような明るく清潔感のある仕上がり
- 晴れた日の自然光
- 建物全体が収まる構図

【出力】
3:4の縦長画像で出力してください。"""

FLOOR_PLAN_REGENERATION_PROMPT = """Upscale this floor plan image to a higher resolution.

DO NOT CHANGE ANY OF THE FOLLOWING:
1. Room labels such as "LDK", "洋室", "和室", "DK", "K", "浴室", "トイレ", "洗面", "玄関", "バルコニー", "洋室1", "洋室2". Copy every label exactly.
2. Area figures such as "約16.6帖", "6.0帖", "12.5㎡". Keep every number and unit exactly as written.
3. Room layout, positions, shapes, walls, doors and windows.
4. Compass or direction symbols if present.

Only improve clarity and resolution.
Keep the same floor plan with clean lines on a white background and the original aspect ratio."""


@dataclass(frozen=True)
class RegenerationSpec:
    prompt: str
    aspect_ratio: Optional[str] = None
    temperature: Optional[float] = None


REGENERATION_SPECS = {
    AssetKind.PROPERTY_PHOTO: RegenerationSpec(
        prompt=PROPERTY_PHOTO_REGENERATION_PROMPT,
        aspect_ratio=PROPERTY_IMAGE_ASPECT_RATIO,
    ),
    # Fidelity of labels and areas rests on the prompt alone; no OCR check follows.
    AssetKind.FLOOR_PLAN: RegenerationSpec(
        prompt=FLOOR_PLAN_REGENERATION_PROMPT,
        temperature=0.0,
    ),
}


def not_detected_message(asset_kind: AssetKind) -> str:
    return f"{ASSET_LABELS[asset_kind]}を検出できませんでした。"


def crop_failed_message(asset_kind: AssetKind) -> str:
    return f"{ASSET_LABELS[asset_kind]}のクロップに失敗しました。"


FETCH_FAILED_MESSAGE = "フライヤー画像を読み込めませんでした。"
UNSUPPORTED_FORMAT_MESSAGE = "対応していない画像形式です。"
OVERSIZED_IMAGE_MESSAGE = "画像の解像度が大きすぎます。"


def fetch_failed_message(error: Exception) -> str:
    if isinstance(error, ImageFormatError):
        return OVERSIZED_IMAGE_MESSAGE if error.reason == OVERSIZED_IMAGE_REASON else UNSUPPORTED_FORMAT_MESSAGE
    if isinstance(error, ImageFetchError):
        return FETCH_FAILED_MESSAGE
    return user_message_for(error)


class VisualExtractionPipeline:
    """Extracts a clean property photo or floor plan from a flyer image."""

    def __init__(
        self,
        gemini: GeminiImageService,
        detectors: Mapping[AssetKind, RegionDetector],
        http_client: Optional[httpx.AsyncClient] = None,
        padding: float = CROP_PADDING,
    ):
        self.gemini = gemini
        self.detectors = dict(detectors)
        self.http_client = http_client
        self.padding = padding

    @classmethod
    def from_context(cls, providers: ProviderContext) -> "VisualExtractionPipeline":
        return cls(
            gemini=providers.gemini,
            detectors=build_detectors(providers.gemini, providers.segmentation),
            http_client=providers.http,
        )

    async def extract(self, asset_kind: AssetKind, source: str) -> ExtractedAsset:
        """Run the full extraction for one asset kind on one flyer reference.

        Never raises: every stage failure is returned as ``ExtractedAsset.failed``.
        """
        label = ASSET_LABELS[asset_kind]
        try:
            data, mime_type = await fetch_image(source, self.http_client)
        except Exception as e:
            logger.warning(f"[EXTRACT] {asset_kind.value}: source rejected: {e}")
            return ExtractedAsset.failed(fetch_failed_message(e))

        source_image = ImagePayload(data=data, mime_type=mime_type, prompt="source flyer")

        detector = self.detectors.get(asset_kind)
        if detector is None:
            logger.error(f"[EXTRACT] No detector registered for {asset_kind.value}")
            return ExtractedAsset.failed(not_detected_message(asset_kind))

        try:
            boxes = await detector.detect(source_image, asset_kind)
            best = select_best_box(boxes)
        except Exception as e:
            logger.error(f"[EXTRACT] {asset_kind.value}: {detector.name} detector failed: {e}", exc_info=True)
            return ExtractedAsset.failed(not_detected_message(asset_kind))
        if best is None:
            logger.info(f"[EXTRACT] {asset_kind.value}: nothing detected by {detector.name}")
            return ExtractedAsset.failed(not_detected_message(asset_kind))

        try:
            region = pad(to_normalized_region(best), self.padding)
            intermediate = crop_region(data, region, prompt=f"クロップ済み{label}")
        except CropError as e:
            logger.warning(f"[EXTRACT] {asset_kind.value}: crop failed: {e}")
            return ExtractedAsset.failed(crop_failed_message(asset_kind))
        except Exception as e:
            logger.error(f"[EXTRACT] {asset_kind.value}: crop failed unexpectedly: {e}", exc_info=True)
            return ExtractedAsset.failed(crop_failed_message(asset_kind))

        regeneration = REGENERATION_SPECS[asset_kind]
        try:
            final = await self.gemini.regenerate_image(
                intermediate,
                regeneration.prompt,
                aspect_ratio=regeneration.aspect_ratio,
                temperature=regeneration.temperature,
            )
        except Exception as e:
            logger.error(f"[EXTRACT] {asset_kind.value}: regeneration failed: {e}")
            return ExtractedAsset.failed(user_message_for(e), intermediate=intermediate)

        logger.info(f"[EXTRACT] {asset_kind.value}: extracted ({len(final.data)} bytes)")
        return ExtractedAsset(intermediate=intermediate, final=final, error=None)
