"""
Region detectors: map a flyer image to labeled bounding boxes.

Two interchangeable strategies share one interface. Which one handles which
asset kind is decided by ``build_detectors`` so the extraction pipeline never
branches on provider.

A detector never raises for provider trouble: malformed output, empty output
and out-of-range coordinates all come back as an empty list.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from flyerdeck.agents.config import MIN_SEGMENTATION_SCORE
from flyerdeck.models.assets import AssetKind, ImagePayload
from flyerdeck.services.gemini_image_service import GeminiImageService
from flyerdeck.services.segmentation_service import SegmentationCandidate, SegmentationService
from flyerdeck.utils.geometry import PER_MILLE, BoundingBox

logger = logging.getLogger(__name__)


PROPERTY_PHOTO_DETECTION_PROMPT = """あなたは不動産チラシ（マイソク）の画像を解析する専門家です。
この画像の中から、建物を外側から撮影した外観写真を1枚だけ探してください。

【対象】
- マンション・アパート・戸建ての外観が全体または大部分写っている写真
- 「外観」と書かれたラベルが添えられていることが多い

【対象外】
- 室内写真（リビング、キッチン、浴室など）
- 間取り図、地図、周辺案内図
- エントランスや廊下だけの写真、周辺施設の写真、小さなサムネイル

【選び方】
- 外観写真が複数ある場合は最も大きいものを1つだけ選ぶ
- 写真の枠にぴったり合わせ、隣の写真や文字を含めない
- 見つからない場合は空の配列を返す

Output a JSON list where each entry contains:
- "box_2d": [y0, x0, y1, x1] with normalized coordinates from 0 to 1000
- "label": a short descriptive label

Return [] if no exterior photo is found."""

FLOOR_PLAN_DETECTION_PROMPT = """あなたは不動産チラシ（マイソク）の画像を解析する専門家です。
この画像の中から間取り図（フロアプラン）を探してください。

- 部屋名や帖数が書かれた平面図を対象とする
- 外観写真、室内写真、地図、文章ブロックは含めない
- 見つからない場合は空の配列を返す

Output a JSON list where each entry contains:
- "box_2d": [y0, x0, y1, x1] with normalized coordinates from 0 to 1000
- "label": a short descriptive label

Return [] if no floor plan is found."""

DEFAULT_DETECTION_PROMPTS = {
    AssetKind.PROPERTY_PHOTO: PROPERTY_PHOTO_DETECTION_PROMPT,
    AssetKind.FLOOR_PLAN: FLOOR_PLAN_DETECTION_PROMPT,
}

DEFAULT_SEGMENTATION_PROMPTS = {
    AssetKind.PROPERTY_PHOTO: "building exterior",
    AssetKind.FLOOR_PLAN: "floor plan",
}

# Upper bound on boxes accepted from one vision response
MAX_VISION_BOXES = 20


class RegionDetector(ABC):
    """Capability: image in, zero or more labeled boxes out."""

    name = "detector"

    @abstractmethod
    async def detect(self, image: ImagePayload, asset_kind: AssetKind) -> List[BoundingBox]:
        raise NotImplementedError


class VisionModelRegionDetector(RegionDetector):
    """Asks a general vision model for a JSON list of ``box_2d`` entries."""

    name = "vision"

    def __init__(self, gemini: GeminiImageService, prompts: Optional[Dict[AssetKind, str]] = None):
        self.gemini = gemini
        self.prompts = prompts or DEFAULT_DETECTION_PROMPTS

    async def detect(self, image: ImagePayload, asset_kind: AssetKind) -> List[BoundingBox]:
        prompt = self.prompts.get(asset_kind)
        if not prompt:
            logger.warning(f"[DETECT] No vision prompt for {asset_kind.value}")
            return []
        try:
            text = await self.gemini.generate_json(prompt, image.data, image.mime_type)
        except Exception as e:
            logger.error(f"[DETECT] Vision detection failed for {asset_kind.value}: {e}")
            return []
        boxes = self.parse_boxes(text)
        logger.info(f"[DETECT] vision found {len(boxes)} box(es) for {asset_kind.value}")
        return boxes

    @staticmethod
    def parse_boxes(text: Optional[str]) -> List[BoundingBox]:
        """Validate the model's JSON; anything malformed yields no boxes."""
        if not text:
            return []
        try:
            payload = json.loads(text)
        except (TypeError, ValueError):
            logger.warning("[DETECT] Vision response is not valid JSON")
            return []
        if isinstance(payload, dict):
            # Tolerate {"boxes": [...]} wrappers
            payload = payload.get("boxes", payload.get("items"))
        if not isinstance(payload, list) or len(payload) > MAX_VISION_BOXES:
            return []

        boxes = []
        for raw in payload:
            box = BoundingBox.parse(raw)
            if box is None:
                logger.debug(f"[DETECT] Dropping invalid box: {raw!r}")
                continue
            boxes.append(box)
        return boxes


class SegmentationRegionDetector(RegionDetector):
    """Uses a segmentation service; each returned mask contributes its box."""

    name = "segmentation"

    def __init__(
        self,
        segmentation: SegmentationService,
        prompts: Optional[Dict[AssetKind, str]] = None,
        min_score: float = MIN_SEGMENTATION_SCORE,
    ):
        self.segmentation = segmentation
        self.prompts = prompts or DEFAULT_SEGMENTATION_PROMPTS
        self.min_score = min_score

    async def detect(self, image: ImagePayload, asset_kind: AssetKind) -> List[BoundingBox]:
        prompt = self.prompts.get(asset_kind)
        if not prompt:
            logger.warning(f"[DETECT] No segmentation prompt for {asset_kind.value}")
            return []
        try:
            result = await self.segmentation.segment(image.to_data_url(), prompt)
        except Exception as e:
            logger.error(f"[DETECT] Segmentation failed for {asset_kind.value}: {e}")
            return []

        boxes = []
        for candidate in result.candidates:
            if candidate.score is not None and candidate.score < self.min_score:
                continue
            box = self.candidate_to_box(candidate, label=prompt)
            if box is not None:
                boxes.append(box)
        logger.info(
            f"[DETECT] segmentation kept {len(boxes)}/{len(result.candidates)} mask(s) for {asset_kind.value}"
        )
        return boxes

    @staticmethod
    def candidate_to_box(candidate: SegmentationCandidate, label: str = "") -> Optional[BoundingBox]:
        """Convert a mask box to per-mille ``[y0, x0, y1, x1]``.

        The service reports ``[x0, y0, x1, y1]`` as fractions of the image
        size. Boxes outside [0, 1] are rejected like any other invalid box.
        """
        raw: Any = candidate.box
        if not raw or len(raw) != 4:
            return None
        try:
            x0, y0, x1, y1 = (float(v) for v in raw)
        except (TypeError, ValueError):
            return None

        coords = (
            round(y0 * PER_MILLE, 3),
            round(x0 * PER_MILLE, 3),
            round(y1 * PER_MILLE, 3),
            round(x1 * PER_MILLE, 3),
        )
        try:
            return BoundingBox(coordinates=coords, label=label)
        except ValueError:
            return None


def build_detectors(gemini: GeminiImageService, segmentation: SegmentationService) -> Dict[AssetKind, RegionDetector]:
    """Detector per asset kind: vision model for photos, segmentation for floor plans."""
    return {
        AssetKind.PROPERTY_PHOTO: VisionModelRegionDetector(gemini),
        AssetKind.FLOOR_PLAN: SegmentationRegionDetector(segmentation),
    }
