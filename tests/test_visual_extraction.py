"""Tests for the detect -> crop -> regenerate extraction pipeline."""

import httpx
import pytest
from PIL import Image

from flyerdeck.agents.generation.exceptions import RegenerationError
from flyerdeck.models.assets import AssetKind
from flyerdeck.services.visual_extraction import (
    FETCH_FAILED_MESSAGE,
    FLOOR_PLAN_REGENERATION_PROMPT,
    OVERSIZED_IMAGE_MESSAGE,
    UNSUPPORTED_FORMAT_MESSAGE,
    VisualExtractionPipeline,
)
from flyerdeck.utils.geometry import BoundingBox
from flyerdeck.utils.images import image_size

from fakes import FakeDetector, FakeGemini, png_data_url


class CrashingDetector(FakeDetector):
    async def detect(self, image, asset_kind):
        self.calls.append(asset_kind)
        raise RuntimeError("mask decoder crashed")


def make_pipeline(boxes=None, gemini=None):
    gemini = gemini or FakeGemini()
    detector = FakeDetector(boxes)
    pipeline = VisualExtractionPipeline(
        gemini=gemini,
        detectors={AssetKind.PROPERTY_PHOTO: detector, AssetKind.FLOOR_PLAN: detector},
    )
    return pipeline, gemini, detector


class TestExtract:
    async def test_no_detection_short_circuits(self):
        pipeline, gemini, detector = make_pipeline(boxes=[])

        result = await pipeline.extract(AssetKind.PROPERTY_PHOTO, png_data_url())

        assert result.intermediate is None
        assert result.final is None
        assert result.error == "外観写真を検出できませんでした。"
        assert detector.calls == [AssetKind.PROPERTY_PHOTO]
        assert gemini.regenerate_calls == []

    async def test_success_crops_largest_box_with_padding(self):
        boxes = [
            BoundingBox(coordinates=(0, 0, 100, 100), label="thumb"),
            BoundingBox(coordinates=(100, 100, 600, 600), label="外観"),
        ]
        pipeline, gemini, _ = make_pipeline(boxes=boxes)

        result = await pipeline.extract(AssetKind.PROPERTY_PHOTO, png_data_url(1000, 1000))

        assert result.ok
        assert result.error is None
        # 0.5 + 2 * 0.03 of a 1000px side
        assert image_size(result.intermediate.data) == (560, 560)
        call = gemini.regenerate_calls[0]
        assert call["aspect_ratio"] == "3:4"
        assert call["image"] == result.intermediate

    async def test_floor_plan_regeneration_preserves_text(self):
        boxes = [BoundingBox(coordinates=(100, 100, 900, 900), label="floor plan")]
        pipeline, gemini, _ = make_pipeline(boxes=boxes)

        result = await pipeline.extract(AssetKind.FLOOR_PLAN, png_data_url())

        assert result.ok
        call = gemini.regenerate_calls[0]
        assert call["prompt"] == FLOOR_PLAN_REGENERATION_PROMPT
        assert call["temperature"] == 0.0
        assert call["aspect_ratio"] is None

    @pytest.mark.parametrize(
        "error, message",
        [
            (RuntimeError("blocked for SAFETY"), "安全性ポリシーにより画像を生成できませんでした。"),
            (RegenerationError("画像を生成できませんでした（候補なし）。"), "画像を生成できませんでした（候補なし）。"),
        ],
    )
    async def test_regeneration_failure_keeps_intermediate(self, error, message):
        boxes = [BoundingBox(coordinates=(100, 100, 900, 900))]
        pipeline, _, _ = make_pipeline(boxes=boxes, gemini=FakeGemini(regenerate_error=error))

        result = await pipeline.extract(AssetKind.PROPERTY_PHOTO, png_data_url())

        assert result.final is None
        assert result.intermediate is not None
        assert result.error == message

    async def test_unsupported_source_is_an_error_value(self):
        pipeline, gemini, detector = make_pipeline(boxes=[BoundingBox(coordinates=(0, 0, 10, 10))])
        svg = "data:image/svg+xml;base64,PHN2Zz48L3N2Zz4="

        result = await pipeline.extract(AssetKind.FLOOR_PLAN, svg)

        assert result.error == UNSUPPORTED_FORMAT_MESSAGE
        assert detector.calls == []
        assert gemini.regenerate_calls == []

    async def test_unreadable_source_reports_crop_failure(self):
        pipeline, gemini, _ = make_pipeline(boxes=[BoundingBox(coordinates=(0, 0, 500, 500))])
        # Declared as PNG but not decodable
        broken = "data:image/png;base64,bm90IGFuIGltYWdl"

        result = await pipeline.extract(AssetKind.FLOOR_PLAN, broken)

        assert result.error == "間取り図のクロップに失敗しました。"
        assert gemini.regenerate_calls == []


class TestStageFailuresStayLocal:
    async def test_detector_crash_is_reported_as_not_detected(self):
        gemini = FakeGemini()
        detector = CrashingDetector()
        pipeline = VisualExtractionPipeline(gemini=gemini, detectors={AssetKind.FLOOR_PLAN: detector})

        result = await pipeline.extract(AssetKind.FLOOR_PLAN, png_data_url())

        assert result.error == "間取り図を検出できませんでした。"
        assert result.intermediate is None
        assert detector.calls == [AssetKind.FLOOR_PLAN]
        assert gemini.regenerate_calls == []

    async def test_oversized_flyer_is_an_error_value(self, monkeypatch):
        source = png_data_url(200, 100)
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        pipeline, gemini, detector = make_pipeline(boxes=[BoundingBox(coordinates=(0, 0, 500, 500))])

        result = await pipeline.extract(AssetKind.FLOOR_PLAN, source)

        assert result.error == OVERSIZED_IMAGE_MESSAGE
        assert detector.calls == []
        assert gemini.regenerate_calls == []

    async def test_download_failure_is_localized(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        pipeline = VisualExtractionPipeline(
            gemini=FakeGemini(),
            detectors={AssetKind.PROPERTY_PHOTO: FakeDetector()},
            http_client=client,
        )

        result = await pipeline.extract(AssetKind.PROPERTY_PHOTO, "https://cdn.example.com/flyer.png")

        assert result.error == FETCH_FAILED_MESSAGE
        await client.aclose()

    async def test_unexpected_crop_error_is_reported_as_crop_failure(self, monkeypatch):
        def broken_crop(*args, **kwargs):
            raise MemoryError("cannot allocate")

        monkeypatch.setattr("flyerdeck.services.visual_extraction.crop_region", broken_crop)
        pipeline, gemini, _ = make_pipeline(boxes=[BoundingBox(coordinates=(0, 0, 500, 500))])

        result = await pipeline.extract(AssetKind.PROPERTY_PHOTO, png_data_url())

        assert result.error == "外観写真のクロップに失敗しました。"
        assert gemini.regenerate_calls == []
