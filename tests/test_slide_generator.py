"""Tests for the slide generator event sequence."""

import pytest

from flyerdeck.agents.generation.slide_generator import (
    ADDRESS_MISSING_MESSAGE,
    DEFAULT_SLIDE_PLAN,
    SlideDefinition,
    SlideGenerator,
    resolve_model_name,
)
from flyerdeck.models.assets import AssetKind
from flyerdeck.models.requests import FlyerFile, GenerationInput
from flyerdeck.models.routes import Coordinates
from flyerdeck.services.google_maps_service import ComputedRoute, Place
from flyerdeck.services.route_aggregator import RouteAggregator
from flyerdeck.services.visual_extraction import VisualExtractionPipeline
from flyerdeck.utils.geometry import BoundingBox

from fakes import FakeDetector, FakeGemini, FakeMaps, make_png

SLIDE_COUNT = 4


class ExplodingDetector(FakeDetector):
    async def detect(self, image, asset_kind):
        raise RuntimeError("boom")


class FailingRoutes(RouteAggregator):
    async def aggregate_from_address(self, address, hubs=None):
        raise RuntimeError("RESOURCE_EXHAUSTED: quota exceeded")


def make_generator(
    parallel=True, boxes=None, detector=None, floor_plan_detector=None, maps=None, routes=None, plan=DEFAULT_SLIDE_PLAN
) -> SlideGenerator:
    detector = detector or FakeDetector(boxes if boxes is not None else [BoundingBox(coordinates=(100, 100, 900, 900))])
    extraction = VisualExtractionPipeline(
        gemini=FakeGemini(),
        detectors={AssetKind.PROPERTY_PHOTO: detector, AssetKind.FLOOR_PLAN: floor_plan_detector or detector},
    )
    routes = routes or RouteAggregator(maps or FakeMaps())
    return SlideGenerator(extraction, routes, parallel=parallel, plan=plan)


@pytest.fixture
def validated(primary_input) -> GenerationInput:
    return GenerationInput.model_validate({
        **primary_input,
        "flyerFiles": [FlyerFile(filename="flyer.png", content_type="image/png", data=make_png(300, 400))],
    })


async def collect(generator: SlideGenerator, validated: GenerationInput) -> list:
    return [event async for event in generator.run(validated)]


class TestEventSequence:
    async def test_sequential_order(self, validated):
        events = await collect(make_generator(parallel=False), validated)

        expected = ["start", "plan:start", "plan:end"]
        for _ in range(SLIDE_COUNT):
            expected += ["slide:start", "slide:generating", "slide:end"]
        expected.append("end")
        assert [e.type for e in events] == expected
        assert [e.data["index"] for e in events if e.type == "slide:start"] == [0, 1, 2, 3]

    async def test_parallel_keeps_per_slide_order(self, validated):
        events = await collect(make_generator(parallel=True), validated)

        types = [e.type for e in events]
        assert types[:3] == ["start", "plan:start", "plan:end"]
        assert types[-1] == "end"

        for index in range(SLIDE_COUNT):
            slide_types = [e.type for e in events if e.is_slide_event and e.data["index"] == index]
            assert slide_types == ["slide:start", "slide:generating", "slide:end"]

    async def test_end_carries_all_slides_in_index_order(self, validated):
        events = await collect(make_generator(), validated)
        slides = events[-1].data["slides"]
        assert [s["index"] for s in slides] == [0, 1, 2, 3]
        assert all(s["html"].startswith("<!doctype html>") for s in slides)

    async def test_plan_end_reports_plan_and_model(self, validated):
        events = await collect(make_generator(), validated)
        plan_end = events[2]
        assert [p["kind"] for p in plan_end.data["plan"]] == ["flyer", "cover", "floor_plan", "access"]
        assert plan_end.data["model"] == resolve_model_name(None)


class TestFailureIsolation:
    async def test_missing_assets_do_not_end_the_run(self, validated):
        events = await collect(make_generator(boxes=[]), validated)

        ends = {e.data["index"]: e.data for e in events if e.type == "slide:end"}
        assert ends[1]["error"] == "外観写真を検出できませんでした。"
        assert ends[2]["error"] == "間取り図を検出できませんでした。"
        assert ends[0]["error"] is None
        assert "placeholder" in ends[1]["html"]
        assert events[-1].type == "end"

    async def test_access_without_address(self, validated):
        events = await collect(make_generator(), validated)
        access = next(e for e in events if e.type == "slide:end" and e.data["index"] == 3)
        assert access.data["error"] == ADDRESS_MISSING_MESSAGE

    async def test_access_with_address(self, validated):
        maps = FakeMaps(
            places=[Place(name="", location=Coordinates(latitude=35.0, longitude=139.0))],
            stations=[Place(name="三軒茶屋駅", location=Coordinates(latitude=35.64, longitude=139.67))],
            walk=ComputedRoute(duration_seconds=300),
            transit={35.658: ComputedRoute(duration_seconds=360)},
        )
        validated = validated.model_copy(update={"propertyAddress": "東京都世田谷区太子堂"})

        events = await collect(make_generator(maps=maps), validated)

        access = next(e for e in events if e.type == "slide:end" and e.data["index"] == 3)
        assert access.data["error"] is None
        assert "渋谷駅: 6分" in access.data["html"]
        assert access.data["assets"]["access"]["station"]["name"] == "三軒茶屋"

    @pytest.mark.parametrize("parallel", [True, False])
    async def test_floor_plan_detector_crash_keeps_the_deck_going(self, validated, parallel):
        events = await collect(make_generator(parallel=parallel, floor_plan_detector=ExplodingDetector()), validated)

        ends = {e.data["index"]: e.data for e in events if e.type == "slide:end"}
        assert sorted(ends) == [0, 1, 2, 3]
        assert ends[2]["error"] == "間取り図を検出できませんでした。"
        assert ends[1]["error"] is None
        assert events[-1].type == "end"
        assert "error" not in [e.type for e in events]

    async def test_slide_builder_failure_becomes_slide_error(self, validated):
        validated = validated.model_copy(update={"propertyAddress": "東京都世田谷区太子堂"})

        events = await collect(make_generator(routes=FailingRoutes(FakeMaps())), validated)

        access = next(e for e in events if e.type == "slide:end" and e.data["index"] == 3)
        assert access.data["error"] == "APIの利用制限に達しました。"
        assert "placeholder" in access.data["html"]
        assert [s["index"] for s in events[-1].data["slides"]] == [0, 1, 2, 3]

    async def test_broken_plan_yields_single_error_after_siblings_finish(self, validated):
        plan = (DEFAULT_SLIDE_PLAN[0], SlideDefinition(index=1, kind="unknown", title="?", layout="content"))

        events = await collect(make_generator(plan=plan), validated)

        types = [e.type for e in events]
        assert types.count("error") == 1
        assert types[-1] == "error"
        assert "end" not in types
        assert any(e.type == "slide:end" and e.data["index"] == 0 for e in events)


class TestModelResolution:
    def test_model_tiers(self):
        assert resolve_model_name("low") == "gemini-2.5-flash-lite"
        assert resolve_model_name("high") == "gemini-3-pro-preview"

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            resolve_model_name("ultra")
