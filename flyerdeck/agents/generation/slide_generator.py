"""
Slide generator for property proposal decks.

Runs a fixed slide plan against the uploaded flyers and yields pipeline
events as it goes. Slides either run one after another or all at once; in
parallel mode every slide task pushes into one EventChannel that ``run``
drains, so each slide's own start -> generating -> end order is kept.
"""

import asyncio
import html
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from flyerdeck.agents.config import DEFAULT_MODEL_TYPE, MODEL_TYPES
from flyerdeck.agents.generation.exceptions import user_message_for
from flyerdeck.agents.generation.progress_manager import SlideProgress
from flyerdeck.models.assets import AssetKind, ExtractedAsset
from flyerdeck.models.events import PipelineEvent
from flyerdeck.models.requests import GenerationInput
from flyerdeck.services.event_channel import EventChannel
from flyerdeck.services.providers import ProviderContext
from flyerdeck.services.route_aggregator import RouteAggregator, generate_route_map_prompt
from flyerdeck.services.visual_extraction import VisualExtractionPipeline
from flyerdeck.setup_logging_optimized import get_logger
from flyerdeck.utils.images import to_data_url

logger = get_logger(__name__)

ADDRESS_MISSING_MESSAGE = "物件所在地が入力されていないため、交通情報を取得できませんでした。"


@dataclass(frozen=True)
class SlideDefinition:
    index: int
    kind: str
    title: str
    layout: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "kind": self.kind, "title": self.title, "layout": self.layout}


DEFAULT_SLIDE_PLAN = (
    SlideDefinition(index=0, kind="flyer", title="物件資料", layout="full-image"),
    SlideDefinition(index=1, kind="cover", title="ご提案物件", layout="title"),
    SlideDefinition(index=2, kind="floor_plan", title="間取り", layout="image"),
    SlideDefinition(index=3, kind="access", title="交通アクセス", layout="content"),
)


@dataclass
class GeneratedSlide:
    index: int
    title: str
    html: str
    assets: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "title": self.title,
            "html": self.html,
            "assets": self.assets,
            "error": self.error,
        }


def resolve_model_name(model_type: Optional[str]) -> str:
    model_type = model_type or DEFAULT_MODEL_TYPE
    if model_type not in MODEL_TYPES:
        raise ValueError(f"Unsupported model type: {model_type}")
    return MODEL_TYPES[model_type]


def render_document(title: str, body: str) -> str:
    return (
        "<!doctype html>\n<html>\n  <head>\n"
        '    <meta charset="UTF-8" />\n'
        f"    <title>{html.escape(title)}</title>\n"
        "  </head>\n  <body>\n"
        f"{body}\n"
        "  </body>\n</html>"
    )


def placeholder_html(message: str) -> str:
    return f'<div class="placeholder">{html.escape(message)}</div>'


def image_html(data_url: str, alt: str) -> str:
    return f'<img src="{data_url}" alt="{html.escape(alt)}" />'


class SlideGenerator:
    """Generates the proposal deck; see ``run``."""

    def __init__(
        self,
        extraction: VisualExtractionPipeline,
        routes: RouteAggregator,
        parallel: bool = True,
        model_type: Optional[str] = None,
        plan: Sequence[SlideDefinition] = DEFAULT_SLIDE_PLAN,
    ):
        self.extraction = extraction
        self.routes = routes
        self.parallel = parallel
        self.model = resolve_model_name(model_type)
        self.plan = list(plan)

    @classmethod
    def from_context(
        cls,
        providers: ProviderContext,
        parallel: Optional[bool] = None,
        model_type: Optional[str] = None,
    ) -> "SlideGenerator":
        return cls(
            extraction=VisualExtractionPipeline.from_context(providers),
            routes=RouteAggregator(providers.maps),
            parallel=True if parallel is None else parallel,
            model_type=model_type,
        )

    async def run(self, validated: GenerationInput) -> AsyncIterator[PipelineEvent]:
        """
        Yield the event sequence for one deck.

        ``start``, ``plan:start``, ``plan:end``, then per slide
        ``slide:start`` / ``slide:generating`` / ``slide:end`` and finally
        ``end``. An unexpected failure yields one ``error`` event instead of
        ``end``. Per-asset failures only set the slide's ``error`` field.
        """
        progress = SlideProgress()
        start_time = datetime.now()
        try:
            yield progress.start()

            yield progress.plan_start()
            yield progress.plan_end(
                [slide.to_dict() for slide in self.plan],
                model=self.model,
                parallel=self.parallel,
            )

            sources = [to_data_url(f.data, f.content_type) for f in validated.flyerFiles]
            channel: EventChannel[PipelineEvent] = EventChannel()

            async def produce() -> List[GeneratedSlide]:
                try:
                    if self.parallel:
                        outcomes = await asyncio.gather(
                            *(
                                self._generate_slide(slide, validated, sources, progress, channel.push)
                                for slide in self.plan
                            ),
                            return_exceptions=True,
                        )
                        # Every slide finishes before a failure is re-raised
                        failures = [o for o in outcomes if isinstance(o, BaseException)]
                        if failures:
                            raise failures[0]
                        return list(outcomes)
                    results = []
                    for slide in self.plan:
                        results.append(
                            await self._generate_slide(slide, validated, sources, progress, channel.push)
                        )
                    return results
                finally:
                    channel.close()

            producer = asyncio.create_task(produce())
            async for event in channel:
                yield event
            slides = await producer

            elapsed = (datetime.now() - start_time).total_seconds()
            logger.info(f"✅ Deck generated: {len(slides)} slides in {elapsed:.1f}s")
            yield progress.end([slide.to_dict() for slide in sorted(slides, key=lambda s: s.index)])

        except Exception as e:
            logger.error(f"Slide generation failed: {e}", exc_info=True)
            yield progress.error(user_message_for(e))

    async def _generate_slide(
        self,
        slide: SlideDefinition,
        validated: GenerationInput,
        sources: List[str],
        progress: SlideProgress,
        emit: Callable[[PipelineEvent], None],
    ) -> GeneratedSlide:
        emit(progress.slide_start(slide.index, slide.title))

        builder = self._builders()[slide.kind]
        try:
            body, assets, error = await builder(validated, sources)
        except Exception as e:
            logger.error(f"Slide {slide.index + 1} ({slide.kind}) failed: {e}", exc_info=True)
            error = user_message_for(e)
            body, assets = placeholder_html(error), {}
        document = render_document(slide.title, body)
        emit(progress.slide_generating(slide.index, slide.title, document))

        if error:
            logger.warning(f"Slide {slide.index + 1} ({slide.kind}) finished with error: {error}")
        result = GeneratedSlide(index=slide.index, title=slide.title, html=document, assets=assets, error=error)
        emit(progress.slide_end(slide.index, slide.title, document, assets=assets, error=error))
        return result

    def _builders(self):
        return {
            "flyer": self._build_flyer_slide,
            "cover": self._build_cover_slide,
            "floor_plan": self._build_floor_plan_slide,
            "access": self._build_access_slide,
        }

    async def _extract_first(self, asset_kind: AssetKind, sources: List[str]) -> ExtractedAsset:
        """Try each flyer in upload order until one yields the asset."""
        result = ExtractedAsset.failed("フライヤー画像がありません。")
        for source in sources:
            result = await self.extraction.extract(asset_kind, source)
            if result.ok:
                break
        return result

    async def _build_flyer_slide(self, validated: GenerationInput, sources: List[str]) -> Tuple[str, Dict[str, Any], Optional[str]]:
        # Uploaded flyers are shown as-is
        images = "\n".join(image_html(src, f"物件資料 {i + 1}") for i, src in enumerate(sources))
        return f'<section class="flyer">\n{images}\n</section>', {"flyers": len(sources)}, None

    async def _build_cover_slide(self, validated: GenerationInput, sources: List[str]) -> Tuple[str, Dict[str, Any], Optional[str]]:
        asset = await self._extract_first(AssetKind.PROPERTY_PHOTO, sources)
        visual = image_html(asset.final.to_data_url(), "外観写真") if asset.ok else placeholder_html(asset.error)

        contact = [html.escape(validated.agentName)]
        if validated.agentPhoneNumber:
            contact.append(f"TEL: {html.escape(validated.agentPhoneNumber)}")
        if validated.agentEmailAddress:
            contact.append(html.escape(validated.agentEmailAddress))

        body = (
            '<section class="cover">\n'
            f"<h1>{html.escape(validated.customerName)} 様 ご提案資料</h1>\n"
            f"{visual}\n"
            f'<p class="agent">{" / ".join(contact)}</p>\n'
            "</section>"
        )
        return body, self._asset_payload("propertyPhoto", asset), asset.error

    async def _build_floor_plan_slide(self, validated: GenerationInput, sources: List[str]) -> Tuple[str, Dict[str, Any], Optional[str]]:
        asset = await self._extract_first(AssetKind.FLOOR_PLAN, sources)
        visual = image_html(asset.final.to_data_url(), "間取り図") if asset.ok else placeholder_html(asset.error)
        body = f'<section class="floor-plan">\n<h2>間取り</h2>\n{visual}\n</section>'
        return body, self._asset_payload("floorPlan", asset), asset.error

    async def _build_access_slide(self, validated: GenerationInput, sources: List[str]) -> Tuple[str, Dict[str, Any], Optional[str]]:
        if not validated.propertyAddress:
            return placeholder_html(ADDRESS_MISSING_MESSAGE), {}, ADDRESS_MISSING_MESSAGE

        aggregation = await self.routes.aggregate_from_address(validated.propertyAddress)
        assets = {"access": aggregation.model_dump(by_alias=True)}
        if aggregation.station is None:
            return placeholder_html(aggregation.error), assets, aggregation.error

        summary = generate_route_map_prompt(aggregation.station, aggregation.routes, validated.propertyAddress)
        body = (
            '<section class="access">\n<h2>交通アクセス</h2>\n'
            f"<pre>{html.escape(summary)}</pre>\n"
            "</section>"
        )
        return body, assets, None

    @staticmethod
    def _asset_payload(key: str, asset: ExtractedAsset) -> Dict[str, Any]:
        return {
            key: {
                "image": asset.final.to_data_url() if asset.final else None,
                "intermediate": asset.intermediate.to_data_url() if asset.intermediate else None,
                "error": asset.error,
            }
        }
