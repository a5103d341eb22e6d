"""
Content-type specific extraction strategies.

The set is closed: text, video and image. Each strategy runs one script in
the loaded page and turns its raw result into the ``ExtractedContent``
payload.
"""

from typing import Any, Dict, List, Protocol, Union

from pydantic import ValidationError as PydanticValidationError

from ...schema.content import ImageDescriptor, MediaDescriptor, VideoDescriptor
from ...schema.source import ContentType
from ..core.exceptions import ExtractionError

Payload = Union[str, List[MediaDescriptor]]


class PageEvaluator(Protocol):
    async def evaluate(self, page: Any, script: str) -> Any: ...


TEXT_SCRIPT = "() => document.body ? document.body.innerText : ''"

VIDEO_SCRIPT = """() => Array.from(document.querySelectorAll('video')).map(video => {
    const source = video.querySelector('source');
    return {
        src: video.currentSrc || video.src || (source ? source.src : ''),
        mime_type: video.getAttribute('type') || (source ? source.getAttribute('type') : null),
        duration: Number.isFinite(video.duration) ? video.duration : null,
    };
})"""

IMAGE_SCRIPT = """() => Array.from(document.querySelectorAll('img')).map(img => ({
    src: img.currentSrc || img.src,
    alt: img.alt,
    width: img.width,
    height: img.height,
}))"""


class ExtractionStrategy:
    """Base strategy: evaluate ``script`` and convert the result"""

    content_type: ContentType
    script: str

    async def extract(self, evaluator: PageEvaluator, page: Any) -> Payload:
        raw = await evaluator.evaluate(page, self.script)
        try:
            return self.convert(raw)
        except (PydanticValidationError, TypeError) as e:
            raise ExtractionError(
                f"Unexpected {self.content_type.value} extraction result: {e}",
                content_type=self.content_type.value,
                original_error=e,
            ) from e

    def convert(self, raw: Any) -> Payload:
        raise NotImplementedError


class TextExtraction(ExtractionStrategy):
    content_type = ContentType.TEXT
    script = TEXT_SCRIPT

    def convert(self, raw: Any) -> Payload:
        if raw is None:
            return ""
        if not isinstance(raw, str):
            raise TypeError(f"expected page text, got {type(raw).__name__}")
        return raw


class VideoExtraction(ExtractionStrategy):
    content_type = ContentType.VIDEO
    script = VIDEO_SCRIPT

    def convert(self, raw: Any) -> Payload:
        if not isinstance(raw, list):
            raise TypeError(f"expected a list of video elements, got {type(raw).__name__}")
        return [VideoDescriptor.model_validate(item) for item in raw]


class ImageExtraction(ExtractionStrategy):
    content_type = ContentType.IMAGE
    script = IMAGE_SCRIPT

    def convert(self, raw: Any) -> Payload:
        if not isinstance(raw, list):
            raise TypeError(f"expected a list of image elements, got {type(raw).__name__}")
        return [ImageDescriptor.model_validate(item) for item in raw]


STRATEGIES: Dict[ContentType, ExtractionStrategy] = {
    ContentType.TEXT: TextExtraction(),
    ContentType.VIDEO: VideoExtraction(),
    ContentType.IMAGE: ImageExtraction(),
}


def get_strategy(content_type: str) -> ExtractionStrategy:
    """
    Select the strategy for a content type.

    Raises:
        ExtractionError: For any type outside text, video and image
    """
    try:
        return STRATEGIES[ContentType(content_type)]
    except ValueError as e:
        raise ExtractionError(f"Unsupported content type: {content_type}", content_type=content_type) from e


async def extract_content(evaluator: PageEvaluator, page: Any, content_type: str) -> Payload:
    """Run the strategy for ``content_type`` against a loaded page"""
    return await get_strategy(content_type).extract(evaluator, page)
