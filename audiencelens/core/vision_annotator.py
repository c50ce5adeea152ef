"""
Image annotation (Google Cloud Vision) for per-image product analysis.

The annotation provider exposes four independent calls, each taking raw
image bytes and returning the provider's annotation list:

- ``detect_objects``          -> localized object annotations (``.name``)
- ``detect_labels``           -> label annotations (``.description``)
- ``detect_text``             -> text annotations (``.description``)
- ``detect_dominant_colors``  -> color infos (``.color.red/green/blue``)

``collect_vision_insights`` maps those lists onto ``VisionInsights``. Any
failure degrades to empty insights; it is never reported to the caller.
"""

import asyncio
import base64
import json
import logging
import os
from typing import Any, List, Optional

from .constants import (
    ANNOTATION_REQUEST_TIMEOUT_SECONDS,
    MAX_DOMINANT_COLORS,
    MAX_OCR_SNIPPETS,
)
from .cost_calculator import UsageMetrics
from ..models import VisionInsights

logger = logging.getLogger(__name__)


class GoogleVisionAnnotator:
    """Adapts ``google.cloud.vision.ImageAnnotatorClient`` to the four-call annotation interface."""

    def __init__(self, client: Any = None, timeout: float = ANNOTATION_REQUEST_TIMEOUT_SECONDS):
        self.client = client if client is not None else create_vision_client()
        self.timeout = timeout

    def _image(self, image_bytes: bytes) -> Any:
        from google.cloud import vision
        return vision.Image(content=image_bytes)

    def detect_objects(self, image_bytes: bytes) -> List[Any]:
        response = self.client.object_localization(image=self._image(image_bytes), timeout=self.timeout)
        return list(response.localized_object_annotations)

    def detect_labels(self, image_bytes: bytes) -> List[Any]:
        response = self.client.label_detection(image=self._image(image_bytes), timeout=self.timeout)
        return list(response.label_annotations)

    def detect_text(self, image_bytes: bytes) -> List[Any]:
        response = self.client.text_detection(image=self._image(image_bytes), timeout=self.timeout)
        return list(response.text_annotations)

    def detect_dominant_colors(self, image_bytes: bytes) -> List[Any]:
        response = self.client.image_properties(image=self._image(image_bytes), timeout=self.timeout)
        return list(response.image_properties_annotation.dominant_colors.colors)


def create_vision_client(credentials_value: Optional[str] = None) -> Any:
    """
    Build an ImageAnnotatorClient.

    ``GOOGLE_APPLICATION_CREDENTIALS`` may hold either a path (default
    behaviour of the library) or the service-account JSON itself.
    """
    from google.cloud import vision
    from google.oauth2 import service_account

    credentials_value = credentials_value if credentials_value is not None else os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")

    if credentials_value.strip().startswith("{"):
        info = json.loads(credentials_value)
        credentials = service_account.Credentials.from_service_account_info(info)
        logger.info("Google Vision client initialized with JSON credentials")
        return vision.ImageAnnotatorClient(credentials=credentials)

    logger.info("Google Vision client initialized with default credentials")
    return vision.ImageAnnotatorClient()


def _format_color(color_info: Any) -> Optional[str]:
    rgb = getattr(color_info, "color", None)
    if rgb is None:
        return None
    red = round(getattr(rgb, "red", 0) or 0)
    green = round(getattr(rgb, "green", 0) or 0)
    blue = round(getattr(rgb, "blue", 0) or 0)
    return f"rgb({red}, {green}, {blue})"


def _names(annotations: List[Any], attribute: str) -> List[str]:
    return [value for value in (getattr(item, attribute, "") or "" for item in annotations) if value]


async def collect_vision_insights(
    annotator: Any,
    image_base64: str,
    metrics: Optional[UsageMetrics] = None,
    timeout: float = ANNOTATION_REQUEST_TIMEOUT_SECONDS,
) -> VisionInsights:
    """
    Run the four annotation calls concurrently and map them onto ``VisionInsights``.

    Each sub-call counts as one annotation call in ``metrics`` whether or not
    it succeeds. On any failure the result is empty but valid.
    """
    try:
        image_bytes = base64.b64decode(image_base64)
    except (ValueError, TypeError) as e:
        logger.error(f"Could not decode image for annotation: {e}")
        return VisionInsights()

    calls = (
        annotator.detect_objects,
        annotator.detect_labels,
        annotator.detect_text,
        annotator.detect_dominant_colors,
    )
    if metrics is not None:
        metrics.add_vision_calls(len(calls))

    logger.info("Calling Google Vision API")
    try:
        objects, labels, texts, colors = await asyncio.wait_for(
            asyncio.gather(*(asyncio.to_thread(call, image_bytes) for call in calls)),
            timeout=timeout,
        )
    except Exception as e:
        logger.error(f"Google Cloud Vision error: {type(e).__name__}: {e}")
        return VisionInsights()

    insights = VisionInsights(
        objects=_names(objects, "name"),
        labels=_names(labels, "description"),
        text=_names(list(texts)[:MAX_OCR_SNIPPETS], "description"),
        colors=[c for c in (_format_color(info) for info in list(colors)[:MAX_DOMINANT_COLORS]) if c],
    )
    logger.info(f"Google Vision results: objects={insights.objects}, labels={insights.labels}, text={insights.text}")
    return insights
