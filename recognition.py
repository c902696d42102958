import base64
import binascii
import json
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

import pydantic
from openai import OpenAI, OpenAIError, RateLimitError

from catalog import Catalog
from errors import NotFoundError, RecognitionError, ValidationError
from schemas import CandidateProduct, Product, ScanOutcome, ScanResult

logger = logging.getLogger(__name__)

PROMPT = """Task: identify the product shown in the photo.
Current inventory: {context}

Instructions:
1. Read the text, brand marks and visual features in the image.
2. Match it against the inventory. If it matches an item with more than 80% certainty, return that item's id as productId.
3. If it is not in the inventory, suggest an accurate product name based on what you see.

Reply with a strict JSON object with the keys productId (string or null), confidence (0.0 to 1.0), suggestedName, brand and description."""


def decode_image(data: str) -> bytes:
    """Accepts plain base64 or a data: URI."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        image = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image is not valid base64") from exc
    if not image:
        raise ValidationError("Image is empty")
    return image


def candidates_from(products: Iterable[Product]) -> List[CandidateProduct]:
    return [CandidateProduct(id=p.id, name=p.name, price=p.selling_price) for p in products]


class OpenAIRecognizer:
    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Optional[OpenAI] = None, timeout: float = 30.0):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def identify(self, image: bytes, candidates: List[CandidateProduct]) -> ScanResult:
        context = json.dumps([c.model_dump(by_alias=True) for c in candidates], ensure_ascii=False)
        data_url = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You identify retail products from photos."},
                    {"role": "user", "content": [
                        {"type": "text", "text": PROMPT.format(context=context)},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ]},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except RateLimitError as exc:
            logger.warning("Recognition rate limited: %s", exc)
            raise RecognitionError("Recognition service is busy, try again in a moment") from exc
        except OpenAIError as exc:
            logger.error("Recognition request failed: %s", exc)
            raise RecognitionError("Could not identify the product, try again") from exc

        content = response.choices[0].message.content
        if not content:
            raise RecognitionError("Recognition service returned no answer")
        try:
            return ScanResult.model_validate_json(content)
        except pydantic.ValidationError as exc:
            logger.error("Unreadable recognition reply: %s", content[:200])
            raise RecognitionError("Could not identify the product, try again") from exc


def resolve_scan(result: ScanResult, catalog: Catalog) -> ScanOutcome:
    product = catalog.find(result.product_id)
    if product is not None:
        return ScanOutcome(kind="product", confidence=result.confidence, product=product)
    if result.suggested_name:
        return ScanOutcome(
            kind="suggestion",
            confidence=result.confidence,
            suggested_name=result.suggested_name,
            brand=result.brand,
        )
    return ScanOutcome(kind="not_recognized", confidence=result.confidence)


class ScanJobs:
    """
    Recognition requests running in the background.

    A job is either polled to completion or abandoned; abandoning drops it
    so a late answer is never looked at.
    """

    def __init__(self, recognizer=None, max_workers: int = 2):
        self.recognizer = recognizer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scan")
        self._jobs: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, image: bytes, candidates: List[CandidateProduct]) -> str:
        if self.recognizer is None:
            raise RecognitionError("Product recognition is not configured")
        job_id = uuid.uuid4().hex
        future = self._executor.submit(self.recognizer.identify, image, candidates)
        with self._lock:
            self._jobs[job_id] = future
        return job_id

    def poll(self, job_id: str) -> dict:
        with self._lock:
            future = self._jobs.get(job_id)
            if future is None:
                raise NotFoundError(f"Scan {job_id} not found")
            if not future.done():
                return {"status": "pending"}
            del self._jobs[job_id]

        exc = future.exception()
        if exc is None:
            return {"status": "done", "result": future.result()}
        if isinstance(exc, RecognitionError):
            return {"status": "failed", "error": exc.message}
        logger.error("Recognition job %s crashed: %r", job_id, exc)
        return {"status": "failed", "error": "Could not identify the product, try again"}

    def abandon(self, job_id: str) -> bool:
        with self._lock:
            future = self._jobs.pop(job_id, None)
        if future is None:
            return False
        future.cancel()
        logger.debug("Scan %s abandoned", job_id)
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
