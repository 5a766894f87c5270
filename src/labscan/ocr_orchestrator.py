"""Read extraction units with ranked vision providers and merge the results."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

from config import Settings
from .document_decomposer import WHOLE_DOCUMENT_LABEL, whole_document_unit
from .errors import NoTextExtracted
from .logging_utils import get_logger
from .models import Document, ExtractedText, ExtractionUnit, OCRAttempt
from .progress import (
    PROVIDER_SELECTED,
    UNIT_FAILED,
    UNIT_SUCCEEDED,
    ProgressEvent,
    ProgressObserver,
    notify,
)
from .provider_client import ProviderUnavailable

logger = get_logger(__name__)

NATIVE_TEXT_PROVIDER = "pdf-text-layer"


class VisionClient(Protocol):
    async def complete(
        self,
        model: str,
        content: Sequence[Dict[str, Any]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str: ...


def build_vision_content(prompt: str, unit: ExtractionUnit) -> List[Dict[str, Any]]:
    """Single user turn asking for verbatim text from one image unit."""
    return [
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": unit.content}},
    ]


def ranked_candidates(providers: Sequence[str], limit: int) -> Iterator[str]:
    """Yield at most ``limit`` providers in rank order, skipping repeats."""
    seen: Set[str] = set()
    for provider in providers:
        if len(seen) >= limit:
            return
        if provider in seen:
            continue
        seen.add(provider)
        yield provider


class OCROrchestrator:
    """Run ranked OCR fallback over extraction units, one outbound call at a time."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def extract(
        self,
        units: Sequence[ExtractionUnit],
        providers: Sequence[str],
        client: VisionClient,
        *,
        document: Optional[Document] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> ExtractedText:
        """
        Turn extraction units into a single text payload.

        Text units are used as they are. Each image unit consults at most
        ``settings.max_providers`` candidates in rank order and stops at the
        first non-empty answer. Native text comes first, then image results,
        both in document order.

        Raises:
            NoTextExtracted: when nothing was read, including the final retry
                with the default provider on the original ``document``.
        """
        attempts: List[OCRAttempt] = []
        failed_units: List[int] = []
        native_parts: List[str] = []
        image_parts: List[str] = []
        provider_used: Optional[str] = None

        for index, unit in enumerate(units):
            if unit.is_text:
                if unit.content.strip():
                    native_parts.append(unit.content)
                continue

            text, unit_attempts = await self.read_unit(index, unit, providers, client, observer)
            attempts.extend(unit_attempts)
            if text is None:
                failed_units.append(index)
                continue
            image_parts.append(text)
            if provider_used is None:
                provider_used = unit_attempts[-1].provider

        merged = "\n".join(native_parts + image_parts)
        if merged.strip():
            if provider_used is None:
                provider_used = NATIVE_TEXT_PROVIDER
            logger.info(
                "Extracted %s characters (%s native, %s image units read, %s failed)",
                len(merged),
                len(native_parts),
                len(image_parts),
                len(failed_units),
            )
            return ExtractedText(merged, provider_used, attempts, failed_units)

        retry = await self._retry_with_default(document, client, observer)
        if retry is not None:
            attempts.append(retry)
            if retry.succeeded:
                return ExtractedText(retry.text or "", retry.provider, attempts, failed_units)

        logger.error("No text extracted after %s provider attempts", len(attempts))
        raise NoTextExtracted()

    async def read_unit(
        self,
        unit_index: int,
        unit: ExtractionUnit,
        providers: Sequence[str],
        client: VisionClient,
        observer: Optional[ProgressObserver] = None,
    ) -> Tuple[Optional[str], List[OCRAttempt]]:
        """Try candidates for one image unit; return the first text and every attempt made."""
        attempts: List[OCRAttempt] = []
        for provider in ranked_candidates(providers, self.settings.max_providers):
            notify(observer, ProgressEvent(PROVIDER_SELECTED, unit_index=unit_index, provider=provider))
            attempt = await self._attempt(unit_index, unit, provider, client)
            attempts.append(attempt)
            if attempt.succeeded:
                notify(observer, ProgressEvent(UNIT_SUCCEEDED, unit_index=unit_index, provider=provider))
                logger.info("OCR succeeded for %s with %s", unit.label or unit_index, provider)
                return attempt.text, attempts
            notify(
                observer,
                ProgressEvent(UNIT_FAILED, unit_index=unit_index, provider=provider, detail=attempt.error or ""),
            )
        logger.warning("All %s providers failed for %s", len(attempts), unit.label or unit_index)
        return None, attempts

    async def _attempt(
        self, unit_index: int, unit: ExtractionUnit, provider: str, client: VisionClient
    ) -> OCRAttempt:
        prompt = (
            self.settings.ocr_prompt_document
            if unit.label == WHOLE_DOCUMENT_LABEL
            else self.settings.ocr_prompt_image
        )
        try:
            text = await client.complete(
                provider,
                build_vision_content(prompt, unit),
                temperature=self.settings.ocr_temperature,
                max_tokens=self.settings.ocr_max_tokens,
            )
        except ProviderUnavailable as exc:
            logger.warning("Provider %s failed for %s: %s", provider, unit.label or unit_index, exc.reason)
            return OCRAttempt(unit_index, provider, error=exc.reason)
        except Exception as exc:  # pylint: disable=broad-except
            # asyncio.CancelledError is a BaseException and is not absorbed here.
            logger.warning(
                "Provider %s raised unexpectedly for %s", provider, unit.label or unit_index, exc_info=True
            )
            return OCRAttempt(unit_index, provider, error=f"{type(exc).__name__}: {exc}")
        if text is not None and not isinstance(text, str):
            logger.warning("Provider %s returned non-text content for %s", provider, unit.label or unit_index)
            return OCRAttempt(unit_index, provider, error="completion content is not text")
        if not text or not text.strip():
            logger.warning("Provider %s returned no text for %s", provider, unit.label or unit_index)
            return OCRAttempt(unit_index, provider, error="empty response")
        return OCRAttempt(unit_index, provider, text=text.strip())

    async def _retry_with_default(
        self,
        document: Optional[Document],
        client: VisionClient,
        observer: Optional[ProgressObserver],
    ) -> Optional[OCRAttempt]:
        """Send the whole original file to the default provider once."""
        if document is None:
            return None
        provider = self.settings.default_provider
        logger.info("Retrying whole document with default provider %s", provider)
        notify(observer, ProgressEvent(PROVIDER_SELECTED, unit_index=-1, provider=provider))
        attempt = await self._attempt(-1, whole_document_unit(document), provider, client)
        if attempt.succeeded:
            notify(observer, ProgressEvent(UNIT_SUCCEEDED, unit_index=-1, provider=provider))
        else:
            notify(observer, ProgressEvent(UNIT_FAILED, unit_index=-1, provider=provider, detail=attempt.error or ""))
        return attempt
