"""Async client for the hosted model registry and chat/vision completions."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
from typing import Any, Dict, List, Optional, Sequence

import httpx
from PIL import Image
import pytesseract

from config import Settings
from .errors import MissingCredential
from .logging_utils import get_logger

logger = get_logger(__name__)

LOCAL_TESSERACT = "local/tesseract"


class ProviderUnavailable(RuntimeError):
    """Raised when a single provider call fails; callers move on to the next candidate."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider}: {reason}")


class OpenRouterClient:
    """Thin wrapper over the OpenRouter-compatible REST API."""

    def __init__(
        self,
        settings: Settings,
        api_key: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        key = api_key or settings.api_key
        if not key:
            raise MissingCredential()
        self.settings = settings
        headers = {"Authorization": f"Bearer {key}"}
        if settings.http_referer:
            headers["HTTP-Referer"] = settings.http_referer
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=settings.provider_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "OpenRouterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_models(self) -> List[Dict[str, Any]]:
        """Return the raw model descriptors published by the registry."""
        payload = await self._request("registry", "GET", "/models")
        models = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            raise ProviderUnavailable("registry", "models response has no 'data' list")
        return models

    async def verify_credential(self) -> bool:
        """Check that the API key is accepted by the registry."""
        try:
            await self._request("registry", "GET", "/models")
        except ProviderUnavailable as exc:
            logger.warning("Credential check failed: %s", exc.reason)
            return False
        return True

    async def complete(
        self,
        model: str,
        content: Sequence[Dict[str, Any]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Send one user turn to ``model`` and return the text of the first choice."""
        if model == LOCAL_TESSERACT:
            return await read_with_tesseract(content)

        body = {
            "model": model,
            "messages": [{"role": "user", "content": list(content)}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        payload = await self._request(model, "POST", "/chat/completions", json=body)
        return _first_choice_text(model, payload)

    async def _request(self, provider: str, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailable(
                provider, f"HTTP {exc.response.status_code}: {_error_message(exc.response)}"
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderUnavailable(provider, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise ProviderUnavailable(provider, f"invalid JSON response: {exc}") from exc


def _first_choice_text(model: str, payload: Any) -> str:
    try:
        message = payload["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderUnavailable(model, "completion response has no choices") from exc
    content = message.get("content") if isinstance(message, dict) else None
    if content is None:
        return ""
    if isinstance(content, list):
        return "".join(
            part["text"] for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    if not isinstance(content, str):
        raise ProviderUnavailable(model, "completion content is not text")
    return content


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or "Unknown error"
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return str(data["error"].get("message", "Unknown error"))
    return "Unknown error"


async def read_with_tesseract(content: Sequence[Dict[str, Any]]) -> str:
    """Run Tesseract locally on every inline image in a completion payload."""
    images = [
        part["image_url"]["url"]
        for part in content
        if part.get("type") == "image_url" and isinstance(part.get("image_url"), dict)
    ]
    if not images:
        raise ProviderUnavailable(LOCAL_TESSERACT, "no inline image to read")
    texts = []
    for data_url in images:
        texts.append(await asyncio.to_thread(_tesseract_image_to_string, data_url))
    return "\n".join(texts)


def _tesseract_image_to_string(data_url: str) -> str:
    _, _, encoded = data_url.partition(",")
    try:
        raw = base64.b64decode(encoded, validate=True)
        with Image.open(io.BytesIO(raw)) as image:
            return pytesseract.image_to_string(image)
    except pytesseract.TesseractNotFoundError as exc:
        raise ProviderUnavailable(
            LOCAL_TESSERACT,
            "Tesseract binary not found. Install via 'brew install tesseract' or 'apt install tesseract-ocr'.",
        ) from exc
    except pytesseract.TesseractError as exc:
        raise ProviderUnavailable(LOCAL_TESSERACT, f"tesseract failed: {exc}") from exc
    # UnidentifiedImageError and truncated-image errors are both OSError subclasses.
    except (binascii.Error, OSError) as exc:
        raise ProviderUnavailable(LOCAL_TESSERACT, f"undecodable image: {exc}") from exc
