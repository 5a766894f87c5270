"""Tests for vision-capable provider selection."""

from __future__ import annotations

import pytest

from config import Settings
from src.labscan.provider_client import ProviderUnavailable
from src.labscan.providers import ProviderDirectory, is_vision_capable


class StubRegistry:
    def __init__(self, models=None, error: Exception | None = None):
        self.models = models or []
        self.error = error
        self.calls = 0

    async def list_models(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.models


def _model(model_id: str, *modalities: str) -> dict:
    return {"id": model_id, "architecture": {"input_modalities": list(modalities), "output_modalities": ["text"]}}


def test_is_vision_capable_reads_both_registry_shapes():
    assert is_vision_capable(_model("a", "text", "image"))
    assert not is_vision_capable(_model("b", "text"))
    assert is_vision_capable({"id": "c", "architecture": {"modality": "text+image->text"}})
    assert not is_vision_capable({"id": "d", "architecture": {"modality": "text->image"}})
    assert not is_vision_capable({"id": "e"})


@pytest.mark.asyncio
async def test_vision_providers_keep_registry_order():
    registry = StubRegistry(
        [
            _model("z/vision", "image", "text"),
            _model("a/text-only", "text"),
            _model("m/vision", "text", "image"),
            {"architecture": {"input_modalities": ["image"]}},
        ]
    )
    directory = ProviderDirectory(Settings())

    providers = await directory.list_vision_capable_providers(registry)

    assert providers == ["z/vision", "m/vision"]


@pytest.mark.asyncio
async def test_registry_failure_returns_fallback():
    settings = Settings(fallback_providers=("f/one", "f/two"))
    directory = ProviderDirectory(settings)

    providers = await directory.list_vision_capable_providers(
        StubRegistry(error=ProviderUnavailable("registry", "HTTP 503: down"))
    )

    assert providers == ["f/one", "f/two"]


@pytest.mark.asyncio
async def test_registry_without_vision_models_returns_fallback():
    directory = ProviderDirectory(Settings(), fallback=["f/only"])

    providers = await directory.list_vision_capable_providers(StubRegistry([_model("t/text", "text")]))

    assert providers == ["f/only"]


@pytest.mark.asyncio
async def test_select_caps_candidates_at_max_providers():
    registry = StubRegistry([_model(f"p/{index}", "image") for index in range(8)])
    directory = ProviderDirectory(Settings(max_providers=5))

    selected = await directory.select(registry)

    assert selected == ["p/0", "p/1", "p/2", "p/3", "p/4"]
    assert await directory.select(registry, limit=2) == ["p/0", "p/1"]


def test_empty_fallback_is_a_configuration_error():
    with pytest.raises(ValueError):
        ProviderDirectory(Settings(), fallback=[])
