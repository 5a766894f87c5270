"""Select vision-capable OCR providers from the hosted model registry."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, Sequence

from config import Settings
from .logging_utils import get_logger
from .provider_client import ProviderUnavailable

logger = get_logger(__name__)


class ModelRegistry(Protocol):
    async def list_models(self) -> List[Mapping[str, Any]]: ...


def is_vision_capable(descriptor: Mapping[str, Any]) -> bool:
    """True when a registry entry declares image input."""
    architecture = descriptor.get("architecture")
    if not isinstance(architecture, Mapping):
        return False
    modalities = architecture.get("input_modalities") or []
    if isinstance(modalities, (list, tuple)) and "image" in modalities:
        return True
    # Older registry entries describe modality as a single "text+image->text" string.
    modality = architecture.get("modality")
    return isinstance(modality, str) and "image" in modality.split("->", 1)[0]


class ProviderDirectory:
    """Rank vision-capable providers, falling back to a fixed shortlist."""

    def __init__(self, settings: Settings, fallback: Optional[Sequence[str]] = None):
        self.settings = settings
        self.fallback = list(fallback if fallback is not None else settings.fallback_providers)
        if not self.fallback:
            raise ValueError("Provider fallback list is empty; configure LABSCAN_FALLBACK_PROVIDERS.")

    async def list_vision_capable_providers(self, registry: ModelRegistry) -> List[str]:
        """Return registry identifiers that accept images, in registry order."""
        try:
            models = await registry.list_models()
        except ProviderUnavailable as exc:
            logger.warning("Model registry unavailable (%s); using fallback providers", exc.reason)
            return list(self.fallback)

        candidates: List[str] = []
        for descriptor in models:
            if not isinstance(descriptor, Mapping):
                continue
            model_id = descriptor.get("id")
            if isinstance(model_id, str) and model_id and is_vision_capable(descriptor):
                candidates.append(model_id)

        if not candidates:
            logger.info("Registry listed %s models but none accept images; using fallback providers", len(models))
            return list(self.fallback)
        logger.debug("Registry offers %s vision-capable models", len(candidates))
        return candidates

    async def select(self, registry: ModelRegistry, limit: Optional[int] = None) -> List[str]:
        """Return the top-ranked candidates that a single document may consult."""
        limit = self.settings.max_providers if limit is None else limit
        providers = await self.list_vision_capable_providers(registry)
        selected = providers[:limit]
        logger.info("Selected OCR providers: %s", ", ".join(selected))
        return selected
