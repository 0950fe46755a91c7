"""
Provider adapters.

One adapter class per backend family, selected once by provider key:

    adapter = get_adapter(ResolvedProviderConfig(provider="shenma", api_key="..."))
"""

from typing import Optional, Type

import httpx

from ..errors import ErrorKind, GenerationError
from ..models import ResolvedProviderConfig
from .base import ProviderAdapter, extract_error_message, status_to_kind
from .dayuyu import DayuyuAdapter
from .gemini import GeminiAdapter
from .shenma import ShenmaAdapter
from .zhipu import ZhipuAdapter

ADAPTERS: dict[str, Type[ProviderAdapter]] = {
    ZhipuAdapter.name: ZhipuAdapter,
    ShenmaAdapter.name: ShenmaAdapter,
    DayuyuAdapter.name: DayuyuAdapter,
    GeminiAdapter.name: GeminiAdapter,
}


def register_adapter(key: str, adapter_cls: Type[ProviderAdapter]):
    """Register (or replace) the adapter class for a provider key."""
    ADAPTERS[key.strip().lower()] = adapter_cls


def get_adapter(
    config: ResolvedProviderConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    default_timeout: Optional[float] = None,
) -> ProviderAdapter:
    """Instantiate the adapter for ``config.provider``."""
    adapter_cls = ADAPTERS.get(config.provider)
    if adapter_cls is None:
        raise GenerationError(
            f"Unknown provider '{config.provider}'. Available: {', '.join(sorted(ADAPTERS))}",
            kind=ErrorKind.BAD_REQUEST,
            provider=config.provider,
        )
    return adapter_cls(config, http_client=http_client, default_timeout=default_timeout)


__all__ = [
    "ADAPTERS",
    "DayuyuAdapter",
    "GeminiAdapter",
    "ProviderAdapter",
    "ShenmaAdapter",
    "ZhipuAdapter",
    "extract_error_message",
    "get_adapter",
    "register_adapter",
    "status_to_kind",
]
