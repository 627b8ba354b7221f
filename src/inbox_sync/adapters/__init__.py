"""Provider adapters translating dashboard payloads into canonical records."""

from .avito import AvitoAdapter
from .base import (
    AdapterRegistry,
    ProviderAdapter,
    format_display_date,
    map_sender_role,
    parse_timestamp,
)
from .generic import GenericAdapter
from .vk import VkAdapter
from .web import WebWidgetAdapter

__all__ = [
    "AdapterRegistry",
    "AvitoAdapter",
    "GenericAdapter",
    "ProviderAdapter",
    "VkAdapter",
    "WebWidgetAdapter",
    "format_display_date",
    "map_sender_role",
    "parse_timestamp",
]

# Register adapters
AdapterRegistry.register(AvitoAdapter)
AdapterRegistry.register(GenericAdapter)
AdapterRegistry.register(VkAdapter)
AdapterRegistry.register(WebWidgetAdapter)
