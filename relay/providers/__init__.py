from typing import Dict

from relay.config import Settings
from relay.errors import UnknownProviderError
from relay.providers.base import (
    CustomerInfo,
    Notification,
    ProviderAdapter,
    ProviderHandle,
    ProviderStatus,
)
from relay.providers.card import CardGatewayAdapter
from relay.providers.mobile_money import MobileMoneyAAdapter, MobileMoneyBAdapter

DEFAULT_PROVIDER = CardGatewayAdapter.name


def build_providers(settings: Settings) -> Dict[str, ProviderAdapter]:
    adapters = [
        CardGatewayAdapter(settings.stripe_secret_key, settings.stripe_webhook_secret),
        MobileMoneyAAdapter(settings.mobile_money_a_secret),
        MobileMoneyBAdapter(settings.mobile_money_b_secret),
    ]
    return {adapter.name: adapter for adapter in adapters}


def get_provider(providers: Dict[str, ProviderAdapter], name: str) -> ProviderAdapter:
    try:
        return providers[name]
    except KeyError:
        raise UnknownProviderError(f"Unknown provider: {name}") from None


__all__ = [
    "CardGatewayAdapter",
    "CustomerInfo",
    "DEFAULT_PROVIDER",
    "MobileMoneyAAdapter",
    "MobileMoneyBAdapter",
    "Notification",
    "ProviderAdapter",
    "ProviderHandle",
    "ProviderStatus",
    "build_providers",
    "get_provider",
]
