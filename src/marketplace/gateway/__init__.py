"""Payment gateway factory.

Provides get_gateway(provider) / set_gateway(provider, gateway) to swap
implementations per provider family:
- FakeGateway for development and testing (MARKETPLACE_GATEWAY_MODE=fake)
- MpesaGateway, CardGateway and PayPalGateway in live mode
"""

from marketplace.config import get_settings

_gateways: dict = {}

PROVIDERS = ("mpesa", "card", "paypal")


def _build_live_gateway(provider: str):
    settings = get_settings()
    if provider == "mpesa":
        from marketplace.gateway.mpesa_adapter import MpesaGateway

        return MpesaGateway(settings.mpesa, timeout=settings.provider_timeout)
    if provider == "card":
        from marketplace.gateway.card_adapter import CardGateway

        return CardGateway(settings.stripe)
    if provider == "paypal":
        from marketplace.gateway.paypal_adapter import PayPalGateway

        return PayPalGateway(settings.paypal, timeout=settings.provider_timeout)
    raise ValueError(f"Unknown payment provider: {provider}")


def get_gateway(provider: str):
    """Return the gateway for a provider family. Defaults to FakeGateway."""
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown payment provider: {provider}")
    if provider not in _gateways:
        if get_settings().gateway_mode == "live":
            _gateways[provider] = _build_live_gateway(provider)
        else:
            from marketplace.gateway.fake_adapter import FakeGateway

            _gateways[provider] = FakeGateway(provider)
    return _gateways[provider]


def set_gateway(provider: str, gateway) -> None:
    """Override the gateway for one provider (useful for tests)."""
    _gateways[provider] = gateway


def reset_gateways() -> None:
    """Reset every provider to its default gateway."""
    _gateways.clear()
