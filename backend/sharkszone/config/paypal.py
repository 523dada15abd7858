"""
PayPal Configuration Resolution

One place for the mode / credential cascade that every PayPal call uses.

Mode: PAYPAL_MODE, then NEXT_PUBLIC_PAYPAL_MODE, then "sandbox". The
deployment ENVIRONMENT is never consulted, so internal testing on production
infrastructure cannot reach live payment endpoints by accident.

Credentials: for the resolved mode only, first non-empty variable wins, in
the order below. The legacy unprefixed names are the shared fallback.
"""

from dataclasses import dataclass
from typing import Literal, Mapping, Optional

from sharkszone.config.settings import Settings


PayPalMode = Literal["sandbox", "live"]

PAYPAL_BASE_URLS: dict[str, str] = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}

CLIENT_ID_SOURCES: dict[str, tuple[str, ...]] = {
    "live": (
        "PAYPAL_LIVE_CLIENT_ID",
        "NEXT_PUBLIC_PAYPAL_CLIENT_ID_LIVE",
        "PAYPAL_CLIENT_ID",
        "NEXT_PUBLIC_PAYPAL_CLIENT_ID",
    ),
    "sandbox": (
        "PAYPAL_SANDBOX_CLIENT_ID",
        "NEXT_PUBLIC_PAYPAL_CLIENT_ID_SANDBOX",
        "PAYPAL_CLIENT_ID",
        "NEXT_PUBLIC_PAYPAL_CLIENT_ID",
    ),
}

CLIENT_SECRET_SOURCES: dict[str, tuple[str, ...]] = {
    "live": ("PAYPAL_LIVE_CLIENT_SECRET", "PAYPAL_CLIENT_SECRET"),
    "sandbox": ("PAYPAL_SANDBOX_CLIENT_SECRET", "PAYPAL_CLIENT_SECRET"),
}

WEBHOOK_ID_SOURCES: dict[str, tuple[str, ...]] = {
    "live": ("PAYPAL_LIVE_WEBHOOK_ID", "PAYPAL_WEBHOOK_ID"),
    "sandbox": ("PAYPAL_SANDBOX_WEBHOOK_ID", "PAYPAL_WEBHOOK_ID"),
}


@dataclass(frozen=True)
class PayPalCredentials:
    """Client credential pair for one PayPal mode (either half may be missing)."""
    client_id: Optional[str]
    client_secret: Optional[str]

    @property
    def complete(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class PayPalConfig:
    """Fully resolved PayPal configuration, built once at startup."""
    mode: PayPalMode
    base_url: str
    credentials: PayPalCredentials
    webhook_id: Optional[str]
    timeout_seconds: float = 15.0
    token_refresh_margin_seconds: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "PayPalConfig":
        env = settings.paypal_environment()
        mode = resolve_paypal_mode(env)
        return cls(
            mode=mode,
            base_url=PAYPAL_BASE_URLS[mode],
            credentials=resolve_credentials(mode, env),
            webhook_id=resolve_webhook_id(mode, env),
            timeout_seconds=settings.paypal_timeout_seconds,
            token_refresh_margin_seconds=settings.paypal_token_refresh_margin_seconds,
        )

    @property
    def is_live(self) -> bool:
        return self.mode == "live"


def _first_present(env: Mapping[str, Optional[str]], names: tuple[str, ...]) -> tuple[Optional[str], Optional[str]]:
    """Return (variable name, value) of the first non-empty variable."""
    for name in names:
        value = env.get(name)
        if value and value.strip():
            return name, value.strip()
    return None, None


def resolve_paypal_mode(env: Mapping[str, Optional[str]]) -> PayPalMode:
    """Resolve the PayPal mode; anything but an explicit "live" is sandbox."""
    _, raw = _first_present(env, ("PAYPAL_MODE", "NEXT_PUBLIC_PAYPAL_MODE"))
    if raw and raw.lower() == "live":
        return "live"
    return "sandbox"


def resolve_credentials(mode: PayPalMode, env: Mapping[str, Optional[str]]) -> PayPalCredentials:
    """Resolve the client id / secret pair, reading only the mode's own cascade."""
    _, client_id = _first_present(env, CLIENT_ID_SOURCES[mode])
    _, client_secret = _first_present(env, CLIENT_SECRET_SOURCES[mode])
    return PayPalCredentials(client_id=client_id, client_secret=client_secret)


def resolve_webhook_id(mode: PayPalMode, env: Mapping[str, Optional[str]]) -> Optional[str]:
    """Resolve the webhook id registered for the mode."""
    _, webhook_id = _first_present(env, WEBHOOK_ID_SOURCES[mode])
    return webhook_id


def describe_credential_sources(mode: PayPalMode, env: Mapping[str, Optional[str]]) -> dict[str, Optional[str]]:
    """
    Report which variable supplied each value, without exposing values.

    Used by the configuration diagnostics endpoint.
    """
    client_id_source, _ = _first_present(env, CLIENT_ID_SOURCES[mode])
    secret_source, _ = _first_present(env, CLIENT_SECRET_SOURCES[mode])
    webhook_source, _ = _first_present(env, WEBHOOK_ID_SOURCES[mode])
    return {
        "client_id_source": client_id_source,
        "client_secret_source": secret_source,
        "webhook_id_source": webhook_source,
    }
