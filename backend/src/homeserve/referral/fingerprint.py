"""Signup fingerprinting: best-effort IP address and device id.

Both signals are weak. They only feed the duplicate-referral check next
to the email address and must never be used as proof of identity.
"""

import ipaddress
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import BaseModel, Field

from homeserve.logging_config import get_logger
from homeserve.settings import settings

logger = get_logger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class DeviceSignals(BaseModel):
    """Client-observable browser characteristics sent with the signup."""
    user_agent: str | None = Field(default=None, max_length=1024)
    screen_width: int | None = Field(default=None, ge=0)
    screen_height: int | None = Field(default=None, ge=0)
    color_depth: int | None = Field(default=None, ge=0)
    pixel_depth: int | None = Field(default=None, ge=0)
    hardware_concurrency: int | None = Field(default=None, ge=0)
    language: str | None = Field(default=None, max_length=64)
    gpu_renderer: str | None = Field(default=None, max_length=512)

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


@dataclass(frozen=True)
class Fingerprint:
    """Signals collected for one signup attempt."""
    ip_address: str | None = None
    device_id: str | None = None


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _signals_string(signals: DeviceSignals) -> str:
    def part(value) -> str:
        return "" if value is None else str(value)

    return "|".join([
        part(signals.user_agent),
        f"{part(signals.screen_width)}x{part(signals.screen_height)}",
        part(signals.color_depth),
        part(signals.pixel_depth),
        part(signals.hardware_concurrency),
        part(signals.language),
        signals.gpu_renderer or "unknown",
    ])


def compute_device_id(signals: DeviceSignals | None) -> str | None:
    """Hash device signals into a short id.

    32-bit rolling hash (``h * 31 + c``) over the UTF-16 code units of the
    joined signals, absolute value in base 36. Matches ids computed by the
    storefront for the same browser.

    Args:
        signals: Browser characteristics, or None if the client sent none

    Returns:
        Device id, or None without signals
    """
    if signals is None or signals.is_empty():
        return None

    data = _signals_string(signals).encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


class IpLookupClient:
    """External "what is my IP" lookup (ipapi.co compatible JSON)."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.ip_lookup_url
        self.timeout = timeout if timeout is not None else settings.ip_lookup_timeout_seconds
        self.transport = transport

    async def lookup_public_ip(self) -> str | None:
        """Public IP of the network this process egresses from.

        Returns:
            IP string, or None on any failure
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url, headers={"Accept": "application/json"})
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ip_lookup_failed", url=self.url, error=str(e))
            return None

        ip = data.get("ip") if isinstance(data, dict) else None
        if not ip or _parse_ip(ip) is None:
            logger.warning("ip_lookup_no_ip", url=self.url)
            return None
        return ip


class FingerprintCollector(Protocol):
    """Source of the signup fingerprint.

    Settlement only sees the resulting ``Fingerprint``, so a stronger
    source can replace the default collector without touching it.
    """

    async def collect(self) -> Fingerprint:
        ...


def _parse_ip(value: str | None) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


class SignupFingerprintCollector:
    """Default collector for an HTTP signup request.

    The IP is the server-observed client address. A private, loopback or
    otherwise non-global address means the client sits on the server's
    own network, so the network's public address from the external
    lookup is used instead. The device id is hashed server-side from the
    submitted signals.
    """

    def __init__(
        self,
        client_host: str | None,
        forwarded_for: str | None = None,
        device_signals: DeviceSignals | None = None,
        ip_lookup: IpLookupClient | None = None,
        trust_forwarded_for: bool | None = None,
    ):
        self.client_host = client_host
        self.forwarded_for = forwarded_for
        self.device_signals = device_signals
        self.ip_lookup = ip_lookup
        self.trust_forwarded_for = (
            settings.trust_forwarded_for if trust_forwarded_for is None else trust_forwarded_for
        )

    def _observed_ip(self) -> str | None:
        candidate = self.client_host
        if self.trust_forwarded_for and self.forwarded_for:
            # First hop is the original client
            candidate = self.forwarded_for.split(",")[0].strip()
        parsed = _parse_ip(candidate)
        return str(parsed) if parsed is not None else None

    async def collect(self) -> Fingerprint:
        """Collect IP and device id; never raises for missing signals."""
        ip = self._observed_ip()
        if ip is None or not ipaddress.ip_address(ip).is_global:
            ip = await self.ip_lookup.lookup_public_ip() if self.ip_lookup else None

        fingerprint = Fingerprint(
            ip_address=ip,
            device_id=compute_device_id(self.device_signals),
        )
        logger.debug(
            "fingerprint_collected",
            has_ip=fingerprint.ip_address is not None,
            has_device=fingerprint.device_id is not None,
        )
        return fingerprint
