"""
Device fingerprinting from connection metadata.

The device id is a SHA-256 digest (first 32 hex chars) over, in order:
User-Agent, Accept-Language, Accept-Encoding, Accept and the client IP.
It is a detection signal only; a mismatch never invalidates a session.
"""

import hashlib
from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Request

FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding", "accept")


@dataclass(frozen=True)
class ConnectionMetadata:
    """Request metadata the fingerprint is derived from."""

    headers: Mapping[str, str]
    client_host: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "ConnectionMetadata":
        return cls(
            headers={k.lower(): v for k, v in request.headers.items()},
            client_host=request.client.host if request.client else None,
        )

    def header(self, name: str) -> str:
        return self.headers.get(name, "") or ""


@dataclass(frozen=True)
class DeviceFingerprint:
    device_id: str
    device_info: str
    ip_address: str
    user_agent: str


MAX_IP_LENGTH = 45


def client_ip(metadata: ConnectionMetadata) -> str:
    """Resolve the client IP, preferring proxy headers over the socket peer.

    Header values are client-controlled, so the result is capped at the
    width of an IPv6 address in text form.
    """
    return _raw_client_ip(metadata)[:MAX_IP_LENGTH]


def _raw_client_ip(metadata: ConnectionMetadata) -> str:
    forwarded = metadata.header("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = metadata.header("x-real-ip")
    if real_ip:
        return real_ip.strip()
    cf_ip = metadata.header("cf-connecting-ip")  # Cloudflare
    if cf_ip:
        return cf_ip.strip()
    return metadata.client_host or "unknown"


def describe_user_agent(user_agent: str) -> str:
    """Turn a User-Agent string into a short human-readable device label."""
    if not user_agent:
        return "Unknown Device"

    ua = user_agent.lower()

    if "mobile" in ua or "android" in ua:
        if "iphone" in ua:
            return "iPhone"
        if "ipad" in ua:
            return "iPad"
        if "android" in ua:
            return "Android Mobile"
        return "Mobile Device"

    def with_os(browser: str) -> str:
        for marker, label in (("mac", "Mac"), ("windows", "Windows"), ("linux", "Linux")):
            if marker in ua:
                return f"{browser} on {label}"
        return f"{browser} Browser"

    if "edg" in ua:
        return "Edge Browser"
    if "chrome" in ua:
        return with_os("Chrome")
    if "firefox" in ua:
        return with_os("Firefox")
    if "safari" in ua:
        return "Safari on Mac" if "mac" in ua else "Safari Browser"

    if "mac" in ua:
        return "Mac Desktop"
    if "windows" in ua:
        return "Windows Desktop"
    if "linux" in ua:
        return "Linux Desktop"
    return "Desktop Browser"


def fingerprint(metadata: ConnectionMetadata) -> DeviceFingerprint:
    """Derive a stable device fingerprint. Pure: no I/O, no side effects."""
    ip_address = client_ip(metadata)
    user_agent = metadata.header("user-agent")

    components = [metadata.header(name) for name in FINGERPRINT_HEADERS]
    components.append(ip_address)
    device_id = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()[:32]

    return DeviceFingerprint(
        device_id=device_id,
        device_info=describe_user_agent(user_agent),
        ip_address=ip_address,
        user_agent=user_agent,
    )
