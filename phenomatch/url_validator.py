"""Image URL validation and SSRF protection.

Every image URL is fetched by the downstream model services, so URLs pointing
at private networks or cloud metadata endpoints are rejected in production.
"""
from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from phenomatch.config import settings

logger = logging.getLogger(__name__)

_BLOCKED_HOSTS = re.compile(r"^(localhost|metadata\.google\.internal|0\.0\.0\.0)$", re.IGNORECASE)


class InvalidImageUrl(ValueError):
    """Raised when an image URL fails validation."""
    pass


@dataclass(frozen=True)
class UrlValidationResult:
    valid: bool
    error: str | None = None
    sanitized_url: str | None = None


def _is_private_host(hostname: str) -> bool:
    if _BLOCKED_HOSTS.match(hostname):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )


def is_allowed_domain(hostname: str, allowed_domains: list[str]) -> bool:
    """Exact match or subdomain of an allowed domain."""
    hostname = hostname.lower()
    return any(
        hostname == domain.lower() or hostname.endswith(f".{domain.lower()}")
        for domain in allowed_domains
    )


def validate_image_url(
    url: str,
    *,
    production: bool | None = None,
    enforce_allowlist: bool | None = None,
) -> UrlValidationResult:
    """Check an image URL against the protocol, host and domain rules.

    Production allows https only and rejects private/loopback/metadata hosts.
    The domain allowlist applies in production or when explicitly enforced.
    """
    production = settings.is_production if production is None else production
    if enforce_allowlist is None:
        enforce_allowlist = settings.image_urls.enforce_allowlist or production

    try:
        parsed = urlsplit(url.strip())
        hostname = parsed.hostname
        # Accessing .port validates it
        parsed.port
    except (ValueError, AttributeError):
        return UrlValidationResult(False, "Invalid URL format. Please provide a valid HTTPS URL.")

    if not hostname:
        return UrlValidationResult(False, "Invalid URL format. Please provide a valid HTTPS URL.")

    scheme = parsed.scheme.lower()
    if scheme != "https":
        if production:
            return UrlValidationResult(
                False, f"Invalid protocol: {scheme}:. Only HTTPS is allowed for security."
            )
        if scheme != "http":
            return UrlValidationResult(
                False, f"Invalid protocol: {scheme}:. Use http/https in non-production."
            )

    if production and _is_private_host(hostname):
        return UrlValidationResult(False, "Private IP addresses and localhost are not allowed.")

    if enforce_allowlist and not is_allowed_domain(hostname, settings.image_urls.allowed_domains):
        return UrlValidationResult(
            False, f"Image must be from allowed storage provider. Found: {hostname}"
        )

    if parsed.username or parsed.password:
        return UrlValidationResult(False, "URLs with authentication are not allowed.")

    return UrlValidationResult(True, sanitized_url=parsed.geturl())


def sanitize_image_url(url: str, **kwargs) -> str:
    """Validate and return the sanitized URL.

    Raises:
        InvalidImageUrl: If the URL fails validation
    """
    result = validate_image_url(url, **kwargs)
    if not result.valid:
        logger.warning(f"Rejected image URL: {result.error}")
        raise InvalidImageUrl(result.error or "Invalid image URL")
    return result.sanitized_url
