"""Utility functions for the OpenStack cloud provisioner."""

import re
import uuid
from typing import Any, NamedTuple


class Identity(NamedTuple):
    """Keystone identity split from a ``domain:tenant:user`` string."""

    user: str
    tenant: str = ""
    domain: str = ""


def sanitize_name(name: str) -> str:
    """Convert an image profile name to a safe server name prefix.

    Replaces dots, underscores and spaces with hyphens, converts to lowercase,
    and removes any characters that aren't alphanumeric or hyphens.

    Example: 'Ubuntu_20.04 Agent' -> 'ubuntu-20-04-agent'
    """
    sanitized = re.sub(r"[._\s]", "-", name).lower()
    sanitized = re.sub(r"[^a-z0-9-]", "", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)  # collapse multiple hyphens
    return sanitized.strip("-")


def make_server_name(profile_name: str) -> str:
    """Generate a unique server name for a new instance of a profile.

    Example: 'web' -> 'web-3f2a9c1b'
    """
    prefix = sanitize_name(profile_name) or "instance"
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def parse_volume_size(value: Any) -> int:
    """Parse a volume size in GB, falling back to 0 for unusable values."""
    if isinstance(value, bool):
        return 0
    try:
        size = int(value)
    except (TypeError, ValueError):
        return 0
    return size if size >= 0 else 0


def get_keystone_version(url: str | None) -> str:
    """Return the Keystone API version ('2' or '3') from an endpoint URL.

    Example: 'https://keystone.example.com:5000/v2.0' -> '2'
    """
    default = "3"
    if not url:
        return default
    index = url.lower().rfind("/v")
    if index == -1:
        return default
    version = url[index + 2 : index + 3]
    return version if version in ("2", "3") else default


def parse_identity(identity: str) -> Identity:
    """Split an identity string into user, tenant and domain.

    Accepted forms: 'user', 'tenant:user' and 'domain:tenant:user'.
    """
    parts = [part.strip() for part in identity.strip().split(":")]
    if len(parts) == 1:
        return Identity(user=parts[0])
    if len(parts) == 2:
        return Identity(user=parts[1], tenant=parts[0])
    return Identity(user=":".join(parts[2:]), tenant=parts[1], domain=parts[0])
