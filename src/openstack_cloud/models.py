"""Domain models for the OpenStack cloud provisioner.

This module defines typed data structures for image profiles, instance
and image lifecycle states, the data exchanged with the host automation
controller, and the exception hierarchy.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from openstack_cloud.constants import (
    CLOUD_TYPE,
    METADATA_AGENT_NAME,
    METADATA_AUTH_TOKEN,
    METADATA_CLOUD_TYPE,
    METADATA_CUSTOM_PREFIX,
    METADATA_PROFILE_ID,
    METADATA_SERVER_ADDRESS,
)
from openstack_cloud.utils import parse_volume_size


# =============================================================================
# Exceptions
# =============================================================================


class ProvisionerError(Exception):
    """Base exception for provisioner errors."""

    pass


class ConfigurationError(ProvisionerError):
    """Invalid or missing configuration."""

    pass


class CatalogError(ProvisionerError):
    """The image profile catalog is malformed or incomplete."""

    pass


class ResourceNotFoundError(ProvisionerError):
    """A required OpenStack resource was not found."""

    pass


class OpenStackAPIError(ProvisionerError):
    """Error communicating with OpenStack API."""

    pass


class ImageNotReadyError(ProvisionerError):
    """An image cannot start instances (not initialized or in error)."""

    pass


# =============================================================================
# Enums for constrained values
# =============================================================================


class InstanceStatus(Enum):
    """Instance lifecycle state."""

    SCHEDULED_TO_START = "scheduled_to_start"
    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceStatus.STOPPED, InstanceStatus.ERROR)

    @classmethod
    def from_server_status(cls, server_status: str | None) -> "InstanceStatus | None":
        """Map a Nova server status to a local state, None if unknown."""
        if not server_status:
            return None
        return _SERVER_STATUS_MAP.get(server_status.upper())


_SERVER_STATUS_MAP = {
    "BUILD": InstanceStatus.STARTING,
    "ACTIVE": InstanceStatus.RUNNING,
    "REBOOT": InstanceStatus.RESTARTING,
    "HARD_REBOOT": InstanceStatus.RESTARTING,
    "SHUTOFF": InstanceStatus.STOPPED,
    "DELETED": InstanceStatus.STOPPED,
    "SOFT_DELETED": InstanceStatus.STOPPED,
    "ERROR": InstanceStatus.ERROR,
}


class ImageStatus(Enum):
    """Initialization state of an image registry entry."""

    PENDING = "Pending"
    READY = "Ready"
    ERROR = "Error"


class ResourceKind(Enum):
    """Kinds of backend resources resolvable by name."""

    IMAGE = "image"
    FLAVOR = "flavor"
    NETWORK = "network"


# =============================================================================
# Image profile (catalog entry)
# =============================================================================

REQUIRED_PROFILE_FIELDS = ("image", "flavor", "network", "security_group", "key_pair")


@dataclass(frozen=True)
class ImageProfile:
    """Template describing how to launch instances of one image."""

    name: str
    image: str
    flavor: str
    network: str
    security_group: str
    key_pair: str
    user_script: str = ""
    volume_size: int = 0
    auto_floating_ip: bool = False
    availability_zone: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any] | None) -> "ImageProfile":
        """Create from a catalog record.

        Raises:
            CatalogError: If the record is missing or lacks a required field
        """
        if data is None:
            raise CatalogError(f"No parameters defined for image: {name}")
        if not isinstance(data, Mapping):
            raise CatalogError(f"Parameters for image {name} must be a mapping")

        values: dict[str, str] = {}
        for key in REQUIRED_PROFILE_FIELDS:
            value = data.get(key)
            if value is None or not str(value).strip():
                raise CatalogError(f"Missing '{key}' for image: {name}")
            values[key] = str(value).strip()

        auto_floating_ip = data.get("auto_floating_ip")
        if not isinstance(auto_floating_ip, bool):
            auto_floating_ip = False

        return cls(
            name=name,
            user_script=str(data.get("user_script") or "").strip(),
            volume_size=parse_volume_size(data.get("volume_size", 0)),
            auto_floating_ip=auto_floating_ip,
            availability_zone=str(data.get("availability_zone") or "").strip(),
            **values,
        )


@dataclass(frozen=True)
class LaunchOptions:
    """Resolved configuration used to create servers for one image."""

    image_id: str
    flavor_id: str
    network_id: str
    security_group: str
    key_pair: str
    availability_zone: str = ""
    volume_size: int = 0
    user_script: str = field(default="", repr=False)


# =============================================================================
# Data exchanged with the host controller
# =============================================================================


@dataclass(frozen=True)
class CloudErrorInfo:
    """Error reported to the host controller."""

    message: str
    details: str = ""

    @classmethod
    def from_exception(cls, message: str, exc: BaseException) -> "CloudErrorInfo":
        return cls(message=message, details=f"{type(exc).__name__}: {exc}")

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


@dataclass(frozen=True)
class CanStartResult:
    """Answer to "can another instance be started"."""

    can_start: bool
    reason: str = ""

    @classmethod
    def yes(cls) -> "CanStartResult":
        return cls(can_start=True)

    @classmethod
    def no(cls, reason: str) -> "CanStartResult":
        return cls(can_start=False, reason=reason)


@dataclass
class InstanceUserData:
    """Agent bootstrap data passed along with a start request."""

    agent_name: str = ""
    server_address: str = ""
    auth_token: str = ""
    profile_id: str = ""
    custom_parameters: dict[str, str] = field(default_factory=dict)

    def to_metadata(self) -> dict[str, str]:
        """Convert to a flat server metadata dict."""
        metadata = {METADATA_CLOUD_TYPE: CLOUD_TYPE}
        if self.agent_name:
            metadata[METADATA_AGENT_NAME] = self.agent_name
        if self.server_address:
            metadata[METADATA_SERVER_ADDRESS] = self.server_address
        if self.auth_token:
            metadata[METADATA_AUTH_TOKEN] = self.auth_token
        if self.profile_id:
            metadata[METADATA_PROFILE_ID] = self.profile_id
        for key, value in self.custom_parameters.items():
            metadata[f"{METADATA_CUSTOM_PREFIX}{key}"] = str(value)
        return metadata


@dataclass
class AgentDescription:
    """A build agent as seen by the host controller."""

    name: str = ""
    configuration_parameters: dict[str, str] = field(default_factory=dict)
