"""Configuration for the OpenStack cloud provisioner."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from openstack_cloud.constants import (
    DEFAULT_FLOATING_IP_TIMEOUT,
    DEFAULT_INIT_DELAY,
    DEFAULT_INIT_TIMEOUT_PER_IMAGE,
    DEFAULT_REGION,
    PARAM_CLOUD,
    PARAM_ENDPOINT_URL,
    PARAM_IDENTITY,
    PARAM_IMAGES_PROFILES,
    PARAM_INSTANCE_CAP,
    PARAM_PASSWORD,
    PARAM_REGION,
)
from openstack_cloud.models import ConfigurationError

logger = logging.getLogger(__name__)


def parse_instance_cap(value: str | int | None) -> int | None:
    """Parse the optional global instance cap.

    Raises:
        ConfigurationError: If the value is not a positive integer
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        cap = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid instance cap: {value!r}") from e
    if cap < 1:
        raise ConfigurationError(f"Instance cap must be positive, got {cap}")
    return cap


def _parse_seconds(value: str | None, default: float, name: str) -> float:
    if value is None or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    if seconds < 0:
        raise ConfigurationError(f"{name} must not be negative, got {seconds}")
    return seconds


@dataclass(frozen=True)
class CloudSettings:
    """Settings of one cloud profile.

    Either ``cloud`` (a clouds.yaml entry) or ``endpoint_url`` with
    ``identity`` and ``password`` selects the OpenStack credentials.
    """

    region: str = DEFAULT_REGION
    cloud: str | None = None
    endpoint_url: str = ""
    identity: str = ""
    password: str = ""
    instance_cap: int | None = None
    images_profiles: str = ""
    init_delay: float = DEFAULT_INIT_DELAY
    init_timeout_per_image: float = DEFAULT_INIT_TIMEOUT_PER_IMAGE
    floating_ip_timeout: float = DEFAULT_FLOATING_IP_TIMEOUT

    def __repr__(self) -> str:
        return (
            f"CloudSettings(region={self.region!r}, cloud={self.cloud!r}, "
            f"endpoint_url={self.endpoint_url!r}, identity={self.identity!r}, "
            f"instance_cap={self.instance_cap!r})"
        )

    @classmethod
    def from_parameters(cls, params: Mapping[str, str | None]) -> "CloudSettings":
        """Create from the host controller's cloud profile parameters."""

        def param(key: str) -> str:
            return (params.get(key) or "").strip()

        settings = cls(
            region=param(PARAM_REGION) or DEFAULT_REGION,
            cloud=param(PARAM_CLOUD) or None,
            endpoint_url=param(PARAM_ENDPOINT_URL),
            identity=param(PARAM_IDENTITY),
            password=param(PARAM_PASSWORD),
            instance_cap=parse_instance_cap(params.get(PARAM_INSTANCE_CAP)),
            images_profiles=params.get(PARAM_IMAGES_PROFILES) or "",
        )
        logger.debug("Using cloud parameters: %r", settings)
        return settings

    @classmethod
    def from_env(cls) -> "CloudSettings":
        """Create from environment variables.

        Configuration via environment variables:
            OS_CLOUD: clouds.yaml entry (default: openstack)
            OS_REGION_NAME: Region (default: RegionOne)
            OPENSTACK_INSTANCE_CAP: Global instance cap (default: none)
            OPENSTACK_IMAGES_PROFILES: Image profile catalog (YAML)
            OPENSTACK_IMAGES_PROFILES_FILE: Path to the catalog, if not inline
            OPENSTACK_INIT_DELAY: Seconds before initialization starts
            OPENSTACK_INIT_TIMEOUT_PER_IMAGE: Initialization wait per image
            OPENSTACK_FLOATING_IP_TIMEOUT: Seconds to wait for ACTIVE servers
        """
        profiles = os.environ.get("OPENSTACK_IMAGES_PROFILES", "")
        profiles_file = os.environ.get("OPENSTACK_IMAGES_PROFILES_FILE")
        if not profiles and profiles_file:
            try:
                profiles = Path(profiles_file).read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot read image profiles from {profiles_file}: {e}"
                ) from e

        return cls(
            region=os.environ.get("OS_REGION_NAME") or DEFAULT_REGION,
            cloud=os.environ.get("OS_CLOUD", "openstack"),
            instance_cap=parse_instance_cap(os.environ.get("OPENSTACK_INSTANCE_CAP")),
            images_profiles=profiles,
            init_delay=_parse_seconds(
                os.environ.get("OPENSTACK_INIT_DELAY"),
                DEFAULT_INIT_DELAY,
                "OPENSTACK_INIT_DELAY",
            ),
            init_timeout_per_image=_parse_seconds(
                os.environ.get("OPENSTACK_INIT_TIMEOUT_PER_IMAGE"),
                DEFAULT_INIT_TIMEOUT_PER_IMAGE,
                "OPENSTACK_INIT_TIMEOUT_PER_IMAGE",
            ),
            floating_ip_timeout=_parse_seconds(
                os.environ.get("OPENSTACK_FLOATING_IP_TIMEOUT"),
                DEFAULT_FLOATING_IP_TIMEOUT,
                "OPENSTACK_FLOATING_IP_TIMEOUT",
            ),
        )


@dataclass(frozen=True)
class ServerPaths:
    """Filesystem locations of the host controller."""

    data_dir: Path

    def resolve_user_script(self, user_script: str) -> Path:
        """Resolve a profile's user script path.

        Relative paths are looked up in the ``openstack`` subdirectory of the
        data directory.
        """
        path = Path(user_script).expanduser()
        if path.is_absolute():
            return path
        return Path(self.data_dir) / "openstack" / path
