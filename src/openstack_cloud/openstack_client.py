"""OpenStack SDK wrapper with retry logic, rate limiting and connection management."""

import base64
import logging
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import openstack
from openstack.compute.v2.flavor import Flavor
from openstack.compute.v2.server import Server
from openstack.connection import Connection
from openstack.exceptions import HttpException, ResourceNotFound, SDKException
from openstack.image.v2.image import Image
from openstack.network.v2.floating_ip import FloatingIP
from openstack.network.v2.network import Network

from openstack_cloud.config import CloudSettings
from openstack_cloud.metrics import (
    OPENSTACK_API_CALLS,
    OPENSTACK_API_DURATION,
    OPENSTACK_API_RETRIES,
)
from openstack_cloud.models import OpenStackAPIError, ResourceNotFoundError
from openstack_cloud.ratelimit import RateLimiter, get_rate_limiter
from openstack_cloud.utils import get_keystone_version, parse_identity

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def retry_on_error(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (HttpException,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to retry idempotent operations on transient errors."""

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        logger.warning(
                            "Attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries + 1,
                            func.__name__,
                            e,
                            current_delay,
                        )
                        OPENSTACK_API_RETRIES.labels(operation=func.__name__).inc()
                        time.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(
                            "All %d attempts failed for %s",
                            max_retries + 1,
                            func.__name__,
                        )

            raise OpenStackAPIError(
                f"Operation {func.__name__} failed after {max_retries + 1} attempts: "
                f"{last_exception}"
            ) from last_exception

        return wrapper

    return decorator


class OpenStackClient:
    """Wrapper around OpenStack SDK with the calls needed to run instances.

    All calls are scoped to the region of the settings the client was built
    from; the region never changes during the client's lifetime.
    """

    def __init__(
        self,
        settings: CloudSettings,
        connection: Connection | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize OpenStack client.

        Args:
            settings: Cloud settings carrying region and credentials
            connection: Pre-built connection (default: created on first use)
            rate_limiter: Rate limiter (default: the process-wide limiter)
        """
        self.settings = settings
        self.region = settings.region
        self._conn = connection
        self._rate_limiter = rate_limiter

    @property
    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            self._rate_limiter = get_rate_limiter()
        return self._rate_limiter

    @property
    def conn(self) -> Connection:
        """Get or create OpenStack connection."""
        if self._conn is None:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> Connection:
        settings = self.settings
        if settings.endpoint_url:
            identity = parse_identity(settings.identity)
            keystone_version = get_keystone_version(settings.endpoint_url)
            logger.info(
                "Connecting to OpenStack endpoint %s (keystone v%s, region %s) as %s",
                settings.endpoint_url,
                keystone_version,
                self.region,
                identity.user,
            )
            auth: dict[str, Any] = {
                "auth_url": settings.endpoint_url,
                "username": identity.user,
                "password": settings.password,
            }
            if identity.tenant:
                auth["project_name"] = identity.tenant
            if identity.domain:
                auth["user_domain_name"] = identity.domain
                auth["project_domain_name"] = identity.domain
            return openstack.connect(
                region_name=self.region,
                identity_api_version=keystone_version,
                **auth,
            )

        cloud = settings.cloud or "openstack"
        logger.info("Connecting to OpenStack cloud: %s (region %s)", cloud, self.region)
        return openstack.connect(cloud=cloud, region_name=self.region)

    def close(self) -> None:
        """Close the OpenStack connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _api_call(self, service: str, operation: str) -> Generator[None, None, None]:
        """Rate limit and record one API call."""
        with self.rate_limiter.acquire(operation):
            start = time.monotonic()
            status = "error"
            try:
                yield
                status = "success"
            finally:
                OPENSTACK_API_DURATION.labels(service=service, operation=operation).observe(
                    time.monotonic() - start
                )
                OPENSTACK_API_CALLS.labels(
                    service=service, operation=operation, status=status
                ).inc()

    # -------------------------------------------------------------------------
    # Resource listings
    # -------------------------------------------------------------------------

    @retry_on_error()
    def list_images(self) -> list[Image]:
        """List all images visible to the project."""
        with self._api_call("image", "list_images"):
            return list(self.conn.image.images())

    @retry_on_error()
    def list_flavors(self) -> list[Flavor]:
        """List all flavors."""
        with self._api_call("compute", "list_flavors"):
            return list(self.conn.compute.flavors())

    @retry_on_error()
    def list_networks(self) -> list[Network]:
        """List all networks visible to the project."""
        with self._api_call("network", "list_networks"):
            return list(self.conn.network.networks())

    # -------------------------------------------------------------------------
    # Server operations
    # -------------------------------------------------------------------------

    def create_server(
        self,
        name: str,
        image_id: str,
        flavor_id: str,
        network_id: str,
        key_pair: str,
        security_group: str,
        user_data: str = "",
        metadata: dict[str, str] | None = None,
        availability_zone: str = "",
        volume_size: int = 0,
    ) -> Server:
        """Create a server.

        With a positive ``volume_size`` the server boots from a new volume of
        that size (GB) created from the image and deleted with the server.

        Not retried: a failed request may still have created a server.
        """
        attrs: dict[str, Any] = {
            "name": name,
            "flavor_id": flavor_id,
            "networks": [{"uuid": network_id}],
            "key_name": key_pair,
            "security_groups": [{"name": security_group}],
        }
        if volume_size > 0:
            attrs["block_device_mapping"] = [
                {
                    "boot_index": 0,
                    "uuid": image_id,
                    "source_type": "image",
                    "destination_type": "volume",
                    "volume_size": volume_size,
                    "delete_on_termination": True,
                }
            ]
        else:
            attrs["image_id"] = image_id
        if user_data:
            attrs["user_data"] = base64.b64encode(user_data.encode("utf-8")).decode("ascii")
        if metadata:
            attrs["metadata"] = metadata
        if availability_zone:
            attrs["availability_zone"] = availability_zone

        logger.info("Creating server: %s (flavor %s, network %s)", name, flavor_id, network_id)
        try:
            with self._api_call("compute", "create_server"):
                return self.conn.compute.create_server(**attrs)
        except SDKException as e:
            raise OpenStackAPIError(f"Failed to create server {name}: {e}") from e

    @retry_on_error()
    def get_server(self, server_id: str) -> Server | None:
        """Get a server by ID, None if it does not exist."""
        try:
            with self._api_call("compute", "get_server"):
                return self.conn.compute.get_server(server_id)
        except ResourceNotFound:
            return None

    @retry_on_error()
    def delete_server(self, server_id: str) -> None:
        """Delete a server."""
        logger.info("Deleting server: %s", server_id)
        with self._api_call("compute", "delete_server"):
            self.conn.compute.delete_server(server_id, ignore_missing=True)

    def reboot_server(self, server_id: str, reboot_type: str = "SOFT") -> None:
        """Reboot a server in place."""
        logger.info("Rebooting server: %s (%s)", server_id, reboot_type)
        try:
            with self._api_call("compute", "reboot_server"):
                self.conn.compute.reboot_server(server_id, reboot_type)
        except ResourceNotFound as e:
            raise ResourceNotFoundError(f"Server not found: {server_id}") from e
        except SDKException as e:
            raise OpenStackAPIError(f"Failed to reboot server {server_id}: {e}") from e

    def wait_for_server(
        self,
        server: Server,
        status: str = "ACTIVE",
        timeout: float = 300,
        interval: float = 2.0,
    ) -> Server:
        """Poll a server until it reaches the given status.

        Each poll takes its own rate limit slot; no slot is held while
        sleeping between polls.

        Raises:
            ResourceNotFoundError: If the server disappears
            OpenStackAPIError: On ERROR status, timeout or API failure
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                with self._api_call("compute", "get_server"):
                    current = self.conn.compute.get_server(server.id)
            except ResourceNotFound as e:
                raise ResourceNotFoundError(f"Server not found: {server.id}") from e
            except SDKException as e:
                raise OpenStackAPIError(f"Failed to read server {server.id}: {e}") from e

            current_status = (current.status or "").upper()
            if current_status == status.upper():
                return current
            if current_status == "ERROR":
                raise OpenStackAPIError(
                    f"Server {server.id} went to ERROR while waiting for {status}"
                )
            if time.monotonic() >= deadline:
                raise OpenStackAPIError(
                    f"Server {server.id} did not reach {status} within {timeout:.0f}s"
                )
            time.sleep(interval)

    # -------------------------------------------------------------------------
    # Floating IP operations
    # -------------------------------------------------------------------------

    @retry_on_error()
    def get_available_floating_ip(self) -> FloatingIP | None:
        """Get the first floating IP not bound to any port."""
        with self._api_call("network", "list_floating_ips"):
            for ip in self.conn.network.ips():
                if not ip.fixed_ip_address and not ip.port_id:
                    return ip
        return None

    def associate_floating_ip(self, server_id: str, floating_ip: FloatingIP) -> None:
        """Bind a floating IP to the first port of a server."""
        logger.info(
            "Associating floating IP %s with server %s",
            floating_ip.floating_ip_address,
            server_id,
        )
        try:
            with self._api_call("network", "list_ports"):
                ports = list(self.conn.network.ports(device_id=server_id))
            if not ports:
                raise ResourceNotFoundError(f"No port found for server {server_id}")
            with self._api_call("network", "update_floating_ip"):
                self.conn.network.update_ip(floating_ip, port_id=ports[0].id)
        except SDKException as e:
            raise OpenStackAPIError(
                f"Failed to associate floating IP {floating_ip.floating_ip_address} "
                f"with server {server_id}: {e}"
            ) from e
