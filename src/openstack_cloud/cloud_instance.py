"""A single OpenStack server started for an image."""

import datetime
import logging
import threading
import uuid
import weakref
from concurrent.futures import Future
from typing import TYPE_CHECKING

from openstack.compute.v2.server import Server

from openstack_cloud.constants import CLOUD_TYPE, CLOUD_TYPE_PARAM, INSTANCE_ID_PARAM
from openstack_cloud.metrics import FLOATING_IP_FAILURES, INSTANCE_OPERATIONS
from openstack_cloud.models import (
    AgentDescription,
    CloudErrorInfo,
    InstanceStatus,
    InstanceUserData,
    LaunchOptions,
    ResourceNotFoundError,
)
from openstack_cloud.openstack_client import OpenStackClient

if TYPE_CHECKING:
    from openstack_cloud.cloud_image import CloudImage

logger = logging.getLogger(__name__)


class CloudInstance:
    """Tracks one server through its lifecycle.

    Until the server is created the instance is identified by a temporary
    ``pending-*`` id; afterwards by the server id assigned by Nova. Operations
    never raise: a failed backend call moves the instance to ERROR and keeps
    the failure in ``error_info``. Nothing is retried here.

    The owning image is held through a weak reference; the image alone
    decides which instances it tracks.
    """

    def __init__(self, image: "CloudImage", client: OpenStackClient, name: str) -> None:
        self._image_ref = weakref.ref(image)
        self.image_id = image.id
        self.name = name
        self._client = client
        self._lock = threading.RLock()
        self._pending_id = f"pending-{uuid.uuid4().hex[:12]}"
        self._server_id: str | None = None
        self._released = False
        self._status = InstanceStatus.SCHEDULED_TO_START
        self._error_info: CloudErrorInfo | None = None
        self.floating_ip: str | None = None
        self.floating_ip_task: Future | None = None
        self.warnings: list[str] = []
        self.start_time: datetime.datetime | None = None

    def __repr__(self) -> str:
        return (
            f"CloudInstance(id={self.instance_id!r}, image={self.image_id!r}, "
            f"status={self._status.value})"
        )

    @property
    def instance_id(self) -> str:
        """Server id once created, temporary local id before."""
        return self._server_id or self._pending_id

    @property
    def openstack_instance_id(self) -> str | None:
        return self._server_id

    @property
    def image(self) -> "CloudImage | None":
        return self._image_ref()

    @property
    def status(self) -> InstanceStatus:
        return self._status

    @property
    def error_info(self) -> CloudErrorInfo | None:
        return self._error_info

    @property
    def network_identity(self) -> str | None:
        """Address the host controller reaches the server at, if known."""
        return self.floating_ip

    @property
    def agent_parameters(self) -> dict[str, str]:
        """Configuration parameters an agent on this server reports."""
        params = {CLOUD_TYPE_PARAM: CLOUD_TYPE}
        if self._server_id:
            params[INSTANCE_ID_PARAM] = self._server_id
        return params

    def matches_agent(self, agent: AgentDescription) -> bool:
        """Check if an agent runs on this instance."""
        params = agent.configuration_parameters
        if CLOUD_TYPE not in params.values():
            return False
        return self._server_id is not None and params.get(INSTANCE_ID_PARAM) == self._server_id

    def set_error(self, error_info: CloudErrorInfo) -> None:
        """Move to ERROR, keeping the reason."""
        with self._lock:
            self._status = InstanceStatus.ERROR
            self._error_info = error_info
        logger.error("Instance %s of image %s failed: %s", self.instance_id, self.image_id, error_info)

    def _record(self, operation: str, success: bool) -> None:
        INSTANCE_OPERATIONS.labels(
            image=self.image_id,
            operation=operation,
            status="success" if success else "error",
        ).inc()

    # -------------------------------------------------------------------------
    # Lifecycle operations
    # -------------------------------------------------------------------------

    def start(self, launch: LaunchOptions, user_data: InstanceUserData) -> bool:
        """Create the server.

        Returns:
            True if the server was created, False if the instance is in ERROR
        """
        with self._lock:
            if self._status != InstanceStatus.SCHEDULED_TO_START:
                logger.warning("Instance %s already started (%s)", self.instance_id, self._status.value)
                return self._server_id is not None
            self._status = InstanceStatus.STARTING

        try:
            server = self._client.create_server(
                name=self.name,
                image_id=launch.image_id,
                flavor_id=launch.flavor_id,
                network_id=launch.network_id,
                key_pair=launch.key_pair,
                security_group=launch.security_group,
                user_data=launch.user_script,
                metadata=user_data.to_metadata(),
                availability_zone=launch.availability_zone,
                volume_size=launch.volume_size,
            )
        except Exception as e:
            self._record("start", success=False)
            self.set_error(CloudErrorInfo.from_exception(f"Failed to start instance {self.name}", e))
            return False

        with self._lock:
            self._server_id = server.id
            self.start_time = datetime.datetime.now(datetime.UTC)
            self._status = InstanceStatus.RUNNING
        self._record("start", success=True)
        logger.info("Started instance %s (server %s) of image %s", self.name, server.id, self.image_id)
        return True

    def attach_floating_ip(self, timeout: float) -> str | None:
        """Bind an unassigned floating IP once the server is ACTIVE.

        Best effort: a failure leaves the instance running without a floating
        IP and adds a warning.
        """
        server_id = self._server_id
        if server_id is None:
            return None

        try:
            server = self._client.get_server(server_id)
            if server is None:
                raise ResourceNotFoundError(f"Server not found: {server_id}")
            self._client.wait_for_server(server, status="ACTIVE", timeout=timeout)

            if self._status != InstanceStatus.RUNNING:
                logger.info(
                    "Instance %s is %s, not attaching a floating IP",
                    self.instance_id,
                    self._status.value,
                )
                return None

            floating_ip = self._client.get_available_floating_ip()
            if floating_ip is None:
                raise ResourceNotFoundError("No floating IP available")
            self._client.associate_floating_ip(server_id, floating_ip)
        except Exception as e:
            message = f"Floating IP not attached to {self.name}: {e}"
            with self._lock:
                self.floating_ip = None
                self.warnings.append(message)
            FLOATING_IP_FAILURES.labels(image=self.image_id).inc()
            logger.warning(message)
            return None

        with self._lock:
            self.floating_ip = floating_ip.floating_ip_address
        logger.info("Instance %s reachable at %s", self.instance_id, self.floating_ip)
        return self.floating_ip

    def stop(self) -> None:
        """Delete the server and let the owning image forget this instance.

        A server seen as shut off by ``refresh()`` still exists and is
        deleted here; only a delete already done, or one in flight, is skipped.
        """
        with self._lock:
            if self._released or self._status == InstanceStatus.STOPPING:
                return
            if self.floating_ip_task is not None:
                self.floating_ip_task.cancel()
            server_id = self._server_id
            self._status = InstanceStatus.STOPPING if server_id else InstanceStatus.STOPPED

        if server_id is not None:
            try:
                self._client.delete_server(server_id)
            except Exception as e:
                self._record("stop", success=False)
                self.set_error(CloudErrorInfo.from_exception(f"Failed to terminate instance {self.name}", e))
                return

            self._record("stop", success=True)
            logger.info("Terminated instance %s (server %s)", self.name, server_id)

        self._release()

    def restart(self) -> None:
        """Reboot the server in place.

        A failure leaves the instance in ERROR; the previous state is not restored.
        """
        with self._lock:
            server_id = self._server_id
            if server_id is None:
                error = CloudErrorInfo(f"Instance {self.name} has no server to restart")
            else:
                error = None
                self._status = InstanceStatus.RESTARTING

        if error is not None:
            self._record("restart", success=False)
            self.set_error(error)
            return

        try:
            self._client.reboot_server(server_id)
        except Exception as e:
            self._record("restart", success=False)
            self.set_error(CloudErrorInfo.from_exception(f"Failed to restart instance {self.name}", e))
            return

        with self._lock:
            self._status = InstanceStatus.RUNNING
        self._record("restart", success=True)
        logger.info("Restarted instance %s (server %s)", self.name, server_id)

    def refresh(self) -> InstanceStatus:
        """Re-read the server from the backend and update the local state.

        A server that no longer exists, or that Nova reports as DELETED, is
        STOPPED and forgotten. A shut off or soft-deleted server is STOPPED
        but stays tracked until ``stop()`` deletes it. Failure to read the
        server leaves the state untouched.
        """
        server_id = self._server_id
        if server_id is None or self._released or self._status == InstanceStatus.STOPPING:
            return self._status

        try:
            server = self._client.get_server(server_id)
        except Exception as e:
            logger.warning("Could not refresh instance %s: %s", self.instance_id, e)
            return self._status

        if server is None or (server.status or "").upper() == "DELETED":
            logger.info("Server %s of image %s is gone", server_id, self.image_id)
            self._release()
            return self._status

        self._apply_server_status(server)
        return self._status

    def _apply_server_status(self, server: Server) -> None:
        status = InstanceStatus.from_server_status(server.status)
        if status is None or status == self._status:
            return
        if status == InstanceStatus.ERROR:
            fault = getattr(server, "fault", None) or {}
            message = fault.get("message", "") if isinstance(fault, dict) else str(fault)
            self.set_error(CloudErrorInfo(f"Server {server.id} is in ERROR state", message))
            return
        with self._lock:
            logger.debug(
                "Instance %s: %s -> %s", self.instance_id, self._status.value, status.value
            )
            self._status = status

    def _release(self) -> None:
        """Mark the server as gone and drop out of the owning image."""
        with self._lock:
            self._released = True
            self._status = InstanceStatus.STOPPED
        image = self._image_ref()
        if image is not None:
            image.forget_instance(self)
