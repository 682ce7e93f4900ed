"""Image registry entries: one per profile of the catalog."""

import logging
import threading
from concurrent.futures import Executor

from openstack_cloud.cloud_instance import CloudInstance
from openstack_cloud.config import ServerPaths
from openstack_cloud.constants import DEFAULT_FLOATING_IP_TIMEOUT
from openstack_cloud.metrics import IMAGE_INIT_TOTAL, INSTANCES
from openstack_cloud.models import (
    CloudErrorInfo,
    ConfigurationError,
    ImageNotReadyError,
    ImageProfile,
    ImageStatus,
    InstanceUserData,
    LaunchOptions,
    ProvisionerError,
    ResourceNotFoundError,
)
from openstack_cloud.openstack_client import OpenStackClient
from openstack_cloud.resolver import ResourceResolver
from openstack_cloud.utils import make_server_name

logger = logging.getLogger(__name__)


class CloudImage:
    """An image profile together with the instances started from it.

    The entry starts PENDING. ``initialize()`` resolves the profile's image,
    flavor and network names once and moves it to READY, or to ERROR with a
    recorded reason. An entry in ERROR never starts instances.

    The entry is the only writer of its instance collection: instances are
    added when their server is created and removed through
    ``forget_instance()`` once terminated or gone.
    """

    def __init__(
        self,
        profile: ImageProfile,
        client: OpenStackClient,
        executor: Executor,
        paths: ServerPaths | None = None,
        floating_ip_timeout: float = DEFAULT_FLOATING_IP_TIMEOUT,
        resolver: ResourceResolver | None = None,
    ) -> None:
        self.profile = profile
        self.id = profile.name
        self.name = profile.name
        self._client = client
        self._resolver = resolver or ResourceResolver(client)
        self._executor = executor
        self._paths = paths
        self._floating_ip_timeout = floating_ip_timeout
        self._init_lock = threading.Lock()
        self._lock = threading.Lock()
        self._instances: dict[str, CloudInstance] = {}
        self._launch_options: LaunchOptions | None = None
        self._error_info: CloudErrorInfo | None = None

    def __repr__(self) -> str:
        return f"CloudImage(id={self.id!r}, status={self.status.value})"

    @property
    def status(self) -> ImageStatus:
        if self._error_info is not None:
            return ImageStatus.ERROR
        if self._launch_options is not None:
            return ImageStatus.READY
        return ImageStatus.PENDING

    @property
    def is_initialized(self) -> bool:
        return self.status != ImageStatus.PENDING

    @property
    def error_info(self) -> CloudErrorInfo | None:
        return self._error_info

    @property
    def launch_options(self) -> LaunchOptions | None:
        return self._launch_options

    @property
    def network_id(self) -> str | None:
        return self._launch_options.network_id if self._launch_options else None

    @property
    def auto_floating_ip(self) -> bool:
        return self.profile.auto_floating_ip

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Resolve the profile's resources once.

        Never raises; failures are kept in ``error_info``. Calls after the
        first completed one have no effect.
        """
        with self._init_lock:
            if self.is_initialized:
                return

            logger.info("Initializing image [%s] ...", self.name)
            try:
                launch_options = self._resolve_launch_options()
            except ProvisionerError as e:
                self._error_info = CloudErrorInfo(str(e))
            except Exception as e:
                self._error_info = CloudErrorInfo.from_exception(
                    f"Unexpected error while initializing image {self.name}", e
                )
            else:
                self._launch_options = launch_options

        if self._error_info is not None:
            IMAGE_INIT_TOTAL.labels(status="error").inc()
            logger.error("Image %s cannot start instances: %s", self.name, self._error_info)
        else:
            IMAGE_INIT_TOTAL.labels(status="success").inc()
            logger.debug("Image %s ready: %r", self.name, self._launch_options)

    def _resolve_launch_options(self) -> LaunchOptions:
        profile = self.profile
        network_id = self._resolver.get_network_id(profile.network)
        if network_id is None:
            raise ResourceNotFoundError(
                f"Network '{profile.network}' not found for image {self.name}"
            )
        image_id = self._resolver.get_image_id(profile.image)
        if image_id is None:
            raise ResourceNotFoundError(
                f"Image '{profile.image}' not found for image {self.name}"
            )
        flavor_id = self._resolver.get_flavor_id(profile.flavor)
        if flavor_id is None:
            raise ResourceNotFoundError(
                f"Flavor '{profile.flavor}' not found for image {self.name}"
            )

        return LaunchOptions(
            image_id=image_id,
            flavor_id=flavor_id,
            network_id=network_id,
            security_group=profile.security_group,
            key_pair=profile.key_pair,
            availability_zone=profile.availability_zone,
            volume_size=profile.volume_size,
            user_script=self._read_user_script(),
        )

    def _read_user_script(self) -> str:
        if not self.profile.user_script:
            return ""
        if self._paths is None:
            raise ConfigurationError(
                f"User script {self.profile.user_script} set for image {self.name} "
                "but no data directory is configured"
            )
        path = self._paths.resolve_user_script(self.profile.user_script)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read user script {path}: {e}") from e

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def start_new_instance(self, user_data: InstanceUserData) -> CloudInstance:
        """Create a server from this image.

        Blocks for the duration of the create call. The returned instance is
        RUNNING and tracked by this image, or in ERROR and not tracked.
        """
        instance = CloudInstance(self, self._client, make_server_name(self.name))

        launch_options = self._launch_options
        if self._error_info is not None:
            instance.set_error(
                CloudErrorInfo.from_exception(
                    f"Cannot start instance of image {self.name}",
                    ImageNotReadyError(str(self._error_info)),
                )
            )
            return instance
        if launch_options is None:
            instance.set_error(
                CloudErrorInfo.from_exception(
                    f"Cannot start instance of image {self.name}",
                    ImageNotReadyError("image is not initialized yet"),
                )
            )
            return instance

        if not instance.start(launch_options, user_data):
            return instance

        with self._lock:
            self._instances[instance.instance_id] = instance
            INSTANCES.labels(image=self.id).set(len(self._instances))

        if self.profile.auto_floating_ip:
            try:
                instance.floating_ip_task = self._executor.submit(
                    instance.attach_floating_ip, self._floating_ip_timeout
                )
            except RuntimeError as e:
                instance.warnings.append(f"Floating IP not attached: {e}")
                logger.warning("Cannot schedule floating IP for %s: %s", instance.instance_id, e)

        return instance

    def get_instances(self) -> list[CloudInstance]:
        """Snapshot of the tracked instances."""
        with self._lock:
            return list(self._instances.values())

    def find_instance_by_id(self, instance_id: str) -> CloudInstance | None:
        with self._lock:
            return self._instances.get(instance_id)

    def forget_instance(self, instance: CloudInstance) -> None:
        """Stop tracking an instance."""
        with self._lock:
            if self._instances.get(instance.instance_id) is instance:
                del self._instances[instance.instance_id]
                INSTANCES.labels(image=self.id).set(len(self._instances))
                logger.debug("Image %s forgot instance %s", self.id, instance.instance_id)

    def refresh_instances(self) -> None:
        """Sync every tracked instance with the backend."""
        for instance in self.get_instances():
            instance.refresh()

    def dispose(self) -> None:
        """Terminate all instances and release the executor."""
        for instance in self.get_instances():
            instance.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
