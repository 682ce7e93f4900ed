"""Cloud client: the entry point used by the host automation controller.

The client parses the image profile catalog, initializes the resulting
images in the background, and routes start, restart and terminate requests
to the right image or instance. Lookups and capacity checks answer from the
in-memory registry and never touch the backend.
"""

import logging
import threading
import time
from collections.abc import Mapping
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

from openstack_cloud.catalog import parse_catalog
from openstack_cloud.cloud_image import CloudImage
from openstack_cloud.cloud_instance import CloudInstance
from openstack_cloud.config import CloudSettings, ServerPaths
from openstack_cloud.constants import VERSION
from openstack_cloud.executors import ExecutorFactory, ThreadPoolExecutorFactory
from openstack_cloud.metrics import (
    CATALOG_ERRORS,
    IMAGE_INIT_DURATION,
    init_metrics,
    set_provisioner_info,
)
from openstack_cloud.models import (
    AgentDescription,
    CanStartResult,
    CatalogError,
    CloudErrorInfo,
    ImageStatus,
    InstanceUserData,
)
from openstack_cloud.openstack_client import OpenStackClient

logger = logging.getLogger(__name__)


class CloudClient:
    """Manages the images of one cloud profile and their instances.

    A catalog error leaves the client without any image; it is reported
    through ``get_error_info()``. Errors of single images and instances are
    kept on those objects instead.
    """

    def __init__(
        self,
        settings: CloudSettings,
        paths: ServerPaths | None = None,
        executor_factory: ExecutorFactory | None = None,
        client: OpenStackClient | None = None,
    ) -> None:
        """Initialize the cloud client.

        Args:
            settings: Cloud settings, including the image profile catalog
            paths: Host paths, used to locate user scripts
            executor_factory: Creates the executor owned by each image
            client: OpenStack client (default: built from settings)
        """
        self.settings = settings
        self.instance_cap = settings.instance_cap
        self._lock = threading.Lock()
        self._images: tuple[CloudImage, ...] = ()
        self._error_info: CloudErrorInfo | None = None
        self._closed = threading.Event()
        self._executor: ThreadPoolExecutor | None = None
        self._initialized: Future | None = None
        self._owns_client = client is None
        self._client = client or OpenStackClient(settings)
        set_provisioner_info(VERSION, settings.region)

        try:
            profiles = parse_catalog(settings.images_profiles)
        except CatalogError as e:
            CATALOG_ERRORS.inc()
            logger.error("Rejected image profiles: %s", e)
            self._error_info = CloudErrorInfo(str(e))
            return

        factory = executor_factory or ThreadPoolExecutorFactory()
        images = []
        for profile in profiles:
            logger.info("Create image [%s] ...", profile.name)
            logger.debug("Image profile: %r", profile)
            images.append(
                CloudImage(
                    profile,
                    self._client,
                    factory.create_executor(profile.name),
                    paths=paths,
                    floating_ip_timeout=settings.floating_ip_timeout,
                )
            )
        self._images = tuple(images)
        init_metrics(image.id for image in self._images)

        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="openstack-cloud-init"
        )
        self._initialized = self._executor.submit(self._initialize_images)

    @classmethod
    def from_parameters(
        cls,
        params: Mapping[str, str | None],
        paths: ServerPaths | None = None,
        executor_factory: ExecutorFactory | None = None,
    ) -> "CloudClient":
        """Create from the host controller's cloud profile parameters."""
        return cls(CloudSettings.from_parameters(params), paths, executor_factory)

    def _initialize_images(self) -> None:
        """Initialize every image in catalog order, after a short delay."""
        if self._closed.wait(self.settings.init_delay):
            return

        start_time = time.monotonic()
        for image in self._images:
            if self._closed.is_set():
                logger.info("Client disposed, stopping image initialization")
                return
            image.initialize()
        IMAGE_INIT_DURATION.observe(time.monotonic() - start_time)

        failed = [image.id for image in self._images if image.status == ImageStatus.ERROR]
        logger.info(
            "Initialized %d image(s), %d with errors%s",
            len(self._images),
            len(failed),
            f": {', '.join(failed)}" if failed else "",
        )

    def _shutdown_initializer(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_initialized(self) -> bool:
        """Wait for background initialization, then report readiness.

        Blocks the calling thread for at most the initialization delay plus
        a fixed budget per image. A timeout or failure is logged and still
        reported as initialized: images that did not finish stay PENDING and
        images that failed carry their own error info.
        """
        future = self._initialized
        if future is not None:
            timeout = self.settings.init_delay + len(self._images) * self.settings.init_timeout_per_image
            try:
                future.result(timeout=timeout)
                self._shutdown_initializer()
            except FuturesTimeoutError:
                pending = [image.id for image in self._images if not image.is_initialized]
                logger.error(
                    "Initialization did not finish within %.1fs, images still pending: %s",
                    timeout,
                    ", ".join(pending),
                )
            except CancelledError:
                logger.warning("Initialization was cancelled")
            except Exception as e:
                logger.error("Initialization failure: %s: %s", type(e).__name__, e)
        return True

    def get_error_info(self) -> CloudErrorInfo | None:
        """Catalog-level error, if any. Image errors are kept per image."""
        return self._error_info

    def get_images(self) -> tuple[CloudImage, ...]:
        """Immutable snapshot of the images, in catalog order."""
        with self._lock:
            return self._images

    def find_image_by_id(self, image_id: str) -> CloudImage | None:
        for image in self.get_images():
            if image.id == image_id:
                return image
        return None

    def find_instance_by_agent(self, agent: AgentDescription) -> CloudInstance | None:
        """Find the instance an agent runs on.

        Matches only agents reporting this cloud's type marker and the
        server id of a tracked instance.
        """
        for image in self.get_images():
            for instance in image.get_instances():
                if instance.matches_agent(agent):
                    return instance
        return None

    def count_instances(self) -> int:
        return sum(len(image.get_instances()) for image in self.get_images())

    def can_start_new_instance(self, image: CloudImage) -> bool:
        """Check the global instance cap.

        This is a point-in-time check without reservation: callers that
        check and then start concurrently can all pass and briefly exceed the
        cap. The cap is enforced eventually, not atomically.
        """
        if self.instance_cap is None:
            return True
        return self.count_instances() < self.instance_cap

    def can_start_new_instance_with_details(self, image: CloudImage) -> CanStartResult:
        if self.can_start_new_instance(image):
            return CanStartResult.yes()
        return CanStartResult.no("Instance cap exceeded")

    def generate_agent_name(self, agent: AgentDescription) -> str | None:
        """Agents keep the name they report; none is generated."""
        return None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def start_new_instance(self, image: CloudImage, user_data: InstanceUserData) -> CloudInstance:
        return image.start_new_instance(user_data)

    def restart_instance(self, instance: CloudInstance) -> None:
        instance.restart()

    def terminate_instance(self, instance: CloudInstance) -> None:
        instance.stop()

    def refresh_instances(self) -> None:
        """Sync all tracked instances with the backend."""
        for image in self.get_images():
            image.refresh_instances()

    def dispose(self) -> None:
        """Terminate all instances and release every background resource."""
        self._closed.set()
        with self._lock:
            images, self._images = self._images, ()

        for image in images:
            image.dispose()

        self._shutdown_initializer()
        if self._owns_client:
            self._client.close()
        logger.info("Disposed cloud client (%d image(s))", len(images))
