"""Prometheus metrics for the OpenStack cloud provisioner."""

from collections.abc import Iterable

from prometheus_client import Counter, Gauge, Histogram, Info

# OpenStack API metrics
OPENSTACK_API_CALLS = Counter(
    "openstack_cloud_openstack_api_calls_total",
    "Total number of OpenStack API calls",
    ["service", "operation", "status"],
)

OPENSTACK_API_DURATION = Histogram(
    "openstack_cloud_openstack_api_duration_seconds",
    "Time spent in OpenStack API calls",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

OPENSTACK_API_RETRIES = Counter(
    "openstack_cloud_openstack_api_retries_total",
    "Total number of OpenStack API call retries",
    ["operation"],
)

RATE_LIMIT_WAIT_SECONDS = Histogram(
    "openstack_cloud_rate_limit_wait_seconds",
    "Time spent waiting for rate limit slot",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Image metrics
IMAGE_INIT_TOTAL = Counter(
    "openstack_cloud_image_init_total",
    "Total number of image initializations",
    ["status"],
)

IMAGE_INIT_DURATION = Histogram(
    "openstack_cloud_image_init_duration_seconds",
    "Time spent initializing all images of a catalog",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

CATALOG_ERRORS = Counter(
    "openstack_cloud_catalog_errors_total",
    "Total number of rejected image profile catalogs",
)

# Instance metrics
INSTANCE_OPERATIONS = Counter(
    "openstack_cloud_instance_operations_total",
    "Total number of instance operations",
    ["image", "operation", "status"],
)

INSTANCES = Gauge(
    "openstack_cloud_instances",
    "Number of instances currently tracked per image",
    ["image"],
)

FLOATING_IP_FAILURES = Counter(
    "openstack_cloud_floating_ip_failures_total",
    "Total number of floating IPs that could not be attached",
    ["image"],
)

PROVISIONER_INFO = Info(
    "openstack_cloud",
    "Information about the OpenStack cloud provisioner",
)


def set_provisioner_info(version: str, region: str) -> None:
    """Set provisioner info labels."""
    PROVISIONER_INFO.info({"version": version, "region": region})


def init_metrics(image_names: Iterable[str]) -> None:
    """Initialize per-image metrics with zero values.

    Prometheus metrics with labels don't appear until used.
    This ensures all series of a catalog are visible right after parsing.
    """
    for status in ("success", "error"):
        IMAGE_INIT_TOTAL.labels(status=status)

    for image in image_names:
        INSTANCES.labels(image=image).set(0)
        FLOATING_IP_FAILURES.labels(image=image)
        for operation in ("start", "stop", "restart"):
            for status in ("success", "error"):
                INSTANCE_OPERATIONS.labels(
                    image=image, operation=operation, status=status
                )
