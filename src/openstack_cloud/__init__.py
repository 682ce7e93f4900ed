"""Provisioning of build agent instances on OpenStack."""

from openstack_cloud.cloud_client import CloudClient
from openstack_cloud.cloud_image import CloudImage
from openstack_cloud.cloud_instance import CloudInstance
from openstack_cloud.config import CloudSettings, ServerPaths
from openstack_cloud.constants import VERSION
from openstack_cloud.models import (
    AgentDescription,
    CanStartResult,
    CloudErrorInfo,
    ImageStatus,
    InstanceStatus,
    InstanceUserData,
)

__version__ = VERSION

__all__ = [
    "AgentDescription",
    "CanStartResult",
    "CloudClient",
    "CloudErrorInfo",
    "CloudImage",
    "CloudInstance",
    "CloudSettings",
    "ImageStatus",
    "InstanceStatus",
    "InstanceUserData",
    "ServerPaths",
]
