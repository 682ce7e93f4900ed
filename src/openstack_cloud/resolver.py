"""Resolution of human-readable OpenStack resource names to IDs."""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from openstack_cloud.models import ResourceKind
from openstack_cloud.openstack_client import OpenStackClient

logger = logging.getLogger(__name__)


class ResourceResolver:
    """Translate image, flavor and network names into backend IDs.

    Every call lists the resources of the requested kind afresh; nothing is
    cached here. Callers needing a stable answer keep the resolved ID.
    """

    def __init__(self, client: OpenStackClient) -> None:
        self._client = client
        self._listers: dict[ResourceKind, Callable[[], Iterable[Any]]] = {
            ResourceKind.IMAGE: client.list_images,
            ResourceKind.FLAVOR: client.list_flavors,
            ResourceKind.NETWORK: client.list_networks,
        }

    def resolve(self, kind: ResourceKind, name: str) -> str | None:
        """Return the ID of the first resource of ``kind`` named exactly ``name``.

        Returns None when nothing matches. API failures propagate as
        OpenStackAPIError.
        """
        for resource in self._listers[kind]():
            if resource.name == name:
                logger.debug("Resolved %s %s to %s", kind.value, name, resource.id)
                return resource.id
        logger.debug("No %s named %s", kind.value, name)
        return None

    def get_image_id(self, name: str) -> str | None:
        return self.resolve(ResourceKind.IMAGE, name)

    def get_flavor_id(self, name: str) -> str | None:
        return self.resolve(ResourceKind.FLAVOR, name)

    def get_network_id(self, name: str) -> str | None:
        return self.resolve(ResourceKind.NETWORK, name)
