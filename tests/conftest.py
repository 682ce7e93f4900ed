"""Shared fixtures: a fake OpenStack client and image profiles."""

import itertools
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from openstack_cloud.models import ImageProfile
from openstack_cloud.openstack_client import OpenStackClient


def resource(name: str, resource_id: str) -> SimpleNamespace:
    return SimpleNamespace(name=name, id=resource_id)


@pytest.fixture
def os_client() -> MagicMock:
    """OpenStackClient double backed by a small static cloud."""
    client = MagicMock(spec=OpenStackClient)
    client.list_images.return_value = [
        resource("centos-9", "img-centos"),
        resource("ubuntu-20.04", "img-ubuntu"),
    ]
    client.list_flavors.return_value = [
        resource("m1.small", "flv-small"),
        resource("m1.large", "flv-large"),
    ]
    client.list_networks.return_value = [resource("net1", "net-abc123")]

    server_numbers = itertools.count(1)
    client.create_server.side_effect = lambda **kwargs: SimpleNamespace(
        id=f"srv-{next(server_numbers)}", name=kwargs["name"], status="BUILD"
    )
    client.get_server.side_effect = lambda server_id: SimpleNamespace(
        id=server_id, status="ACTIVE", fault=None
    )
    client.wait_for_server.side_effect = lambda server, **kwargs: server
    client.get_available_floating_ip.return_value = SimpleNamespace(
        id="fip-1", floating_ip_address="203.0.113.10"
    )
    return client


@pytest.fixture
def profile() -> ImageProfile:
    return ImageProfile(
        name="web",
        image="ubuntu-20.04",
        flavor="m1.small",
        network="net1",
        security_group="default",
        key_pair="kp1",
    )


CATALOG = """
web:
  image: ubuntu-20.04
  flavor: m1.small
  network: net1
  security_group: default
  key_pair: kp1
db:
  image: centos-9
  flavor: m1.large
  network: net1
  security_group: default
  key_pair: kp1
  volume_size: 40
"""


@pytest.fixture
def catalog_yaml() -> str:
    return CATALOG
