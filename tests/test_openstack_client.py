"""Tests for the OpenStack SDK wrapper."""

import base64
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openstack.exceptions import HttpException, ResourceNotFound, SDKException

from openstack_cloud import openstack_client
from openstack_cloud.config import CloudSettings
from openstack_cloud.models import OpenStackAPIError, ResourceNotFoundError
from openstack_cloud.openstack_client import OpenStackClient, retry_on_error
from openstack_cloud.ratelimit import RateLimiter


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(openstack_client.time, "sleep", lambda _: None)


@pytest.fixture
def conn() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(conn) -> OpenStackClient:
    return OpenStackClient(
        CloudSettings(region="RegionTwo"),
        connection=conn,
        rate_limiter=RateLimiter(max_concurrent=10, requests_per_second=0),
    )


class TestRetryOnError:
    """Tests for retry_on_error decorator."""

    def test_retries_then_succeeds(self):
        calls = []

        @retry_on_error(max_retries=2)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise HttpException(message="503")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_gives_up(self):
        @retry_on_error(max_retries=1)
        def broken():
            raise HttpException(message="500")

        with pytest.raises(OpenStackAPIError, match="failed after 2 attempts"):
            broken()

    def test_other_exceptions_not_retried(self):
        calls = []

        @retry_on_error()
        def broken():
            calls.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            broken()
        assert len(calls) == 1


class TestConnection:
    """Tests for connection setup."""

    def test_clouds_yaml(self, monkeypatch):
        connect = MagicMock()
        monkeypatch.setattr(openstack_client.openstack, "connect", connect)

        OpenStackClient(CloudSettings(cloud="ci", region="RegionTwo")).conn

        connect.assert_called_once_with(cloud="ci", region_name="RegionTwo")

    def test_explicit_endpoint(self, monkeypatch):
        connect = MagicMock()
        monkeypatch.setattr(openstack_client.openstack, "connect", connect)
        settings = CloudSettings(
            endpoint_url="https://keystone.example.com:5000/v3",
            identity="Default:builds:ci",
            password="secret",
            region="RegionTwo",
        )

        OpenStackClient(settings).conn

        connect.assert_called_once_with(
            region_name="RegionTwo",
            identity_api_version="3",
            auth_url="https://keystone.example.com:5000/v3",
            username="ci",
            password="secret",
            project_name="builds",
            user_domain_name="Default",
            project_domain_name="Default",
        )

    def test_close(self, client, conn):
        client.close()

        conn.close.assert_called_once()


class TestListings:
    """Tests for resource listings."""

    def test_list_networks(self, client, conn):
        conn.network.networks.return_value = iter([SimpleNamespace(name="net1", id="n1")])

        assert [n.id for n in client.list_networks()] == ["n1"]

    def test_list_images_and_flavors(self, client, conn):
        conn.image.images.return_value = iter([SimpleNamespace(name="ubuntu", id="i1")])
        conn.compute.flavors.return_value = iter([SimpleNamespace(name="m1", id="f1")])

        assert client.list_images()[0].id == "i1"
        assert client.list_flavors()[0].id == "f1"

    def test_listing_retried(self, client, conn):
        conn.network.networks.side_effect = [
            HttpException(message="502"),
            iter([SimpleNamespace(name="net1", id="n1")]),
        ]

        assert client.list_networks()[0].id == "n1"


class TestServers:
    """Tests for server operations."""

    def test_create_server_from_image(self, client, conn):
        conn.compute.create_server.return_value = SimpleNamespace(id="srv-1")

        server = client.create_server(
            name="web-1",
            image_id="img",
            flavor_id="flv",
            network_id="net",
            key_pair="kp1",
            security_group="default",
            user_data="#!/bin/sh\necho hi\n",
            metadata={"cloud-type": "VMOS"},
            availability_zone="nova",
        )

        assert server.id == "srv-1"
        attrs = conn.compute.create_server.call_args.kwargs
        assert attrs["image_id"] == "img"
        assert attrs["networks"] == [{"uuid": "net"}]
        assert attrs["security_groups"] == [{"name": "default"}]
        assert attrs["key_name"] == "kp1"
        assert attrs["availability_zone"] == "nova"
        assert attrs["metadata"] == {"cloud-type": "VMOS"}
        assert base64.b64decode(attrs["user_data"]).decode() == "#!/bin/sh\necho hi\n"
        assert "block_device_mapping" not in attrs

    def test_create_server_from_volume(self, client, conn):
        client.create_server(
            name="db-1",
            image_id="img",
            flavor_id="flv",
            network_id="net",
            key_pair="kp1",
            security_group="default",
            volume_size=40,
        )

        attrs = conn.compute.create_server.call_args.kwargs
        assert "image_id" not in attrs
        assert "user_data" not in attrs
        assert "availability_zone" not in attrs
        [mapping] = attrs["block_device_mapping"]
        assert mapping["uuid"] == "img"
        assert mapping["volume_size"] == 40
        assert mapping["boot_index"] == 0

    def test_create_server_not_retried(self, client, conn):
        conn.compute.create_server.side_effect = HttpException(message="quota exceeded")

        with pytest.raises(OpenStackAPIError, match="quota exceeded"):
            client.create_server("web-1", "img", "flv", "net", "kp1", "default")
        assert conn.compute.create_server.call_count == 1

    def test_get_server_missing(self, client, conn):
        conn.compute.get_server.side_effect = ResourceNotFound(message="gone")

        assert client.get_server("srv-1") is None

    def test_delete_server(self, client, conn):
        client.delete_server("srv-1")

        conn.compute.delete_server.assert_called_once_with("srv-1", ignore_missing=True)

    def test_reboot_server(self, client, conn):
        client.reboot_server("srv-1")

        conn.compute.reboot_server.assert_called_once_with("srv-1", "SOFT")

    def test_reboot_missing_server(self, client, conn):
        conn.compute.reboot_server.side_effect = ResourceNotFound(message="gone")

        with pytest.raises(ResourceNotFoundError):
            client.reboot_server("srv-1")


class TestWaitForServer:
    """Tests for polling a server until it is ACTIVE."""

    def test_polls_until_active(self, client, conn):
        conn.compute.get_server.side_effect = [
            SimpleNamespace(id="srv-1", status="BUILD"),
            SimpleNamespace(id="srv-1", status="BUILD"),
            SimpleNamespace(id="srv-1", status="ACTIVE"),
        ]

        server = client.wait_for_server(SimpleNamespace(id="srv-1"), timeout=60)

        assert server.status == "ACTIVE"
        assert conn.compute.get_server.call_count == 3

    def test_timeout(self, client, conn):
        conn.compute.get_server.return_value = SimpleNamespace(id="srv-1", status="BUILD")

        with pytest.raises(OpenStackAPIError, match="did not reach ACTIVE"):
            client.wait_for_server(SimpleNamespace(id="srv-1"), timeout=0)

    def test_server_error(self, client, conn):
        conn.compute.get_server.return_value = SimpleNamespace(id="srv-1", status="ERROR")

        with pytest.raises(OpenStackAPIError, match="went to ERROR"):
            client.wait_for_server(SimpleNamespace(id="srv-1"), timeout=60)

    def test_server_disappears(self, client, conn):
        conn.compute.get_server.side_effect = ResourceNotFound(message="gone")

        with pytest.raises(ResourceNotFoundError):
            client.wait_for_server(SimpleNamespace(id="srv-1"), timeout=60)

    def test_other_calls_proceed_while_waiting(self, conn, monkeypatch):
        client = OpenStackClient(
            CloudSettings(),
            connection=conn,
            rate_limiter=RateLimiter(max_concurrent=1, requests_per_second=0),
        )
        conn.compute.get_server.side_effect = [
            SimpleNamespace(id="srv-1", status="BUILD"),
            SimpleNamespace(id="srv-1", status="ACTIVE"),
        ]
        conn.network.networks.return_value = iter([SimpleNamespace(name="net1", id="n1")])
        sleeping = threading.Event()
        release = threading.Event()

        def between_polls(_):
            sleeping.set()
            release.wait(5)

        monkeypatch.setattr(openstack_client.time, "sleep", between_polls)
        results = []
        waiter = threading.Thread(
            target=lambda: results.append(client.wait_for_server(SimpleNamespace(id="srv-1")))
        )
        waiter.start()
        assert sleeping.wait(5)

        started = time.monotonic()
        networks = client.list_networks()
        elapsed = time.monotonic() - started
        release.set()
        waiter.join(5)

        assert networks[0].id == "n1"
        assert elapsed < 1
        assert results[0].status == "ACTIVE"


class TestFloatingIps:
    """Tests for floating IP operations."""

    def test_available_floating_ip(self, client, conn):
        conn.network.ips.return_value = iter(
            [
                SimpleNamespace(floating_ip_address="203.0.113.1", fixed_ip_address="10.0.0.5", port_id="p1"),
                SimpleNamespace(floating_ip_address="203.0.113.2", fixed_ip_address=None, port_id=None),
            ]
        )

        assert client.get_available_floating_ip().floating_ip_address == "203.0.113.2"

    def test_no_floating_ip(self, client, conn):
        conn.network.ips.return_value = iter([])

        assert client.get_available_floating_ip() is None

    def test_associate_floating_ip(self, client, conn):
        ip = SimpleNamespace(floating_ip_address="203.0.113.2")
        conn.network.ports.return_value = iter([SimpleNamespace(id="port-1")])

        client.associate_floating_ip("srv-1", ip)

        conn.network.ports.assert_called_once_with(device_id="srv-1")
        conn.network.update_ip.assert_called_once_with(ip, port_id="port-1")

    def test_associate_without_port(self, client, conn):
        conn.network.ports.return_value = iter([])

        with pytest.raises(ResourceNotFoundError):
            client.associate_floating_ip("srv-1", SimpleNamespace(floating_ip_address="203.0.113.2"))

    def test_associate_api_failure(self, client, conn):
        conn.network.ports.return_value = iter([SimpleNamespace(id="port-1")])
        conn.network.update_ip.side_effect = SDKException("conflict")

        with pytest.raises(OpenStackAPIError):
            client.associate_floating_ip("srv-1", SimpleNamespace(floating_ip_address="203.0.113.2"))
