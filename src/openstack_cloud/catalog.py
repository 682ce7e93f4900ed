"""Parsing of the image profile catalog."""

import logging

import yaml

from openstack_cloud.models import CatalogError, ImageProfile

logger = logging.getLogger(__name__)


def parse_catalog(raw: str | None) -> list[ImageProfile]:
    """Parse a YAML catalog mapping image names to launch profiles.

    Example:
        web:
          image: ubuntu-20.04
          flavor: m1.small
          network: net1
          security_group: default
          key_pair: kp1
          auto_floating_ip: true

    Returns:
        Profiles in catalog order

    Raises:
        CatalogError: If the catalog is empty, malformed, or any profile
            lacks a required field. No partial result is returned.
    """
    if raw is None or not raw.strip():
        raise CatalogError("No images specified")

    logger.debug("Parsing image profiles: %s", raw)
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid image profiles YAML: {e}") from e

    if not data:
        raise CatalogError("No images specified (perhaps only comments)")
    if not isinstance(data, dict):
        raise CatalogError(
            f"Image profiles must map image names to parameters, got {type(data).__name__}"
        )

    profiles: list[ImageProfile] = []
    for key, value in data.items():
        name = str(key).strip()
        if not name:
            raise CatalogError("Image name must not be empty")
        profiles.append(ImageProfile.from_dict(name, value))

    return profiles
