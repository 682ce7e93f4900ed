"""Constants used across the cloud provisioner."""

VERSION = "0.1.0"

# Marker identifying agents started by this cloud integration
CLOUD_TYPE = "VMOS"

# Agent configuration parameters reported back by started agents
CLOUD_TYPE_PARAM = "cloud.type"
INSTANCE_ID_PARAM = "openstack.instance.id"

# Server metadata keys carrying agent bootstrap data
METADATA_CLOUD_TYPE = "cloud-type"
METADATA_AGENT_NAME = "agent-name"
METADATA_SERVER_ADDRESS = "server-address"
METADATA_AUTH_TOKEN = "auth-token"
METADATA_PROFILE_ID = "profile-id"
METADATA_CUSTOM_PREFIX = "param."

# Host parameter keys
PARAM_CLOUD = "cloud"
PARAM_ENDPOINT_URL = "endpoint_url"
PARAM_IDENTITY = "identity"
PARAM_PASSWORD = "password"
PARAM_REGION = "region"
PARAM_INSTANCE_CAP = "instance_cap"
PARAM_IMAGES_PROFILES = "images_profiles"

DEFAULT_REGION = "RegionOne"
DEFAULT_INIT_DELAY = 1.0
DEFAULT_INIT_TIMEOUT_PER_IMAGE = 3.0
DEFAULT_FLOATING_IP_TIMEOUT = 300.0
