"""
Embedded YAML configuration template for the A1 Flex provisioner.

``a1-provision setup`` writes this template to ``./a1-spec.yaml`` when no
configuration file exists yet. Every field aligns with the Pydantic models
in models.py; defaults are the same values the models fall back to.
"""

from __future__ import annotations

from pathlib import Path

PLACEHOLDER_REGION = "us-ashburn-1"
PLACEHOLDER_COMPARTMENT = "ocid1.compartment.oc1..replace_me"

DEFAULT_CONFIG_TEMPLATE = """\
# A1 Flex provisioner configuration
#
# Only VM.Standard.A1.Flex is supported. The run retries launching one
# instance until capacity is available, reusing the network below.

###############################################################################
# OCI account
###############################################################################
oci:
  profile: DEFAULT
  region: "{region}"
  # REQUIRED: compartment that holds the network and the instance
  compartment_ocid: "{compartment_ocid}"
  config_file: "~/.oci/config"

###############################################################################
# Instance
###############################################################################
instance:
  shape: VM.Standard.A1.Flex
  ocpus: 4
  memory_gb: 24
  boot_volume_gb: 160
  display_name_prefix: "A1-Flex"
  assign_public_ip: true
  image:
    mode: auto_latest_ubuntu_22_04  # or explicit_ocid
    image_ocid: ""                  # required with explicit_ocid
    operating_system: "Canonical Ubuntu"
    operating_system_version: "22.04"
  ssh_public_key_path: "./keys/ampere_a1_key.pub"

###############################################################################
# Placement
###############################################################################
placement:
  strategy: cycle_ads_same_region
  # Empty: use every availability domain in the region
  availability_domains: []

###############################################################################
# Network (found by display name, created if missing)
###############################################################################
network:
  mode: create_if_missing
  vcn:
    display_name: "ampere-vcn"
    cidr_block: "10.10.0.0/16"
  subnet:
    display_name: "ampere-subnet"
    cidr_block: "10.10.1.0/24"
    prohibit_public_ip_on_vnic: false
  internet_gateway_display_name: "ampere-igw"
  route_table_display_name: "ampere-rt"
  security_list_display_name: "ampere-sl"

###############################################################################
# Retry cadence
###############################################################################
retry:
  interval_seconds: 45
  jitter_seconds: 15
  # Local-time window with a faster cadence; start > end wraps past midnight
  peak_hours:
    enabled: false
    start_hour: 0
    end_hour: 3
    interval_seconds: 20
    jitter_seconds: 5
  infinite: true

###############################################################################
# Management
###############################################################################
management:
  enforce_single_active_instance: true
  managed_by_tag_key: "ManagedBy"
  managed_by_tag_value: "A1RetryScript"
  cleanup_mode: conservative

###############################################################################
# Next Steps:
# 1. Upload your OCI API public key in the Console (Profile -> API keys)
# 2. Set oci.compartment_ocid above
# 3. Start provisioning:
#      a1-provision run --config a1-spec.yaml
###############################################################################
"""


def render_config(
    region: str = PLACEHOLDER_REGION,
    compartment_ocid: str = PLACEHOLDER_COMPARTMENT,
) -> str:
    return DEFAULT_CONFIG_TEMPLATE.format(region=region, compartment_ocid=compartment_ocid)


def write_default_config(
    path: Path,
    region: str = PLACEHOLDER_REGION,
    compartment_ocid: str = PLACEHOLDER_COMPARTMENT,
) -> bool:
    """Write the template to ``path`` unless a file is already there.

    Returns:
        True if the file was written, False if an existing file was kept.
    """
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_config(region, compartment_ocid), encoding="utf-8")
    return True
