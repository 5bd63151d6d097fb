"""Pydantic models for the provisioning configuration file.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Defaults matching the file written by ``a1-provision setup``
"""

from __future__ import annotations

import ipaddress
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import (
    DEFAULT_MANAGED_TAG_KEY,
    DEFAULT_MANAGED_TAG_VALUE,
    DEFAULT_OCI_CONFIG_FILE,
    DEFAULT_PEAK_END_HOUR,
    DEFAULT_PEAK_INTERVAL_SECONDS,
    DEFAULT_PEAK_JITTER_SECONDS,
    DEFAULT_PEAK_START_HOUR,
    DEFAULT_RETRY_INTERVAL_SECONDS,
    DEFAULT_RETRY_JITTER_SECONDS,
    DEFAULT_SSH_PUBLIC_KEY_PATH,
    MAX_RETRY_INTERVAL_SECONDS,
    MIN_RETRY_INTERVAL_SECONDS,
    SUPPORTED_SHAPE,
    RetryOverrides,
)

OCID_PREFIX = "ocid1."


class ImageMode(str, Enum):
    """How the boot image is chosen."""

    AUTO_LATEST_UBUNTU_22_04 = "auto_latest_ubuntu_22_04"
    EXPLICIT_OCID = "explicit_ocid"


# =============================================================================
# OCI account
# =============================================================================


class OciSection(BaseModel):
    """OCI profile, region and target compartment."""

    model_config = {"extra": "ignore"}

    profile: str = "DEFAULT"
    region: Annotated[str, Field(min_length=1)]
    compartment_ocid: Annotated[str, Field(min_length=1)]
    config_file: Path = Field(
        default_factory=lambda: Path(DEFAULT_OCI_CONFIG_FILE), validate_default=True
    )

    @field_validator("compartment_ocid")
    @classmethod
    def validate_compartment(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(OCID_PREFIX) or v.endswith("replace_me"):
            raise ValueError(f"compartment_ocid must be a compartment OCID: {v}")
        return v

    @field_validator("config_file")
    @classmethod
    def expand_config_file(cls, v: Path) -> Path:
        return v.expanduser()


# =============================================================================
# Instance
# =============================================================================


class ImageSelection(BaseModel):
    """Boot image selection."""

    model_config = {"extra": "ignore"}

    mode: ImageMode = ImageMode.AUTO_LATEST_UBUNTU_22_04
    image_ocid: str = ""
    operating_system: str = "Canonical Ubuntu"
    operating_system_version: str = "22.04"

    @field_validator("image_ocid", mode="before")
    @classmethod
    def none_to_empty(cls, v: str | None) -> str:
        return (v or "").strip()

    @model_validator(mode="after")
    def explicit_requires_ocid(self) -> ImageSelection:
        if self.mode == ImageMode.EXPLICIT_OCID and not self.image_ocid:
            raise ValueError("image_ocid required when image.mode=explicit_ocid")
        return self


class InstanceSection(BaseModel):
    """Sizing and identity of the instance to launch."""

    model_config = {"extra": "ignore"}

    shape: str = SUPPORTED_SHAPE
    ocpus: Annotated[float, Field(gt=0, le=80)] = 4
    memory_gb: Annotated[float, Field(gt=0, le=512)] = 24
    boot_volume_gb: Annotated[int, Field(ge=50, le=32768)] = 160
    display_name_prefix: Annotated[str, Field(min_length=1, max_length=200)] = "A1-Flex"
    assign_public_ip: bool = True
    image: ImageSelection = Field(default_factory=ImageSelection)
    ssh_public_key_path: Path = Field(
        default_factory=lambda: Path(DEFAULT_SSH_PUBLIC_KEY_PATH), validate_default=True
    )

    @field_validator("shape")
    @classmethod
    def validate_shape(cls, v: str) -> str:
        if v != SUPPORTED_SHAPE:
            raise ValueError(f"only shape {SUPPORTED_SHAPE} is supported, got {v}")
        return v

    @field_validator("ssh_public_key_path")
    @classmethod
    def expand_key_path(cls, v: Path) -> Path:
        return v.expanduser()


# =============================================================================
# Placement
# =============================================================================


class PlacementSection(BaseModel):
    """Availability domain cycling."""

    model_config = {"extra": "ignore"}

    strategy: Literal["cycle_ads_same_region"] = "cycle_ads_same_region"
    availability_domains: list[str] = Field(default_factory=list)

    @field_validator("availability_domains", mode="before")
    @classmethod
    def none_to_list(cls, v: list[str] | None) -> list[str]:
        return list(v or [])


# =============================================================================
# Network
# =============================================================================


class VcnConfig(BaseModel):
    """Virtual cloud network."""

    model_config = {"extra": "ignore"}

    display_name: Annotated[str, Field(min_length=1)] = "ampere-vcn"
    cidr_block: str = "10.10.0.0/16"

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        ipaddress.ip_network(v, strict=True)
        return v


class SubnetConfig(BaseModel):
    """Subnet inside the VCN."""

    model_config = {"extra": "ignore"}

    display_name: Annotated[str, Field(min_length=1)] = "ampere-subnet"
    cidr_block: str = "10.10.1.0/24"
    prohibit_public_ip_on_vnic: bool = False

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        ipaddress.ip_network(v, strict=True)
        return v


class NetworkSection(BaseModel):
    """Display names and address space of the managed network topology."""

    model_config = {"extra": "ignore"}

    mode: Literal["create_if_missing"] = "create_if_missing"
    vcn: VcnConfig = Field(default_factory=VcnConfig)
    subnet: SubnetConfig = Field(default_factory=SubnetConfig)
    internet_gateway_display_name: Annotated[str, Field(min_length=1)] = "ampere-igw"
    route_table_display_name: Annotated[str, Field(min_length=1)] = "ampere-rt"
    security_list_display_name: Annotated[str, Field(min_length=1)] = "ampere-sl"

    @model_validator(mode="after")
    def subnet_inside_vcn(self) -> NetworkSection:
        vcn = ipaddress.ip_network(self.vcn.cidr_block)
        subnet = ipaddress.ip_network(self.subnet.cidr_block)
        if subnet.version != vcn.version or not subnet.subnet_of(vcn):
            raise ValueError(
                f"subnet cidr_block {subnet} must be inside vcn cidr_block {vcn}"
            )
        return self


# =============================================================================
# Retry
# =============================================================================

Hour = Annotated[int, Field(ge=0, le=23)]
IntervalSeconds = Annotated[
    int, Field(ge=MIN_RETRY_INTERVAL_SECONDS, le=MAX_RETRY_INTERVAL_SECONDS)
]
JitterSeconds = Annotated[int, Field(ge=0)]


class PeakHours(BaseModel):
    """Local-hour window with its own retry cadence."""

    model_config = {"extra": "ignore"}

    enabled: bool = False
    start_hour: Hour = DEFAULT_PEAK_START_HOUR
    end_hour: Hour = DEFAULT_PEAK_END_HOUR
    interval_seconds: IntervalSeconds = DEFAULT_PEAK_INTERVAL_SECONDS
    jitter_seconds: JitterSeconds = DEFAULT_PEAK_JITTER_SECONDS


class RetrySection(BaseModel):
    """Standard retry cadence plus the optional peak window."""

    model_config = {"extra": "ignore"}

    interval_seconds: IntervalSeconds = DEFAULT_RETRY_INTERVAL_SECONDS
    jitter_seconds: JitterSeconds = DEFAULT_RETRY_JITTER_SECONDS
    infinite: bool = True
    peak_hours: PeakHours = Field(default_factory=PeakHours)

    @field_validator("infinite")
    @classmethod
    def validate_infinite(cls, v: bool) -> bool:
        if not v:
            raise ValueError("bounded retries are not supported; retry.infinite must be true")
        return v


# =============================================================================
# Management
# =============================================================================


class ManagementSection(BaseModel):
    """Ownership tag and singleton policy."""

    model_config = {"extra": "ignore"}

    enforce_single_active_instance: bool = True
    managed_by_tag_key: Annotated[str, Field(min_length=1, max_length=100)] = (
        DEFAULT_MANAGED_TAG_KEY
    )
    managed_by_tag_value: Annotated[str, Field(min_length=1, max_length=256)] = (
        DEFAULT_MANAGED_TAG_VALUE
    )
    cleanup_mode: Literal["conservative"] = "conservative"

    @property
    def freeform_tags(self) -> dict[str, str]:
        """Tags applied to every resource this engine creates."""
        return {self.managed_by_tag_key: self.managed_by_tag_value}


# =============================================================================
# Root document
# =============================================================================


class ProvisionSpec(BaseModel):
    """The complete configuration file."""

    model_config = {"extra": "ignore"}

    oci: OciSection
    instance: InstanceSection = Field(default_factory=InstanceSection)
    placement: PlacementSection = Field(default_factory=PlacementSection)
    network: NetworkSection = Field(default_factory=NetworkSection)
    retry: RetrySection = Field(default_factory=RetrySection)
    management: ManagementSection = Field(default_factory=ManagementSection)

    def with_overrides(self, overrides: RetryOverrides) -> ProvisionSpec:
        """Return a copy with command-line retry overrides applied.

        Any peak override also enables the peak window.
        """
        if overrides.is_empty:
            return self

        retry = self.retry.model_copy(deep=True)
        if overrides.interval_seconds is not None:
            retry.interval_seconds = overrides.interval_seconds
        if overrides.jitter_seconds is not None:
            retry.jitter_seconds = overrides.jitter_seconds

        peak = retry.peak_hours
        if overrides.peak_hours is not None:
            peak.start_hour, peak.end_hour = overrides.peak_hours
        if overrides.peak_interval_seconds is not None:
            peak.interval_seconds = overrides.peak_interval_seconds
        if overrides.peak_jitter_seconds is not None:
            peak.jitter_seconds = overrides.peak_jitter_seconds
        if overrides.enables_peak:
            peak.enabled = True

        return self.model_copy(update={"retry": retry})
