import os
from dataclasses import dataclass, field
from typing import Optional, Union

from requestor_utils import (
    clean_domain_name,
    clean_hosted_zone_id,
    contains_same,
    string_to_boolean,
)

REMOVAL_POLICY_DESTROY = "destroy"
REMOVAL_POLICY_RETAIN = "retain"
REMOVAL_POLICIES = {REMOVAL_POLICY_DESTROY, REMOVAL_POLICY_RETAIN}


@dataclass(frozen=True)
class SameAccountZone:
    """Hosted zone changed with the Lambda execution role's own permissions."""

    zone_name: str
    hosted_zone_id: str


@dataclass(frozen=True)
class CrossAccountZone:
    """Hosted zone changed through an assumed validation role."""

    zone_name: str
    hosted_zone_id: str
    role_arn: str
    external_id: Optional[str] = None


ValidationZone = Union[SameAccountZone, CrossAccountZone]


@dataclass(frozen=True)
class Properties:
    """Parsed ResourceProperties of a Custom::DnsValidatedCertificate."""

    domain_name: str
    validation_hosted_zones: tuple[ValidationZone, ...]
    certificate_region: str
    alternative_domain_names: tuple[str, ...] = ()
    cleanup_validation_records: bool = True
    transparency_logging_enabled: bool = True
    tags: dict[str, str] = field(default_factory=dict)
    removal_policy: str = REMOVAL_POLICY_DESTROY

    @property
    def all_domain_names(self) -> list[str]:
        return [self.domain_name, *self.alternative_domain_names]

    @property
    def zone_names(self) -> list[str]:
        return [zone.zone_name for zone in self.validation_hosted_zones]

    @property
    def hosted_zone_ids(self) -> list[str]:
        return [zone.hosted_zone_id for zone in self.validation_hosted_zones]


def _parse_zone(key: str, value: dict) -> ValidationZone:
    if not isinstance(value, dict):
        raise ValueError(f"Validation hosted zone {key} must be an object")
    hosted_zone_id = value.get("HostedZoneId")
    if not hosted_zone_id:
        raise ValueError(f"Validation hosted zone {key} is missing HostedZoneId")

    zone_name = clean_domain_name(value.get("DomainName") or key)
    hosted_zone_id = clean_hosted_zone_id(hosted_zone_id)
    role_arn = value.get("ValidationRoleArn")
    if role_arn:
        return CrossAccountZone(
            zone_name=zone_name,
            hosted_zone_id=hosted_zone_id,
            role_arn=role_arn,
            external_id=value.get("ValidationExternalId") or None,
        )
    return SameAccountZone(zone_name=zone_name, hosted_zone_id=hosted_zone_id)


def parse_properties(properties: dict) -> Properties:
    """
    Parse custom resource properties into a Properties instance.

    Args:
        properties: ResourceProperties or OldResourceProperties of the event

    Returns:
        Properties: Validated, normalized properties

    Raises:
        ValueError: If required properties are missing or malformed
    """
    domain_name = properties.get("DomainName")
    if not domain_name:
        raise ValueError("DomainName property is required")

    zones_property = properties.get("ValidationHostedZones") or {}
    if not isinstance(zones_property, dict) or not zones_property:
        raise ValueError("At least one validation hosted zone is required")
    zones = tuple(_parse_zone(key, value) for key, value in zones_property.items())
    zone_names = [zone.zone_name for zone in zones]
    if len(set(zone_names)) != len(zone_names):
        raise ValueError(f"Validation hosted zone names must be unique: {zone_names}")

    certificate_region = properties.get("CertificateRegion") or os.environ.get(
        "AWS_REGION", ""
    )
    if not certificate_region:
        raise ValueError("CertificateRegion property is required")

    alternative_domain_names = properties.get("AlternativeDomainNames") or []
    if not isinstance(alternative_domain_names, list):
        raise ValueError("AlternativeDomainNames property must be a list")

    removal_policy = (properties.get("RemovalPolicy") or REMOVAL_POLICY_DESTROY).lower()
    if removal_policy not in REMOVAL_POLICIES:
        raise ValueError(f"Invalid RemovalPolicy: {removal_policy}")

    return Properties(
        domain_name=clean_domain_name(domain_name),
        alternative_domain_names=tuple(
            clean_domain_name(name) for name in alternative_domain_names
        ),
        validation_hosted_zones=zones,
        certificate_region=certificate_region,
        cleanup_validation_records=string_to_boolean(
            properties.get("CleanupValidationRecords", "true")
        ),
        transparency_logging_enabled=string_to_boolean(
            properties.get("TransparencyLoggingEnabled", "true")
        ),
        tags=dict(properties.get("Tags") or {}),
        removal_policy=removal_policy,
    )


def should_request_new(old: Properties, new: Properties) -> bool:
    """
    Decide whether an update needs a new certificate.

    Everything baked into the certificate request or its validation setup
    forces a new certificate. Tags and validation role settings can be applied
    to the existing one.

    Args:
        old: Properties before the update
        new: Properties after the update

    Returns:
        bool: True if a new certificate must be requested
    """
    if not contains_same(old.hosted_zone_ids, new.hosted_zone_ids):
        return True
    if old.domain_name != new.domain_name:
        return True
    if not contains_same(old.alternative_domain_names, new.alternative_domain_names):
        return True
    if old.certificate_region != new.certificate_region:
        return True
    if old.cleanup_validation_records != new.cleanup_validation_records:
        return True
    if old.transparency_logging_enabled != new.transparency_logging_enabled:
        return True
    if old.removal_policy != new.removal_policy:
        return True
    return False
