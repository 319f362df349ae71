import hashlib
from dataclasses import dataclass
from typing import Optional

import boto3
from aws_lambda_powertools import Logger
from botocore.config import Config
from botocore.exceptions import ClientError, WaiterError

from requestor_credentials import resolve_credentials
from requestor_errors import DnsChangeError, ValidationFailedError
from requestor_properties import Properties, ValidationZone
from requestor_utils import (
    clean_change_id,
    match_names_to_zones,
    try_for,
    unmatched_names,
)

logger = Logger(child=True)

CLIENT_CONFIG = Config(retries={"mode": "adaptive", "max_attempts": 10})

STATUS_ISSUED = "ISSUED"
STATUS_PENDING_VALIDATION = "PENDING_VALIDATION"


@dataclass(frozen=True)
class RequestorTimeouts:
    """Deadlines, in seconds, of the waits in the certificate lifecycle."""

    validation_records_max_seconds: int = 180
    record_change_max_seconds: int = 180
    certificate_validation_max_seconds: int = 300
    certificate_usage_max_seconds: int = 600
    route53_waiter_delay_seconds: int = 5
    validation_record_ttl: int = 30


def idempotency_token(request_id: str) -> str:
    """Derive the ACM idempotency token from a CloudFormation request id."""
    return hashlib.sha256(request_id.encode()).hexdigest()[:32]


def parse_domain_validation_records(
    certificate: dict, ttl: int = 30
) -> Optional[list[dict]]:
    """
    Extract the DNS validation records from a certificate description.

    ACM fills in the resource records asynchronously after the request, so the
    result is None until every domain validation option carries one. Domains
    sharing a validation record (e.g. "example.com" and "*.example.com") yield
    a single record set.

    Args:
        certificate: Certificate detail of DescribeCertificate
        ttl: TTL of the record sets

    Returns:
        Optional[list[dict]]: Route 53 record sets, or None if not yet available
    """
    options = certificate.get("DomainValidationOptions") or []
    if not options or not all(
        option.get("ResourceRecord", {}).get("Name") for option in options
    ):
        return None

    unique_records: dict[str, dict] = {}
    for option in options:
        record = option["ResourceRecord"]
        unique_records.setdefault(record["Name"], record)

    return [
        {
            "Name": record["Name"],
            "Type": record["Type"],
            "TTL": ttl,
            "ResourceRecords": [{"Value": record["Value"]}],
        }
        for record in unique_records.values()
    ]


def _is_acm_arn(value: str) -> bool:
    return value.startswith("arn:") and ":acm:" in value


def _describe_record(record: dict) -> str:
    values = ",".join(rr["Value"] for rr in record.get("ResourceRecords", []))
    return f"{record['Name']} {record['Type']} {values}"


class CertificateRequestor:
    """
    Requests, validates and deletes ACM certificates with Route 53 DNS validation.

    Validation records are distributed to the most specific of the configured
    hosted zones, each of which may live in another account behind a
    validation role. The requestor holds no state between invocations: every
    wait polls the current state of ACM or Route 53.
    """

    def __init__(
        self,
        certificate_region: str,
        timeouts: Optional[RequestorTimeouts] = None,
    ):
        self.certificate_region = certificate_region
        self.timeouts = timeouts or RequestorTimeouts()
        self._acm_client = boto3.client(
            "acm", region_name=certificate_region, config=CLIENT_CONFIG
        )

    def _route53_client(self, zone: ValidationZone):
        credentials = resolve_credentials(zone)
        if credentials is None:
            return boto3.client("route53", config=CLIENT_CONFIG)
        return boto3.client(
            "route53", config=CLIENT_CONFIG, **credentials.as_client_kwargs()
        )

    def _describe_certificate(self, certificate_arn: str) -> dict:
        response = self._acm_client.describe_certificate(CertificateArn=certificate_arn)
        return response["Certificate"]

    def _change_record_sets(
        self, route53_client, action: str, records: list[dict], hosted_zone_id: str
    ) -> str:
        """
        Submit a change batch and wait until Route 53 reports it INSYNC.

        Args:
            route53_client: Route 53 client with permissions for the zone
            action: UPSERT or DELETE
            records: Record sets to change
            hosted_zone_id: Target hosted zone

        Returns:
            str: Route 53 change id

        Raises:
            DnsChangeError: If the change does not propagate in time
        """
        change_batch = {
            "Changes": [
                {"Action": action, "ResourceRecordSet": record} for record in records
            ]
        }
        response = route53_client.change_resource_record_sets(
            HostedZoneId=hosted_zone_id, ChangeBatch=change_batch
        )
        change_id = response["ChangeInfo"]["Id"]

        delay = self.timeouts.route53_waiter_delay_seconds
        waiter = route53_client.get_waiter("resource_record_sets_changed")
        try:
            waiter.wait(
                Id=change_id,
                WaiterConfig={
                    "Delay": delay,
                    "MaxAttempts": max(1, self.timeouts.record_change_max_seconds // delay),
                },
            )
        except WaiterError as e:
            raise DnsChangeError(
                f"Record sets never changed for hosted zone {hosted_zone_id}: {e}"
            ) from e
        return change_id

    def _change_validation_records(
        self, action: str, records: list[dict], properties: Properties
    ) -> None:
        records_by_zone = match_names_to_zones(
            properties.zone_names, records, lambda record: record["Name"]
        )
        dropped = unmatched_names(
            properties.zone_names, [record["Name"] for record in records]
        )
        if dropped:
            logger.warning(
                f"No validation hosted zone matches record(s) {dropped}, they are skipped"
            )

        for zone in properties.validation_hosted_zones:
            zone_records = records_by_zone.get(zone.zone_name, [])
            if not zone_records:
                logger.info(f"No validation records for hosted zone {zone.zone_name}")
                continue

            logger.info(
                f"{action} {len(zone_records)} validation record(s) in hosted zone "
                f"{zone.zone_name} ({zone.hosted_zone_id})"
            )
            for record in zone_records:
                logger.info(_describe_record(record))

            route53_client = self._route53_client(zone)
            try:
                change_id = self._change_record_sets(
                    route53_client, action, zone_records, zone.hosted_zone_id
                )
            except ClientError as e:
                error = e.response.get("Error", {})
                if (
                    action == "DELETE"
                    and error.get("Code") == "InvalidChangeBatch"
                    and "not found" in (error.get("Message") or str(e))
                ):
                    # Another certificate sharing the records already deleted them
                    logger.info(
                        f"Validation records in hosted zone {zone.zone_name} "
                        "have already been removed by some other certificate"
                    )
                    continue
                raise
            logger.info(
                f"Validation records changed in hosted zone {zone.zone_name} "
                f"for change id {clean_change_id(change_id)}"
            )

    def _wait_for_validation_records(self, certificate_arn: str) -> list[dict]:
        max_seconds = self.timeouts.validation_records_max_seconds
        return try_for(
            max_seconds,
            f"Domain validation options were not found in {max_seconds} seconds",
            lambda: parse_domain_validation_records(
                self._describe_certificate(certificate_arn),
                self.timeouts.validation_record_ttl,
            ),
        )

    def _wait_for_certificate_validated(self, certificate_arn: str) -> str:
        def probe() -> Optional[str]:
            certificate = self._describe_certificate(certificate_arn)
            status = certificate.get("Status")
            if status == STATUS_ISSUED:
                return status
            if status == STATUS_PENDING_VALIDATION:
                return None
            reason = certificate.get("FailureReason", "")
            raise ValidationFailedError(
                f"Certificate {certificate_arn} failed to validate: [{status}] {reason}"
            )

        max_seconds = self.timeouts.certificate_validation_max_seconds
        return try_for(
            max_seconds,
            f"Certificate {certificate_arn} was not validated in {max_seconds} seconds",
            probe,
        )

    def _wait_for_certificate_unused(self, certificate_arn: str) -> Optional[dict]:
        """
        Wait until no AWS resource references the certificate.

        Returns:
            Optional[dict]: Certificate detail, or None if it no longer exists
        """

        def probe():
            try:
                certificate = self._describe_certificate(certificate_arn)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                    # already deleted by an earlier attempt
                    return False
                raise
            if certificate.get("InUseBy"):
                return None
            return certificate

        max_seconds = self.timeouts.certificate_usage_max_seconds
        certificate = try_for(
            max_seconds,
            f"Certificate was still in use after {max_seconds} seconds",
            probe,
        )
        return certificate or None

    def request_certificate(self, request_id: str, properties: Properties) -> str:
        """
        Request a certificate and publish its DNS validation records.

        Args:
            request_id: CloudFormation request id, source of the idempotency token
            properties: Parsed resource properties

        Returns:
            str: ARN of the validated certificate
        """
        uncovered = unmatched_names(properties.zone_names, properties.all_domain_names)
        if uncovered:
            logger.warning(
                f"Domain(s) {uncovered} are not provided with an authoritative hosted zone"
            )

        logger.info(f"Requesting certificate for {properties.domain_name}")
        request = {
            "DomainName": properties.domain_name,
            "IdempotencyToken": idempotency_token(request_id),
            "ValidationMethod": "DNS",
            "Options": {
                "CertificateTransparencyLoggingPreference": "ENABLED"
                if properties.transparency_logging_enabled
                else "DISABLED"
            },
        }
        if properties.alternative_domain_names:
            request["SubjectAlternativeNames"] = list(properties.alternative_domain_names)

        certificate_arn = self._acm_client.request_certificate(**request)["CertificateArn"]
        logger.info(f"Certificate {certificate_arn} requested")

        validation_records = self._wait_for_validation_records(certificate_arn)
        logger.info(f"Found {len(validation_records)} validation record(s)")
        self._change_validation_records("UPSERT", validation_records, properties)

        logger.info(f"Waiting for certificate {certificate_arn} to validate")
        self._wait_for_certificate_validated(certificate_arn)
        logger.info(f"Certificate {certificate_arn} successfully validated")
        return certificate_arn

    def delete_certificate(self, certificate_arn: str, properties: Properties) -> None:
        """
        Delete a certificate once unused, cleaning up its validation records.

        Args:
            certificate_arn: ARN of the certificate to delete
            properties: Parsed resource properties
        """
        if not _is_acm_arn(certificate_arn):
            logger.warning(
                f"Physical resource id {certificate_arn} is not a certificate ARN, nothing to delete"
            )
            return

        logger.info(f"Waiting for certificate {certificate_arn} usage to drain before deletion")
        certificate = self._wait_for_certificate_unused(certificate_arn)
        if certificate is None:
            logger.info(f"Certificate {certificate_arn} does not exist anymore")
            return
        logger.info("Certificate is unused and will be deleted")

        validation_records = parse_domain_validation_records(
            certificate, self.timeouts.validation_record_ttl
        )
        if validation_records and properties.cleanup_validation_records:
            self._change_validation_records("DELETE", validation_records, properties)

        logger.info(f"Deleting certificate {certificate_arn} from ACM")
        self._acm_client.delete_certificate(CertificateArn=certificate_arn)
        logger.info(f"Certificate {certificate_arn} successfully deleted")

    def add_tags(self, certificate_arn: str, tags: dict[str, str]) -> None:
        """Add tags to the certificate, overwriting existing values."""
        if not tags:
            return
        tag_list = [{"Key": key, "Value": value} for key, value in tags.items()]
        logger.info(f"Adding {len(tag_list)} tags to certificate {certificate_arn}")
        self._acm_client.add_tags_to_certificate(
            CertificateArn=certificate_arn, Tags=tag_list
        )
        logger.info(f"All tags successfully added to certificate {certificate_arn}")
