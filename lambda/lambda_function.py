import json
import logging
import os

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from certificate_requestor import CertificateRequestor, RequestorTimeouts
from requestor_errors import UnsupportedIntentError
from requestor_properties import (
    REMOVAL_POLICY_DESTROY,
    Properties,
    parse_properties,
    should_request_new,
)

logger = Logger()
logging.getLogger("botocore").setLevel(logging.WARNING)

# Environment variables
POWERTOOLS_SERVICE_NAME = os.environ.get(
    "POWERTOOLS_SERVICE_NAME", "dns-validated-certificate"
)
VALIDATION_RECORDS_MAX_SECONDS = int(
    os.environ.get("VALIDATION_RECORDS_MAX_SECONDS", "180")
)
RECORD_CHANGE_MAX_SECONDS = int(os.environ.get("RECORD_CHANGE_MAX_SECONDS", "180"))
CERTIFICATE_VALIDATION_MAX_SECONDS = int(
    os.environ.get("CERTIFICATE_VALIDATION_MAX_SECONDS", "300")
)
CERTIFICATE_USAGE_MAX_SECONDS = int(
    os.environ.get("CERTIFICATE_USAGE_MAX_SECONDS", "600")
)
VALIDATION_RECORD_TTL = int(os.environ.get("VALIDATION_RECORD_TTL", "30"))
ROUTE53_WAITER_DELAY_SECONDS = int(os.environ.get("ROUTE53_WAITER_DELAY_SECONDS", "5"))


def _validate_config() -> None:
    """
    Validate environment variables.
    """
    settings = {
        "VALIDATION_RECORDS_MAX_SECONDS": VALIDATION_RECORDS_MAX_SECONDS,
        "RECORD_CHANGE_MAX_SECONDS": RECORD_CHANGE_MAX_SECONDS,
        "CERTIFICATE_VALIDATION_MAX_SECONDS": CERTIFICATE_VALIDATION_MAX_SECONDS,
        "CERTIFICATE_USAGE_MAX_SECONDS": CERTIFICATE_USAGE_MAX_SECONDS,
        "VALIDATION_RECORD_TTL": VALIDATION_RECORD_TTL,
        "ROUTE53_WAITER_DELAY_SECONDS": ROUTE53_WAITER_DELAY_SECONDS,
    }
    for name, value in settings.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive")


def _timeouts() -> RequestorTimeouts:
    return RequestorTimeouts(
        validation_records_max_seconds=VALIDATION_RECORDS_MAX_SECONDS,
        record_change_max_seconds=RECORD_CHANGE_MAX_SECONDS,
        certificate_validation_max_seconds=CERTIFICATE_VALIDATION_MAX_SECONDS,
        certificate_usage_max_seconds=CERTIFICATE_USAGE_MAX_SECONDS,
        route53_waiter_delay_seconds=ROUTE53_WAITER_DELAY_SECONDS,
        validation_record_ttl=VALIDATION_RECORD_TTL,
    )


def _response(certificate_arn: str) -> dict:
    return {"PhysicalResourceId": certificate_arn, "Data": {"Arn": certificate_arn}}


def _properties_to_string(properties: dict) -> str:
    return json.dumps(properties, indent=2, default=str)


def on_create(event: dict, properties: Properties) -> dict:
    logger.info(
        f"Requesting new certificate:\n{_properties_to_string(event['ResourceProperties'])}"
    )
    requestor = CertificateRequestor(properties.certificate_region, _timeouts())
    certificate_arn = requestor.request_certificate(event["RequestId"], properties)
    requestor.add_tags(certificate_arn, properties.tags)
    return _response(certificate_arn)


def on_update(event: dict, properties: Properties) -> dict:
    certificate_arn = event["PhysicalResourceId"]
    old_properties = parse_properties(event.get("OldResourceProperties") or {})
    requestor = CertificateRequestor(properties.certificate_region, _timeouts())

    if should_request_new(old_properties, properties):
        logger.info(
            "Requesting new certificate due to change of properties:\n"
            f"{_properties_to_string(event['ResourceProperties'])}"
        )
        certificate_arn = requestor.request_certificate(event["RequestId"], properties)
    else:
        logger.info(f"Keeping certificate {certificate_arn}")

    requestor.add_tags(certificate_arn, properties.tags)
    return _response(certificate_arn)


def on_delete(event: dict, properties: Properties) -> dict:
    certificate_arn = event["PhysicalResourceId"]
    if properties.removal_policy != REMOVAL_POLICY_DESTROY:
        logger.info(
            f"Retaining certificate {certificate_arn} as per removal policy "
            f"{properties.removal_policy}"
        )
        return _response(certificate_arn)

    logger.info(
        "Deleting old certificate as per removal policy:\n"
        f"{_properties_to_string(event['ResourceProperties'])}"
    )
    requestor = CertificateRequestor(properties.certificate_region, _timeouts())
    requestor.delete_certificate(certificate_arn, properties)
    return _response(certificate_arn)


HANDLERS = {"Create": on_create, "Update": on_update, "Delete": on_delete}


@logger.inject_lambda_context(log_event=True)
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """AWS Lambda entry point of the Custom::DnsValidatedCertificate provider.

    Args:
        event: CloudFormation custom resource event from the provider framework
        context: Lambda runtime context

    Returns:
        dict: Physical resource id and the certificate ARN as the Arn attribute

    Raises:
        UnsupportedIntentError: If the request type is not Create, Update or Delete
    """
    _validate_config()

    request_type = event.get("RequestType")
    handler = HANDLERS.get(request_type)
    if handler is None:
        raise UnsupportedIntentError(f"Invalid request type {request_type}")

    try:
        properties = parse_properties(event.get("ResourceProperties") or {})
        return handler(event, properties)
    except Exception:
        logger.exception(f"{request_type} of certificate failed")
        raise
