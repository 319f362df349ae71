"""Pytest fixtures for the certificate requestor tests."""

import os
from dataclasses import dataclass
from unittest.mock import Mock

import pytest

CERTIFICATE_ARN = (
    "arn:aws:acm:us-east-1:123456789012:certificate/"
    "2a5e1a9e-6f1b-4d3c-9b1e-3f0c8d1a7b22"
)
VALIDATION_ROLE_ARN = "arn:aws:iam::210987654321:role/ChangeDnsRecordsRole"


@pytest.fixture(scope="function")
def aws_credentials():
    """Mock AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture(scope="function")
def env_vars():
    """Set required environment variables and reload module to apply them."""
    import importlib

    os.environ["POWERTOOLS_SERVICE_NAME"] = "test-certificate-requestor"
    os.environ["AWS_REGION"] = "eu-west-1"
    os.environ["VALIDATION_RECORDS_MAX_SECONDS"] = "180"
    os.environ["RECORD_CHANGE_MAX_SECONDS"] = "180"
    os.environ["CERTIFICATE_VALIDATION_MAX_SECONDS"] = "300"
    os.environ["CERTIFICATE_USAGE_MAX_SECONDS"] = "600"
    os.environ["VALIDATION_RECORD_TTL"] = "30"
    os.environ["ROUTE53_WAITER_DELAY_SECONDS"] = "1"

    # Reload lambda_function module to pick up new env vars
    import lambda_function

    importlib.reload(lambda_function)


@pytest.fixture
def lambda_context():
    """Minimal Lambda context accepted by Logger.inject_lambda_context."""

    @dataclass
    class LambdaContext:
        function_name: str = "certificate-requestor"
        memory_limit_in_mb: int = 128
        invoked_function_arn: str = (
            "arn:aws:lambda:eu-west-1:123456789012:function:certificate-requestor"
        )
        aws_request_id: str = "da658bd3-2d6f-4e7b-8ec2-937234644fdc"

    return LambdaContext()


def validation_option(domain_name: str, record_name: str, record_value: str) -> dict:
    return {
        "DomainName": domain_name,
        "ValidationMethod": "DNS",
        "ValidationStatus": "PENDING_VALIDATION",
        "ResourceRecord": {"Name": record_name, "Type": "CNAME", "Value": record_value},
    }


@pytest.fixture
def single_domain_certificate():
    """Issued certificate for example.com with one validation record."""
    return {
        "CertificateArn": CERTIFICATE_ARN,
        "DomainName": "example.com",
        "Status": "ISSUED",
        "InUseBy": [],
        "DomainValidationOptions": [
            validation_option(
                "example.com", "_abc.example.com.", "_xyz.acm-validations.aws."
            )
        ],
    }


@pytest.fixture
def two_domain_certificate():
    """Issued certificate for example.com and secondary.com."""
    return {
        "CertificateArn": CERTIFICATE_ARN,
        "DomainName": "example.com",
        "Status": "ISSUED",
        "InUseBy": [],
        "DomainValidationOptions": [
            validation_option(
                "example.com", "_abc.example.com.", "_xyz.acm-validations.aws."
            ),
            validation_option(
                "secondary.com", "_def.secondary.com.", "_uvw.acm-validations.aws."
            ),
        ],
    }


@pytest.fixture
def resource_properties():
    """Custom resource properties for a single zone in the same account."""
    return {
        "ServiceToken": "arn:aws:lambda:eu-west-1:123456789012:function:provider",
        "DomainName": "example.com",
        "ValidationHostedZones": {
            "example.com": {
                "DomainName": "example.com",
                "HostedZoneId": "Z53279245PYHBAN3YU2K",
            }
        },
        "CertificateRegion": "us-east-1",
        "CleanupValidationRecords": "true",
        "TransparencyLoggingEnabled": "true",
        "RemovalPolicy": "destroy",
    }


@pytest.fixture
def cross_account_properties(resource_properties):
    """Custom resource properties with an alternative name in another account."""
    properties = dict(resource_properties)
    properties["AlternativeDomainNames"] = ["secondary.com"]
    properties["ValidationHostedZones"] = {
        "example.com": {
            "DomainName": "example.com",
            "HostedZoneId": "Z53279245PYHBAN3YU2K",
        },
        "secondary.com": {
            "DomainName": "secondary.com",
            "HostedZoneId": "Z73479245BAEBAN3YK4V",
            "ValidationRoleArn": VALIDATION_ROLE_ARN,
            "ValidationExternalId": "domain-assume",
        },
    }
    return properties


class AwsClients:
    """Mock boto3 clients, route53 clients are keyed by the access key used."""

    def __init__(self, certificate: dict):
        self.acm = Mock()
        self.acm.request_certificate.return_value = {"CertificateArn": CERTIFICATE_ARN}
        self.acm.describe_certificate.return_value = {"Certificate": certificate}
        self.sts = Mock()
        self.sts.assume_role.return_value = {
            "Credentials": {
                "AccessKeyId": "ASSUMEDACCESSKEY",
                "SecretAccessKey": "assumed-secret",
                "SessionToken": "assumed-token",
            }
        }
        self.route53 = {}
        self.calls = []

    def _route53(self, key: str) -> Mock:
        if key not in self.route53:
            client = Mock()
            client.change_resource_record_sets.return_value = {
                "ChangeInfo": {"Id": f"/change/C{len(self.route53)}"}
            }
            self.route53[key] = client
        return self.route53[key]

    def factory(self, service_name, **kwargs):
        self.calls.append((service_name, kwargs))
        if service_name == "acm":
            return self.acm
        if service_name == "sts":
            return self.sts
        if service_name == "route53":
            return self._route53(kwargs.get("aws_access_key_id", "ambient"))
        raise AssertionError(f"Unexpected client {service_name}")


@pytest.fixture
def make_clients():
    """Factory for AwsClients bound to a certificate description."""
    return AwsClients
