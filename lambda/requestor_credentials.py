from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from requestor_errors import AuthorizationError
from requestor_properties import CrossAccountZone, ValidationZone

logger = Logger(child=True)

ROLE_SESSION_NAME = "CertificateRequestor"


@dataclass(frozen=True)
class AssumedCredentials:
    """Short lived credentials of an assumed validation role."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: Optional[datetime] = None

    def as_client_kwargs(self) -> dict:
        return {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "aws_session_token": self.session_token,
        }


def assume_role(role_arn: str, external_id: Optional[str] = None) -> AssumedCredentials:
    """
    Assume a validation role in the hosted zone's account.

    Args:
        role_arn: ARN of the role allowed to change the hosted zone
        external_id: External id the role's trust policy expects, if any

    Returns:
        AssumedCredentials: Temporary credentials for the role

    Raises:
        AuthorizationError: If STS refuses the assume
    """
    sts_client = boto3.client("sts")
    request = {"RoleArn": role_arn, "RoleSessionName": ROLE_SESSION_NAME}
    if external_id:
        request["ExternalId"] = external_id

    try:
        response = sts_client.assume_role(**request)
    except ClientError as e:
        raise AuthorizationError(f"Failed to assume validation role {role_arn}: {e}") from e

    credentials = response["Credentials"]
    logger.info(f"Assumed validation role {role_arn}")
    return AssumedCredentials(
        access_key_id=credentials["AccessKeyId"],
        secret_access_key=credentials["SecretAccessKey"],
        session_token=credentials["SessionToken"],
        expiration=credentials.get("Expiration"),
    )


def resolve_credentials(zone: ValidationZone) -> Optional[AssumedCredentials]:
    """Return role credentials for a cross-account zone, None for the ambient identity."""
    if isinstance(zone, CrossAccountZone):
        return assume_role(zone.role_arn, zone.external_id)
    return None
