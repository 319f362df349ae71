class CertificateRequestorError(Exception):
    """Base class for failures that abort a custom resource request."""


class WaitTimeoutError(CertificateRequestorError, TimeoutError):
    """A polled condition did not become true before its deadline."""


class AuthorizationError(CertificateRequestorError):
    """Validation role could not be assumed."""


class ValidationFailedError(CertificateRequestorError):
    """ACM moved the certificate to a terminal status other than ISSUED."""


class DnsChangeError(CertificateRequestorError):
    """Route 53 record change did not propagate."""


class UnsupportedIntentError(CertificateRequestorError):
    """CloudFormation request type is not Create, Update or Delete."""
