"""AWS Signature Version 4 signing for S3-compatible object storage."""

__version__ = "0.1.0"

from .auth import SignableRequest, presign, presigned_expiration, sign_for_header
from .canonical import PayloadMode, SigningScope
from .client import S3Client
from .credentials import Credentials
from .exceptions import (
    InvalidRequestError,
    MissingCredentialsError,
    S3AccessDeniedError,
    S3ClientError,
    S3ClockSkewError,
    S3Error,
    S3ExpiredError,
    S3NotFoundError,
    S3ServerError,
    S3SignatureMismatchError,
    SigningError,
)
from .settings import StorageSettings

__all__ = [
    "Credentials",
    "SignableRequest",
    "PayloadMode",
    "SigningScope",
    "sign_for_header",
    "presign",
    "presigned_expiration",
    "S3Client",
    "StorageSettings",
    "SigningError",
    "InvalidRequestError",
    "MissingCredentialsError",
    "S3Error",
    "S3ClientError",
    "S3ServerError",
    "S3NotFoundError",
    "S3AccessDeniedError",
    "S3SignatureMismatchError",
    "S3ClockSkewError",
    "S3ExpiredError",
]
