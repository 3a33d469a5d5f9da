"""Read-only sources for credentials, region and bucket.

Nothing here is cached or global: each loader returns a fresh
:class:`StorageSettings` that the caller passes on explicitly.
"""

import base64
import binascii
import configparser
import dataclasses
import json
import logging
import os
import pathlib
from typing import Any, Self

from .credentials import Credentials

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


@dataclasses.dataclass(frozen=True)
class StorageSettings:
    credentials: Credentials
    bucket: str
    endpoint_url: str | None = None

    @classmethod
    def from_env(cls, bucket: str | None = None) -> Self:
        region = (
            os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or DEFAULT_REGION
        )
        credentials = Credentials(
            access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", ""),
            secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", ""),
            region=region,
        )
        return cls(
            credentials=credentials,
            bucket=bucket or os.environ.get("AWS_BUCKET_NAME", ""),
            endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
        )

    @classmethod
    def from_aws_config(
        cls,
        bucket: str,
        profile_name: str = "default",
        config_path: str | pathlib.Path | None = None,
        credentials_path: str | pathlib.Path | None = None,
    ) -> Self:
        aws_dir = pathlib.Path.home() / ".aws"
        config_path = pathlib.Path(config_path or aws_dir / "config")
        credentials_path = pathlib.Path(credentials_path or aws_dir / "credentials")

        # AWS config uses "profile <name>" sections except for default
        config_section = (
            profile_name if profile_name == "default" else f"profile {profile_name}"
        )
        config_data = _read_section(config_path, config_section)
        credentials_data = _read_section(credentials_path, profile_name)

        def lookup(name: str) -> str | None:
            # credentials file takes precedence over config
            return credentials_data.get(name) or config_data.get(name)

        access_key = lookup("aws_access_key_id")
        secret_key = lookup("aws_secret_access_key")
        if not access_key or not secret_key:
            raise ValueError(
                f"aws_access_key_id and aws_secret_access_key are required for "
                f"profile '{profile_name}' in config or credentials files"
            )

        region = (
            lookup("region") or os.environ.get("AWS_DEFAULT_REGION") or DEFAULT_REGION
        )
        credentials = Credentials(access_key, secret_key, region)
        return cls(credentials, bucket, lookup("endpoint_url"))

    @classmethod
    def from_json_file(cls, path: str | pathlib.Path) -> Self:
        """Loads a settings file shaped like ``{"aws": {"accessKeyId": ...}}``.

        Recognized keys: accessKeyId, secretAccessKey, region, bucketName and
        endpointUrl.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Self:
        aws = data.get("aws") or {}
        credentials = Credentials(
            access_key_id=decode_setting(aws.get("accessKeyId", "")),
            secret_access_key=decode_setting(aws.get("secretAccessKey", "")),
            region=aws.get("region") or DEFAULT_REGION,
        )
        return cls(
            credentials=credentials,
            bucket=aws.get("bucketName", ""),
            endpoint_url=aws.get("endpointUrl") or None,
        )


def _read_section(path: pathlib.Path, section: str) -> dict[str, str]:
    if not path.exists():
        return {}
    parser = configparser.ConfigParser()
    parser.read(path)
    if section not in parser:
        return {}
    return dict(parser[section])


def decode_setting(value: str) -> str:
    """Undoes the light obfuscation used for stored keys.

    ``ENC_<base64>`` holds the value base64-encoded, ``REV_ENC_<base64>`` holds
    it reversed and then base64-encoded. Anything else is returned as is, and so
    is a value whose payload does not decode.
    """
    if value.startswith("REV_ENC_"):
        decoded = _b64decode(value[len("REV_ENC_") :])
        return decoded[::-1].strip() if decoded is not None else value
    if value.startswith("ENC_"):
        decoded = _b64decode(value[len("ENC_") :])
        return decoded.strip() if decoded is not None else value
    return value


def _b64decode(payload: str) -> str | None:
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("Failed to decode setting, using it verbatim")
        return None
