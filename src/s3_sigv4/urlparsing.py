import enum
import re

from yarl import URL

_BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_IP_ADDRESS_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


class AddressStyle(enum.Enum):
    AUTO = "auto"
    VIRTUAL_HOSTED = "virtual-hosted"
    PATH_STYLE = "path-style"


def default_endpoint(region: str) -> URL:
    return URL(f"https://s3.{region}.amazonaws.com")


def get_bucket_url(
    endpoint: URL | str,
    bucket: str,
    address_style: AddressStyle = AddressStyle.AUTO,
) -> URL:
    """Where requests for ``bucket`` are sent.

    AUTO puts the bucket in the host when the name is DNS-safe (AWS, most
    hosted stores) and in the path otherwise, or when the endpoint is an IP
    address (MinIO-style local endpoints accept both). An endpoint that
    already starts with the bucket name is used as is.
    """
    endpoint = URL(endpoint)
    bucket = bucket.strip("/")

    if endpoint.scheme not in ("http", "https") or not endpoint.host:
        raise ValueError(f"Invalid endpoint URL '{endpoint}'")
    if not bucket:
        raise ValueError("Bucket name is required")

    if endpoint.host.startswith(bucket + "."):
        return endpoint.with_path("/")

    # an IP literal cannot take a bucket subdomain
    hostable = is_valid_s3_bucket_subdomain(bucket) and not _is_ip_host(endpoint)

    match address_style:
        case AddressStyle.AUTO | AddressStyle.VIRTUAL_HOSTED if hostable:
            return endpoint.with_host(f"{bucket}.{endpoint.host}").with_path("/")
        case AddressStyle.AUTO | AddressStyle.PATH_STYLE:
            return endpoint.with_path(f"/{bucket}")

    raise ValueError(f"Bucket '{bucket}' cannot be used as a host name")


def object_url(bucket_url: URL, key: str) -> URL:
    return bucket_url / key.lstrip("/")


def _is_ip_host(endpoint: URL) -> bool:
    host = endpoint.raw_host or ""
    return ":" in host or bool(_IP_ADDRESS_RE.match(host))


def is_valid_s3_bucket_subdomain(bucket: str) -> bool:
    if not _BUCKET_NAME_RE.match(bucket):
        return False
    if ".." in bucket or ".-" in bucket or "-." in bucket:
        return False
    return not _IP_ADDRESS_RE.match(bucket)
