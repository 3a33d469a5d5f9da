"""Canonical request construction and the SigV4 key derivation chain.

Everything here is a pure function of its arguments. The object store
recomputes the same strings from the request it receives, so any difference in
encoding or ordering turns into a ``SignatureDoesNotMatch`` 403.

https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
"""

import dataclasses
import datetime as dt
import enum
import urllib.parse
from collections.abc import Iterable, Mapping

from yarl import URL

from .exceptions import InvalidRequestError
from .hashing import HashBackend, hmac_sha256, sha256_hex

ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"

# Present in every header-signed request.
ALWAYS_SIGNED_HEADERS = frozenset({"host", "x-amz-date", "x-amz-content-sha256"})


class PayloadMode(enum.Enum):
    HASHED = "hashed"
    UNSIGNED = "unsigned"


@dataclasses.dataclass(frozen=True)
class SigningScope:
    date_stamp: str
    region: str
    service: str

    @classmethod
    def for_date(cls, now: dt.datetime, region: str, service: str) -> "SigningScope":
        return cls(format_date_stamp(now), region, service)

    def __str__(self) -> str:
        return f"{self.date_stamp}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"


def to_utc(now: dt.datetime) -> dt.datetime:
    """Naive datetimes are taken to already be UTC."""
    if now.tzinfo is None:
        return now.replace(tzinfo=dt.UTC)
    return now.astimezone(dt.UTC)


def format_amz_date(now: dt.datetime) -> str:
    return to_utc(now).strftime(AMZ_DATE_FORMAT)


def format_date_stamp(now: dt.datetime) -> str:
    return to_utc(now).strftime(DATE_STAMP_FORMAT)


def compute_payload_hash(
    body: bytes | None,
    mode: PayloadMode = PayloadMode.HASHED,
    backend: HashBackend | None = None,
) -> str:
    if mode is PayloadMode.UNSIGNED:
        return UNSIGNED_PAYLOAD
    if not body:
        return EMPTY_SHA256
    return sha256_hex(body, backend)


def uri_encode(value: str, encode_slash: bool = True) -> str:
    # quote() always leaves A-Z a-z 0-9 - _ . ~ alone and never emits "+"
    return urllib.parse.quote(value, safe="" if encode_slash else "/")


def parse_url(url: str | URL) -> URL:
    try:
        parsed = url if isinstance(url, URL) else URL(url)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Cannot parse URL {url!r}: {e}") from e

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidRequestError(f"Not an absolute http(s) URL: {url!r}")
    return parsed


def host_header(url: URL) -> str:
    """Value of the Host header: the port is kept only when it is not the default."""
    assert url.host is not None
    host = url.raw_host or url.host
    if ":" in host:
        # yarl strips the brackets around IPv6 literals
        host = f"[{host}]"
    if url.explicit_port is not None and not url.is_default_port():
        return f"{host}:{url.explicit_port}"
    return host


def canonicalize_path(path: str) -> str:
    return uri_encode(path or "/", encode_slash=False)


def decoded_path(url: URL) -> str:
    # URL.path keeps "%2B" escaped, S3 signs the fully decoded key
    return urllib.parse.unquote(url.raw_path)


def canonicalize_query_params(params: Iterable[tuple[str, str]]) -> str:
    encoded = sorted((uri_encode(k), uri_encode(str(v))) for k, v in params)
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonicalize_query(url: str | URL) -> str:
    return canonicalize_query_params(parse_url(url).query.items())


def _trim(value: str) -> str:
    return " ".join(str(value).split())


def canonicalize_headers(
    headers: Mapping[str, str],
    signed_set: Iterable[str] | None = None,
) -> tuple[str, str]:
    """Returns the canonical header block and the signed header list.

    Without ``signed_set`` every header is signed. Names differing only in
    case are merged into one comma-joined value.
    """
    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        merged.setdefault(name.strip().lower(), []).append(_trim(value))

    if signed_set is not None:
        wanted = {name.lower() for name in signed_set} | ALWAYS_SIGNED_HEADERS
        merged = {name: values for name, values in merged.items() if name in wanted}

    names = sorted(merged)
    canonical_headers = "".join(
        f"{name}:{','.join(merged[name])}\n" for name in names
    )
    return canonical_headers, ";".join(names)


def build_canonical_request(
    method: str,
    path: str,
    query: str,
    canonical_headers: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    return "\n".join(
        [
            method,
            canonicalize_path(path),
            query,
            canonical_headers,
            signed_headers,
            payload_hash,
        ]
    )


def build_string_to_sign(
    scope: SigningScope,
    canonical_request: str,
    amz_date: str,
    backend: HashBackend | None = None,
) -> str:
    return "\n".join(
        [
            ALGORITHM,
            amz_date,
            str(scope),
            sha256_hex(canonical_request.encode("utf-8"), backend),
        ]
    )


def derive_signing_key(
    secret_key: str,
    scope: SigningScope,
    backend: HashBackend | None = None,
) -> bytes:
    k_date = hmac_sha256(f"AWS4{secret_key}".encode(), scope.date_stamp, backend)
    k_region = hmac_sha256(k_date, scope.region, backend)
    k_service = hmac_sha256(k_region, scope.service, backend)
    return hmac_sha256(k_service, SCOPE_TERMINATOR, backend)


def sign(
    signing_key: bytes,
    string_to_sign: str,
    backend: HashBackend | None = None,
) -> str:
    return hmac_sha256(signing_key, string_to_sign, backend).hex()
