"""AWS Signature Version 4 authentication for S3.

Two entry points sit on top of :mod:`s3_sigv4.canonical`:

``sign_for_header``
    returns a copy of the request carrying ``Host``, ``X-Amz-Date``,
    ``x-amz-content-sha256`` and ``Authorization`` headers.

``presign``
    returns a URL whose query string carries the signature, valid for
    ``expires_in`` seconds from its ``X-Amz-Date``.

Neither performs I/O or keeps state between calls. Credentials are passed in
explicitly, and a new timestamp means a new, independently valid signature.
"""

import dataclasses
import datetime as dt
import logging
from collections.abc import Mapping

from yarl import URL

from . import canonical
from .canonical import PayloadMode
from .credentials import Credentials
from .exceptions import InvalidRequestError
from .hashing import HashBackend

logger = logging.getLogger(__name__)

# S3 refuses presigned URLs valid for longer than seven days.
MAX_PRESIGN_EXPIRES = 7 * 24 * 60 * 60

_REPLACED_HEADERS = frozenset(
    {"authorization", "host", "x-amz-date", "x-amz-content-sha256"}
)
_PRESIGN_PARAMS = frozenset(
    {
        "x-amz-algorithm",
        "x-amz-credential",
        "x-amz-date",
        "x-amz-expires",
        "x-amz-signedheaders",
        "x-amz-signature",
    }
)


@dataclasses.dataclass(frozen=True)
class SignableRequest:
    method: str
    url: str | URL
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)
    body: bytes | None = None


def _now(now: dt.datetime | None) -> dt.datetime:
    return canonical.to_utc(now) if now is not None else dt.datetime.now(dt.UTC)


def _check_method(method: str) -> str:
    if not method or not method.isalpha():
        raise InvalidRequestError(f"Invalid HTTP method: {method!r}")
    return method.upper()


def _signature(
    credentials: Credentials,
    scope: canonical.SigningScope,
    canonical_request: str,
    amz_date: str,
    backend: HashBackend | None,
) -> str:
    string_to_sign = canonical.build_string_to_sign(
        scope, canonical_request, amz_date, backend
    )
    logger.debug("Canonical request:\n%s", canonical_request)
    logger.debug("String to sign:\n%s", string_to_sign)

    signing_key = canonical.derive_signing_key(
        credentials.secret_access_key, scope, backend
    )
    return canonical.sign(signing_key, string_to_sign, backend)


def sign_for_header(
    request: SignableRequest,
    credentials: Credentials,
    now: dt.datetime | None = None,
    payload_mode: PayloadMode = PayloadMode.HASHED,
    backend: HashBackend | None = None,
) -> SignableRequest:
    credentials.validate()
    method = _check_method(request.method)
    url = canonical.parse_url(request.url)

    now = _now(now)
    amz_date = canonical.format_amz_date(now)
    scope = canonical.SigningScope.for_date(
        now, credentials.region, credentials.service
    )
    payload_hash = canonical.compute_payload_hash(request.body, payload_mode, backend)

    # Values left over from an earlier signature would be stale.
    headers = {
        name: value
        for name, value in request.headers.items()
        if name.lower() not in _REPLACED_HEADERS
    }
    headers["Host"] = canonical.host_header(url)
    headers["X-Amz-Date"] = amz_date
    headers["x-amz-content-sha256"] = payload_hash

    canonical_headers, signed_headers = canonical.canonicalize_headers(headers)
    canonical_request = canonical.build_canonical_request(
        method,
        canonical.decoded_path(url),
        canonical.canonicalize_query(url),
        canonical_headers,
        signed_headers,
        payload_hash,
    )
    signature = _signature(credentials, scope, canonical_request, amz_date, backend)

    headers["Authorization"] = (
        f"{canonical.ALGORITHM} "
        f"Credential={credentials.access_key_id}/{scope}, "
        f"SignedHeaders={signed_headers}, "
        f"Signature={signature}"
    )
    return dataclasses.replace(request, method=method, headers=headers)


def presign(
    url: str | URL,
    credentials: Credentials,
    expires_in: int = 3600,
    now: dt.datetime | None = None,
    method: str = "GET",
    backend: HashBackend | None = None,
) -> str:
    credentials.validate()
    method = _check_method(method)
    parsed = canonical.parse_url(url)
    if (
        not isinstance(expires_in, int)
        or isinstance(expires_in, bool)
        or not 1 <= expires_in <= MAX_PRESIGN_EXPIRES
    ):
        raise InvalidRequestError(
            "expires_in must be a whole number of seconds between 1 and "
            f"{MAX_PRESIGN_EXPIRES}, got {expires_in!r}"
        )

    path = canonical.decoded_path(parsed)
    now = _now(now)
    amz_date = canonical.format_amz_date(now)
    scope = canonical.SigningScope.for_date(
        now, credentials.region, credentials.service
    )

    # The signing parameters are part of the canonical query string, so they
    # have to be in place before it is built.
    params = [
        (k, v) for k, v in parsed.query.items() if k.lower() not in _PRESIGN_PARAMS
    ]
    params += [
        ("X-Amz-Algorithm", canonical.ALGORITHM),
        ("X-Amz-Credential", f"{credentials.access_key_id}/{scope}"),
        ("X-Amz-Date", amz_date),
        ("X-Amz-Expires", str(expires_in)),
        ("X-Amz-SignedHeaders", "host"),
    ]
    query = canonical.canonicalize_query_params(params)

    canonical_headers, signed_headers = canonical.canonicalize_headers(
        {"host": canonical.host_header(parsed)}
    )
    canonical_request = canonical.build_canonical_request(
        method,
        path,
        query,
        canonical_headers,
        signed_headers,
        canonical.UNSIGNED_PAYLOAD,
    )
    signature = _signature(credentials, scope, canonical_request, amz_date, backend)

    # The URL carries exactly the path and query that were signed instead of
    # yarl's own encoding of them.
    base = f"{parsed.origin()}{canonical.canonicalize_path(path)}"
    return f"{base}?{query}&X-Amz-Signature={signature}"


def presigned_expiration(url: str | URL) -> dt.datetime:
    """The moment a presigned URL stops being accepted."""
    query = canonical.parse_url(url).query
    amz_date = query.get("X-Amz-Date")
    expires = query.get("X-Amz-Expires")
    if amz_date is None or expires is None:
        raise InvalidRequestError(
            "URL is not presigned: X-Amz-Date or X-Amz-Expires missing"
        )

    try:
        issued = dt.datetime.strptime(amz_date, canonical.AMZ_DATE_FORMAT)
        lifetime = dt.timedelta(seconds=int(expires))
    except ValueError as e:
        raise InvalidRequestError(f"Malformed presigned URL parameters: {e}") from e
    return issued.replace(tzinfo=dt.UTC) + lifetime
