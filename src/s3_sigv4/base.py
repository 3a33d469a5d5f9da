import logging
import xml.etree.ElementTree as ET
from typing import Self

import aiohttp
from yarl import URL

from .auth import SignableRequest, sign_for_header
from .canonical import (
    PayloadMode,
    canonicalize_path,
    canonicalize_query_params,
    decoded_path,
)
from .credentials import Credentials
from .exceptions import (
    S3AccessDeniedError,
    S3ClientError,
    S3ClockSkewError,
    S3ExpiredError,
    S3NotFoundError,
    S3ServerError,
    S3SignatureMismatchError,
)
from .settings import StorageSettings
from .urlparsing import AddressStyle, default_endpoint, get_bucket_url, object_url

logger = logging.getLogger(__name__)


class _S3ClientBase:
    def __init__(
        self,
        credentials: Credentials,
        bucket: str,
        endpoint_url: URL | str | None = None,
        address_style: AddressStyle = AddressStyle.AUTO,
    ):
        credentials.validate()
        self.credentials = credentials
        self.endpoint_url = (
            URL(endpoint_url) if endpoint_url else default_endpoint(credentials.region)
        )
        self.bucket_url = get_bucket_url(self.endpoint_url, bucket, address_style)
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_settings(
        cls,
        settings: StorageSettings,
        address_style: AddressStyle = AddressStyle.AUTO,
    ) -> Self:
        return cls(
            settings.credentials,
            settings.bucket,
            settings.endpoint_url,
            address_style,
        )

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    def _object_url(self, key: str | None) -> URL:
        return object_url(self.bucket_url, key) if key else self.bucket_url

    def _parse_error_response(self, status: int, response_text: str) -> Exception:
        try:
            root = ET.fromstring(response_text)
            error_code = root.find("Code")
            message = root.find("Message")

            error_code_text = error_code.text if error_code is not None else "Unknown"
            message_text = message.text if message is not None else "Unknown error"

        except ET.ParseError:
            error_code_text = "Unknown"
            message_text = response_text or "Unknown error"

        error_code_text = error_code_text or "Unknown"
        message_text = message_text or "Unknown error"

        if status == 404 or error_code_text in ["NoSuchKey", "NoSuchBucket"]:
            return S3NotFoundError(message_text)
        elif error_code_text == "SignatureDoesNotMatch":
            return S3SignatureMismatchError(message_text)
        elif error_code_text == "RequestTimeTooSkewed":
            return S3ClockSkewError(message_text)
        elif error_code_text == "ExpiredToken" or (
            error_code_text == "AccessDenied" and "expired" in message_text.lower()
        ):
            return S3ExpiredError(message_text)
        elif status == 403 or error_code_text == "AccessDenied":
            return S3AccessDeniedError(message_text, error_code_text)
        elif 400 <= status < 500:
            return S3ClientError(message_text, status, error_code_text)
        else:
            return S3ServerError(message_text, status, error_code_text)

    async def _make_request(
        self,
        method: str,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        data: bytes | None = None,
        payload_mode: PayloadMode = PayloadMode.HASHED,
    ) -> aiohttp.ClientResponse:
        await self._ensure_session()

        # Sent exactly as canonicalized: yarl leaves sub-delims such as "(" raw
        # in paths and would encode spaces in the query as "+".
        url = self._object_url(key)
        raw_url = f"{url.origin()}{canonicalize_path(decoded_path(url))}"
        if params:
            raw_url += "?" + canonicalize_query_params(params.items())
        url = URL(raw_url, encoded=True)

        # Signed here, once per dispatch, so a retried request always gets a
        # fresh X-Amz-Date.
        signed = sign_for_header(
            SignableRequest(method, url, headers or {}, data),
            self.credentials,
            payload_mode=payload_mode,
        )
        logger.debug("%s %s", signed.method, url)

        response = await self._session.request(
            method=signed.method,
            url=url,
            headers=signed.headers,
            data=data,
        )

        if response.status >= 400:
            error_text = await response.text()
            response.close()
            logger.warning(
                "%s %s failed with HTTP %s", signed.method, url, response.status
            )
            raise self._parse_error_response(response.status, error_text)

        return response
