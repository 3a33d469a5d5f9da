import base64
import hashlib
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from typing import Any

from .base import _S3ClientBase
from .canonical import PayloadMode

_CORS_METHODS = frozenset({"GET", "PUT", "POST", "DELETE", "HEAD"})


def _content_md5(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def _build_cors_xml(
    allowed_origins: Iterable[str],
    allowed_methods: Iterable[str],
    allowed_headers: Iterable[str] = (),
    expose_headers: Iterable[str] = (),
    max_age_seconds: int | None = None,
) -> bytes:
    origins = list(allowed_origins)
    methods = [method.upper() for method in allowed_methods]
    if not origins:
        raise ValueError("At least one allowed origin is required")
    if not methods:
        raise ValueError("At least one allowed method is required")
    invalid = sorted(set(methods) - _CORS_METHODS)
    if invalid:
        raise ValueError(f"Unsupported CORS methods: {', '.join(invalid)}")

    root = ET.Element("CORSConfiguration")
    root.set("xmlns", "http://s3.amazonaws.com/doc/2006-03-01/")
    rule = ET.SubElement(root, "CORSRule")

    for tag, values in (
        ("AllowedOrigin", origins),
        ("AllowedMethod", methods),
        ("AllowedHeader", allowed_headers),
        ("ExposeHeader", expose_headers),
    ):
        for value in values:
            ET.SubElement(rule, tag).text = value

    if max_age_seconds is not None:
        ET.SubElement(rule, "MaxAgeSeconds").text = str(max_age_seconds)

    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_cors_xml(text: str) -> list[dict[str, Any]]:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ValueError(f"Invalid XML response from S3 service: {e}") from e

    rules = []
    for element in root:
        if _local_name(element.tag) != "CORSRule":
            continue
        rule: dict[str, Any] = {
            "allowed_origins": [],
            "allowed_methods": [],
            "allowed_headers": [],
            "expose_headers": [],
            "max_age_seconds": None,
        }
        for child in element:
            name = _local_name(child.tag)
            value = (child.text or "").strip()
            if name == "AllowedOrigin":
                rule["allowed_origins"].append(value)
            elif name == "AllowedMethod":
                rule["allowed_methods"].append(value)
            elif name == "AllowedHeader":
                rule["allowed_headers"].append(value)
            elif name == "ExposeHeader":
                rule["expose_headers"].append(value)
            elif name == "MaxAgeSeconds":
                rule["max_age_seconds"] = int(value)
        rules.append(rule)
    return rules


class _BucketOperations(_S3ClientBase):
    # https://docs.aws.amazon.com/AmazonS3/latest/API/API_PutBucketCors.html
    async def put_bucket_cors(
        self,
        allowed_origins: Iterable[str] = ("*",),
        allowed_methods: Iterable[str] = ("GET", "PUT", "HEAD"),
        allowed_headers: Iterable[str] = ("*",),
        expose_headers: Iterable[str] = (),
        max_age_seconds: int | None = None,
    ) -> dict[str, Any]:
        """Replaces the bucket's CORS configuration with a single rule.

        The defaults let browsers PUT to presigned upload URLs and read the
        objects back from any origin.
        """
        data = _build_cors_xml(
            allowed_origins,
            allowed_methods,
            allowed_headers,
            expose_headers,
            max_age_seconds,
        )
        # S3 requires Content-MD5 on PutBucketCors
        headers = {
            "Content-Type": "application/xml",
            "Content-MD5": _content_md5(data),
        }
        response = await self._make_request(
            "PUT",
            headers=headers,
            params={"cors": ""},
            data=data,
            payload_mode=PayloadMode.HASHED,
        )
        response.close()
        return {}

    async def get_bucket_cors(self) -> list[dict[str, Any]]:
        response = await self._make_request("GET", params={"cors": ""})
        response_text = await response.text()
        response.close()
        return _parse_cors_xml(response_text)

    async def delete_bucket_cors(self) -> dict[str, Any]:
        response = await self._make_request("DELETE", params={"cors": ""})
        response.close()
        return {}
