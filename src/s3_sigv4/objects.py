import json
import uuid
import xml.etree.ElementTree as ET
from typing import Any

from .auth import presign
from .base import _S3ClientBase
from .canonical import PayloadMode
from .exceptions import S3NotFoundError

_S3_NS = "{http://s3.amazonaws.com/doc/2006-03-01/}"


def _metadata_from_headers(headers) -> dict[str, str]:
    metadata = {}
    for header_name, header_value in headers.items():
        if header_name.lower().startswith("x-amz-meta-"):
            metadata[header_name[len("x-amz-meta-") :]] = header_value
    return metadata


def _object_info(headers) -> dict[str, Any]:
    return {
        "content_type": headers.get("Content-Type"),
        "content_length": int(headers.get("Content-Length", 0)),
        "etag": headers.get("ETag", "").strip('"'),
        "last_modified": headers.get("Last-Modified"),
        "version_id": headers.get("x-amz-version-id"),
        "metadata": _metadata_from_headers(headers),
    }


def _find_text(element: ET.Element, tag: str, default: str = "") -> str:
    found = element.find(f"{_S3_NS}{tag}")
    if found is None or found.text is None:
        return default
    return found.text


class _ObjectOperations(_S3ClientBase):
    async def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        unsigned_payload: bool = False,
    ) -> dict[str, Any]:
        """Uploads ``data`` in one request.

        The body is hashed into the signature unless ``unsigned_payload`` is
        set, in which case ``UNSIGNED-PAYLOAD`` is both signed and sent.
        """
        headers = {"Content-Length": str(len(data))}
        if content_type:
            headers["Content-Type"] = content_type
        for name, value in (metadata or {}).items():
            headers[f"x-amz-meta-{name}"] = value

        payload_mode = PayloadMode.UNSIGNED if unsigned_payload else PayloadMode.HASHED
        response = await self._make_request(
            "PUT", key=key, headers=headers, data=data, payload_mode=payload_mode
        )

        result = {
            "key": key,
            "url": str(self._object_url(key)),
            "etag": response.headers.get("ETag", "").strip('"'),
            "version_id": response.headers.get("x-amz-version-id"),
        }
        response.close()
        return result

    async def get_object(self, key: str) -> dict[str, Any]:
        response = await self._make_request("GET", key=key)
        body = await response.read()
        response.close()
        return {"body": body, **_object_info(response.headers)}

    async def head_object(self, key: str) -> dict[str, Any]:
        response = await self._make_request("HEAD", key=key)
        response.close()
        return _object_info(response.headers)

    async def delete_object(self, key: str) -> dict[str, Any]:
        response = await self._make_request("DELETE", key=key)
        result = {
            "delete_marker": response.headers.get("x-amz-delete-marker") == "true",
            "version_id": response.headers.get("x-amz-version-id"),
        }
        response.close()
        return result

    async def list_objects(
        self,
        prefix: str | None = None,
        max_keys: int = 1000,
        continuation_token: str | None = None,
    ) -> dict[str, Any]:
        params = {
            "list-type": "2",  # ListObjectsV2
            "max-keys": str(max_keys),
        }
        if prefix:
            params["prefix"] = prefix
        if continuation_token:
            params["continuation-token"] = continuation_token

        response = await self._make_request("GET", params=params)
        response_text = await response.text()
        response.close()

        # some S3 services answer an empty bucket with an empty body
        if not response_text.strip():
            return {
                "objects": [],
                "is_truncated": False,
                "next_continuation_token": None,
            }

        try:
            root = ET.fromstring(response_text)
        except ET.ParseError as e:
            raise ValueError(f"Invalid XML response from S3 service: {e}") from e

        objects = [
            {
                "key": _find_text(content, "Key"),
                "last_modified": _find_text(content, "LastModified"),
                "etag": _find_text(content, "ETag").strip('"'),
                "size": int(_find_text(content, "Size", "0")),
            }
            for content in root.iter(f"{_S3_NS}Contents")
        ]
        next_token = _find_text(root, "NextContinuationToken") or None

        return {
            "objects": objects,
            "is_truncated": _find_text(root, "IsTruncated") == "true",
            "next_continuation_token": next_token,
        }

    async def get_json(self, key: str) -> Any | None:
        """Returns the decoded JSON stored at ``key``, or None when it is absent."""
        try:
            result = await self.get_object(key)
        except S3NotFoundError:
            return None
        return json.loads(result["body"])

    async def put_json(self, key: str, value: Any) -> dict[str, Any]:
        data = json.dumps(value, indent=2).encode("utf-8")
        return await self.put_object(key, data, content_type="application/json")

    def generate_presigned_url(
        self,
        method: str,
        key: str,
        expires_in: int = 3600,
    ) -> str:
        return presign(
            self._object_url(key), self.credentials, expires_in, method=method
        )

    def generate_presigned_upload_url(
        self,
        filename: str,
        expires_in: int = 3600,
        prefix: str = "videos/",
    ) -> dict[str, str]:
        """Presigned PUT for a new random key that keeps the file's extension.

        ``access_url`` is the object's plain URL once the upload has finished.
        """
        _, dot, extension = filename.rpartition(".")
        key = f"{prefix}{uuid.uuid4()}"
        if dot and extension:
            key = f"{key}.{extension}"

        url = self.generate_presigned_url("PUT", key, expires_in)
        return {"url": url, "key": key, "access_url": url.split("?", 1)[0]}
