"""End-to-end tests against an in-process S3 stand-in.

The stand-in is a small aiohttp application that stores objects in memory and
verifies every request's SigV4 signature from what actually arrived on the
wire, the way an S3-compatible server does: header-signed requests through the
Authorization header, presigned URLs through their query string.
"""

import base64
import contextlib
import datetime as dt
import hashlib
import hmac
import re
import urllib.parse
import xml.etree.ElementTree as ET

import aiohttp
import pytest
from aiohttp import test_utils, web

from s3_sigv4.auth import presign
from s3_sigv4.client import S3Client
from s3_sigv4.credentials import Credentials
from s3_sigv4.exceptions import (
    S3ExpiredError,
    S3NotFoundError,
    S3SignatureMismatchError,
)
from s3_sigv4.urlparsing import AddressStyle

ACCESS_KEY = "LOCALACCESSKEY"
SECRET_KEY = "local/secret+key"
BUCKET = "test-bucket"
MAX_SKEW = dt.timedelta(minutes=15)

_AUTH_RE = re.compile(
    r"AWS4-HMAC-SHA256 Credential=(?P<key>[^/]+)/(?P<scope>[^,]+), "
    r"SignedHeaders=(?P<signed>[^,]+), Signature=(?P<signature>[0-9a-f]{64})"
)


def _error(status: int, code: str, message: str) -> web.Response:
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Error><Code>{code}</Code><Message>{message}</Message></Error>"
    )
    return web.Response(status=status, text=body, content_type="application/xml")


def _uri_encode(value: str, safe: str = "") -> str:
    # RFC 3986 unreserved characters stay literal, everything else is %XX
    return "".join(
        ch
        if ch.isascii() and (ch.isalnum() or ch in "-_.~" + safe)
        else "".join(f"%{b:02X}" for b in ch.encode("utf-8"))
        for ch in value
    )


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _request_path(request: web.Request) -> str:
    return urllib.parse.unquote(request.rel_url.raw_path)


def _expected_signature(
    method, path, query_pairs, headers_block, signed, payload_hash, amz_date, scope
):
    # Recomputed from the AWS documentation with hashlib/hmac only, so the
    # client's canonicalization is checked against an independent one.
    query = "&".join(
        f"{k}={v}"
        for k, v in sorted((_uri_encode(k), _uri_encode(v)) for k, v in query_pairs)
    )
    canonical_request = "\n".join(
        [
            method,
            _uri_encode(path, safe="/"),
            query,
            headers_block,
            signed,
            payload_hash,
        ]
    )
    string_to_sign = "\n".join(
        [
            "AWS4-HMAC-SHA256",
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )
    date_stamp, region, service, terminator = scope.split("/")
    key = _hmac(f"AWS4{SECRET_KEY}".encode(), date_stamp)
    for part in (region, service, terminator):
        key = _hmac(key, part)
    return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def _parse_amz_date(value: str) -> dt.datetime:
    return dt.datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=dt.UTC)


def _verify_header_signature(request: web.Request, body: bytes):
    match = _AUTH_RE.fullmatch(request.headers.get("Authorization", ""))
    if match is None or match["key"] != ACCESS_KEY:
        return _error(403, "AccessDenied", "Access Denied")

    amz_date = request.headers["X-Amz-Date"]
    if abs(dt.datetime.now(dt.UTC) - _parse_amz_date(amz_date)) > MAX_SKEW:
        return _error(403, "RequestTimeTooSkewed", "Request time too skewed")

    payload_hash = request.headers["x-amz-content-sha256"]
    if (
        payload_hash != "UNSIGNED-PAYLOAD"
        and payload_hash != hashlib.sha256(body).hexdigest()
    ):
        return _error(400, "XAmzContentSHA256Mismatch", "Payload hash mismatch")

    signed = match["signed"]
    headers_block = "".join(
        f"{name}:{' '.join(request.headers[name].split())}\n"
        for name in signed.split(";")
    )
    query = list(request.query.items())
    expected = _expected_signature(
        request.method,
        _request_path(request),
        query,
        headers_block,
        signed,
        payload_hash,
        amz_date,
        match["scope"],
    )
    if expected != match["signature"]:
        return _error(403, "SignatureDoesNotMatch", "Signature does not match")
    return None


def _verify_presigned(request: web.Request):
    query = request.query
    issued = _parse_amz_date(query["X-Amz-Date"])
    if dt.datetime.now(dt.UTC) > issued + dt.timedelta(
        seconds=int(query["X-Amz-Expires"])
    ):
        return _error(403, "AccessDenied", "Request has expired")

    params = [(k, v) for k, v in query.items() if k != "X-Amz-Signature"]
    expected = _expected_signature(
        request.method,
        _request_path(request),
        params,
        f"host:{request.headers['Host']}\n",
        query["X-Amz-SignedHeaders"],
        "UNSIGNED-PAYLOAD",
        query["X-Amz-Date"],
        query["X-Amz-Credential"].split("/", 1)[1],
    )
    if expected != query["X-Amz-Signature"]:
        return _error(403, "SignatureDoesNotMatch", "Signature does not match")
    return None


def _list_response(objects: dict[str, tuple[bytes, str]], prefix: str) -> str:
    ns = "http://s3.amazonaws.com/doc/2006-03-01/"
    root = ET.Element("ListBucketResult", xmlns=ns)
    ET.SubElement(root, "IsTruncated").text = "false"
    for key in sorted(objects):
        if not key.startswith(prefix):
            continue
        contents = ET.SubElement(root, "Contents")
        ET.SubElement(contents, "Key").text = key
        ET.SubElement(contents, "LastModified").text = "2024-01-01T00:00:00.000Z"
        ET.SubElement(contents, "Size").text = str(len(objects[key][0]))
    return ET.tostring(root, encoding="unicode")


def _cors_handler(
    request: web.Request, body: bytes, cors: dict[str, bytes]
) -> web.Response:
    if request.method == "PUT":
        digest = base64.b64encode(hashlib.md5(body).digest()).decode()
        if request.headers.get("Content-MD5") != digest:
            return _error(400, "InvalidDigest", "Content-MD5 does not match")
        cors["config"] = body
        return web.Response()
    if request.method == "DELETE":
        cors.pop("config", None)
        return web.Response(status=204)
    if "config" not in cors:
        return _error(
            404, "NoSuchCORSConfiguration", "The CORS configuration does not exist"
        )
    return web.Response(body=cors["config"], content_type="application/xml")


def make_app() -> web.Application:
    objects: dict[str, tuple[bytes, str]] = {}
    cors: dict[str, bytes] = {}

    async def handler(request: web.Request) -> web.StreamResponse:
        body = await request.read()
        if "X-Amz-Signature" in request.query:
            failure = _verify_presigned(request)
        else:
            failure = _verify_header_signature(request, body)
        if failure is not None:
            return failure

        path = _request_path(request)
        bucket, _, key = path.lstrip("/").partition("/")
        if bucket != BUCKET:
            return _error(404, "NoSuchBucket", "The specified bucket does not exist")

        if not key and "cors" in request.query:
            return _cors_handler(request, body, cors)

        if not key and request.method == "GET":
            return web.Response(
                text=_list_response(objects, request.query.get("prefix", "")),
                content_type="application/xml",
            )
        if request.method == "PUT":
            content_type = request.headers.get("Content-Type", "binary/octet-stream")
            objects[key] = (body, content_type)
            etag = hashlib.md5(body).hexdigest()
            return web.Response(headers={"ETag": f'"{etag}"'})
        if key not in objects:
            return _error(404, "NoSuchKey", "The specified key does not exist.")
        if request.method == "DELETE":
            del objects[key]
            return web.Response(status=204)

        data, content_type = objects[key]
        return web.Response(body=data, content_type=content_type)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handler)
    return app


@contextlib.asynccontextmanager
async def local_store(secret_key: str = SECRET_KEY):
    async with test_utils.TestServer(make_app()) as server:
        client = S3Client(
            Credentials(ACCESS_KEY, secret_key, "us-east-1"),
            BUCKET,
            str(server.make_url("")),
            AddressStyle.PATH_STYLE,
        )
        async with client:
            yield client


@pytest.mark.asyncio
async def test_put_get_delete_roundtrip():
    async with local_store() as client:
        await client.put_object("videos/intro.mp4", b"\x00\x01video", "video/mp4")

        result = await client.get_object("videos/intro.mp4")
        assert result["body"] == b"\x00\x01video"
        assert result["content_type"] == "video/mp4"

        head = await client.head_object("videos/intro.mp4")
        assert head["content_type"] == "video/mp4"

        await client.delete_object("videos/intro.mp4")
        with pytest.raises(S3NotFoundError):
            await client.get_object("videos/intro.mp4")


@pytest.mark.asyncio
async def test_unsigned_payload_upload():
    async with local_store() as client:
        await client.put_object("videos/big.mp4", b"x" * 4096, unsigned_payload=True)
        result = await client.get_object("videos/big.mp4")
        assert len(result["body"]) == 4096


@pytest.mark.asyncio
async def test_keys_needing_encoding():
    key = "thumbnails/my clip (1) é+$.jpg"
    async with local_store() as client:
        await client.put_object(key, b"jpeg", "image/jpeg")
        result = await client.get_object(key)
        assert result["body"] == b"jpeg"


@pytest.mark.asyncio
async def test_list_objects_with_prefix():
    async with local_store() as client:
        await client.put_object("videos/a.mp4", b"a")
        await client.put_object("videos/b.mp4", b"bb")
        await client.put_object("data/videos.json", b"[]")

        result = await client.list_objects(prefix="videos/")

        assert [obj["key"] for obj in result["objects"]] == [
            "videos/a.mp4",
            "videos/b.mp4",
        ]


@pytest.mark.asyncio
async def test_json_blobs():
    async with local_store() as client:
        assert await client.get_json("data/videos.json") is None

        await client.put_json("data/videos.json", [{"id": "1"}])

        assert await client.get_json("data/videos.json") == [{"id": "1"}]


@pytest.mark.asyncio
async def test_wrong_secret_is_rejected():
    async with local_store(secret_key="not-the-secret") as client:
        with pytest.raises(S3SignatureMismatchError):
            await client.put_object("videos/a.mp4", b"a")


@pytest.mark.asyncio
async def test_presigned_upload_and_download():
    async with local_store() as client:
        upload = client.generate_presigned_upload_url("clip.mp4")

        async with aiohttp.ClientSession() as session:
            async with session.put(upload["url"], data=b"uploaded") as response:
                assert response.status == 200

            download_url = client.generate_presigned_url("GET", upload["key"])
            async with session.get(download_url) as response:
                assert response.status == 200
                assert await response.read() == b"uploaded"


@pytest.mark.asyncio
async def test_presigned_url_is_method_bound():
    async with local_store() as client:
        await client.put_object("videos/a.mp4", b"a")
        get_url = client.generate_presigned_url("GET", "videos/a.mp4")

        async with aiohttp.ClientSession() as session:
            async with session.delete(get_url) as response:
                assert response.status == 403


@pytest.mark.asyncio
async def test_expired_presigned_url():
    async with local_store() as client:
        await client.put_object("videos/a.mp4", b"a")
        issued = dt.datetime.now(dt.UTC) - dt.timedelta(hours=2)
        url = presign(
            client._object_url("videos/a.mp4"),
            client.credentials,
            expires_in=3600,
            now=issued,
        )

        async with aiohttp.ClientSession() as session:
            async with session.get(url) as response:
                assert response.status == 403
                error = client._parse_error_response(
                    response.status, await response.text()
                )
        assert isinstance(error, S3ExpiredError)


@pytest.mark.asyncio
async def test_bucket_cors_roundtrip():
    async with local_store() as client:
        with pytest.raises(S3NotFoundError):
            await client.get_bucket_cors()

        await client.put_bucket_cors(
            allowed_origins=["https://videos.example.com"], max_age_seconds=3000
        )

        assert await client.get_bucket_cors() == [
            {
                "allowed_origins": ["https://videos.example.com"],
                "allowed_methods": ["GET", "PUT", "HEAD"],
                "allowed_headers": ["*"],
                "expose_headers": [],
                "max_age_seconds": 3000,
            }
        ]

        await client.delete_bucket_cors()
        with pytest.raises(S3NotFoundError):
            await client.get_bucket_cors()
