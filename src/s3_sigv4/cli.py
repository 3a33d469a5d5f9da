#!/usr/bin/env python3
"""Command line interface for signing and basic object operations."""

import asyncio
import dataclasses
import json
import logging
import sys

import click

from .auth import SignableRequest, presigned_expiration, sign_for_header
from .canonical import PayloadMode
from .client import S3Client
from .exceptions import S3Error, SigningError
from .settings import StorageSettings


def _load_settings(
    settings_file, config_file, credentials_file, profile
) -> StorageSettings:
    if settings_file:
        return StorageSettings.from_json_file(settings_file)
    if config_file or credentials_file or profile:
        return StorageSettings.from_aws_config(
            bucket="",
            profile_name=profile or "default",
            config_path=config_file,
            credentials_path=credentials_file,
        )
    return StorageSettings.from_env()


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _get_client(ctx) -> S3Client:
    settings = ctx.obj["settings"]
    if not settings.bucket:
        _fail("no bucket configured, use --bucket or AWS_BUCKET_NAME")
    try:
        return S3Client.from_settings(settings)
    except (SigningError, ValueError) as e:
        _fail(str(e))


def _run(coro):
    try:
        return asyncio.run(coro)
    except S3Error as e:
        _fail(str(e))


@click.group()
@click.option("--settings-file", type=click.Path(exists=True), help="JSON settings")
@click.option("--config-file", type=click.Path(), help="Path to AWS config file")
@click.option("--credentials-file", type=click.Path(), help="AWS credentials file")
@click.option("--profile", help="AWS profile name")
@click.option("--bucket", help="Bucket name, overrides the configured one")
@click.option("--endpoint-url", help="S3-compatible endpoint URL")
@click.option("-v", "--verbose", is_flag=True, help="Log canonical requests")
@click.pass_context
def cli(
    ctx,
    settings_file,
    config_file,
    credentials_file,
    profile,
    bucket,
    endpoint_url,
    verbose,
):
    """S3 SigV4 signer - sign requests and presign URLs without an SDK."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)

    try:
        settings = _load_settings(settings_file, config_file, credentials_file, profile)
    except (OSError, ValueError) as e:
        _fail(f"cannot load settings: {e}")

    overrides = {}
    if bucket:
        overrides["bucket"] = bucket
    if endpoint_url:
        overrides["endpoint_url"] = endpoint_url
    ctx.obj["settings"] = dataclasses.replace(settings, **overrides)


@cli.command()
@click.argument("key")
@click.option("--method", default="GET", help="HTTP method the URL is valid for")
@click.option("--expires-in", default=3600, help="URL expiration time in seconds")
@click.pass_context
def presign(ctx, key, method, expires_in):
    """Print a presigned URL for KEY."""
    client = _get_client(ctx)
    try:
        url = client.generate_presigned_url(method.upper(), key, expires_in)
    except SigningError as e:
        _fail(str(e))

    click.echo(url)
    click.echo(f"Expires: {presigned_expiration(url).isoformat()}", err=True)


@cli.command()
@click.argument("method")
@click.argument("url")
@click.option("-H", "--header", "headers", multiple=True, help="'Name: value'")
@click.option("--data-file", type=click.Path(exists=True), help="Request body")
@click.option("--unsigned-payload", is_flag=True, help="Sign UNSIGNED-PAYLOAD")
@click.pass_context
def sign(ctx, method, url, headers, data_file, unsigned_payload):
    """Print the headers that authenticate METHOD URL."""
    header_map = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep:
            _fail(f"invalid header {header!r}, expected 'Name: value'")
        header_map[name.strip()] = value.strip()

    body = None
    if data_file:
        with open(data_file, "rb") as f:
            body = f.read()

    payload_mode = PayloadMode.UNSIGNED if unsigned_payload else PayloadMode.HASHED
    try:
        signed = sign_for_header(
            SignableRequest(method, url, header_map, body),
            ctx.obj["settings"].credentials,
            payload_mode=payload_mode,
        )
    except SigningError as e:
        _fail(str(e))

    for name, value in signed.headers.items():
        click.echo(f"{name}: {value}")


@cli.command()
@click.argument("key")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--content-type", help="Content type of the object")
@click.option("--metadata", help="JSON string of metadata key-value pairs")
@click.option("--unsigned-payload", is_flag=True, help="Do not hash the body")
@click.pass_context
def put(ctx, key, file_path, content_type, metadata, unsigned_payload):
    """Upload a file to KEY."""
    metadata_dict = None
    if metadata:
        try:
            metadata_dict = json.loads(metadata)
        except json.JSONDecodeError:
            _fail("invalid JSON in metadata")

    with open(file_path, "rb") as f:
        data = f.read()

    client = _get_client(ctx)

    async def _put():
        async with client:
            return await client.put_object(
                key,
                data,
                content_type=content_type,
                metadata=metadata_dict,
                unsigned_payload=unsigned_payload,
            )

    result = _run(_put())
    click.echo("Upload successful!")
    click.echo(f"URL: {result['url']}")
    click.echo(f"ETag: {result['etag']}")


@cli.command()
@click.argument("key")
@click.argument("output_path", type=click.Path())
@click.pass_context
def get(ctx, key, output_path):
    """Download KEY to OUTPUT_PATH."""
    client = _get_client(ctx)

    async def _get():
        async with client:
            return await client.get_object(key)

    result = _run(_get())
    with open(output_path, "wb") as f:
        f.write(result["body"])

    click.echo("Download successful!")
    click.echo(f"Content Type: {result.get('content_type') or 'N/A'}")
    click.echo(f"Content Length: {result['content_length']} bytes")


@cli.command(name="ls")
@click.option("--prefix", help="Object key prefix filter")
@click.option("--max-keys", default=1000, help="Maximum number of objects to return")
@click.pass_context
def list_objects(ctx, prefix, max_keys):
    """List objects in the bucket."""
    client = _get_client(ctx)

    async def _list():
        async with client:
            return await client.list_objects(prefix=prefix, max_keys=max_keys)

    result = _run(_list())
    if not result["objects"]:
        click.echo("No objects found")
        return

    for obj in result["objects"]:
        size_mb = obj["size"] / (1024 * 1024)
        click.echo(f"{obj['last_modified'][:19]} {size_mb:>8.2f} MB  {obj['key']}")

    if result["is_truncated"]:
        click.echo("\n... (truncated, use --max-keys to see more)")


@cli.command(name="rm")
@click.argument("key")
@click.pass_context
def delete(ctx, key):
    """Delete KEY."""
    client = _get_client(ctx)

    async def _delete():
        async with client:
            return await client.delete_object(key)

    _run(_delete())
    click.echo("Delete successful!")


@cli.group()
def cors():
    """Manage the bucket's CORS configuration."""


@cors.command(name="set")
@click.option("--origin", "origins", multiple=True, default=["*"], help="Origin")
@click.option(
    "--method", "methods", multiple=True, default=["GET", "PUT", "HEAD"], help="Method"
)
@click.option("--allowed-header", "allowed_headers", multiple=True, default=["*"])
@click.option("--expose-header", "expose_headers", multiple=True)
@click.option("--max-age", type=int, help="Preflight cache time in seconds")
@click.pass_context
def cors_set(ctx, origins, methods, allowed_headers, expose_headers, max_age):
    """Set a CORS rule so browsers can use presigned URLs."""
    client = _get_client(ctx)

    async def _put():
        async with client:
            return await client.put_bucket_cors(
                origins, methods, allowed_headers, expose_headers, max_age
            )

    try:
        _run(_put())
    except ValueError as e:
        _fail(str(e))
    click.echo("CORS configuration updated!")


@cors.command(name="show")
@click.pass_context
def cors_show(ctx):
    """Print the bucket's CORS rules as JSON."""
    client = _get_client(ctx)

    async def _get():
        async with client:
            return await client.get_bucket_cors()

    click.echo(json.dumps(_run(_get()), indent=2))


@cors.command(name="rm")
@click.pass_context
def cors_rm(ctx):
    """Remove the bucket's CORS configuration."""
    client = _get_client(ctx)

    async def _delete():
        async with client:
            return await client.delete_bucket_cors()

    _run(_delete())
    click.echo("CORS configuration removed!")


if __name__ == "__main__":
    cli()
