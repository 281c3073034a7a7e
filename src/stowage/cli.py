"""Stowage CLI - JSON command-line interface over the configured backend.

Usage:
    python -m stowage buckets
    python -m stowage mb <bucket> [--public] [--file-size-limit N] [--allow-type TYPE ...]
    python -m stowage rb <bucket> [--force]
    python -m stowage put <bucket> <path> [--file PATH] [--content-type TYPE]
        [--metadata JSON] [--upsert] [--unique] [--public]
    python -m stowage get <bucket> <path> [--out FILE]
    python -m stowage ls <bucket> [--prefix P] [--limit N] [--cursor C]
    python -m stowage info <bucket> <path>
    python -m stowage rm <bucket> <path>
    python -m stowage sign <bucket> <path> [--expires-in SECONDS] [--action ACTION]

The backend comes from STOWAGE_* environment variables (see stowage.config).
Only the filesystem backend persists between invocations.

Exit codes:
    0: Success
    1: Internal error
    2: Storage error (validation, policy, not found, conflict, access)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from stowage.api.errors import status_for_storage_error
from stowage.config import StowageSettings
from stowage.errors import ObjectStorageError
from stowage.models import (
    DEFAULT_FILE_SIZE_LIMIT,
    DEFAULT_LIST_LIMIT,
    DEFAULT_SIGNED_URL_EXPIRES_IN,
    BucketOptions,
    DownloadFileRequest,
    FileRef,
    ListFilesRequest,
    SignedUrlAction,
    SignedUrlRequest,
    UploadFileRequest,
)
from stowage.service import StorageService, create_service

Command = Callable[[StorageService, argparse.Namespace], Awaitable[dict[str, Any]]]


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(
    code: str, message: str, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Create an error result with a single structured error."""
    return {"error": {"code": code, "message": message, "details": details or {}}}


def _parse_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("--metadata must be a JSON object")
    return parsed


def _read_input(input_path: str | None) -> bytes:
    if input_path:
        return Path(input_path).read_bytes()
    return sys.stdin.buffer.read()


async def cmd_buckets(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """List buckets."""
    buckets = await service.list_buckets()
    return {"items": [b.to_dict() for b in buckets]}


async def cmd_mb(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Make a bucket."""
    options = BucketOptions(
        public=args.public,
        file_size_limit=args.file_size_limit,
        allowed_mime_types=args.allow_type or [],
    )
    info = await service.create_bucket(args.bucket, options)
    return info.to_dict()


async def cmd_rb(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Remove a bucket."""
    deleted = await service.delete_bucket(args.bucket, force=args.force)
    return {"deleted": deleted}


async def cmd_put(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Upload a file (or stdin) as an object."""
    info = await service.upload_file(
        UploadFileRequest(
            bucket=args.bucket,
            path=args.path,
            data=_read_input(args.file),
            content_type=args.content_type,
            metadata=_parse_metadata(args.metadata),
            upsert=args.upsert,
            public=True if args.public else None,
            unique=args.unique,
        )
    )
    return info.to_dict()


async def cmd_get(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Download an object to --out, or write its bytes to stdout."""
    result = await service.download_file(DownloadFileRequest(bucket=args.bucket, path=args.path))
    assert isinstance(result.data, bytes)
    if args.out is None:
        sys.stdout.buffer.write(result.data)
        sys.stdout.buffer.flush()
        return {}
    Path(args.out).write_bytes(result.data)
    return {
        "content_type": result.content_type,
        "out": args.out,
        "size": result.size,
    }


async def cmd_ls(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """List one page of objects."""
    page = await service.list_files(
        ListFilesRequest(
            bucket=args.bucket,
            prefix=args.prefix,
            limit=args.limit,
            cursor=args.cursor,
        )
    )
    return page.to_dict()


async def cmd_info(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Show an object descriptor."""
    info = await service.get_file_info(FileRef(bucket=args.bucket, path=args.path))
    return info.to_dict()


async def cmd_rm(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Remove an object."""
    deleted = await service.delete_file(FileRef(bucket=args.bucket, path=args.path))
    return {"deleted": deleted}


async def cmd_sign(service: StorageService, args: argparse.Namespace) -> dict[str, Any]:
    """Issue a signed URL."""
    action = SignedUrlAction(args.action)
    url = await service.get_signed_url(
        SignedUrlRequest(
            bucket=args.bucket,
            path=args.path,
            expires_in=args.expires_in,
            action=action,
        )
    )
    return {"action": action.value, "expires_in": args.expires_in, "url": url}


COMMAND_DISPATCH: dict[str, Command] = {
    "buckets": cmd_buckets,
    "mb": cmd_mb,
    "rb": cmd_rb,
    "put": cmd_put,
    "get": cmd_get,
    "ls": cmd_ls,
    "info": cmd_info,
    "rm": cmd_rm,
    "sign": cmd_sign,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="stowage",
        description="Stowage - backend-agnostic object storage CLI",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("buckets", help="List buckets")

    mb_parser = subparsers.add_parser("mb", help="Make a bucket")
    mb_parser.add_argument("bucket")
    mb_parser.add_argument("--public", action="store_true", default=False)
    mb_parser.add_argument(
        "--file-size-limit",
        type=int,
        default=DEFAULT_FILE_SIZE_LIMIT,
        metavar="BYTES",
    )
    mb_parser.add_argument(
        "--allow-type",
        action="append",
        metavar="TYPE",
        help="Allowed MIME type (exact match); repeatable",
    )

    rb_parser = subparsers.add_parser("rb", help="Remove a bucket")
    rb_parser.add_argument("bucket")
    rb_parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Delete the bucket's objects too",
    )

    put_parser = subparsers.add_parser("put", help="Upload an object")
    put_parser.add_argument("bucket")
    put_parser.add_argument("path")
    put_parser.add_argument(
        "--file",
        default=None,
        metavar="PATH",
        help="Local file to upload (reads from stdin if omitted)",
    )
    put_parser.add_argument("--content-type", default=None, metavar="TYPE")
    put_parser.add_argument("--metadata", default=None, metavar="JSON")
    put_parser.add_argument("--upsert", action="store_true", default=False)
    put_parser.add_argument(
        "--unique",
        action="store_true",
        default=False,
        help="Add a _N suffix instead of failing when the path is taken",
    )
    put_parser.add_argument("--public", action="store_true", default=False)

    get_parser = subparsers.add_parser("get", help="Download an object")
    get_parser.add_argument("bucket")
    get_parser.add_argument("path")
    get_parser.add_argument(
        "--out",
        default=None,
        metavar="FILE",
        help="Write to FILE and print a JSON summary (raw bytes to stdout if omitted)",
    )

    ls_parser = subparsers.add_parser("ls", help="List objects")
    ls_parser.add_argument("bucket")
    ls_parser.add_argument("--prefix", default="")
    ls_parser.add_argument("--limit", type=int, default=DEFAULT_LIST_LIMIT)
    ls_parser.add_argument("--cursor", default=None)

    for name, description in [("info", "Show an object"), ("rm", "Remove an object")]:
        object_parser = subparsers.add_parser(name, help=description)
        object_parser.add_argument("bucket")
        object_parser.add_argument("path")

    sign_parser = subparsers.add_parser("sign", help="Issue a signed URL")
    sign_parser.add_argument("bucket")
    sign_parser.add_argument("path")
    sign_parser.add_argument(
        "--expires-in",
        type=int,
        default=DEFAULT_SIGNED_URL_EXPIRES_IN,
        metavar="SECONDS",
    )
    sign_parser.add_argument(
        "--action",
        choices=[a.value for a in SignedUrlAction],
        default=SignedUrlAction.READ.value,
    )

    return parser


async def _run(
    command: Command, args: argparse.Namespace, settings: StowageSettings | None
) -> dict[str, Any]:
    service = create_service(settings)
    await service.sync_bucket_policies()
    return await command(service, args)


def main(argv: list[str] | None = None, settings: StowageSettings | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Storage error
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        result = asyncio.run(_run(COMMAND_DISPATCH[args.command], args, settings))
        if result:
            _output_json(result)
        return 0

    except ObjectStorageError as e:
        _, code = status_for_storage_error(e)
        details = {k: v for k, v in (("bucket", e.bucket), ("path", e.path)) if v}
        _output_json(_make_error_result(code, e.message, details))
        return 2

    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
