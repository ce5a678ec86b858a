"""Command-line client for requesting and releasing tenant namespaces."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

import httpx


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision and delete disposable namespaces")
    parser.add_argument(
        "--base-url",
        default=os.environ.get("NSP_URL"),
        required="NSP_URL" not in os.environ,
        help="Namespace provisioner base URL",
    )
    parser.add_argument("--token", default=os.environ.get("NSP_TOKEN"), help="Bearer token for authentication")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a namespace and print its kubeconfig")
    create_parser.add_argument("--output", type=Path, help="Write the kubeconfig to this file")

    delete_parser = subparsers.add_parser("delete", help="Delete a namespace")
    delete_parser.add_argument("name", help="Namespace to delete")
    delete_parser.add_argument("--json", action="store_true", help="Output raw JSON")

    return parser.parse_args(argv)


def _headers(token: Optional[str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


async def create_namespace(base_url: str, token: Optional[str], timeout: float) -> tuple[str, str]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(f"{base_url.rstrip('/')}/api/v1/namespace", headers=_headers(token))
        response.raise_for_status()
        return response.headers.get("x-namespace", ""), response.text


async def delete_namespace(base_url: str, token: Optional[str], name: str, timeout: float) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.delete(
            f"{base_url.rstrip('/')}/api/v1/namespace/{name}",
            headers=_headers(token),
        )
        response.raise_for_status()
        return response.json()


async def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        if args.command == "create":
            name, kubeconfig = await create_namespace(args.base_url, args.token, args.timeout)
            if args.output:
                args.output.write_text(kubeconfig, encoding="utf-8")
                args.output.chmod(0o600)
                print(f"namespace {name} created; kubeconfig written to {args.output}")
            else:
                print(kubeconfig, end="")
        elif args.command == "delete":
            payload = await delete_namespace(args.base_url, args.token, args.name, args.timeout)
            if args.json:
                print(json.dumps(payload, indent=2))
            else:
                print(f"namespace {payload.get('namespace')}: {payload.get('status')}")
    except httpx.HTTPStatusError as exc:
        print(f"error: {exc.response.status_code} {exc.response.text.strip()}", file=sys.stderr)
        return 1
    except httpx.HTTPError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
