"""CLI client for syncing key entries with Keyknox."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from keyknox.config import Settings
from keyknox.exceptions import KeyknoxError
from keyknox.main import configure_logging, create_sync_storage
from keyknox.services import crypto_service
from keyknox.services.datetime_service import format_iso
from keyknox.services.entry_utils import extract_dates, user_meta
from keyknox.services.keyknox_client import StaticTokenProvider, reset_all_entries

if TYPE_CHECKING:
    import httpx
    from cryptography.hazmat.primitives.asymmetric.ec import (
        EllipticCurvePrivateKey,
        EllipticCurvePublicKey,
    )

    from keyknox.services.sync_storage import SyncKeyStorage, SyncPlan

CONFIG_FILE = ".keyknox-sync.json"
DEFAULT_ENTRIES_DIR = "entries"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, Any]:
    """Load sync config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, Any] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, Any]) -> None:
    """Save sync config to file, readable by the owner only (it holds the token)."""
    config_path = dir_path / CONFIG_FILE
    config_path.touch(mode=0o600, exist_ok=True)
    config_path.chmod(0o600)
    config_path.write_text(json.dumps(config, indent=2))


def load_private_key_file(path: Path) -> EllipticCurvePrivateKey:
    return crypto_service.load_private_key(path.read_bytes())


def load_public_key_file(path: Path) -> EllipticCurvePublicKey:
    return crypto_service.load_public_key(path.read_bytes())


def public_key_path_for(private_key_path: Path) -> Path:
    return private_key_path.with_name(private_key_path.name + ".pub")


def generate_key_pair(private_key_path: Path) -> str:
    """Write a new private key and its ``.pub`` companion; returns the key id."""
    if private_key_path.exists():
        raise ValueError(f"Refusing to overwrite existing key file {private_key_path}")
    private_key = crypto_service.generate_private_key()
    private_key_path.parent.mkdir(parents=True, exist_ok=True)
    crypto_service.save_private_key(private_key, private_key_path)
    public_key_path_for(private_key_path).write_bytes(
        crypto_service.export_public_key(private_key.public_key())
    )
    return crypto_service.key_id(private_key)


def _format_plan(plan: SyncPlan) -> list[str]:
    lines = [f"  Store: {name}" for name in plan.to_store]
    lines += [f"  Update: {name}" for name in plan.to_update]
    lines += [f"  Delete local: {name}" for name in plan.to_delete]
    return lines


class SyncClient:
    """Keyknox sync for one configured directory."""

    def __init__(
        self,
        server_url: str,
        config_dir: Path,
        config: dict[str, Any],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.server_url = server_url
        self.config_dir = config_dir
        self.config = config
        self.http_client = http_client
        token = config.get("token")
        if not token:
            raise ValueError("No access token configured. Pass --token to init.")
        if not config.get("private_key"):
            raise ValueError("No private key configured. Pass --private-key to init.")
        self.token_provider = StaticTokenProvider(token)
        self.settings = Settings(
            api_url=server_url,
            identity=config.get("identity", "default"),
            key_entries_dir=config_dir / config.get("entries_dir", DEFAULT_ENTRIES_DIR),
        )
        self.storage: SyncKeyStorage = create_sync_storage(
            self.settings,
            self.token_provider,
            load_private_key_file(Path(config["private_key"])),
            [load_public_key_file(Path(p)) for p in config.get("public_keys", [])],
            http_client=http_client,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.storage.cloud_storage.keyknox_manager.client.aclose()

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def sync(self) -> SyncPlan:
        plan = await self.storage.sync()
        for line in _format_plan(plan):
            print(line)
        total = len(plan.to_store) + len(plan.to_update) + len(plan.to_delete)
        print(f"Sync complete. {total} entry(ies) changed, {len(plan.no_change)} unchanged.")
        return plan

    async def list_entries(self) -> list[str]:
        entries = await self.storage.retrieve_all_entries()
        for entry in entries:
            dates = extract_dates(entry)
            modified = format_iso(dates.modification_date) if dates else "unknown"
            print(f"{entry.name}\t{len(entry.value)} bytes\tmodified {modified}")
        return [e.name for e in entries]

    async def get(self, name: str, output: Path | None = None) -> bytes:
        entry = await self.storage.retrieve_entry(name)
        if output is not None:
            output.write_bytes(entry.value)
        else:
            sys.stdout.write(entry.value.decode("utf-8", errors="replace") + "\n")
        meta = user_meta(entry)
        if meta:
            print(f"meta: {json.dumps(meta, sort_keys=True)}", file=sys.stderr)
        return entry.value

    async def put(self, name: str, value: bytes, meta: dict[str, str] | None = None) -> None:
        await self.storage.sync()
        await self.storage.store_entry(name, value, meta)
        print(f"Stored: {name}")

    async def update(self, name: str, value: bytes, meta: dict[str, str] | None = None) -> None:
        await self.storage.sync()
        await self.storage.update_entry(name, value, meta)
        print(f"Updated: {name}")

    async def delete(self, names: list[str]) -> None:
        await self.storage.sync()
        await self.storage.delete_entries(names)
        for name in names:
            print(f"Deleted: {name}")

    async def delete_all(self) -> None:
        await self.storage.sync()
        await self.storage.delete_all_entries()
        print("Deleted all entries.")

    async def rotate(
        self, new_private_key_path: Path | None, new_public_key_paths: list[Path] | None
    ) -> None:
        """Re-encrypt the cloud value, then record the new key paths in the config."""
        new_private_key = (
            load_private_key_file(new_private_key_path) if new_private_key_path else None
        )
        new_public_keys = (
            [load_public_key_file(p) for p in new_public_key_paths]
            if new_public_key_paths is not None
            else None
        )
        await self.storage.update_recipients(
            new_private_key=new_private_key, new_public_keys=new_public_keys
        )
        if new_private_key_path is not None:
            self.config["private_key"] = str(new_private_key_path.resolve())
        if new_public_key_paths is not None:
            self.config["public_keys"] = [str(p.resolve()) for p in new_public_key_paths]
        save_config(self.config_dir, self.config)
        recipients = self.storage.cloud_storage.keyknox_manager.recipients
        print(f"Recipients: {', '.join(recipients.recipient_ids)}")

    async def reset(self) -> None:
        blob = await reset_all_entries(
            self.token_provider, api_url=self.server_url, http_client=self.http_client
        )
        print(f"Reset remote value (version {blob.version}).")


def _read_value(args: argparse.Namespace) -> bytes:
    if args.file:
        return Path(args.file).read_bytes()
    if args.value is None:
        raise ValueError("Provide a value or --file")
    return str(args.value).encode("utf-8")


def _parse_meta(items: list[str] | None) -> dict[str, str] | None:
    if not items:
        return None
    meta: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Meta must be KEY=VALUE, got {item!r}")
        meta[key] = value
    return meta


async def run_command(
    args: argparse.Namespace,
    server_url: str,
    config_dir: Path,
    config: dict[str, Any],
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Run one network or local-store command against the configured directory."""
    async with SyncClient(server_url, config_dir, config, http_client=http_client) as client:
        if args.command == "sync":
            await client.sync()
        elif args.command == "list":
            await client.list_entries()
        elif args.command == "get":
            await client.get(args.name, Path(args.output) if args.output else None)
        elif args.command == "put":
            await client.put(args.name, _read_value(args), _parse_meta(args.meta))
        elif args.command == "update":
            await client.update(args.name, _read_value(args), _parse_meta(args.meta))
        elif args.command == "delete":
            await client.delete(args.names)
        elif args.command == "delete-all":
            await client.delete_all()
        elif args.command == "rotate":
            await client.rotate(
                Path(args.new_private_key) if args.new_private_key else None,
                [Path(p) for p in args.public_key] if args.public_key is not None else None,
            )
        elif args.command == "reset":
            await client.reset()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyknox-sync",
        description="Sync encrypted key entries with a Keyknox server",
    )
    parser.add_argument("--dir", "-d", default=".", help="Config directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    init = subparsers.add_parser("init", help="Initialize sync configuration")
    init.add_argument("--token", required=True, help="Keyknox access token")
    init.add_argument("--private-key", required=True, help="PEM private key file")
    init.add_argument(
        "--public-key", action="append", default=[], help="Extra recipient PEM public key"
    )
    init.add_argument("--identity", default="default", help="Local store identity")
    init.add_argument("--entries-dir", default=DEFAULT_ENTRIES_DIR, help="Local entries dir")

    keygen = subparsers.add_parser("keygen", help="Generate a P-256 key pair")
    keygen.add_argument("path", help="Private key output path (public key gets .pub)")

    subparsers.add_parser("sync", help="Make local entries match the cloud")
    subparsers.add_parser("list", help="List local entries")

    get = subparsers.add_parser("get", help="Print a local entry")
    get.add_argument("name")
    get.add_argument("--output", "-o", help="Write the value to a file")

    for command, help_text in (("put", "Store a new entry"), ("update", "Replace an entry")):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("name")
        sub.add_argument("value", nargs="?")
        sub.add_argument("--file", "-f", help="Read the value from a file")
        sub.add_argument("--meta", "-m", action="append", help="KEY=VALUE metadata")

    delete = subparsers.add_parser("delete", help="Delete entries")
    delete.add_argument("names", nargs="+")

    subparsers.add_parser("delete-all", help="Delete every entry")

    rotate = subparsers.add_parser("rotate", help="Re-encrypt for new keys")
    rotate.add_argument("--new-private-key", help="New PEM private key file")
    rotate.add_argument(
        "--public-key", action="append", help="Recipient PEM public key (replaces the list)"
    )

    subparsers.add_parser("reset", help="Irreversibly clear the remote value")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config_dir = Path(args.dir).resolve()
    configure_logging(args.debug)

    if args.command is None:
        parser.print_help()
        return

    if args.command == "keygen":
        try:
            kid = generate_key_pair(Path(args.path))
        except (ValueError, OSError) as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        print(f"Generated key {kid} in {args.path}")
        return

    if args.command == "init":
        if not args.server:
            print("Error: --server required for init")
            sys.exit(1)
        try:
            server_url = validate_server_url(args.server, args.allow_insecure_http)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        config: dict[str, Any] = {
            "server": server_url,
            "token": args.token,
            "identity": args.identity,
            "private_key": str(Path(args.private_key).resolve()),
            "public_keys": [str(Path(p).resolve()) for p in args.public_key],
            "entries_dir": args.entries_dir,
        }
        config_dir.mkdir(parents=True, exist_ok=True)
        save_config(config_dir, config)
        print(f"Initialized sync config in {config_dir / CONFIG_FILE}")
        return

    config = load_config(config_dir)
    configured_server_url = args.server or config.get("server")
    if not configured_server_url:
        print("Error: No server configured. Run 'keyknox-sync init --server <url>' first.")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
        asyncio.run(run_command(args, server_url, config_dir, config))
    except (KeyknoxError, ValueError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
