import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from delegation_vault.config import DelegationSettings
from delegation_vault.exceptions import DelegationError
from delegation_vault.lock import run_exclusive
from delegation_vault.storage import create_store
from delegation_vault.wallet import (
    DelegationVault,
    generate_key_pair,
    key_id,
    serialize_private_key,
    serialize_public_key,
)

logger = logging.getLogger("cli")

KEYGEN_LOCK_NAME = "delegation-keygen"
PRIVATE_KEY_FILE = "delegation_private_key.pem"
PUBLIC_KEY_FILE = "delegation_public_key.pem"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Keep third-party chatter out of the CLI output
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def serve(host: str, port: int) -> int:
    from api.app import start

    try:
        settings = DelegationSettings.load()
    except DelegationError as exc:
        logger.error("%s", exc)
        return 1
    start(host=host, port=port, settings=settings)
    return 0


def write_key_pair(out_dir: Path, force: bool = False) -> str:
    """Generate an RSA-4096 delegation key pair in `out_dir`; returns its key id."""
    private_path = out_dir / PRIVATE_KEY_FILE
    public_path = out_dir / PUBLIC_KEY_FILE
    if private_path.exists() and not force:
        raise FileExistsError(f"{private_path} exists. Use --force to overwrite.")

    out_dir.mkdir(parents=True, exist_ok=True)
    private_key = generate_key_pair()
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(serialize_private_key(private_key))
    public_path.write_bytes(serialize_public_key(private_key.public_key()))
    return key_id(private_key.public_key())


def keygen(out: str, force: bool = False) -> int:
    out_dir = Path(out)
    lock_dir = os.environ.get("EXECUTION_LOCK_DIR") or None
    try:
        kid = run_exclusive(KEYGEN_LOCK_NAME, lambda: write_key_pair(out_dir, force), lock_dir)
    except FileExistsError as exc:
        logger.error("%s", exc)
        return 1
    if kid is None:
        logger.error("Another key generation is already running")
        return 1
    print(f"Wrote {out_dir / PRIVATE_KEY_FILE} and {out_dir / PUBLIC_KEY_FILE} (kid {kid})")
    print("Register the public key with the wallet provider; set DELEGATION_PRIVATE_KEY from the private key file.")
    return 0


async def _lookup(settings: DelegationSettings, address: str, chain: str):
    store = create_store(settings)
    try:
        blob = await DelegationVault(store).get_by_address(address, chain)
    finally:
        await store.close()
    return blob.describe() if blob is not None else None


def show(address: str, chain: str) -> int:
    try:
        settings = DelegationSettings.load()
        metadata = asyncio.run(_lookup(settings, address, chain))
    except DelegationError as exc:
        logger.error("%s", exc)
        return 1
    if metadata is None:
        print(f"No delegation found for {address} on {chain}", file=sys.stderr)
        return 1
    print(json.dumps(metadata, indent=2))
    return 0


def run(args) -> int:
    load_dotenv()
    configure_logging(args.log_level)
    if args.command == "serve":
        return serve(args.host, args.port)
    if args.command == "keygen":
        return keygen(args.out, args.force)
    if args.command == "show":
        return show(args.address, args.chain)
    raise ValueError(f"Unknown command: {args.command}")
