#!/usr/bin/env python3
"""
noncebind Command Line Interface

Usage:
    noncebind keygen [-o key.json]
    noncebind onboard <org_id> --external-ref <ref> --signing-key <file> --method <method>
    noncebind bind-validate <org_id> <nonce>
    noncebind bind-rotate <org_id> --reason <reason> --signing-key <file> [--new-public-key <hex>]
    noncebind bind-revoke <org_id> --reason <reason>
    noncebind bind-show <org_id>
    noncebind history <org_id>
    noncebind list [--method <method>]
"""

import argparse
import json
import sys
from typing import List, Optional

from . import config
from .engine import BindingEngine
from .errors import ConfigurationError, NonceBindingError
from .keys import get_secret_provider
from .logging_config import configure_logging
from .models import VerificationMethod
from .nonce_codec import build_nonce_generator
from .orchestrator import VerificationOrchestrator
from .signing import LocalKeyProver, generate_keypair, load_key_file, save_key_file
from .store import IdentityStore, InMemoryIdentityStore, SqliteIdentityStore
from .verifiers import get_verifier


def build_store(backend: str, db_path: str) -> IdentityStore:
    if backend == "memory":
        if config.is_production():
            raise ConfigurationError("The memory identity store cannot be used in production")
        return InMemoryIdentityStore()
    if backend == "sqlite":
        return SqliteIdentityStore(db_path)
    raise ConfigurationError(f"Unknown identity store backend: {backend}")


def build_engine(store: IdentityStore) -> BindingEngine:
    """Engine wired from environment configuration."""
    secret_provider = None
    if config.NONCE_STRATEGY == "hmac":
        secret_provider = get_secret_provider(
            source=config.NONCE_SECRET_SOURCE,
            path=config.NONCE_SECRET_PATH,
            ssm_parameter=config.NONCE_SECRET_SSM_PARAMETER,
            region=config.AWS_REGION or None,
        )
    return BindingEngine(
        store,
        nonce_generator=build_nonce_generator(config.NONCE_STRATEGY, secret_provider),
        max_retries=config.STORE_MAX_RETRIES,
    )


def _load_prover(path: str) -> LocalKeyProver:
    try:
        return load_key_file(path)
    except (OSError, ValueError, KeyError) as e:
        raise ConfigurationError(f"Cannot load signing key {path}: {e}") from e


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def cmd_keygen(args) -> int:
    """Generate an Ed25519 key pair for an organization."""
    private_hex, public_hex = generate_keypair()
    if args.output:
        save_key_file(args.output, private_hex, public_hex)
        print(public_hex)
        print(f"Key file saved to: {args.output}", file=sys.stderr)
    else:
        _print_json({"private_key_hex": private_hex, "public_key_hex": public_hex})
    return 0


def cmd_onboard(args, engine: BindingEngine) -> int:
    """Verify an organization and bind its first nonce."""
    prover = _load_prover(args.signing_key)
    verifier = get_verifier(
        args.method,
        verifier_url=config.VERIFIER_URL,
        verifier_token=config.VERIFIER_TOKEN,
        timeout=config.VERIFIER_TIMEOUT,
        manual_review_path=args.registry or config.MANUAL_REVIEW_PATH,
    )
    orchestrator = VerificationOrchestrator(engine.store, engine)
    identity = orchestrator.onboard(
        args.org_id,
        args.external_ref,
        args.public_key or prover.public_key,
        verifier,
        prover,
    )
    print(identity.nonce)
    return 0


def cmd_bind_validate(args, engine: BindingEngine) -> int:
    result = engine.validate(args.org_id, args.nonce)
    if result.valid:
        _print_json(result.binding.to_dict())
        return 0
    print(f"INVALID [{result.code.value}]: {result.reason}", file=sys.stderr)
    return 1


def cmd_bind_rotate(args, engine: BindingEngine) -> int:
    prover = _load_prover(args.signing_key)
    new_nonce = engine.rotate(
        args.org_id,
        args.reason,
        prover,
        new_public_key=args.new_public_key,
    )
    print(new_nonce)
    return 0


def cmd_bind_revoke(args, engine: BindingEngine) -> int:
    engine.revoke(args.org_id, args.reason)
    print(f"Revoked nonce binding for {args.org_id}: {args.reason}")
    return 0


def cmd_bind_show(args, engine: BindingEngine) -> int:
    binding = engine.get_binding(args.org_id)
    if binding is None:
        print("none")
    else:
        _print_json(binding.to_dict())
    return 0


def cmd_history(args, engine: BindingEngine) -> int:
    _print_json([b.to_dict() for b in engine.rotation_history(args.org_id)])
    return 0


def cmd_list(args, engine: BindingEngine) -> int:
    if args.method:
        records = engine.store.list_by_method(VerificationMethod(args.method))
    else:
        records = engine.store.list_all()
    for identity in records:
        status = "active" if identity.nonce else "revoked"
        print(f"{identity.org_id}\t{identity.verification_method.value}\t{status}\t{len(identity.bindings)}")
    return 0


COMMANDS = {
    "onboard": cmd_onboard,
    "bind-validate": cmd_bind_validate,
    "bind-rotate": cmd_bind_rotate,
    "bind-revoke": cmd_bind_revoke,
    "bind-show": cmd_bind_show,
    "history": cmd_history,
    "list": cmd_list,
}


def build_parser() -> argparse.ArgumentParser:
    methods = [m.value for m in VerificationMethod]

    parser = argparse.ArgumentParser(
        prog="noncebind",
        description="Nonce binding for verified organizations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  noncebind keygen -o acme.key.json
  noncebind onboard acme --external-ref case-42 --signing-key acme.key.json --method manual
  noncebind bind-validate acme <nonce>
  noncebind bind-rotate acme --reason scheduled --signing-key acme.key.json
  noncebind bind-revoke acme --reason incident
  noncebind bind-show acme
        """
    )
    parser.add_argument("--db", default=config.DB_PATH, help="SQLite identity store path")
    parser.add_argument(
        "--store", default=config.STORE_BACKEND, choices=["sqlite", "memory"], help="Identity store backend"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an Ed25519 key pair")
    keygen_parser.add_argument("-o", "--output", help="Output key file")

    onboard_parser = subparsers.add_parser("onboard", help="Verify an organization and bind its first nonce")
    onboard_parser.add_argument("org_id")
    onboard_parser.add_argument("--external-ref", required=True, help="Reference checked by the verifier")
    onboard_parser.add_argument("--signing-key", required=True, help="Organization key file")
    onboard_parser.add_argument("--method", required=True, choices=methods, help="Verification method")
    onboard_parser.add_argument("--public-key", help="Public key hex (default: from the key file)")
    onboard_parser.add_argument("--registry", help="Manual review registry JSON")

    validate_parser = subparsers.add_parser("bind-validate", help="Validate an organization's nonce")
    validate_parser.add_argument("org_id")
    validate_parser.add_argument("nonce")

    rotate_parser = subparsers.add_parser("bind-rotate", help="Revoke the active nonce and bind a new one")
    rotate_parser.add_argument("org_id")
    rotate_parser.add_argument("--reason", required=True)
    rotate_parser.add_argument("--signing-key", required=True, help="Key file for the (new) public key")
    rotate_parser.add_argument("--new-public-key", help="Bind the new nonce to this public key")

    revoke_parser = subparsers.add_parser("bind-revoke", help="Revoke the active nonce")
    revoke_parser.add_argument("org_id")
    revoke_parser.add_argument("--reason", required=True)

    show_parser = subparsers.add_parser("bind-show", help="Show the current binding")
    show_parser.add_argument("org_id")

    history_parser = subparsers.add_parser("history", help="Show every binding issued to an organization")
    history_parser.add_argument("org_id")

    list_parser = subparsers.add_parser("list", help="List verified organizations")
    list_parser.add_argument("--method", choices=methods)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(
        level="DEBUG" if config.is_debug() else config.LOG_LEVEL,
        json_format=config.LOG_JSON,
    )

    try:
        if args.command == "keygen":
            return cmd_keygen(args)
        engine = build_engine(build_store(args.store, args.db))
        return COMMANDS[args.command](args, engine)
    except NonceBindingError as e:
        print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
