#!/usr/bin/env python3
"""
Avatar Registry Command Line Interface

Usage:
    avatar-registry keygen --identity <0x..> --key-out <file> [--trust-store <file>]
    avatar-registry sign --key <file> --body <file> [--output <file>]
    avatar-registry cid --digest <0x..>
    avatar-registry digest --cid <Qm..>
"""

import argparse
import json
import sys
from pathlib import Path


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args):
    """Generate an Ed25519 caller key and register it in a trust store."""
    from avatar_registry.signing import CallerKey

    key = CallerKey.generate(args.identity)
    save_json(key.to_dict(), args.key_out)
    print(f"Caller key saved to: {args.key_out}", file=sys.stderr)

    identity, pub_b64 = key.to_trust_store_entry()
    if args.trust_store:
        path = Path(args.trust_store)
        trust = load_json(str(path)) if path.exists() else {
            "trust_store_id": "avatar-registry-callers",
            "caller_keys": {}
        }
        trust.setdefault("caller_keys", {})[identity] = pub_b64
        save_json(trust, str(path))
        print(f"Trust store updated: {args.trust_store}", file=sys.stderr)
    else:
        print(json.dumps({"caller_keys": {identity: pub_b64}}, indent=2))
    return 0


def cmd_sign(args):
    """Attach a caller proof to a request body."""
    from avatar_registry.signing import CallerKey, sign_request

    key = CallerKey.from_dict(load_json(args.key))
    signed = sign_request(load_json(args.body), key)

    if args.output:
        save_json(signed, args.output)
        print(f"Signed request saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(signed, indent=2))
    return 0


def cmd_cid(args):
    """Render a digest as a CIDv0."""
    from avatar_registry.encoding import digest_to_cid

    try:
        print(digest_to_cid(args.digest))
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    return 0


def cmd_digest(args):
    """Extract the digest from a CIDv0."""
    from avatar_registry.encoding import cid_to_digest
    from avatar_registry.types import digest_hex

    try:
        print(digest_hex(cid_to_digest(args.cid)))
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="avatar-registry",
        description="Avatar Registry CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  avatar-registry keygen -i 0x11..11 -k secrets/caller.json -t trust/callers.json
  avatar-registry sign -k secrets/caller.json -b request.json
  avatar-registry cid -d 0xabab..ab
  avatar-registry digest -c QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate caller key pair")
    keygen_parser.add_argument("-i", "--identity", required=True, help="Caller identity (0x + 40 hex)")
    keygen_parser.add_argument("-k", "--key-out", required=True, help="Output file for the private key")
    keygen_parser.add_argument("-t", "--trust-store", help="Trust store JSON file to update")

    sign_parser = subparsers.add_parser("sign", help="Sign a request body")
    sign_parser.add_argument("-k", "--key", required=True, help="Caller key JSON file")
    sign_parser.add_argument("-b", "--body", required=True, help="Request body JSON file")
    sign_parser.add_argument("-o", "--output", help="Output file for the signed request")

    cid_parser = subparsers.add_parser("cid", help="Digest to CIDv0")
    cid_parser.add_argument("-d", "--digest", required=True, help="32-byte digest as hex")

    digest_parser = subparsers.add_parser("digest", help="CIDv0 to digest")
    digest_parser.add_argument("-c", "--cid", required=True, help="CIDv0 string")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "keygen": cmd_keygen,
        "sign": cmd_sign,
        "cid": cmd_cid,
        "digest": cmd_digest,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
