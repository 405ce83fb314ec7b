"""
Magellan - Secrets CLI.

Command-line interface for the BMC secret store.

Commands:
    magellan secrets generatekey             Print a new hex master key
    magellan secrets store <id> <value>      Store credentials (basic|json|base64)
    magellan secrets retrieve <id>           Decrypt and print a secret
    magellan secrets list                    List secret IDs and stored values
    magellan secrets remove <id>...          Remove secrets

Environment Variables:
    MASTER_KEY    Hex master key (from 'magellan secrets generatekey')

Examples:
    export MASTER_KEY=$(magellan secrets generatekey)
    magellan secrets store default root:password
    magellan secrets store https://172.16.0.101:443 -F json -i creds.json
    magellan secrets retrieve default -f nodes.json
"""

import argparse
import base64
import binascii
import sys
from pathlib import Path

from ..config import DEFAULT_SECRETS_FILE
from .encryption import SecretStoreError, generate_master_key
from .models import BMCCredentials, is_valid_creds_json
from .store import open_store

STORE_FORMATS = ['basic', 'json', 'base64']


def add_secrets_parser(subparsers) -> argparse.ArgumentParser:
    """Register the 'secrets' command and its subcommands."""
    secrets_parser = subparsers.add_parser(
        'secrets',
        help='Manage credentials for BMC nodes',
        description='Manage credentials for BMC nodes. Requires the MASTER_KEY '
                    'environment variable (see "secrets generatekey").',
    )
    secrets_parser.add_argument(
        '--file', '-f',
        default=DEFAULT_SECRETS_FILE,
        help=f'Secrets file with BMC credentials (default: {DEFAULT_SECRETS_FILE})',
    )

    secrets_sub = secrets_parser.add_subparsers(dest='secrets_command', help='Secrets command')

    # generatekey
    secrets_sub.add_parser('generatekey', help='Generate a new 32-byte master key (hex)')

    # store
    store_parser = secrets_sub.add_parser('store', help='Store a secret under an ID')
    store_parser.add_argument('secret_id', help='Secret ID (BMC URI or "default")')
    store_parser.add_argument('value', nargs='?', default='', help='Secret value')
    store_parser.add_argument('--format', '-F', dest='store_format',
                              choices=STORE_FORMATS, default='basic',
                              help='Input format (default: basic, i.e. username:password)')
    store_parser.add_argument('--input-file', '-i', help='Read the value from a file')

    # retrieve
    retrieve_parser = secrets_sub.add_parser('retrieve', help='Decrypt and print a secret')
    retrieve_parser.add_argument('secret_id', help='Secret ID')

    # list
    secrets_sub.add_parser('list', help='List secret IDs and their stored values')

    # remove
    remove_parser = secrets_sub.add_parser('remove', help='Remove secrets by ID')
    remove_parser.add_argument('secret_ids', nargs='+', help='Secret IDs')

    secrets_parser.set_defaults(secrets_parser=secrets_parser)
    return secrets_parser


def handle_secrets(args: argparse.Namespace) -> int:
    """Route a 'secrets' subcommand."""
    handlers = {
        'generatekey': handle_generatekey,
        'store': handle_store,
        'retrieve': handle_retrieve,
        'list': handle_list,
        'remove': handle_remove,
    }

    handler = handlers.get(getattr(args, 'secrets_command', None))
    if handler:
        return handler(args)

    args.secrets_parser.print_help()
    return 0


def handle_generatekey(args: argparse.Namespace) -> int:
    """Print a new master key."""
    print(generate_master_key())
    return 0


def read_store_value(args: argparse.Namespace) -> str:
    """
    Turn the store arguments into a credentials JSON document.

    Raises:
        ValueError: Missing or malformed input.
    """
    value = args.value
    if args.input_file:
        if value:
            raise ValueError("cannot use -i/--input-file with positional argument")
        try:
            value = Path(args.input_file).read_text(encoding='utf-8').strip()
        except OSError as e:
            raise ValueError(f"failed to read input file: {e}") from e

    if not value:
        raise ValueError("no input data or file")

    if args.store_format == 'basic':
        return BMCCredentials.from_basic(value).to_json()

    if args.store_format == 'base64':
        try:
            value = base64.b64decode(value, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"error decoding base64 data: {e}") from e

    if not is_valid_creds_json(value):
        raise ValueError("value is not a valid JSON or is missing credentials")
    return value


def handle_store(args: argparse.Namespace) -> int:
    """Store a secret."""
    try:
        value = read_store_value(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    try:
        store = open_store(args.file)
        store.store_secret_by_id(args.secret_id, value)
    except SecretStoreError as e:
        print(f"Error storing secret: {e}")
        return 1

    print(f"✓ Stored secret '{args.secret_id}' in {args.file}")
    return 0


def handle_retrieve(args: argparse.Namespace) -> int:
    """Print a decrypted secret."""
    try:
        store = open_store(args.file, create=False)
        value = store.get_secret_by_id(args.secret_id)
    except SecretStoreError as e:
        print(f"Error retrieving secret: {e}")
        return 1

    print(f"Secret for {args.secret_id}: {value}")
    return 0


def handle_list(args: argparse.Namespace) -> int:
    """List secret IDs and their (encrypted) values."""
    try:
        store = open_store(args.file, create=False)
        secrets_map = store.list_secrets()
    except SecretStoreError as e:
        print(f"Error listing secrets: {e}")
        return 1

    if not secrets_map:
        print("No secrets stored")
        return 0

    for secret_id, value in secrets_map.items():
        print(f"{secret_id}: {value}")
    return 0


def handle_remove(args: argparse.Namespace) -> int:
    """Remove one or more secrets."""
    try:
        store = open_store(args.file, create=False)
    except SecretStoreError as e:
        print(f"Error: {e}")
        return 1

    for secret_id in args.secret_ids:
        try:
            store.remove_secret_by_id(secret_id)
        except SecretStoreError as e:
            print(f"Error: failed to remove secret: {e}")
            return 1
        print(f"✓ Removed '{secret_id}'")
    return 0


def main() -> int:
    """Standalone entry point (magellan-secrets)."""
    parser = argparse.ArgumentParser(
        prog='magellan-secrets',
        description='Magellan BMC secret store',
    )
    subparsers = parser.add_subparsers(dest='command', help='Command')
    add_secrets_parser(subparsers)
    args = parser.parse_args(['secrets'] + sys.argv[1:])
    return handle_secrets(args)


if __name__ == '__main__':
    sys.exit(main())
