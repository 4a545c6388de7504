import argparse
import sys

from cli.commands import run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delegated wallet key vault")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--log-level', default='INFO', help='Logging level')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', parents=[common], help='Start the webhook and signing server')
    serve.add_argument('--host', default='0.0.0.0', help='Server host')
    serve.add_argument('--port', default=8000, type=int, help='Server port')

    keygen = subparsers.add_parser('keygen', parents=[common], help='Generate the delegation RSA key pair')
    keygen.add_argument('--out', required=True, help='Directory for the PEM files')
    keygen.add_argument('--force', action='store_true', help='Overwrite existing keys')

    show = subparsers.add_parser('show', parents=[common], help='Show non-secret metadata of a stored delegation')
    show.add_argument('--address', required=True, help='Wallet address')
    show.add_argument('--chain', required=True, help='Chain identifier, e.g. eip155:1')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
