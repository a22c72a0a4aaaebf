"""CLI entry point for rest-helper.

Issues one request through RequestExecutor and prints the CallResult as JSON.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass

from rest_helper.executor import DEFAULT_TIMEOUT, RequestExecutor
from rest_helper.models import BasicAuthCredentials, ClientCertificate, ClientConfig

# Passwords stay out of printed output
_SECRET_FIELDS = {
    "request": {
        "basic_auth": {"password"},
        "client_certificate": {"password"},
    }
}


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: value' format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Expected 'Name: value' (e.g., 'Accept: application/json')"
        )
    name, header_value = value.split(":", 1)
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(
            f"Invalid header '{value}'. Header name cannot be empty."
        )
    return (name, header_value.strip())


def parse_credentials(value: str) -> BasicAuthCredentials:
    """Parse 'username:password'. The password may itself contain colons.

    Raises:
        argparse.ArgumentTypeError: If there is no colon.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError("Invalid credentials. Expected 'username:password'")
    username, password = value.split(":", 1)
    return BasicAuthCredentials(username=username, password=password)


@dataclass
class RequestArgs:
    """Parsed arguments for request mode."""

    method: str
    path: str
    base_url: str
    headers: dict[str, str]
    data: str | None
    user: BasicAuthCredentials | None
    cert: str | None
    key: str | None
    timeout: float
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with the request subcommand."""
    parser = argparse.ArgumentParser(
        prog="rest-helper",
        description="Issue HTTP requests and capture request, response, timing and failure as JSON.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command")

    request_parser = subparsers.add_parser(
        "request",
        help="Send one request and print the result",
    )
    request_parser.add_argument("method", help="HTTP method (case-insensitive)")
    request_parser.add_argument("path", help="Path appended verbatim to the base URL")
    request_parser.add_argument(
        "--base-url",
        type=str,
        default="",
        dest="base_url",
        help="Base URL the path is appended to (default: none, PATH is the full URL)",
    )
    request_parser.add_argument(
        "-H",
        "--header",
        type=parse_header,
        action="append",
        dest="header",
        metavar="'NAME: VALUE'",
        help="Extra header for this request (can be repeated)",
    )
    request_parser.add_argument(
        "--data",
        type=str,
        default=None,
        help="Request body, sent as-is",
    )
    request_parser.add_argument(
        "-u",
        "--user",
        type=parse_credentials,
        default=None,
        metavar="USERNAME:PASSWORD",
        help="Basic auth credentials",
    )
    request_parser.add_argument(
        "--cert",
        type=str,
        default=None,
        help="Client certificate file (PEM) for mutual TLS",
    )
    request_parser.add_argument(
        "--key",
        type=str,
        default=None,
        help="Private key file for --cert, if not bundled in it",
    )
    request_parser.add_argument(
        "--timeout",
        type=positive_float,
        default=DEFAULT_TIMEOUT,
        help=f"Network timeout in seconds (default: {DEFAULT_TIMEOUT})",
    )
    request_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log request details to stderr",
    )

    return parser


def parse_request_args(namespace: argparse.Namespace) -> RequestArgs:
    """Convert parsed namespace to RequestArgs dataclass."""
    headers: dict[str, str] = {}
    for name, value in namespace.header or []:
        # First occurrence wins, same as the executor's header merge
        headers.setdefault(name, value)
    return RequestArgs(
        method=namespace.method,
        path=namespace.path,
        base_url=namespace.base_url,
        headers=headers,
        data=namespace.data,
        user=namespace.user,
        cert=namespace.cert,
        key=namespace.key,
        timeout=namespace.timeout,
        verbose=namespace.verbose,
    )


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "request":
        if namespace.key is not None and namespace.cert is None:
            parser.error("--key requires --cert")
        return parse_request_args(namespace)
    # Should not happen with required=True on subparsers
    parser.error(f"Unknown command: {namespace.command}")


def build_client_config(args: RequestArgs) -> ClientConfig:
    """Build the ClientConfig described by the command-line options."""
    certificate = None
    if args.cert is not None:
        certificate = ClientCertificate(cert_file=args.cert, key_file=args.key)
    return ClientConfig(
        base_url=args.base_url,
        basic_auth=args.user,
        client_certificate=certificate,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(argv)
        return run_request(parsed)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_request(args: RequestArgs) -> int:
    """Run request mode. Returns 0 if the call succeeded, 1 otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    executor = RequestExecutor(build_client_config(args), timeout=args.timeout)
    result = executor.execute(args.path, args.method, args.data, args.headers or None)

    print(result.model_dump_json(indent=2, exclude=_SECRET_FIELDS))
    if result.failure is not None:
        print(
            f"Request failed ({result.failure.kind.value}): {result.failure.message}",
            file=sys.stderr,
        )
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
