"""
Command-line receipt check.

Usage:
    # Print the diagnostic rendering
    iap-receipt "$(base64 < receipt.bin)" com.example.app

    # Read the base64 receipt from stdin and print JSON
    iap-receipt - com.example.app --json < receipt.b64

Exit codes: 0 receipt accepted, 1 receipt rejected, 2 usage or configuration error.
"""

import argparse
import base64
import sys

from iap_receipt.config import ConfigurationError, settings
from iap_receipt.exceptions import ReceiptError
from iap_receipt.models.api import ReceiptResponse
from iap_receipt.observability import get_logger, log_context, setup_logging
from iap_receipt.services.receipt import ReceiptDecoder

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iap-receipt",
        description="Verify and decode a base64 encoded App Store receipt",
    )
    parser.add_argument("receipt", help="Base64 encoded receipt, or '-' to read it from stdin")
    parser.add_argument("bundle_id", help="Expected application bundle ID")
    parser.add_argument(
        "--root-cert",
        help=(
            "DER or PEM root certificate "
            "(default: ROOT_CERTIFICATE_PATH, else the bundled Apple root)"
        ),
    )
    parser.add_argument("--json", action="store_true", help="Print the receipt as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def _read_receipt(argument: str) -> bytes:
    encoded = sys.stdin.read() if argument == "-" else argument
    return base64.b64decode("".join(encoded.split()), validate=True)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    overrides: dict[str, object] = {}
    if args.root_cert:
        overrides["root_certificate_path"] = args.root_cert
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    config = settings.model_copy(update=overrides)
    setup_logging(config)

    try:
        data = _read_receipt(args.receipt)
    except ValueError as e:
        print(f"error: receipt is not valid base64: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        decoder = ReceiptDecoder.from_settings(config)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    with log_context(expected_bundle_id=args.bundle_id):
        try:
            receipt = decoder.parse(data, args.bundle_id)
        except ReceiptError as e:
            logger.warning("receipt_rejected", error_type=type(e).__name__, error=str(e))
            print(f"error: {e}", file=sys.stderr)
            return EXIT_REJECTED

        logger.info("receipt_accepted", purchases=len(receipt.in_app_purchases))

    if args.json:
        print(ReceiptResponse.from_receipt(receipt).model_dump_json(indent=2))
    else:
        print(receipt)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
