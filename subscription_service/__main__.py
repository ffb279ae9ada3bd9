"""Run the subscription service: python -m subscription_service."""

import argparse
import os
import sys
from typing import Optional, Sequence

import uvicorn

from subscription_service.config import Config, ConfigurationError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subscription_service",
        description="Subscription checkout, payment confirmation and invoice notification service",
    )
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Port to bind to (default: 8080)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/service.yaml"),
        help="Path to service.yaml (default: config/service.yaml)",
    )

    collaborators = parser.add_argument_group("collaborators")
    collaborators.add_argument(
        "--gateway",
        choices=["local", "stripe"],
        help="Payment gateway provider, overriding payment_gateway.provider. "
        "'stripe' needs the API key variable named by payment_gateway.api_key_env",
    )
    collaborators.add_argument("--customer-service-url", help="Customer service base URL")
    collaborators.add_argument("--billing-service-url", help="Billing service base URL")
    collaborators.add_argument(
        "--notifications",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Send invoice notifications to billing after confirmation (default: from config)",
    )

    logs = parser.add_argument_group("logging")
    logs.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    logs.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )
    logs.add_argument(
        "--no-request-details",
        action="store_true",
        help="Log only method and path for incoming requests",
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development",
    )
    return parser


def export_settings(args: argparse.Namespace) -> None:
    """Hand command line choices to the app through the environment it reads at startup."""
    os.environ["CONFIG_PATH"] = args.config
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    if args.no_request_details:
        os.environ["LOG_REQUEST_DETAILS"] = "false"
    if args.gateway:
        os.environ["PAYMENT_GATEWAY_PROVIDER"] = args.gateway
    if args.customer_service_url:
        os.environ["CUSTOMER_SERVICE_URL"] = args.customer_service_url
    if args.billing_service_url:
        os.environ["BILLING_SERVICE_URL"] = args.billing_service_url
    if args.notifications is not None:
        os.environ["NOTIFICATIONS_ENABLED"] = "true" if args.notifications else "false"


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    export_settings(args)

    # fail before binding the port, with the file and reason on stderr
    try:
        Config(args.config)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    try:
        uvicorn.run(
            "subscription_service.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # request logging comes from RequestLoggingMiddleware
        )
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
