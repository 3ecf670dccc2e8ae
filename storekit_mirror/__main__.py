"""Entry point for running the mirror service as a module."""

import argparse
import os
import sys

import uvicorn

from storekit_mirror import __version__
from storekit_mirror.logging_config import LOG_LEVELS


def main() -> None:
    """Main entry point for the mirror service."""
    parser = argparse.ArgumentParser(
        description="StoreKit Mirror - observable entitlement state over a local store platform"
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Port to bind to (default: 8080)",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/store.yaml"),
        help="Path to store.yaml configuration file (default: config/store.yaml)",
    )

    args = parser.parse_args()

    # Read by create_app() and get_config() inside the server process
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    if args.log_format == "console":
        print("=" * 60)
        print(f"StoreKit Mirror v{__version__}")
        print("=" * 60)
        print(f"Host: {args.host}")
        print(f"Port: {args.port}")
        print(f"Log Level: {args.log_level}")
        print(f"Config: {args.config}")
        print("=" * 60)

    try:
        uvicorn.run(
            "storekit_mirror.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start mirror service: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
