"""Main entry point for the metrics bridge."""
import argparse
import logging
import signal
import sys

from pythonjsonlogger.json import JsonFormatter

from metrics_bridge.bridge import BridgeApp
from metrics_bridge.config import load_config
from metrics_bridge.errors import ConfigError
from metrics_bridge.server import BridgeAPI

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the configured log format."""
    if log_format == "json":
        return JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt=DATE_FORMAT,
            rename_fields={"asctime": "time", "levelname": "level", "name": "logger"},
        )
    return logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt=DATE_FORMAT,
    )


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Metrics Bridge - re-expose upstream and host metrics for scraping"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Metrics Bridge")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Collection mode: {config.collection.mode}")
    logger.info(f"Upstreams configured: {len(config.upstreams)}")
    if config.redpanda.brokers:
        logger.info(f"Redpanda brokers: {', '.join(config.redpanda.brokers)}")

    bridge = BridgeApp(config)
    bridge.start()
    api = BridgeAPI(bridge)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        bridge.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        f"Serving {config.exporter.metrics_path} on "
        f"{config.exporter.bind_address}:{config.exporter.port}"
    )
    try:
        api.run(host=config.exporter.bind_address, port=config.exporter.port)
    except Exception as e:
        logger.error(f"HTTP server error: {e}", exc_info=True)
        bridge.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
