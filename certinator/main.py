import argparse
import logging
import sys

from certinator.config import SERVICE_NAME, load_config
from certinator.errors import ConfigError, StartError
from certinator.handlers import register_pages
from certinator.server import ServerShell
from certinator.telemetry import Telemetry, init_metrics, init_tracing

logger = logging.getLogger("certinator")


def parse_args(argv=None):
    """
    Every option falls back to its environment variable when not given:
    --port HOST_PORT (required)
    --collector CERTINATOR_COLLECTOR_ENDPOINT, empty to disable span export
    --environment CERTINATOR_ENVIRONMENT
    --shutdown-grace CERTINATOR_SHUTDOWN_GRACE
    --log-level CERTINATOR_LOG_LEVEL
    """
    parser = argparse.ArgumentParser(prog=SERVICE_NAME, description="Start the certinator http server")
    parser.add_argument("--port", help="The port the http server listens on (default: $HOST_PORT)")
    parser.add_argument("--collector", help="The OTLP gRPC endpoint spans are exported to")
    parser.add_argument("--environment", help="The deployment environment attached to every span")
    parser.add_argument("--shutdown-grace", dest="shutdown_grace",
                        help="Seconds to wait for in-flight requests after a termination signal")
    parser.add_argument("--log-level", dest="log_level", help="The logging level, e.g. INFO or DEBUG")
    return parser.parse_args(argv)


def configure_logging(level):
    """
    Raises:
        ValueError: if level is not a known logging level
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown logging level {level}")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(
            port=args.port,
            collector=args.collector,
            environment=args.environment,
            shutdown_grace=args.shutdown_grace,
            log_level=args.log_level,
        )
    except ConfigError as e:
        #logging is not configured yet, fall back to the default stderr handler
        configure_logging("INFO")
        logger.error("invalid configuration: %s", e)
        return 1

    try:
        configure_logging(config.log_level)
    except ValueError:
        print("could not configure logging with level " + config.log_level, file=sys.stderr)
        return 1

    try:
        tracing = init_tracing(config.service_name, config.collector_endpoint, config.environment)
        metrics = init_metrics()
        server = ServerShell(config.service_name, Telemetry(tracing, metrics), config.listen_port,
                             shutdown_grace=config.shutdown_grace)
        register_pages(server)
        server.start()
    except StartError as e:
        logger.error("could not start server: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
