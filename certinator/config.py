import os
from dataclasses import dataclass

from certinator.errors import ConfigError

SERVICE_NAME = "certinator"
DEFAULT_COLLECTOR_ENDPOINT = "localhost:4317"
DEFAULT_ENVIRONMENT = "development"
DEFAULT_SHUTDOWN_GRACE = 1.0
DEFAULT_LOG_LEVEL = "INFO"

#environment variables read at startup
PORT_ENV = "HOST_PORT"
COLLECTOR_ENV = "CERTINATOR_COLLECTOR_ENDPOINT"
ENVIRONMENT_ENV = "CERTINATOR_ENVIRONMENT"
SHUTDOWN_GRACE_ENV = "CERTINATOR_SHUTDOWN_GRACE"
LOG_LEVEL_ENV = "CERTINATOR_LOG_LEVEL"


@dataclass(frozen=True)
class ServerConfig:
    listen_port: int
    service_name: str = SERVICE_NAME
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    collector_endpoint: str = DEFAULT_COLLECTOR_ENDPOINT
    environment: str = DEFAULT_ENVIRONMENT
    log_level: str = DEFAULT_LOG_LEVEL


def validate_port(port):
    """
    Check that port is an integer usable as a TCP port
    Raises:
        ConfigError: if it is not
    """
    #bool is an int subclass, reject it explicitly
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError(f"port must be an integer, got {port!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"port {port} is outside the range 1-65535")
    return port


def parse_port(raw):
    """
    Parse the raw port value coming from the environment or the command line
    Returns:
        int: the port
    """
    if raw is None or raw.strip() == "":
        raise ConfigError(f"{PORT_ENV} is not set")
    try:
        port = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{raw!r} is not a valid port") from None
    return validate_port(port)


def parse_grace(raw):
    if raw is None:
        return DEFAULT_SHUTDOWN_GRACE
    try:
        grace = float(raw)
    except ValueError:
        raise ConfigError(f"{raw!r} is not a valid shutdown grace period") from None
    if grace < 0:
        raise ConfigError("shutdown grace period cannot be negative")
    return grace


def load_config(port=None, collector=None, environment=None, shutdown_grace=None,
                log_level=None, environ=None):
    """
    Build the server configuration. Explicit arguments (usually coming from the
    command line) win over the environment.
    Returns:
        ServerConfig
    """
    if environ is None:
        environ = os.environ
    if port is None:
        port = environ.get(PORT_ENV)
    if collector is None:
        collector = environ.get(COLLECTOR_ENV, DEFAULT_COLLECTOR_ENDPOINT)
    if environment is None:
        environment = environ.get(ENVIRONMENT_ENV, DEFAULT_ENVIRONMENT)
    if shutdown_grace is None:
        shutdown_grace = environ.get(SHUTDOWN_GRACE_ENV)
    if log_level is None:
        log_level = environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)

    return ServerConfig(
        listen_port=parse_port(port),
        shutdown_grace=parse_grace(shutdown_grace),
        collector_endpoint=collector.strip(),
        environment=environment,
        log_level=log_level.upper(),
    )
