"""certinator: a small instrumented HTTP front-end for certificate requests."""
from certinator.errors import CertinatorError, ConfigError, StartError
from certinator.server import ServerShell
from certinator.telemetry import Telemetry, init_metrics, init_tracing

__version__ = "0.1.0"

__all__ = [
    "CertinatorError",
    "ConfigError",
    "ServerShell",
    "StartError",
    "Telemetry",
    "init_metrics",
    "init_tracing",
]
