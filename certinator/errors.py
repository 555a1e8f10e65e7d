# errors raised while bringing the server up


class CertinatorError(Exception):
    """Base class for certinator errors"""


class ConfigError(CertinatorError):
    """Invalid or missing startup configuration (e.g. the listen port)."""


class StartError(CertinatorError):
    """The server could not start: listener bind failure or telemetry setup failure."""
