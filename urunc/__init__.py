"""Runtime helpers for unikernel containers: log forwarding, CLI utilities and networking."""

__version__ = "0.1.0"

__all__ = ["cli_utils", "constants", "log_forward", "managers", "netdev"]