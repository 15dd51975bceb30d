"""
Observability module: logging with run/node context fields.
"""

from mosaik.observability.logging import (
    bind_log_fields,
    clear_log_fields,
    configure_logging,
    log_fields,
)

__all__ = [
    "configure_logging",
    "bind_log_fields",
    "log_fields",
    "clear_log_fields",
]
