"""Round lifecycle and elimination engine.

Imported by the HTTP routes, the sweeper task and the CLI commands. Every
entry point takes an explicit :class:`EngineConfig`; nothing in here reads
the Flask config directly.
"""

from .config import EngineConfig
from .errors import (
    HighlanderError,
    SelectionRejected,
    DeadlineRejected,
    RoundPreconditionFailed,
    InvariantViolation,
)

__all__ = [
    'EngineConfig',
    'HighlanderError',
    'SelectionRejected',
    'DeadlineRejected',
    'RoundPreconditionFailed',
    'InvariantViolation',
]
