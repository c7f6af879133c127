from .outcomes import (
    REDFLAG_BAD_SHAPE,
    REDFLAG_ILLEGAL_MOVE,
    REDFLAG_STATE_MISMATCH,
    REDFLAG_TOO_LONG,
    REDFLAG_UNPARSEABLE,
    IllegalMove,
    Malformed,
    Parsed,
    ScreenResult,
    Valid,
)
from .parser import parse_response
from .screen import RedFlagFilter

__all__ = [
    "REDFLAG_BAD_SHAPE",
    "REDFLAG_ILLEGAL_MOVE",
    "REDFLAG_STATE_MISMATCH",
    "REDFLAG_TOO_LONG",
    "REDFLAG_UNPARSEABLE",
    "IllegalMove",
    "Malformed",
    "Parsed",
    "ScreenResult",
    "Valid",
    "parse_response",
    "RedFlagFilter",
]
