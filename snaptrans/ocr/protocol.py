"""Message envelopes exchanged with the OCR execution context.

Payloads are plain dicts of builtins so they cross thread and process
boundaries unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

# Requests
INITIALIZE = "INITIALIZE"
WARMUP = "WARMUP"
PROCESS_IMAGE = "PROCESS_IMAGE"
TERMINATE = "TERMINATE"

# Responses
INITIALIZED = "INITIALIZED"
WARMED_UP = "WARMED_UP"
RESULT = "RESULT"
ERROR = "ERROR"

REQUEST_TYPES = (INITIALIZE, WARMUP, PROCESS_IMAGE, TERMINATE)
RESPONSE_TYPES = (INITIALIZED, WARMED_UP, RESULT, ERROR)


@dataclass
class Envelope:
    id: str
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


def error_envelope(msg_id: str, code: str, message: str) -> Envelope:
    return Envelope(id=msg_id, type=ERROR, payload={"code": code, "message": message})
