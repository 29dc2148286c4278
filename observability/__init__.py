"""
Interaction logging for the generation gateway.

Write-only audit trail; never affects the response served.
"""

from observability.interaction_log import (
    InteractionLogger,
    LogRecord,
    count_tokens,
    generate_request_id,
    process_snapshot,
    read_records,
    last_record,
    summarize,
)

__all__ = [
    "InteractionLogger",
    "LogRecord",
    "count_tokens",
    "generate_request_id",
    "process_snapshot",
    "read_records",
    "last_record",
    "summarize",
]
