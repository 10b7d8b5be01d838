# Shared utilities for SchemaGuard

from .files import (
    setup_logging,
    add_file_handler,
    save_json,
    to_json,
)

# OpenRouter model endpoint
from .openrouter_client import (
    call_chat_completion,
    build_response_format,
    OpenRouterInvoker,
)

from .trace_logger import build_trace, save_trace
