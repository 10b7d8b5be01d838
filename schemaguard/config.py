"""Central configuration for SchemaGuard.

Contains:
- Project paths (trace and log output)
- Model endpoint settings (API configuration via .env)
- Retry controller defaults (attempt budget, timeouts, backoff)
- Generation parameters used for structured extraction calls
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# ============================================================================
# PROJECT PATHS
# ============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# Attempt traces written by save_trace() and the CLI stage
DIR_TRACES = DATA_DIR / "traces"
DIR_LOGS = DATA_DIR / "logs"


# ============================================================================
# MODEL ENDPOINT
# ============================================================================

load_dotenv(Path(__file__).parent / ".env")

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

# Default model for extraction calls (any OpenAI-compatible chat model id)
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "openai/gpt-4o-mini")

AVAILABLE_EXTRACTION_MODELS = [
    ("openai/gpt-4o-mini", "GPT-4o Mini (vision, cheap)"),
    ("openai/gpt-4o", "GPT-4o (vision)"),
    ("deepseek/deepseek-v3.2", "DeepSeek V3.2"),
    ("anthropic/claude-haiku-4.5", "Claude Haiku 4.5"),
]


# ============================================================================
# RETRY CONTROLLER
# ============================================================================

# Total model invocations per extraction are bounded by DEFAULT_MAX_RETRIES + 1
DEFAULT_MAX_RETRIES = 3

# Seconds to wait for one model invocation before it counts as a transport failure
DEFAULT_TIMEOUT_PER_ATTEMPT = 60.0

# Backoff before re-sending after a transport failure: base ** attempt seconds.
# 0 disables waiting.
DEFAULT_BACKOFF_BASE = 1.5

# Concurrent extractions in extract_batch()
BATCH_MAX_CONCURRENCY = 4


# ============================================================================
# GENERATION PARAMETERS
# ============================================================================

DEFAULT_TEMPERATURE = 0.0
DEFAULT_MAX_TOKENS = 2048

# How OpenRouterInvoker asks for structured output:
# "json_object" (response_format json_object), "json_schema" (schema-constrained)
# or "none" (rely on the prompt's format directive only)
RESPONSE_FORMAT_MODE = os.getenv("RESPONSE_FORMAT_MODE", "json_object")
