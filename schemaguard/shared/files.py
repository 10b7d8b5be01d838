import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any


# ============================================================================
# LOGGING
# ============================================================================

def setup_logging(name: str) -> logging.Logger:
    """Configures a standard logger."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - [%(levelname)s] - %(message)s",
        datefmt="%H:%M:%S"
    )
    return logging.getLogger(name)


def add_file_handler(log_file: Path) -> Path:
    """Mirror log output to a file (used by the CLI stage)."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(
        logging.Formatter("%(asctime)s - [%(levelname)s] - %(message)s", datefmt="%H:%M:%S")
    )
    logging.getLogger().addHandler(fh)

    return log_file


# ============================================================================
# JSON OUTPUT
# ============================================================================

def _json_default(obj: Any) -> Any:
    # Decimals are written as strings so no precision is lost on disk
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_json(data: Any, indent: int = 2) -> str:
    """Serialize extraction data (which may hold Decimals) to a JSON string."""
    return json.dumps(data, indent=indent, ensure_ascii=False, default=_json_default)


def save_json(data: Any, output_path: Path) -> Path:
    """Write data as pretty JSON, creating parent directories as needed."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(to_json(data), encoding="utf-8")
    return output_path
