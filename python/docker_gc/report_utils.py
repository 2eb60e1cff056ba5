"""
Utility functions for cycle report formatting and saving.

This module provides functions to:
- Render a cycle summary as a table
- Save reports as JSON with timestamped filenames
"""
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from tabulate import tabulate

from docker_gc.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Timestamp Utilities
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/gc-cycle.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/gc-cycle-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Report Formatting and Saving
# ============================================================================

def _to_jsonable(data: Any) -> Any:
    """Recursively convert sets and datetimes into JSON-friendly values."""
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    elif isinstance(data, (set, frozenset)):
        return sorted(_to_jsonable(item) for item in data)
    elif isinstance(data, dict):
        return {k: _to_jsonable(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        return [_to_jsonable(item) for item in data]
    return data


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Sets are written as sorted lists and datetimes as ISO strings.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename

    Returns:
        Path to the saved file
    """
    p = Path(path)

    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))

    p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, "w") as f:
        json.dump(_to_jsonable(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)


def format_summary_table(rows: Iterable[Dict[str, Any]]) -> str:
    """Render summary rows (dicts sharing the same keys) as a grid table."""
    rows = list(rows)
    if not rows:
        return ""
    headers = list(rows[0].keys())
    return tabulate([[row.get(h) for h in headers] for row in rows], headers=headers, tablefmt="grid")
