from __future__ import annotations

from functools import lru_cache
from pathlib import Path

PROMPT_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=8)
def load_prompt(filename: str) -> str:
    """Return the text of a prompt file shipped next to this module."""

    path = PROMPT_DIR / filename
    if not path.is_file():
        raise RuntimeError(f"Prompt file not found: {filename}")
    return path.read_text(encoding="utf-8").strip()
