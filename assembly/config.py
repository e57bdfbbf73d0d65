"""
Runtime configuration for the assembly pipeline.

Values come from the environment (a local .env file is loaded on import).
AssemblyConfig bundles them per run so callers and tests can override.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# ── Generation ────────────────────────────────────────────────────────────────
GPT_MODEL = os.getenv("GPT_MODEL", "gpt-4o-mini")
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "30"))
MAX_GENERATION_ROUNDS = int(os.getenv("MAX_GENERATION_ROUNDS", "2"))

# ── Bank / dedup ──────────────────────────────────────────────────────────────
BANK_FETCH_MULTIPLIER = int(os.getenv("BANK_FETCH_MULTIPLIER", "3"))
REDUNDANCY_THRESHOLD = float(os.getenv("REDUNDANCY_THRESHOLD", "0.85"))
_recent = os.getenv("EXCLUDE_RECENT_DAYS")
EXCLUDE_RECENT_DAYS = int(_recent) if _recent else None


class AssemblyConfig(BaseModel):
    """Per-run knobs for the assembler. Defaults mirror the environment."""
    max_generation_rounds: int = Field(MAX_GENERATION_ROUNDS, ge=0)
    generation_timeout_seconds: float = Field(GENERATION_TIMEOUT_SECONDS, gt=0)
    bank_fetch_multiplier: int = Field(BANK_FETCH_MULTIPLIER, ge=1)
    redundancy_threshold: float = Field(REDUNDANCY_THRESHOLD, gt=0, le=1)
    persist_generated: bool = True
    exclude_recent_days: Optional[int] = Field(EXCLUDE_RECENT_DAYS, ge=0)   # skip items used within N days
