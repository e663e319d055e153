"""
Lesson Audit Configuration

Central settings loaded from environment variables.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    # --- Versioning ---
    CORE_VERSION: str = "1.0.0"

    # --- Text generation ---
    LLM_PROVIDER: str = os.getenv("LESSONAUDIT_LLM_PROVIDER", "gemini")
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-pro")
    GEMINI_FAST_MODEL: str = os.getenv("GEMINI_FAST_MODEL", "gemini-2.5-flash")
    GEMINI_EMBEDDING_MODEL: str = os.getenv(
        "GEMINI_EMBEDDING_MODEL", "text-embedding-004"
    )

    # --- Concurrency ---
    MAX_CONCURRENCY: int = int(os.getenv("LESSONAUDIT_MAX_CONCURRENCY", "4"))

    # --- Timeouts (seconds) per call type ---
    TIMEOUT_CLASSIFICATION: float = float(
        os.getenv("LESSONAUDIT_TIMEOUT_CLASSIFICATION", "60")
    )
    TIMEOUT_ANALYSIS: float = float(os.getenv("LESSONAUDIT_TIMEOUT_ANALYSIS", "180"))
    TIMEOUT_SAMPLE: float = float(os.getenv("LESSONAUDIT_TIMEOUT_SAMPLE", "200"))
    TIMEOUT_ENRICHMENT: float = float(
        os.getenv("LESSONAUDIT_TIMEOUT_ENRICHMENT", "150")
    )
    TIMEOUT_TRANSCRIPTION: float = float(
        os.getenv("LESSONAUDIT_TIMEOUT_TRANSCRIPTION", "240")
    )

    # --- Self-consistency ---
    SELF_CONSISTENCY_SAMPLES: int = int(os.getenv("LESSONAUDIT_SAMPLES", "3"))
    DISAGREEMENT_THRESHOLD: float = float(
        os.getenv("LESSONAUDIT_DISAGREEMENT_THRESHOLD", "15")
    )

    # --- Rigor validation ---
    DISCREPANCY_THRESHOLD: int = int(
        os.getenv("LESSONAUDIT_DISCREPANCY_THRESHOLD", "30")
    )

    # --- Vector similarity ---
    SEMANTIC_CACHE_THRESHOLD: float = float(
        os.getenv("LESSONAUDIT_SEMANTIC_CACHE_THRESHOLD", "0.95")
    )
    CURRICULUM_MATCH_THRESHOLD: float = float(
        os.getenv("LESSONAUDIT_CURRICULUM_THRESHOLD", "0.7")
    )
    CURRICULUM_MATCH_LIMIT: int = int(os.getenv("LESSONAUDIT_CURRICULUM_LIMIT", "5"))


settings = Settings()
