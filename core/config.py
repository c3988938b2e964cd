"""Runtime settings for identity resolution.

Values come from the environment, after a ``.env`` file at the repo root
(if present) has been loaded. Every detector and matcher also accepts an
explicit config object, so these are global defaults that a caller can
override per tenant.

Environment variables:
    RESOLUTION_DB_PATH            SQLite file (default: resolution.db at repo root)
    DEDUP_THRESHOLD_CERTAIN       0.95
    DEDUP_THRESHOLD_LIKELY        0.80
    DEDUP_THRESHOLD_POSSIBLE      0.60
    DEDUP_WEIGHT_VENDOR_NAME      0.3
    DEDUP_WEIGHT_INVOICE_NUMBER   0.3
    DEDUP_WEIGHT_INVOICE_DATE     0.2
    DEDUP_WEIGHT_TOTAL_AMOUNT     0.2
    DEDUP_DATE_TOLERANCE_DAYS     1
    DEDUP_AMOUNT_TOLERANCE        0.01
    SUPPLIER_MATCH_FLOOR          0.85
    SUPPLIER_REVIEW_FLOOR         0.70
    SUPPLIER_TIE_MARGIN           0.05
    LOG_LEVEL                     INFO
    LOG_JSON                      false
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.storage import DEFAULT_DB_PATH
from dedup.models import DedupConfig, DeduplicationThresholds, ScoringWeights
from supplier_resolver.models import MatchingConfig

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"


class ResolutionSettings(BaseModel):
    db_path: Path = DEFAULT_DB_PATH
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    log_level: str = "INFO"
    log_json: bool = False


def _set(target: Dict[str, Any], key: str, env: Mapping[str, str], name: str) -> None:
    value = env.get(name)
    if value is not None and value.strip() != "":
        target[key] = value.strip()


def load_settings(env: Optional[Mapping[str, str]] = None) -> ResolutionSettings:
    """Build settings from the environment.

    Args:
        env: Mapping to read instead of ``os.environ`` (the .env file is
            only loaded when reading the real environment)

    Raises:
        pydantic.ValidationError: A value is malformed or out of range
    """
    if env is None:
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH)
        env = os.environ

    thresholds: Dict[str, Any] = {}
    _set(thresholds, "certain", env, "DEDUP_THRESHOLD_CERTAIN")
    _set(thresholds, "likely", env, "DEDUP_THRESHOLD_LIKELY")
    _set(thresholds, "possible", env, "DEDUP_THRESHOLD_POSSIBLE")

    weights: Dict[str, Any] = {}
    _set(weights, "vendor_name", env, "DEDUP_WEIGHT_VENDOR_NAME")
    _set(weights, "invoice_number", env, "DEDUP_WEIGHT_INVOICE_NUMBER")
    _set(weights, "invoice_date", env, "DEDUP_WEIGHT_INVOICE_DATE")
    _set(weights, "total_amount", env, "DEDUP_WEIGHT_TOTAL_AMOUNT")

    dedup: Dict[str, Any] = {
        "thresholds": DeduplicationThresholds(**thresholds),
        "weights": ScoringWeights(**weights),
    }
    _set(dedup, "date_tolerance_days", env, "DEDUP_DATE_TOLERANCE_DAYS")
    _set(dedup, "amount_tolerance", env, "DEDUP_AMOUNT_TOLERANCE")

    matching: Dict[str, Any] = {}
    _set(matching, "match_floor", env, "SUPPLIER_MATCH_FLOOR")
    _set(matching, "review_floor", env, "SUPPLIER_REVIEW_FLOOR")
    _set(matching, "tie_margin", env, "SUPPLIER_TIE_MARGIN")

    settings: Dict[str, Any] = {
        "dedup": DedupConfig(**dedup),
        "matching": MatchingConfig(**matching),
        "log_json": env.get("LOG_JSON", "").strip().lower() in ("1", "true", "yes"),
    }
    _set(settings, "db_path", env, "RESOLUTION_DB_PATH")
    _set(settings, "log_level", env, "LOG_LEVEL")

    return ResolutionSettings(**settings)
