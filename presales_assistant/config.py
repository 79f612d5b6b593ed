from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    database_url: str = "sqlite+pysqlite:///./data/presales_assistant.db"
    storage_root: Path = Path("./data")
    knowledge_index_dir: Path = Path("./data/whoosh")
    template_dir: Path = Path("./data/templates")
    llm_model: str = "gemini-2.5-flash"
    worker_count: int = 2
    store_retry_limit: int = 3
    store_retry_backoff_seconds: float = 1.0
    shutdown_grace_seconds: float = 30.0
    repair_invalid_json: bool = False
    estimation_policy_enabled: bool = True
    estimation_min_item_hours: float = 1.0
    estimation_max_item_hours: float = 80.0
    estimation_round_to_hours: float = 0.5
    reference_median_cap_multiplier: float = 1.10
    reference_shrinkage_to_median: float = 0.9
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        log_dir = os.getenv("LOG_DIR")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            storage_root=Path(os.getenv("SCOPE_STORAGE_ROOT", "./data")),
            knowledge_index_dir=Path(os.getenv("KNOWLEDGE_INDEX_DIR", "./data/whoosh")),
            template_dir=Path(os.getenv("TEMPLATE_DIR", "./data/templates")),
            llm_model=os.getenv("LLM_MODEL", cls.llm_model),
            worker_count=int(os.getenv("WORKER_COUNT", "2")),
            store_retry_limit=int(os.getenv("STORE_RETRY_LIMIT", "3")),
            store_retry_backoff_seconds=float(os.getenv("STORE_RETRY_BACKOFF_SECONDS", "1.0")),
            shutdown_grace_seconds=float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30")),
            repair_invalid_json=_env_bool("REPAIR_INVALID_JSON", False),
            estimation_policy_enabled=_env_bool("ESTIMATION_POLICY_ENABLED", True),
            estimation_min_item_hours=float(os.getenv("ESTIMATION_MIN_ITEM_HOURS", "1")),
            estimation_max_item_hours=float(os.getenv("ESTIMATION_MAX_ITEM_HOURS", "80")),
            estimation_round_to_hours=float(os.getenv("ESTIMATION_ROUND_TO_HOURS", "0.5")),
            reference_median_cap_multiplier=float(os.getenv("REFERENCE_MEDIAN_CAP_MULTIPLIER", "1.10")),
            reference_shrinkage_to_median=float(os.getenv("REFERENCE_SHRINKAGE_TO_MEDIAN", "0.9")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=Path(log_dir) if log_dir else None,
        )


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """
    Console logging for the whole process, plus `<log_dir>/presales_assistant.log`
    when a log directory is given.
    """
    handlers = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "presales_assistant.log", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
