# recommender/config.py
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config.yaml"

SIMILAR_AGGREGATIONS = ("sum", "mean", "max")


@dataclass
class AlgorithmParams:
    app_name: str = "ecomm"
    unseen_only: bool = True
    seen_events: List[str] = field(default_factory=lambda: ["buy", "view"])
    similar_events: List[str] = field(default_factory=lambda: ["view"])
    rank: int = 10
    num_iterations: int = 20
    lambda_: float = 0.01
    seed: Optional[int] = None
    workers: int = 1
    similar_aggregation: str = "sum"
    store_timeout_ms: int = 200

    def __post_init__(self):
        if self.similar_aggregation not in SIMILAR_AGGREGATIONS:
            raise ValueError(
                f"similar_aggregation must be one of {SIMILAR_AGGREGATIONS}, got {self.similar_aggregation!r}"
            )
        if self.rank <= 0:
            raise ValueError(f"rank must be positive, got {self.rank}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    @property
    def store_timeout(self) -> float:
        return self.store_timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AlgorithmParams":
        raw = dict(raw or {})
        # `lambda` is a keyword in Python
        if "lambda" in raw:
            raw["lambda_"] = raw.pop("lambda")
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown algorithm options: {sorted(unknown)}")
        return cls(**raw)


@dataclass
class AppConfig:
    algorithm: AlgorithmParams
    registry: str = "model_registry"
    model_name: str = "ecomm"
    model_version: str = "v0.1"
    events_path: Optional[str] = None
    log_level: str = "INFO"
    env: str = "dev"


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Optional[str] = None, env: Optional[str] = None) -> AppConfig:
    """
    Load config with environment override:
      - loads .env
      - resolves env = arg or APP_ENV or 'dev'
      - reads config.yaml (or RECS_CONFIG) and merges `base` with the env section
      - applies MODEL_REGISTRY / MODEL_VERSION / EVENTS_PATH / UNSEEN_ONLY overrides
    """
    load_dotenv()

    env = (env or os.getenv("APP_ENV") or "dev").lower()

    cfg_path = Path(path or os.getenv("RECS_CONFIG") or DEFAULT_CONFIG_PATH)
    raw: Dict[str, Any] = {}
    if cfg_path.exists():
        with open(cfg_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    merged = _merge(raw.get("base", {}), raw.get(env, {}))
    algorithm = dict(merged.pop("algorithm", {}) or {})

    if os.getenv("UNSEEN_ONLY"):
        algorithm["unseen_only"] = _env_bool(os.environ["UNSEEN_ONLY"])
    if os.getenv("APP_NAME"):
        algorithm["app_name"] = os.environ["APP_NAME"]

    for key, var in (("registry", "MODEL_REGISTRY"), ("model_version", "MODEL_VERSION"),
                     ("model_name", "MODEL_NAME"), ("events_path", "EVENTS_PATH")):
        if os.getenv(var):
            merged[key] = os.environ[var]

    return AppConfig(algorithm=AlgorithmParams.from_dict(algorithm), env=env, **merged)
