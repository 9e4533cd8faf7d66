"""Request/response models and event record validation.

Query and result payloads are pydantic models shared by the engine and the
FastAPI service. Event records read from snapshot files are checked against
an Avro schema with fastavro before they are turned into ``Event`` objects.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

import fastavro
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Query / result payloads
# -------------------------------------------------------------------------
class Query(BaseModel):
    """A recommendation request."""
    model_config = ConfigDict(populate_by_name=True)

    user: str
    num: int = Field(..., gt=0)
    categories: Optional[Set[str]] = None
    white_list: Optional[Set[str]] = Field(default=None, alias="whiteList")
    black_list: Optional[Set[str]] = Field(default=None, alias="blackList")


class ItemScore(BaseModel):
    item: str
    score: float


class PredictedResult(BaseModel):
    """Ranked items, best first. Never null; may be empty."""
    model_config = ConfigDict(populate_by_name=True)

    item_scores: List[ItemScore] = Field(default_factory=list, alias="itemScores")


# -------------------------------------------------------------------------
# Event records
# -------------------------------------------------------------------------
EVENT_SCHEMA = {
    "type": "record",
    "name": "Event",
    "fields": [
        {"name": "event", "type": "string"},
        {"name": "entity_type", "type": "string"},
        {"name": "entity_id", "type": "string"},
        {"name": "target_entity_type", "type": ["null", "string"], "default": None},
        {"name": "target_entity_id", "type": ["null", "string"], "default": None},
        # JSON-encoded property map
        {"name": "properties", "type": "string", "default": "{}"},
        # microseconds since epoch, UTC
        {"name": "event_time", "type": "long"},
    ],
}

_PARSED_EVENT_SCHEMA = fastavro.parse_schema(EVENT_SCHEMA)


def validate_event_record(record: Dict[str, Any]) -> bool:
    """Validate a single flat event record against the Avro event schema."""
    try:
        fastavro.validation.validate(record, _PARSED_EVENT_SCHEMA)
        return True
    except fastavro.validation.ValidationError as e:
        logger.warning(f"[AVRO] Event record failed validation: {e}")
        return False
