"""
FeedLens Data Models
====================

Pydantic data models for entries, feeds, categories and automation rules.
These models correspond to the database schema and provide validation,
serialization and type hints.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Timestamps are stored as UTC ISO-8601 strings so they sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _loads(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        return json.loads(value) if value else default
    return value


class PrelimStatus(str, Enum):
    """Outcome of the preliminary evaluation."""
    PASSED = "passed"
    REJECTED = "rejected"


class Category(BaseModel):
    """User-owned category."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    created_at: datetime = Field(default_factory=utc_now)


class Feed(BaseModel):
    """Feed source owned by a user."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    user_id: str = Field(..., min_length=1, description="Owning user")
    title: str = Field(..., min_length=1, max_length=500)
    url: str = Field(..., min_length=1)
    category_id: Optional[int] = Field(default=None, description="Feed-level category")
    created_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"Feed({self.title})"


class MainPoint(BaseModel):
    point: str
    explanation: str = ""
    importance: int = Field(default=3, ge=1, le=5)


class Entry(BaseModel):
    """Ingested content item with its analysis state."""
    id: str = Field(..., min_length=1, description="Unique entry ID")
    feed_id: Optional[int] = Field(default=None)
    title: str = Field(..., description="Entry title")
    content: Optional[str] = Field(default=None, description="Full content, absent before fetch")
    summary: Optional[str] = Field(default=None, description="Feed-supplied excerpt")
    author: Optional[str] = Field(default=None)
    url: Optional[str] = Field(default=None)
    tags: List[str] = Field(default_factory=list, description="Tag set, order irrelevant")
    category_id: Optional[int] = Field(default=None, description="Entry-level category")

    is_read: bool = False
    read_at: Optional[datetime] = None
    is_starred: bool = False
    is_archived: bool = False

    prelim_status: Optional[PrelimStatus] = None
    prelim_value: Optional[int] = None
    prelim_ignore: Optional[bool] = None
    prelim_reason: Optional[str] = None
    prelim_summary: Optional[str] = None
    prelim_language: Optional[str] = None
    prelim_analyzed_at: Optional[datetime] = None
    prelim_model: Optional[str] = None

    ai_one_line_summary: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_main_points: List[MainPoint] = Field(default_factory=list)
    ai_key_quotes: List[str] = Field(default_factory=list)
    ai_domain: Optional[str] = None
    ai_subcategory: Optional[str] = None
    ai_tags: List[str] = Field(default_factory=list)
    ai_score: Optional[int] = Field(default=None, ge=1, le=10)
    ai_score_dimensions: Dict[str, float] = Field(default_factory=dict)
    ai_analysis_model: Optional[str] = None
    ai_processing_time_ms: Optional[int] = None
    ai_reflection_rounds: Optional[int] = None
    ai_analyzed_at: Optional[datetime] = None

    has_embedding: bool = Field(default=False, description="Whether a vector is stored")
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        """Tags behave as a set; keep first occurrence order."""
        seen: Dict[str, None] = {}
        for tag in v:
            if isinstance(tag, str) and tag.strip():
                seen.setdefault(tag.strip(), None)
        return list(seen)

    @property
    def text_for_analysis(self) -> str:
        return self.content or self.summary or ""

    @classmethod
    def from_db_row(cls, row: Any) -> "Entry":
        """Create Entry from a database row with JSON parsing."""
        data = dict(row)
        data["tags"] = _loads(data.get("tags"), [])
        data["ai_main_points"] = _loads(data.get("ai_main_points"), [])
        data["ai_key_quotes"] = _loads(data.get("ai_key_quotes"), [])
        data["ai_tags"] = _loads(data.get("ai_tags"), [])
        data["ai_score_dimensions"] = _loads(data.get("ai_score_dimensions"), {})
        data["has_embedding"] = data.pop("embedding", None) is not None
        data.pop("embedding_norm", None)
        data.pop("embedding_metadata", None)
        return cls(**data)

    def __str__(self) -> str:
        return f"Entry({self.id}: {self.title[:50]})"


# Rule conditions and actions

RULE_FIELDS = ("title", "content", "author", "category", "tag", "feedTitle")
RULE_OPERATORS = (
    "contains",
    "notContains",
    "equals",
    "notEquals",
    "matches",
    "in",
    "gt",
    "lt",
)


class Condition(BaseModel):
    """Single rule condition.

    Field and operator stay plain strings so stored rules with unknown values
    still load; the engine evaluates those to False.
    """
    field: str
    operator: str
    value: Any = None


class _ActionBase(BaseModel):
    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def flatten_params(cls, data: Any) -> Any:
        """Accept the stored ``{"type": ..., "params": {...}}`` shape."""
        if isinstance(data, dict) and isinstance(data.get("params"), dict):
            merged = {k: v for k, v in data.items() if k != "params"}
            for key, value in data["params"].items():
                merged.setdefault(key, value)
            return merged
        return data


class MarkReadAction(_ActionBase):
    type: Literal["markRead"] = "markRead"


class MarkUnreadAction(_ActionBase):
    type: Literal["markUnread"] = "markUnread"


class StarAction(_ActionBase):
    type: Literal["star"] = "star"


class UnstarAction(_ActionBase):
    type: Literal["unstar"] = "unstar"


class ArchiveAction(_ActionBase):
    type: Literal["archive"] = "archive"


class UnarchiveAction(_ActionBase):
    type: Literal["unarchive"] = "unarchive"


class AssignCategoryAction(_ActionBase):
    type: Literal["assignCategory"] = "assignCategory"
    category_id: Optional[int] = Field(default=None, alias="categoryId")


class AddTagAction(_ActionBase):
    type: Literal["addTag"] = "addTag"
    tag: Optional[str] = None


class RemoveTagAction(_ActionBase):
    type: Literal["removeTag"] = "removeTag"
    tag: Optional[str] = None


class SkipAction(_ActionBase):
    type: Literal["skip"] = "skip"


Action = Annotated[
    Union[
        MarkReadAction,
        MarkUnreadAction,
        StarAction,
        UnstarAction,
        ArchiveAction,
        UnarchiveAction,
        AssignCategoryAction,
        AddTagAction,
        RemoveTagAction,
        SkipAction,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = (
    "markRead",
    "markUnread",
    "star",
    "unstar",
    "archive",
    "unarchive",
    "assignCategory",
    "addTag",
    "removeTag",
    "skip",
)

action_adapter: TypeAdapter = TypeAdapter(Action)


def _known_actions(value: Any) -> Any:
    value = _loads(value, [])
    if not isinstance(value, list):
        return value
    kept = []
    for item in value:
        if isinstance(item, dict) and item.get("type") not in ACTION_TYPES:
            logger.warning(f"Dropping unknown rule action type: {item.get('type')!r}")
            continue
        kept.append(item)
    return kept


def dump_actions(actions: List[Any]) -> str:
    return json.dumps(
        [action_adapter.dump_python(a, by_alias=True, exclude_none=True) for a in actions]
    )


def dump_conditions(conditions: List[Condition]) -> str:
    return json.dumps([c.model_dump() for c in conditions])


class RuleDraft(BaseModel):
    """Unsaved rule as authored by a user."""
    name: str = Field(default="Untitled rule", min_length=1, max_length=200)
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)

    @field_validator("conditions", mode="before")
    @classmethod
    def parse_conditions(cls, v):
        return _loads(v, [])

    @field_validator("actions", mode="before")
    @classmethod
    def parse_actions(cls, v):
        return _known_actions(v)


class Rule(RuleDraft):
    """Persisted automation rule."""
    id: Optional[int] = Field(default=None, description="Database primary key")
    user_id: str = Field(..., min_length=1)
    is_enabled: bool = True
    matched_count: int = Field(default=0, ge=0)
    last_matched_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_db_row(cls, row: Any) -> "Rule":
        return cls(**dict(row))

    def __str__(self) -> str:
        return f"Rule({self.id}: {self.name})"
