"""Data models for the NodeMorph MCP server."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

PN_PATH = "jcr:path"
PN_PRIMARY_TYPE = "jcr:primaryType"
PN_TITLE = "jcr:title"
PN_CONTENT = "jcr:content"
PN_LAST_MODIFIED = "cq:lastModified"
PN_LAST_MODIFIED_BY = "cq:lastModifiedBy"

NT_PAGE = "cq:Page"
NT_PAGE_CONTENT = "cq:PageContent"
NT_BASE = "nt:base"
NT_UNSTRUCTURED = "nt:unstructured"

DEFAULT_PROJECTION: tuple[str, ...] = (PN_TITLE, PN_PRIMARY_TYPE)

PropertyValue = Union[str, list[str]]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class NodeMorphError(Exception):
    """Base exception for all NodeMorph errors."""


class NetworkError(NodeMorphError):
    """Transport or server failure while talking to the repository."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(NetworkError):
    """The repository rejected our credentials."""


class TimeoutError(NetworkError):  # noqa: A001
    """A repository request exceeded the configured timeout."""

    def __init__(self, operation: str):
        super().__init__(f"Request timed out: {operation}")
        self.operation = operation


class ValidationError(NodeMorphError):
    """A request was rejected before anything was sent to the repository."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class APIConfiguration(BaseModel):
    """Connection settings for the repository HTTP API."""

    base_url: str = "http://localhost:4502"
    username: str = "admin"
    password: SecretStr = SecretStr("admin")
    timeout: float = 30.0
    query_endpoint: str = "/bin/querybuilder.json"
    update_endpoint: str = "/bin/nodemorph/update"
    max_concurrency: int = Field(default=4, ge=1)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def as_property_value(value: Any) -> PropertyValue:
    """Normalize a JSON value to a property value (booleans lowercased)."""
    if isinstance(value, list):
        return [_scalar_text(v) for v in value]
    return _scalar_text(value)


def property_text(value: PropertyValue | None) -> str | None:
    """Render a property value as a single string (multi-values comma-joined)."""
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(value)
    return value


class Node(BaseModel):
    """A node of the repository tree, as loaded from a hit or a node read."""

    path: str
    primary_type: str = NT_UNSTRUCTURED
    title: str | None = None
    last_modified: datetime | None = None
    properties: dict[str, PropertyValue] = Field(default_factory=dict)
    children: dict[str, "Node"] = Field(default_factory=dict)

    @property
    def segments(self) -> list[str]:
        return [s for s in self.path.split("/") if s]

    @property
    def name(self) -> str:
        segments = self.segments
        return segments[-1] if segments else ""

    @property
    def parent_path(self) -> str | None:
        segments = self.segments
        if not segments:
            return None
        return "/" + "/".join(segments[:-1])

    def child_path(self, name: str) -> str:
        return f"{self.path.rstrip('/')}/{name}"

    @classmethod
    def from_json(cls, path: str, data: dict[str, Any]) -> "Node":
        """Build a node from a JSON object of properties and nested children.

        Nested dicts become children (their path is derived from ``path``);
        everything else is a property. Works for both query hits and
        ``<path>.<depth>.json`` node reads.
        """
        properties: dict[str, PropertyValue] = {}
        children: dict[str, Node] = {}
        for key, value in data.items():
            if key == PN_PATH:
                continue
            if isinstance(value, dict):
                children[key] = cls.from_json(f"{path.rstrip('/')}/{key}", value)
            elif value is not None:
                properties[key] = as_property_value(value)

        last_modified = None
        raw_modified = property_text(properties.get(PN_LAST_MODIFIED) or properties.get("jcr:lastModified"))
        if raw_modified:
            try:
                last_modified = datetime.fromisoformat(raw_modified.replace("Z", "+00:00"))
            except ValueError:
                last_modified = None

        return cls(
            path=path,
            primary_type=property_text(properties.get(PN_PRIMARY_TYPE)) or NT_UNSTRUCTURED,
            title=property_text(properties.get(PN_TITLE)),
            last_modified=last_modified,
            properties=properties,
            children=children,
        )

    @classmethod
    def from_hit(cls, hit: dict[str, Any]) -> "Node":
        return cls.from_json(str(hit.get(PN_PATH, "")), hit)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class MatchOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"


class PropertyMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    operator: MatchOperator = MatchOperator.EQUALS


class SearchCriteria(BaseModel):
    """Raw search input as typed by an operator."""

    path: str = ""
    query: str = ""
    match_property: bool = False
    property_name: str = ""
    substring_match: bool = False
    page_only: bool = False
    properties: str = ""


class FilterSpec(BaseModel):
    """Normalized, engine-agnostic description of a search."""

    model_config = ConfigDict(frozen=True)

    path: str
    node_name: str | None = None
    property_match: PropertyMatch | None = None
    type_restriction: str | None = None
    limit: int = 1000
    properties: tuple[str, ...] = DEFAULT_PROJECTION

    @model_validator(mode="after")
    def _exclusive_clauses(self) -> "FilterSpec":
        if self.node_name is not None and self.property_match is not None:
            raise ValueError("node_name and property_match are mutually exclusive")
        return self


class SearchResult(BaseModel):
    count: int
    hits: list[dict[str, Any]] = Field(default_factory=list)
    properties: tuple[str, ...] = DEFAULT_PROJECTION

    def nodes(self) -> list[Node]:
        return [Node.from_hit(hit) for hit in self.hits]


# ---------------------------------------------------------------------------
# Mutation results
# ---------------------------------------------------------------------------


class ActionStatus(str, Enum):
    SUCCESS = "Success"
    SKIPPED = "Skipped"
    FAILED = "Failed"

    @classmethod
    def from_wire(cls, value: str) -> "ActionStatus":
        """Map a status word from the update endpoint, including legacy ones."""
        normalized = (value or "").strip().lower()
        if normalized in ("success", "done", "pending"):
            return cls.SUCCESS
        if normalized == "skipped":
            return cls.SKIPPED
        return cls.FAILED


class ActionResult(BaseModel):
    path: str
    action: str
    status: ActionStatus
    message: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, ActionStatus):
            return ActionStatus.from_wire(value)
        return value


class UpdateReport(BaseModel):
    total: int = 0
    actions: list[ActionResult] = Field(default_factory=list)

    @property
    def failures(self) -> list[ActionResult]:
        return [a for a in self.actions if a.status is ActionStatus.FAILED]

    @property
    def failed(self) -> bool:
        return any(a.status is ActionStatus.FAILED for a in self.actions)

    def count(self, status: ActionStatus) -> int:
        return sum(1 for a in self.actions if a.status is status)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


Node.model_rebuild()
