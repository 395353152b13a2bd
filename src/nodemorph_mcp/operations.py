"""Bulk mutation operations and their form encoding.

An operation is one of five variants, discriminated by ``operation``:

    add      set properties on nodes matching a property or node-name condition
    delete   remove named properties
    replace  rewrite one property's value (exact or substring)
    copy     copy a node, a property set, or a property into a child path
    create   create one child node under every matching parent

The form encoding mirrors the update endpoint's payload (``path``,
``operation``, ``pageOnly``, ``dryRun`` plus variant fields, with property
lists as newline-separated ``key=value`` lines) so that operations can be
round-tripped between the MCP tools and a server-side executor.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from .models import NT_UNSTRUCTURED, PropertyValue, ValidationError


class PropertyAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: PropertyValue

    def render(self) -> str:
        if isinstance(self.value, list):
            return f"{self.key}=[{', '.join(self.value)}]"
        return f"{self.key}={self.value}"


def parse_properties(raw: str | None) -> list[PropertyAssignment]:
    """Parse ``key=value`` lines into ordered assignments.

    Blank lines and lines without ``=`` are ignored. ``key=[a, b]`` yields a
    multi-value assignment. A repeated key keeps its first position but takes
    the last value.
    """
    if raw is None or not raw.strip():
        return []

    ordered: dict[str, PropertyValue] = {}
    for line in raw.split("\n"):
        line = line.strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if value.startswith("[") and value.endswith("]"):
            ordered[key] = [v.strip() for v in value[1:-1].split(",")]
        else:
            ordered[key] = value
    return [PropertyAssignment(key=k, value=v) for k, v in ordered.items()]


def split_names(raw: str | None) -> list[str]:
    """Split a comma/newline separated list of names, dropping blanks."""
    if not raw:
        return []
    names: list[str] = []
    for chunk in raw.replace("\n", ",").split(","):
        chunk = chunk.strip()
        if chunk and chunk not in names:
            names.append(chunk)
    return names


def resolve_path(base_path: str, relative_path: str) -> str:
    """Resolve ``relative_path`` against ``base_path``.

    Absolute paths are returned unchanged, ``../x`` resolves against the
    parent of ``base_path`` and anything else is appended to it.
    """
    if relative_path.startswith("/"):
        return relative_path
    base = base_path.rstrip("/")
    if relative_path == ".." or relative_path.startswith("../"):
        if not base:
            raise ValidationError(f"Cannot resolve parent path beyond {base_path}")
        parent = base.rsplit("/", 1)[0] or "/"
        remaining = relative_path[3:]
        if not remaining:
            return parent
        return f"{parent.rstrip('/')}/{remaining}"
    return f"{base}/{relative_path}"


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("true", "1", "yes", "on")


def _text(value: bool) -> str:
    return "true" if value else "false"


# ---------------------------------------------------------------------------
# Match conditions
# ---------------------------------------------------------------------------


class PropertyCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    match_type: Literal["property"] = "property"
    if_prop: str
    if_value: str = ""

    @field_validator("if_prop")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("ifProp is required for a property match")
        return value.strip()


class NodeNameCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    match_type: Literal["node"] = "node"
    node_name: str

    @field_validator("node_name")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("jcrNodeName is required for a node-name match")
        return value.strip()


MatchCondition = Annotated[Union[PropertyCondition, NodeNameCondition], Field(discriminator="match_type")]


class ParentCondition(BaseModel):
    """Condition over a parent's properties: ``key=value``, ``key!=value`` or ``key``."""

    model_config = ConfigDict(frozen=True)

    key: str | None = None
    value: str | None = None
    negate: bool = False

    @classmethod
    def parse(cls, raw: str | None) -> "ParentCondition":
        text = (raw or "").strip()
        if not text:
            return cls()
        if "!=" in text:
            key, value = text.split("!=", 1)
            return cls(key=key.strip(), value=value.strip(), negate=True)
        if "=" in text:
            key, value = text.split("=", 1)
            return cls(key=key.strip(), value=value.strip())
        return cls(key=text)

    def matches(self, properties: Mapping[str, PropertyValue]) -> bool:
        if not self.key:
            return True
        current = properties.get(self.key)
        if self.value is None:
            return current is not None
        if isinstance(current, list):
            equal = self.value in current
        else:
            equal = current is not None and current == self.value
        return not equal if self.negate else equal

    def render(self) -> str:
        if not self.key:
            return ""
        if self.value is None:
            return self.key
        return f"{self.key}{'!=' if self.negate else '='}{self.value}"


# ---------------------------------------------------------------------------
# Operation variants
# ---------------------------------------------------------------------------


class _OperationBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    page_only: bool = False
    dry_run: bool = False

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("path is required")
        if not value.startswith("/"):
            raise ValueError(f"path must be absolute: {value}")
        return value.rstrip("/") or "/"

    @property
    def label(self) -> str:
        return self.operation.capitalize()  # type: ignore[attr-defined]

    def _base_form(self) -> dict[str, str]:
        return {
            "path": self.path,
            "operation": self.operation,  # type: ignore[attr-defined]
            "pageOnly": _text(self.page_only),
            "dryRun": _text(self.dry_run),
        }


class AddOperation(_OperationBase):
    operation: Literal["add"] = "add"
    match: MatchCondition
    properties: tuple[PropertyAssignment, ...]

    @field_validator("properties")
    @classmethod
    def _not_empty(cls, value: tuple[PropertyAssignment, ...]) -> tuple[PropertyAssignment, ...]:
        if not value:
            raise ValueError("No properties to add")
        return value

    def to_form(self) -> dict[str, str]:
        form = self._base_form()
        form["matchType"] = self.match.match_type
        if isinstance(self.match, PropertyCondition):
            form["ifProp"] = self.match.if_prop
            form["ifValue"] = self.match.if_value
        else:
            form["jcrNodeName"] = self.match.node_name
        form["properties"] = "\n".join(p.render() for p in self.properties)
        return form


class DeleteOperation(_OperationBase):
    operation: Literal["delete"] = "delete"
    prop_names: tuple[str, ...]

    @field_validator("prop_names")
    @classmethod
    def _not_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("No properties specified for deletion")
        return value

    def to_form(self) -> dict[str, str]:
        form = self._base_form()
        form["propNames"] = ",".join(self.prop_names)
        return form


class ReplaceOperation(_OperationBase):
    operation: Literal["replace"] = "replace"
    prop_name: str
    find: str
    replace: str = ""
    partial_match: bool = False

    @field_validator("prop_name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("propName is required")
        if "/" in value or " " in value:
            raise ValueError(f"Invalid property name: {value} (slashes or spaces not allowed)")
        return value

    @field_validator("find")
    @classmethod
    def _find_required(cls, value: str) -> str:
        if value == "":
            raise ValueError("find is required")
        return value

    def to_form(self) -> dict[str, str]:
        form = self._base_form()
        form.update(
            propName=self.prop_name,
            find=self.find,
            replace=self.replace,
            partialMatch=_text(self.partial_match),
        )
        return form


class CopyType(str, Enum):
    NODE = "node"
    PROPERTY = "property"
    PROPERTY_TO_PATH = "propertyToPath"

    @classmethod
    def parse(cls, raw: str) -> "CopyType":
        value = (raw or "").strip()
        if value == "property-set":
            return cls.PROPERTY
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown copy type: {raw}") from None


class CopyOperation(_OperationBase):
    operation: Literal["copy"] = "copy"
    copy_type: CopyType
    source: str
    target: str
    overwrite: bool = False

    @field_validator("copy_type", mode="before")
    @classmethod
    def _parse_copy_type(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, CopyType):
            return CopyType.parse(value)
        return value

    @field_validator("source", "target")
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Missing copy parameters")
        return value

    @property
    def single_source(self) -> bool:
        """True when a node copy names a path rather than a bare node name."""
        return "/" in self.source or self.source.startswith("..")

    def property_pairs(self) -> list[tuple[str, str]]:
        sources = split_names(self.source)
        targets = split_names(self.target)
        if len(sources) != len(targets):
            raise ValidationError(
                f"Copy needs as many target properties as sources ({len(sources)} != {len(targets)})"
            )
        return list(zip(sources, targets))

    def to_form(self) -> dict[str, str]:
        form = self._base_form()
        form.update(copyType=self.copy_type.value, source=self.source, target=self.target)
        if self.overwrite:
            form["overwrite"] = "true"
        return form


class CreateOperation(_OperationBase):
    operation: Literal["create"] = "create"
    new_node_name: str
    new_node_type: str = NT_UNSTRUCTURED
    parent_condition: ParentCondition = Field(default_factory=ParentCondition)
    properties: tuple[PropertyAssignment, ...] = ()

    @field_validator("new_node_name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Missing newNodeName")
        if "/" in value:
            raise ValueError(f"Invalid node name: {value}")
        return value

    @field_validator("new_node_type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:
        if value is None or not str(value).strip():
            return NT_UNSTRUCTURED
        return str(value).strip()

    def to_form(self) -> dict[str, str]:
        form = self._base_form()
        form.update(
            newNodeName=self.new_node_name,
            newNodeType=self.new_node_type,
            parentMatchCondition=self.parent_condition.render(),
            newNodeProperties="\n".join(p.render() for p in self.properties),
        )
        return form


MutationOperation = Annotated[
    Union[AddOperation, DeleteOperation, ReplaceOperation, CopyOperation, CreateOperation],
    Field(discriminator="operation"),
]

_operation_adapter: TypeAdapter[MutationOperation] = TypeAdapter(MutationOperation)


def _first_error(err: PydanticValidationError) -> str:
    errors = err.errors()
    if not errors:
        return str(err)
    first = errors[0]
    message = str(first.get("msg", "invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {message}" if location else message


def build_operation(data: Mapping[str, Any]) -> MutationOperation:
    """Validate a python-shaped operation dict, raising our ValidationError."""
    try:
        return _operation_adapter.validate_python(dict(data))
    except PydanticValidationError as err:
        raise ValidationError(_first_error(err)) from err


def parse_operation(form: Mapping[str, Any]) -> MutationOperation:
    """Decode an update-endpoint form payload into an operation."""
    operation = str(form.get("operation") or "").strip().lower()
    data: dict[str, Any] = {
        "operation": operation,
        "path": form.get("path") or "",
        "page_only": _flag(form.get("pageOnly")),
        "dry_run": _flag(form.get("dryRun")),
    }

    if operation == "add":
        match_type = str(form.get("matchType") or "property").strip()
        if match_type == "property":
            data["match"] = {
                "match_type": "property",
                "if_prop": form.get("ifProp") or "",
                "if_value": form.get("ifValue") or "",
            }
        elif match_type == "node":
            data["match"] = {"match_type": "node", "node_name": form.get("jcrNodeName") or ""}
        else:
            raise ValidationError(f"Unknown match type: {match_type}")
        data["properties"] = parse_properties(form.get("properties"))
    elif operation == "delete":
        data["prop_names"] = split_names(form.get("propNames"))
    elif operation == "replace":
        data.update(
            prop_name=form.get("propName") or "",
            find=form.get("find") or "",
            replace=form.get("replace") or "",
            partial_match=_flag(form.get("partialMatch")),
        )
    elif operation == "copy":
        data.update(
            copy_type=form.get("copyType") or "",
            source=form.get("source") or "",
            target=form.get("target") or "",
            overwrite=_flag(form.get("overwrite")),
        )
    elif operation == "create":
        data.update(
            new_node_name=form.get("newNodeName") or "",
            new_node_type=form.get("newNodeType"),
            parent_condition=ParentCondition.parse(form.get("parentMatchCondition")),
            properties=parse_properties(form.get("newNodeProperties")),
        )
    else:
        raise ValidationError(f"Unknown operation: {operation or '(none)'}")

    return build_operation(data)
