"""Translate operator criteria into filter specs and query parameters.

Everything here is pure: no network, no logging. ``build_filter_spec`` never
fails; blank inputs simply drop the clause they would have produced.
"""

from __future__ import annotations

from ..models import (
    DEFAULT_PROJECTION,
    NT_BASE,
    NT_PAGE,
    FilterSpec,
    MatchOperator,
    PropertyMatch,
    SearchCriteria,
)
from ..operations import AddOperation, CopyOperation, CopyType, MutationOperation, NodeNameCondition

SEARCH_LIMIT = 1000


def parse_projection(raw: str | None) -> tuple[str, ...]:
    """Comma-separated property list, trimmed; empty means the default projection."""
    if not raw:
        return DEFAULT_PROJECTION
    names = tuple(p.strip() for p in raw.split(",") if p.strip())
    return names or DEFAULT_PROJECTION


def build_filter_spec(criteria: SearchCriteria) -> FilterSpec:
    """Normalize raw search criteria into a FilterSpec."""
    query = (criteria.query or "").strip()
    property_name = (criteria.property_name or "").strip()

    node_name: str | None = None
    property_match: PropertyMatch | None = None
    if query:
        if criteria.match_property and property_name:
            operator = MatchOperator.CONTAINS if criteria.substring_match else MatchOperator.EQUALS
            property_match = PropertyMatch(name=property_name, value=query, operator=operator)
        else:
            node_name = query

    return FilterSpec(
        path=(criteria.path or "").strip(),
        node_name=node_name,
        property_match=property_match,
        type_restriction=NT_PAGE if criteria.page_only else None,
        limit=SEARCH_LIMIT,
        properties=parse_projection(criteria.properties),
    )


def search_params(spec: FilterSpec) -> list[tuple[str, str]]:
    """Query parameters for a search, in the order the query endpoint expects."""
    params: list[tuple[str, str]] = [
        ("path", spec.path),
        ("p.limit", str(spec.limit)),
        ("p.hits", "full"),
        ("p.nodedepth", "0"),
    ]
    if spec.type_restriction:
        params.append(("type", spec.type_restriction))

    if spec.property_match is not None:
        match = spec.property_match
        params.append(("property", match.name))
        if match.operator is MatchOperator.CONTAINS:
            params.append(("property.value", f"%{match.value}%"))
            params.append(("property.operation", "like"))
        else:
            params.append(("property.value", match.value))
    elif spec.node_name:
        params.append(("nodename", spec.node_name))

    for index, name in enumerate(spec.properties, start=1):
        params.append((f"{index}_property", name))
    return params


def candidate_params(op: MutationOperation) -> list[tuple[str, str]]:
    """Query parameters resolving the candidate set of a mutation.

    Only scope and type restriction decide candidacy. Narrowing predicates are
    added where the executor re-checks the same condition locally, so they
    never change which nodes end up matched.
    """
    params: list[tuple[str, str]] = [
        ("path", op.path),
        ("type", NT_PAGE if op.page_only else NT_BASE),
    ]
    if not op.page_only:
        if isinstance(op, AddOperation) and isinstance(op.match, NodeNameCondition):
            params.append(("nodename", op.match.node_name))
        elif isinstance(op, CopyOperation) and op.copy_type is CopyType.NODE and not op.single_source:
            params.append(("nodename", op.source))
    params.extend([("p.limit", "-1"), ("p.hits", "full"), ("p.nodedepth", "0")])
    return params
