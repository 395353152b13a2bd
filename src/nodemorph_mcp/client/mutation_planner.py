"""Mutation planning and execution over a node repository.

``MutationExecutor.execute`` always resolves its candidates afresh from the
repository (scope + type restriction), evaluates the operation's own match
condition per candidate, and then mutates (or, under dry-run, simulates) each
matched node independently. One node failing never stops the others; the
outcome is one ActionResult per matched node, aggregated into an UpdateReport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Protocol, Sequence

from ..models import (
    NT_PAGE,
    NT_PAGE_CONTENT,
    NT_UNSTRUCTURED,
    PN_CONTENT,
    PN_LAST_MODIFIED,
    PN_LAST_MODIFIED_BY,
    ActionResult,
    ActionStatus,
    Node,
    NodeMorphError,
    PropertyValue,
    UpdateReport,
    property_text,
)
from ..operations import (
    AddOperation,
    CopyOperation,
    CopyType,
    CreateOperation,
    DeleteOperation,
    MutationOperation,
    NodeNameCondition,
    PropertyCondition,
    ReplaceOperation,
    resolve_path,
)
from .api_client_core import _ClientLogger
from .filter_builder import candidate_params
from .report_helper import aggregate, summarize


class NodeRepository(Protocol):
    """Read and mutation surface the executor needs from a tree store."""

    async def find_nodes(self, params: Sequence[tuple[str, str]]) -> list[Node]: ...

    async def get_node(self, path: str, depth: int = 0) -> Node | None: ...

    async def update_properties(
        self,
        path: str,
        values: Mapping[str, PropertyValue],
        removals: Sequence[str] = (),
    ) -> None: ...

    async def create_node(
        self,
        parent_path: str,
        name: str,
        primary_type: str,
        properties: Mapping[str, PropertyValue],
    ) -> None: ...

    async def copy_node(self, source: str, target: str, replace: bool = False) -> None: ...


@dataclass
class _WorkItem:
    candidate: Node
    target: Node | None
    error: str | None = None

    @property
    def key(self) -> str:
        return self.target.path if self.target is not None else self.candidate.path


def _parent_of(path: str) -> str:
    parent = path.rstrip("/").rsplit("/", 1)[0]
    return parent or "/"


class MutationExecutor:
    """Resolve, match and apply one mutation operation."""

    def __init__(
        self,
        repository: NodeRepository,
        max_concurrency: int = 4,
        user_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.max_concurrency = max(1, max_concurrency)
        self.user_id = user_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = _ClientLogger("MUTATE")

    async def execute(self, op: MutationOperation) -> UpdateReport:
        """Run ``op`` over its freshly resolved candidate set."""
        if isinstance(op, CopyOperation) and op.copy_type is CopyType.PROPERTY:
            op.property_pairs()  # raises ValidationError before any request

        mode = "dry-run" if op.dry_run else "live"
        self._log.info(f"{op.label} under {op.path} ({mode}, pageOnly={op.page_only})")

        if isinstance(op, CopyOperation) and op.copy_type is CopyType.NODE and op.single_source:
            results = [await self._guarded(op, op.path, self._copy_single(op))]
            return self._finish(op, results)

        candidates = await self.repository.find_nodes(candidate_params(op))
        self._log.info(f"{len(candidates)} candidate(s) under {op.path}")

        items = await self._plan(op, candidates)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def attempt(item: _WorkItem) -> ActionResult | None:
            async with semaphore:
                return await self._guarded(op, item.key, self._apply(op, item))

        outcomes = await asyncio.gather(*(attempt(item) for item in items))
        return self._finish(op, [r for r in outcomes if r is not None])

    def _finish(self, op: MutationOperation, results: list[ActionResult]) -> UpdateReport:
        report = aggregate(results)
        for failure in report.failures:
            self._log.warning(f"{failure.path}: {failure.message}")
        self._log.info(f"{op.label} under {op.path} done: {summarize(report)}")
        return report

    async def _guarded(
        self, op: MutationOperation, path: str, work: Awaitable[ActionResult | None]
    ) -> ActionResult | None:
        try:
            return await work
        except NodeMorphError as err:
            return self._result(op, path, ActionStatus.FAILED, str(err))

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def _plan(self, op: MutationOperation, candidates: list[Node]) -> list[_WorkItem]:
        redirect = not isinstance(op, CreateOperation) and not (
            isinstance(op, CopyOperation) and op.copy_type is CopyType.NODE
        )

        async def resolve(node: Node) -> _WorkItem:
            if not redirect:
                return _WorkItem(node, node)
            try:
                return _WorkItem(node, await self._modifiable_target(node, op.page_only))
            except NodeMorphError as err:
                return _WorkItem(node, None, error=str(err))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(node: Node) -> _WorkItem:
            async with semaphore:
                return await resolve(node)

        items = await asyncio.gather(*(bounded(node) for node in candidates))

        seen: set[str] = set()
        unique: list[_WorkItem] = []
        for item in items:
            if item.key in seen:
                continue
            seen.add(item.key)
            unique.append(item)
        return unique

    async def _child(self, node: Node, name: str) -> Node | None:
        child = node.children.get(name)
        if child is not None:
            return child
        return await self.repository.get_node(node.child_path(name))

    async def _modifiable_target(self, node: Node, page_only: bool) -> Node | None:
        target: Node | None = node
        if page_only:
            target = await self._child(node, PN_CONTENT)
        if target is not None and target.primary_type == NT_PAGE:
            target = await self._child(target, PN_CONTENT)
        return target

    async def _apply(self, op: MutationOperation, item: _WorkItem) -> ActionResult | None:
        if isinstance(op, AddOperation):
            return await self._add(op, item)
        if isinstance(op, DeleteOperation):
            return await self._delete(op, item)
        if isinstance(op, ReplaceOperation):
            return await self._replace(op, item)
        if isinstance(op, CopyOperation):
            if op.copy_type is CopyType.NODE:
                return await self._copy_named_node(op, item.candidate)
            if item.target is None:
                return self._no_target(op, item)
            if op.copy_type is CopyType.PROPERTY:
                return await self._copy_properties(op, item.target)
            return await self._copy_property_to_path(op, item.target)
        return await self._create(op, item.candidate)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _result(
        self, op: MutationOperation, path: str, status: ActionStatus, message: str | None = None
    ) -> ActionResult:
        return ActionResult(path=path, action=op.label, status=status, message=message)

    def _done(self, op: MutationOperation, path: str, would: str, did: str) -> ActionResult:
        return self._result(op, path, ActionStatus.SUCCESS, would if op.dry_run else did)

    def _no_target(self, op: MutationOperation, item: _WorkItem) -> ActionResult:
        message = item.error or "No modifiable target node"
        return self._result(op, item.candidate.path, ActionStatus.FAILED, message)

    def _stamped(self, target: Node, values: Mapping[str, PropertyValue]) -> dict[str, PropertyValue]:
        stamped = dict(values)
        if target.primary_type == NT_PAGE_CONTENT:
            stamped[PN_LAST_MODIFIED] = self._clock().isoformat()
            if self.user_id:
                stamped[PN_LAST_MODIFIED_BY] = self.user_id
        return stamped

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _add(self, op: AddOperation, item: _WorkItem) -> ActionResult | None:
        if isinstance(op.match, NodeNameCondition) and item.candidate.name != op.match.node_name:
            return None
        target = item.target
        if target is None:
            return self._no_target(op, item)
        if isinstance(op.match, PropertyCondition):
            if property_text(target.properties.get(op.match.if_prop)) != op.match.if_value:
                return None

        detail = ", ".join(p.render() for p in op.properties)
        if not op.dry_run:
            values = {p.key: p.value for p in op.properties}
            await self.repository.update_properties(target.path, self._stamped(target, values))
        return self._done(op, target.path, f"Would set {detail}", f"Set {detail}")

    async def _delete(self, op: DeleteOperation, item: _WorkItem) -> ActionResult | None:
        target = item.target
        if target is None:
            return self._no_target(op, item)

        present = [name for name in op.prop_names if name in target.properties]
        if not present:
            return self._result(op, target.path, ActionStatus.SKIPPED, "No listed properties present")

        detail = ", ".join(present)
        if not op.dry_run:
            await self.repository.update_properties(target.path, self._stamped(target, {}), removals=present)
        return self._done(op, target.path, f"Would remove {detail}", f"Removed {detail}")

    @staticmethod
    def _replace_text(op: ReplaceOperation, value: str) -> str | None:
        if op.partial_match:
            return value.replace(op.find, op.replace) if op.find in value else None
        return op.replace if value == op.find else None

    async def _replace(self, op: ReplaceOperation, item: _WorkItem) -> ActionResult | None:
        target = item.target
        if target is None:
            return self._no_target(op, item)

        current = target.properties.get(op.prop_name)
        if current is None:
            return self._result(op, target.path, ActionStatus.SKIPPED, f"{op.prop_name} not set")

        new_value: PropertyValue | None
        if isinstance(current, list):
            replaced = [self._replace_text(op, v) for v in current]
            if all(r is None for r in replaced):
                new_value = None
            else:
                new_value = [r if r is not None else v for r, v in zip(replaced, current)]
        else:
            new_value = self._replace_text(op, current)

        if new_value is None:
            reason = "does not contain" if op.partial_match else "does not equal"
            return self._result(
                op, target.path, ActionStatus.SKIPPED, f"{op.prop_name} {reason} '{op.find}'"
            )

        detail = f"{op.prop_name}: {property_text(current)} → {property_text(new_value)}"
        if not op.dry_run:
            await self.repository.update_properties(
                target.path, self._stamped(target, {op.prop_name: new_value})
            )
        return self._done(op, target.path, f"Would replace {detail}", f"Replaced {detail}")

    async def _copy_single(self, op: CopyOperation) -> ActionResult:
        source_path = resolve_path(op.path, op.source)
        target_path = resolve_path(op.path, op.target)
        if await self.repository.get_node(source_path) is None:
            return self._result(op, op.path, ActionStatus.FAILED, f"Source node not found: {source_path}")
        return await self._copy_node(op, op.path, source_path, target_path)

    async def _copy_named_node(self, op: CopyOperation, candidate: Node) -> ActionResult | None:
        if candidate.name != op.source:
            return None
        target_path = resolve_path(candidate.parent_path or "/", op.target)
        return await self._copy_node(op, candidate.path, candidate.path, target_path)

    async def _copy_node(
        self, op: CopyOperation, report_path: str, source_path: str, target_path: str
    ) -> ActionResult:
        target_parent = _parent_of(target_path)
        if await self.repository.get_node(target_parent) is None:
            return self._result(
                op, report_path, ActionStatus.FAILED, f"Target parent does not exist: {target_parent}"
            )
        existing = await self.repository.get_node(target_path)
        if existing is not None and not op.overwrite:
            return self._result(op, report_path, ActionStatus.FAILED, f"Target already exists: {target_path}")

        detail = f"node {source_path} to {target_path}"
        if not op.dry_run:
            await self.repository.copy_node(source_path, target_path, replace=existing is not None)
        return self._done(op, report_path, f"Would copy {detail}", f"Copied {detail}")

    async def _copy_properties(self, op: CopyOperation, target: Node) -> ActionResult | None:
        pairs = [(s, t) for s, t in op.property_pairs() if s in target.properties]
        if not pairs:
            return None

        if not op.overwrite:
            clashes = [t for _, t in pairs if t in target.properties]
            if clashes:
                return self._result(
                    op, target.path, ActionStatus.FAILED,
                    f"Target property already exists: {', '.join(clashes)}",
                )

        detail = ", ".join(f"{s} to {t}" for s, t in pairs)
        if not op.dry_run:
            values = {t: target.properties[s] for s, t in pairs}
            await self.repository.update_properties(target.path, self._stamped(target, values))
        return self._done(op, target.path, f"Would copy property {detail}", f"Copied property {detail}")

    async def _copy_property_to_path(self, op: CopyOperation, base: Node) -> ActionResult | None:
        value = base.properties.get(op.source)
        if value is None:
            return None

        if "/" in op.target:
            relative, prop_name = op.target.rsplit("/", 1)
            holder_path = resolve_path(base.path, relative)
            holder = await self.repository.get_node(holder_path)
        else:
            prop_name, holder_path, holder = op.target, base.path, base

        if holder is None and await self.repository.get_node(_parent_of(holder_path)) is None:
            return self._result(
                op, base.path, ActionStatus.FAILED, f"Cannot create target parent: {holder_path}"
            )
        if holder is not None and prop_name in holder.properties and not op.overwrite:
            return self._result(
                op, base.path, ActionStatus.FAILED, f"Target property already exists: {holder_path}/{prop_name}"
            )

        detail = f"property {op.source} to {holder_path}/{prop_name}"
        if holder is None:
            detail += f" (creating {holder_path})"
        if not op.dry_run:
            if holder is None:
                holder_name = holder_path.rsplit("/", 1)[1]
                await self.repository.create_node(_parent_of(holder_path), holder_name, NT_UNSTRUCTURED, {})
                holder = Node(path=holder_path)
            await self.repository.update_properties(holder_path, self._stamped(holder, {prop_name: value}))
        return self._done(op, base.path, f"Would copy {detail}", f"Copied {detail}")

    async def _create(self, op: CreateOperation, parent: Node) -> ActionResult | None:
        condition_node: Node | None = parent
        if parent.primary_type == NT_PAGE:
            condition_node = await self._child(parent, PN_CONTENT)
        properties = condition_node.properties if condition_node is not None else {}
        if not op.parent_condition.matches(properties):
            return None

        child_path = parent.child_path(op.new_node_name)
        existing = parent.children.get(op.new_node_name) or await self.repository.get_node(child_path)
        if existing is not None:
            return self._result(op, child_path, ActionStatus.SKIPPED, "Node already exists")

        if not op.dry_run:
            values = {p.key: p.value for p in op.properties}
            await self.repository.create_node(parent.path, op.new_node_name, op.new_node_type, values)
        return self._done(
            op, child_path, f"Would create {op.new_node_type}", f"Created node of type {op.new_node_type}"
        )
