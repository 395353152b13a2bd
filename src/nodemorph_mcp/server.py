"""NodeMorph MCP server implementation using FastMCP."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from fastmcp import FastMCP

from .client import NodeMorphClient
from .config import ServerConfig, setup_logging
from .models import SearchCriteria, UpdateReport
from .operations import MutationOperation, parse_operation

logger = logging.getLogger(__name__)

# Global client instance
_client: NodeMorphClient | None = None

# In-memory job registry for long-running updates
_jobs: dict[str, dict[str, Any]] = {}
_job_counter: int = 0
_job_lock: asyncio.Lock = asyncio.Lock()

Operation = Literal["add", "delete", "replace", "copy", "create"]


def get_client() -> NodeMorphClient:
    """Get the global NodeMorph client instance."""
    if _client is None:
        raise RuntimeError("NodeMorph client not initialized. Server not started properly.")
    return _client


def set_client(client: NodeMorphClient | None) -> None:
    """Install (or clear) the global client; used by lifespan and tests."""
    global _client
    _client = client


@asynccontextmanager
async def lifespan(_app: FastMCP):  # type: ignore[no-untyped-def]
    """Manage server lifecycle."""
    logger.info("Starting NodeMorph MCP server")

    config = ServerConfig()
    setup_logging(config.log_level)
    api_config = config.get_api_config()
    set_client(NodeMorphClient(api_config))
    logger.info(f"NodeMorph client initialized with base URL: {api_config.base_url}")

    yield

    logger.info("Shutting down NodeMorph MCP server")
    for job in _jobs.values():
        task = job.get("_task")
        if task is not None and not task.done():
            task.cancel()
    if _client:
        await _client.close()
        set_client(None)


mcp = FastMCP(
    "NodeMorph MCP Server",
    version="0.1.0",
    instructions="Search a content repository and apply bulk property/node edits with dry-run support",
    lifespan=lifespan,
)


def _report_payload(report: UpdateReport, dry_run: bool) -> dict:
    # Any Failed action marks the whole update as failed, even if others succeeded.
    return {"success": not report.failed, "dry_run": dry_run, **report.to_payload()}


# Tool argument name -> update form field
_FORM_FIELDS = {
    "path": "path",
    "operation": "operation",
    "page_only": "pageOnly",
    "dry_run": "dryRun",
    "match_type": "matchType",
    "if_prop": "ifProp",
    "if_value": "ifValue",
    "node_name": "jcrNodeName",
    "properties": "properties",
    "prop_names": "propNames",
    "prop_name": "propName",
    "find": "find",
    "replace": "replace",
    "partial_match": "partialMatch",
    "copy_type": "copyType",
    "source": "source",
    "target": "target",
    "overwrite": "overwrite",
    "new_node_name": "newNodeName",
    "new_node_type": "newNodeType",
    "parent_match_condition": "parentMatchCondition",
    "new_node_properties": "newNodeProperties",
}


def _operation_from_args(args: dict[str, Any]) -> MutationOperation:
    """Turn update tool arguments into a validated operation."""
    form = {_FORM_FIELDS[k]: v for k, v in args.items() if k in _FORM_FIELDS and v is not None}
    return parse_operation(form)


async def _start_background_job(
    kind: str,
    payload: dict[str, Any],
    coro_factory: Callable[[str], Awaitable[dict]],
) -> dict:
    # An update report carrying any Failed action ends the job as "failed".
    # Edits applied before a cancellation stay applied.
    global _job_counter

    async with _job_lock:
        _job_counter += 1
        job_id = f"{kind}-{_job_counter}"

    _jobs[job_id] = {
        "job_id": job_id,
        "kind": kind,
        "status": "pending",  # pending | running | completed | failed | cancelling
        "payload": payload,
        "result": None,
        "error": None,
        "started_at": datetime.now(timezone.utc).isoformat(),
        "finished_at": None,
        "_task": None,
    }

    async def runner() -> None:
        try:
            _jobs[job_id]["status"] = "running"
            result = await coro_factory(job_id)
            _jobs[job_id]["result"] = result
            _jobs[job_id]["status"] = "completed" if result.get("success", True) else "failed"
        except asyncio.CancelledError:
            _jobs[job_id]["error"] = "CancelledError: Job was cancelled by user request"
            _jobs[job_id]["status"] = "failed"
        except Exception as e:  # noqa: BLE001
            _jobs[job_id]["error"] = f"{type(e).__name__}: {e}"
            _jobs[job_id]["status"] = "failed"
        finally:
            _jobs[job_id]["finished_at"] = datetime.now(timezone.utc).isoformat()

    task = asyncio.create_task(runner())
    _jobs[job_id]["_task"] = task

    return {
        "success": True,
        "job_id": job_id,
        "status": "started",
        "kind": kind,
    }


@mcp.tool(
    name="mcp_job_status",
    description="Get status/result for background NodeMorph update jobs.",
)
async def mcp_job_status(job_id: str | None = None) -> dict:
    # Return status for one job (if job_id given) or all jobs.
    if job_id is None:
        jobs = []
        for job in _jobs.values():
            jobs.append({
                "job_id": job.get("job_id"),
                "kind": job.get("kind"),
                "status": job.get("status"),
                "started_at": job.get("started_at"),
                "finished_at": job.get("finished_at"),
            })
        return {"success": True, "jobs": jobs}

    job = _jobs.get(job_id)
    if not job:
        return {"success": False, "error": f"Unknown job_id: {job_id}"}

    view = {k: v for k, v in job.items() if k not in ("payload", "_task")}
    return {"success": True, **view}


@mcp.tool(
    name="mcp_cancel_job",
    description="Request cancellation of a background NodeMorph update job.",
)
async def mcp_cancel_job(job_id: str) -> dict:
    """Cancel a background job.

    Nodes already mutated before the cancellation are not rolled back.
    """
    job = _jobs.get(job_id)
    if not job:
        return {"success": False, "error": f"Unknown job_id: {job_id}"}

    task = job.get("_task")
    if task is None:
        return {"success": False, "error": "Job has no associated task (cannot cancel)."}

    if task.done():
        return {"success": False, "error": "Job already completed."}

    job["status"] = "cancelling"
    task.cancel()

    return {"success": True, "job_id": job_id, "status": "cancelling"}


# Tool: Search
@mcp.tool(name="nodemorph_search", description="Search nodes under a path by node name or property value")
async def nodemorph_search(
    path: str,
    query: str = "",
    match_property: bool = False,
    property_name: str = "",
    substring_match: bool = False,
    page_only: bool = False,
    properties: str = "",
) -> dict:
    """Search the repository.

    Args:
        path: Absolute scope path, e.g. /content/site
        query: Node name (supports a * wildcard) or, with match_property, the property value
        match_property: Match on property_name instead of the node name
        property_name: Property to compare against query
        substring_match: Property value contains query instead of equals it
        page_only: Restrict to cq:Page nodes
        properties: Comma-separated properties to return (default jcr:title, jcr:primaryType)

    Returns:
        {"count": int, "hits": [...], "properties": [...]}
    """
    client = get_client()
    criteria = SearchCriteria(
        path=path,
        query=query,
        match_property=match_property,
        property_name=property_name,
        substring_match=substring_match,
        page_only=page_only,
        properties=properties,
    )
    result = await client.search_criteria(criteria)
    return {
        "count": result.count,
        "hits": result.hits,
        "properties": list(result.properties),
    }


# Tool: Export search results
@mcp.tool(name="nodemorph_export_csv", description="Run a search and write the hits to a CSV file")
async def nodemorph_export_csv(
    path: str,
    output_file: str,
    query: str = "",
    match_property: bool = False,
    property_name: str = "",
    substring_match: bool = False,
    page_only: bool = False,
    properties: str = "",
) -> dict:
    """Search and export. No file is written when nothing matches."""
    client = get_client()
    criteria = SearchCriteria(
        path=path,
        query=query,
        match_property=match_property,
        property_name=property_name,
        substring_match=substring_match,
        page_only=page_only,
        properties=properties,
    )
    return await client.export_csv(criteria, output_file)


# Tool: Update (local execution)
@mcp.tool(
    name="nodemorph_update",
    description="Apply a bulk add/delete/replace/copy/create operation under a path (use dry_run to preview)",
)
async def nodemorph_update(
    path: str,
    operation: Operation,
    page_only: bool = False,
    dry_run: bool = True,
    match_type: Literal["property", "node"] = "property",
    if_prop: str | None = None,
    if_value: str | None = None,
    node_name: str | None = None,
    properties: str | None = None,
    prop_names: str | None = None,
    prop_name: str | None = None,
    find: str | None = None,
    replace: str | None = None,
    partial_match: bool = False,
    copy_type: str | None = None,
    source: str | None = None,
    target: str | None = None,
    overwrite: bool = False,
    new_node_name: str | None = None,
    new_node_type: str | None = None,
    parent_match_condition: str | None = None,
    new_node_properties: str | None = None,
) -> dict:
    """Resolve matching nodes afresh and mutate each one.

    Args:
        path: Absolute scope path
        operation: add | delete | replace | copy | create
        page_only: Restrict candidates to cq:Page nodes (edits go to jcr:content)
        dry_run: Report what would happen without changing anything
        match_type: add only - "property" (if_prop/if_value) or "node" (node_name)
        properties: add only - newline-separated key=value lines
        prop_names: delete only - comma/newline-separated property names
        prop_name, find, replace, partial_match: replace only
        copy_type, source, target, overwrite: copy only (node | property | propertyToPath)
        new_node_name, new_node_type, parent_match_condition, new_node_properties: create only

    Returns:
        {"success": bool, "dry_run": bool, "total": int, "actions": [...]}
    """
    op = _operation_from_args(locals())
    report = await get_client().execute(op)
    return _report_payload(report, op.dry_run)


# Tool: Update as a background job
@mcp.tool(
    name="nodemorph_update_async",
    description="Start nodemorph_update as a background job; poll with mcp_job_status",
)
async def nodemorph_update_async(
    path: str,
    operation: Operation,
    page_only: bool = False,
    dry_run: bool = True,
    match_type: Literal["property", "node"] = "property",
    if_prop: str | None = None,
    if_value: str | None = None,
    node_name: str | None = None,
    properties: str | None = None,
    prop_names: str | None = None,
    prop_name: str | None = None,
    find: str | None = None,
    replace: str | None = None,
    partial_match: bool = False,
    copy_type: str | None = None,
    source: str | None = None,
    target: str | None = None,
    overwrite: bool = False,
    new_node_name: str | None = None,
    new_node_type: str | None = None,
    parent_match_condition: str | None = None,
    new_node_properties: str | None = None,
) -> dict:
    """Validate now, execute in the background."""
    op = _operation_from_args(locals())
    client = get_client()

    async def run(_job_id: str) -> dict:
        report = await client.execute(op)
        return _report_payload(report, op.dry_run)

    return await _start_background_job("update", op.to_form(), run)


# Tool: Remote update (server-side execution)
@mcp.tool(
    name="nodemorph_remote_update",
    description="Send a bulk operation to the repository's update endpoint and return its report",
)
async def nodemorph_remote_update(
    path: str,
    operation: Operation,
    page_only: bool = False,
    dry_run: bool = True,
    match_type: Literal["property", "node"] = "property",
    if_prop: str | None = None,
    if_value: str | None = None,
    node_name: str | None = None,
    properties: str | None = None,
    prop_names: str | None = None,
    prop_name: str | None = None,
    find: str | None = None,
    replace: str | None = None,
    partial_match: bool = False,
    copy_type: str | None = None,
    source: str | None = None,
    target: str | None = None,
    overwrite: bool = False,
    new_node_name: str | None = None,
    new_node_type: str | None = None,
    parent_match_condition: str | None = None,
    new_node_properties: str | None = None,
) -> dict:
    """Same arguments as nodemorph_update; the repository does the work."""
    op = _operation_from_args(locals())
    report = await get_client().remote_update(op)
    return _report_payload(report, op.dry_run)


def main() -> None:
    setup_logging()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
