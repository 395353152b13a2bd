"""NodeMorph API client - search and result export."""

from pathlib import Path

from ..models import FilterSpec, NetworkError, SearchCriteria, SearchResult, ValidationError
from .api_client_core import NodeMorphClientCore, _ClientLogger
from .filter_builder import build_filter_spec, search_params
from .report_helper import hits_to_csv


class NodeMorphClientSearch(NodeMorphClientCore):
    """Search operations on top of the core client."""

    async def search(self, spec: FilterSpec) -> SearchResult:
        """Run one search. One attempt; transport failures propagate.

        Hits come back in the engine's order, untouched apart from being
        plain property mappings.
        """
        logger = _ClientLogger("SEARCH")
        if not spec.path:
            raise ValidationError("A search path is required")
        if not spec.path.startswith("/"):
            raise ValidationError(f"Search path must be absolute: {spec.path}")

        data = await self.query(search_params(spec))
        hits = data.get("hits") or []
        if not isinstance(hits, list):
            raise NetworkError("Invalid hits in query response")

        count = data.get("results", len(hits))
        try:
            count = int(count)
        except (TypeError, ValueError):
            count = len(hits)

        logger.info(f"Search under {spec.path} returned {count} result(s)")
        return SearchResult(
            count=count,
            hits=[hit for hit in hits if isinstance(hit, dict)],
            properties=spec.properties,
        )

    async def search_criteria(self, criteria: SearchCriteria) -> SearchResult:
        """Build a FilterSpec from raw criteria and search with it."""
        return await self.search(build_filter_spec(criteria))

    async def export_csv(self, criteria: SearchCriteria, output_file: str) -> dict:
        """Search and write the hits to ``output_file`` as CSV.

        Nothing is written when the search returns no hits.
        """
        result = await self.search_criteria(criteria)
        content = hits_to_csv(result.hits, result.properties)
        if content is None:
            return {"success": True, "written": False, "rows": 0, "output_file": None}

        path = Path(output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        _ClientLogger("SEARCH").info(f"Exported {len(result.hits)} row(s) to {path}")
        return {
            "success": True,
            "written": True,
            "rows": len(result.hits),
            "output_file": str(path),
        }
