"""NodeMorph API client implementation."""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..models import ActionResult, NetworkError, UpdateReport
from ..operations import MutationOperation
from .api_client_core import _ClientLogger
from .api_client_search import NodeMorphClientSearch
from .mutation_planner import MutationExecutor
from .report_helper import aggregate, summarize


class NodeMorphClient(NodeMorphClientSearch):
    """Complete client: search, local mutation execution and remote updates."""

    def executor(self) -> MutationExecutor:
        return MutationExecutor(
            self,
            max_concurrency=self.config.max_concurrency,
            user_id=self.user_id,
        )

    async def execute(self, op: MutationOperation) -> UpdateReport:
        """Resolve and apply ``op`` from this process, node by node."""
        return await self.executor().execute(op)

    async def remote_update(self, op: MutationOperation) -> UpdateReport:
        """Hand ``op`` to the repository-side update endpoint.

        The endpoint does the resolution and mutation itself; we only encode
        the form and decode its ``{total, actions}`` answer. ``total`` is
        recomputed from the actions.
        """
        logger = _ClientLogger("REMOTE")
        response = await self._request(
            "POST", self.config.update_endpoint, f"remote {op.operation}", data=op.to_form()
        )
        data: Any = await self._handle_response(response)
        if not isinstance(data, dict) or not isinstance(data.get("actions", []), list):
            raise NetworkError("Invalid response format from update endpoint")

        try:
            actions = [ActionResult.model_validate(a) for a in data.get("actions") or []]
        except PydanticValidationError as err:
            raise NetworkError("Invalid action in update endpoint response") from err
        report = aggregate(actions)
        if data.get("total") is not None and data.get("total") != report.total:
            logger.debug(f"Endpoint reported total={data.get('total')}, recomputed {report.total}")
        logger.info(f"Remote {op.label} under {op.path}: {summarize(report)}")
        return report
