"""NodeMorph repository client."""

from .api_client import NodeMorphClient
from .mutation_planner import MutationExecutor, NodeRepository

__all__ = ["MutationExecutor", "NodeMorphClient", "NodeRepository"]
