"""Knowledge-base retrieval tool."""

from __future__ import annotations

from typing import Annotated, List, Optional, Sequence

from pydantic import Field, StringConstraints

from toolgate.rag.retrieval import NoSourceConfiguredError, WeightedRetriever
from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import (
    CapabilityDescriptor,
    ErrorKind,
    ExecutionContext,
    KnowledgeSourceConfig,
    Success,
    ToolArgs,
    ToolError,
    ToolMetadata,
)


class KnowledgeSearchArgs(ToolArgs):
    query: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)] = Field(
        description="What to look up in the knowledge bases"
    )
    top_k: int = Field(default=5, ge=1, le=20, description="Maximum number of passages")


class KnowledgeToolset:
    """
    ``knowledge_search`` over the caller's knowledge sources.

    Sources come from the execution context; ``default_sources`` (from
    configuration) are used when the context carries none.
    """

    def __init__(
        self,
        retriever: WeightedRetriever,
        default_sources: Optional[Sequence[KnowledgeSourceConfig]] = None,
    ):
        self.retriever = retriever
        self.default_sources = list(default_sources or [])

    async def knowledge_search(self, args: KnowledgeSearchArgs, context: ExecutionContext) -> Success:
        sources = context.knowledge_sources or self.default_sources
        try:
            results = await self.retriever.search(args.query, sources, args.top_k)
        except NoSourceConfiguredError as exc:
            raise ToolError(ErrorKind.NO_SOURCE_CONFIGURED, str(exc))
        return Success(output={"results": [r.to_dict() for r in results]})

    def descriptors(self) -> List[CapabilityDescriptor]:
        return [
            CapabilityDescriptor(
                name="knowledge_search",
                description=(
                    "Search the app's knowledge bases and return the most relevant passages, "
                    "ranked by source-weighted relevance."
                ),
                parameters=KnowledgeSearchArgs,
                permissions=frozenset({"kb:read"}),
                metadata=ToolMetadata(category="knowledge", timeout_ms=30_000, max_retries=1),
                handler=self.knowledge_search,
            ),
        ]


def register_knowledge_tools(
    registry: ToolRegistry,
    retriever: WeightedRetriever,
    default_sources: Optional[Sequence[KnowledgeSourceConfig]] = None,
) -> KnowledgeToolset:
    toolset = KnowledgeToolset(retriever, default_sources)
    registry.register_all(toolset.descriptors())
    return toolset
