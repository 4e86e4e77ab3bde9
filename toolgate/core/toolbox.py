"""
Toolgate Toolbox - Wires every tool family into one frozen registry.

The toolbox is built once at startup. After build() the registry is
frozen and the executor is the only way to run a tool.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import httpx

from toolgate.codebase.manager import CodebaseManager
from toolgate.codebase.tools import register_codebase_tools
from toolgate.db.store import ConnectionResolver, EnvSettingsResolver, MemoryRowStore, RowStore
from toolgate.db.tools import register_db_tools
from toolgate.providers.stream import ChatStreamClient
from toolgate.rag.retrieval import HttpKnowledgeSearcher, KnowledgeSearcher, WeightedRetriever
from toolgate.rag.tools import register_knowledge_tools
from toolgate.tools.executor import ToolExecutor
from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import ExecutionContext
from toolgate.validation.config import Config
from toolgate.web.search import register_web_tools

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.example.com"


@dataclass
class Toolbox:
    """Everything a caller needs to run tools and stream chat."""

    config: Config
    registry: ToolRegistry
    executor: ToolExecutor
    retriever: WeightedRetriever
    relay: ChatStreamClient
    codebase: CodebaseManager

    @classmethod
    def build(
        cls,
        config: Config,
        client: httpx.AsyncClient,
        store: Optional[RowStore] = None,
        resolver: Optional[ConnectionResolver] = None,
        codebase: Optional[CodebaseManager] = None,
        searcher: Optional[KnowledgeSearcher] = None,
    ) -> "Toolbox":
        """
        Register all tool families and freeze the registry.

        Args:
            config: Loaded configuration.
            client: Shared HTTP client for search, knowledge and relay calls.
            store: Row store for the db tools. Defaults to an empty in-memory store.
            resolver: Maps a document id to a row store connection.
            codebase: In-memory codebase for the code tools.
            searcher: Per-source knowledge searcher. Defaults to the HTTP API.

        Returns:
            A ready Toolbox.
        """
        settings = config.merged
        codebase = codebase or CodebaseManager()

        if searcher is None:
            searcher = HttpKnowledgeSearcher(
                client,
                settings.knowledge.base_url or DEFAULT_API_BASE,
                config.get_api_key("knowledge"),
                app_link=settings.knowledge.app_link,
            )
        retriever = WeightedRetriever(searcher)

        registry = ToolRegistry()
        register_db_tools(registry, resolver or EnvSettingsResolver({}), store or MemoryRowStore())
        register_web_tools(
            registry,
            client,
            serpapi_api_key=config.get_api_key("serpapi"),
            unsplash_access_key=config.get_api_key("unsplash"),
        )
        register_knowledge_tools(registry, retriever, config.get_knowledge_sources())
        register_codebase_tools(registry, codebase)
        registry.freeze()
        logger.info("Toolbox ready with %d tools", registry.count())

        relay = ChatStreamClient(
            client,
            settings.relay.base_url or DEFAULT_API_BASE,
            api_key=config.get_api_key("relay"),
            model=settings.relay.model,
            timeout=settings.relay.timeout,
            app_link=settings.relay.app_link,
        )

        return cls(
            config=config,
            registry=registry,
            executor=ToolExecutor(registry, results_dir=config.get_results_dir()),
            retriever=retriever,
            relay=relay,
            codebase=codebase,
        )

    def context(
        self,
        grants: Optional[Iterable[str]] = None,
        doc_id: Optional[str] = None,
        user_id: str = "",
        organization_id: str = "",
    ) -> ExecutionContext:
        """
        Build an ExecutionContext. Without explicit grants the configured
        default permissions apply.
        """
        permissions = self.config.merged.permissions.granted if grants is None else grants
        return ExecutionContext(
            user_id=user_id,
            organization_id=organization_id,
            doc_id=doc_id,
            permissions=frozenset(permissions),
            knowledge_sources=self.config.get_knowledge_sources(),
        )
