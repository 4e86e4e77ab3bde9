"""Web tools: SerpAPI web search and Unsplash image search over httpx."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional

import httpx
from pydantic import Field, StringConstraints

from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import (
    CapabilityDescriptor,
    ErrorKind,
    ExecutionContext,
    Success,
    ToolArgs,
    ToolError,
    ToolMetadata,
)

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"
UNSPLASH_URL = "https://api.unsplash.com/search/photos"

Query = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class WebSearchArgs(ToolArgs):
    query: Query = Field(description="The search query to perform")


class UnsplashSearchArgs(ToolArgs):
    query: Query = Field(description='English keywords joined by comma, e.g. "future city, neon, night"')
    orientation: Optional[Literal["landscape", "portrait", "squarish"]] = Field(
        default=None,
        description="cover/banner=landscape, mobile/story=portrait, logo/card=squarish",
    )
    per_page: int = Field(default=5, ge=1, le=20, alias="per_page", description="Number of images to fetch")
    order_by: Literal["relevant", "latest"] = Field(default="relevant", alias="order_by")
    color_hint: Optional[str] = Field(
        default=None,
        alias="color_hint",
        description='Optional color hint like "warm", "cool", "monochrome"',
    )


def format_web_results(query: str, data: Dict[str, Any], max_results: int = 5) -> str:
    """Render a SerpAPI response as plain text for the model."""
    lines = [f'Web search results for "{query}":', ""]

    graph = data.get("knowledge_graph")
    if graph:
        lines += ["Knowledge Graph:", graph.get("title", ""), graph.get("description", ""), ""]

    answer = data.get("answer_box")
    if answer and answer.get("answer"):
        lines += ["Quick Answer:", str(answer["answer"]), ""]

    organic = data.get("organic_results") or []
    if organic:
        lines.append("Search Results:")
        for i, item in enumerate(organic[:max_results], 1):
            lines.append(f"{i}. {item.get('title', '')}")
            lines.append(f"   URL: {item.get('link', '')}")
            lines.append(f"   {item.get('snippet', '')}")
            lines.append("")
    else:
        lines.append(f'No search results found for "{query}".')

    return "\n".join(lines).rstrip() + "\n"


def normalize_photo(photo: Dict[str, Any]) -> Dict[str, Any]:
    user = photo.get("user") or {}
    urls = photo.get("urls") or {}
    links = photo.get("links") or {}
    name = user.get("name") or "Unknown"
    return {
        "id": photo.get("id"),
        "title": photo.get("description") or photo.get("alt_description") or "Untitled",
        "photographer": {
            "name": name,
            "profile_url": (user.get("links") or {}).get("html", ""),
        },
        "dimensions": {"width": photo.get("width"), "height": photo.get("height")},
        "urls": {
            "small": urls.get("small", ""),
            "regular": urls.get("regular", ""),
            "full": urls.get("full") or urls.get("raw", ""),
        },
        "html_page": links.get("html", ""),
        "download_location": links.get("download_location", ""),
        "attribution": f"Photo by {name} on Unsplash",
    }


class WebToolset:
    """Search tools backed by external HTTP APIs."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        serpapi_api_key: Optional[str] = None,
        unsplash_access_key: Optional[str] = None,
    ):
        self.client = client
        self.serpapi_api_key = serpapi_api_key
        self.unsplash_access_key = unsplash_access_key

    async def web_search(self, args: WebSearchArgs, context: ExecutionContext) -> Success:
        if not self.serpapi_api_key:
            raise ToolError(ErrorKind.INTERNAL, "SERPAPI_API_KEY is not configured")

        response = await self.client.get(
            SERPAPI_URL,
            params={"engine": "google", "q": args.query, "api_key": self.serpapi_api_key},
        )
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise ToolError(ErrorKind.TRANSIENT, f"SerpAPI error: {data['error']}", retryable=True)

        return Success(output=format_web_results(args.query, data))

    async def unsplash_search(self, args: UnsplashSearchArgs, context: ExecutionContext) -> Success:
        if not self.unsplash_access_key:
            raise ToolError(ErrorKind.INTERNAL, "UNSPLASH_ACCESS_KEY is not configured")

        query = f"{args.query}, {args.color_hint}" if args.color_hint else args.query
        params: Dict[str, Any] = {
            "query": query,
            "per_page": args.per_page,
            "order_by": args.order_by,
        }
        if args.orientation:
            params["orientation"] = args.orientation

        response = await self.client.get(
            UNSPLASH_URL,
            params=params,
            headers={"Authorization": f"Client-ID {self.unsplash_access_key}"},
        )
        response.raise_for_status()
        data = response.json()

        results = [normalize_photo(p) for p in data.get("results") or []]
        return Success(output={
            "query_used": query,
            "total": data.get("total", len(results)),
            "results": results,
            "message": (
                f'Found {len(results)} images for "{query}". '
                "Use the 'regular' or 'small' URL for display."
            ),
        })

    def descriptors(self) -> List[CapabilityDescriptor]:
        return [
            CapabilityDescriptor(
                name="web_search",
                description=(
                    "Search the web for current information, documentation or examples."
                ),
                parameters=WebSearchArgs,
                permissions=frozenset({"web:search"}),
                metadata=ToolMetadata(category="web", timeout_ms=30_000, max_retries=2),
                handler=self.web_search,
            ),
            CapabilityDescriptor(
                name="unsplash_search",
                description=(
                    "Search high-quality Unsplash photos by intent and style. Returns image URLs "
                    "usable in <img> tags; always include the photographer attribution."
                ),
                parameters=UnsplashSearchArgs,
                permissions=frozenset({"web:unsplash"}),
                metadata=ToolMetadata(category="web", timeout_ms=30_000, max_retries=2),
                handler=self.unsplash_search,
            ),
        ]


def register_web_tools(
    registry: ToolRegistry,
    client: httpx.AsyncClient,
    serpapi_api_key: Optional[str] = None,
    unsplash_access_key: Optional[str] = None,
) -> WebToolset:
    toolset = WebToolset(client, serpapi_api_key, unsplash_access_key)
    registry.register_all(toolset.descriptors())
    return toolset
