"""Coach's local article-generation backend."""

import logging
from typing import Any, List, Tuple

from ..errors import DomainError
from .base import ServiceClient

logger = logging.getLogger(__name__)


class ResearchBackend(ServiceClient):
    """Opaque research service: query in, article and sources out."""

    service_name = "research backend"

    async def research(self, query: str, user_id: str = "coach") -> Tuple[str, List[Any]]:
        data = await self._request("POST", "/api/research", {"query": query, "user_id": user_id})
        nested = data.get("research") or {}
        article = data.get("article") or nested.get("article_raw") or ""
        sources = data.get("sources") or nested.get("sources") or []
        if not article.strip():
            raise DomainError("The research backend returned an empty article")
        logger.info(f"Generated article ({len(article)} chars, {len(sources)} sources)")
        return article, sources
