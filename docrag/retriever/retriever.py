from dataclasses import dataclass, field
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from docrag.core.config import settings
from docrag.core.errors import WebSearchError
from docrag.embeddings.embedder import embed_text
from docrag.utils.logger import get_logger
from docrag.utils.permissions import workspace_document_ids
from docrag.vectorstore.vector_store import SearchHit, search
from docrag.web.firecrawl import WebResult
from docrag.web.search import get_web_search

logger = get_logger("docrag.retriever")

NO_RELEVANT_INFORMATION = "No relevant information was found in the provided documents."
SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass
class RetrievalScope:
    """Exactly one of document_id / workspace_id is set."""
    user_id: int
    document_id: Optional[int] = None
    workspace_id: Optional[int] = None
    web_search: bool = False

    def __post_init__(self):
        if (self.document_id is None) == (self.workspace_id is None):
            raise ValueError("scope needs exactly one of document_id or workspace_id")


@dataclass
class RetrievalResult:
    context: str
    sources: List[str] = field(default_factory=list)
    hits: List[SearchHit] = field(default_factory=list)
    web_results: List[WebResult] = field(default_factory=list)
    web_error: Optional[str] = None
    used_fallback: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.hits and not self.web_results


def _best(hits: List[SearchHit]) -> float:
    return hits[0].distance if hits else float("inf")


def deduplicate(hits: List[SearchHit]) -> List[SearchHit]:
    """Drop repeated chunk texts, keeping the best-ranked copy."""
    seen = set()
    unique = []
    for hit in hits:
        key = " ".join(hit.content.split()).lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(hit)
    return unique


def build_context(
        hits: List[SearchHit],
        web_results: List[WebResult],
        web_error: Optional[str] = None,
) -> str:
    """
    Render chunks labeled `[Document Name]` and web results labeled
    `[Title](URL)`. Nothing to show yields NO_RELEVANT_INFORMATION.
    """
    sections = []
    if hits:
        sections.append("\n\n".join(f"[{h.document_name}]\n{h.content.strip()}" for h in hits))
    if web_results:
        sections.append(
            "Web results:\n\n"
            + "\n\n".join(f"[{r.title}]({r.url})\n{r.text.strip()}" for r in web_results)
        )
    if not sections:
        sections.append(NO_RELEVANT_INFORMATION)
    if web_error:
        sections.append(f"Note: live web search was unavailable ({web_error}); answer uses documents only.")
    return SECTION_SEPARATOR.join(sections)


def source_labels(hits: List[SearchHit], web_results: List[WebResult]) -> List[str]:
    labels: List[str] = []
    for h in hits:
        label = f"[{h.document_name}]"
        if label not in labels:
            labels.append(label)
    labels.extend(f"[{r.title}]({r.url})" for r in web_results)
    return labels


async def search_scope(db: AsyncSession, query_vector: List[float], scope: RetrievalScope, k: int):
    """
    Vector search for one scope. Returns (hits, used_fallback).

    Workspace scope falls back to every document the user owns when the best
    workspace distance exceeds FALLBACK_DISTANCE_THRESHOLD, and switches to that
    result set only if its best distance is strictly lower. The two sets are
    never merged.
    """
    if scope.document_id is not None:
        return await search(db, query_vector, document_ids=[scope.document_id], limit=k), False

    doc_ids = await workspace_document_ids(db, scope.workspace_id, scope.user_id)
    hits = await search(db, query_vector, document_ids=doc_ids, limit=k)

    threshold = settings.FALLBACK_DISTANCE_THRESHOLD
    best = _best(hits)
    if best <= threshold:
        return hits, False

    broader = await search(db, query_vector, owner_id=scope.user_id, limit=k)
    logger.info("Workspace match poor, tried cross-workspace search", extra={
        "workspace_id": scope.workspace_id,
        "workspace_best": best,
        "cross_workspace_best": _best(broader),
        "threshold": threshold,
    })
    if broader and _best(broader) < best:
        return broader, True
    return hits, False


async def retrieve(db: AsyncSession, query: str, scope: RetrievalScope) -> RetrievalResult:
    """
    Build the labeled context for one chat turn.

    Raises:
        EmbeddingServiceError, VectorStoreError: the turn cannot proceed
    """
    logger.info("Retrieving context", extra={
        "query_length": len(query),
        "document_id": scope.document_id,
        "workspace_id": scope.workspace_id,
        "web_search": scope.web_search,
    })

    query_vector = await embed_text(query)
    hits, used_fallback = await search_scope(db, query_vector, scope, settings.RETRIEVAL_TOP_K)
    hits = deduplicate(hits)

    web_results: List[WebResult] = []
    web_error: Optional[str] = None
    if scope.web_search:
        try:
            web_results = await get_web_search().search(query)
        except WebSearchError as e:
            web_error = str(e)
            logger.warning("Web search failed, using documents only", extra={"error": web_error})

    result = RetrievalResult(
        context=build_context(hits, web_results, web_error),
        sources=source_labels(hits, web_results),
        hits=hits,
        web_results=web_results,
        web_error=web_error,
        used_fallback=used_fallback,
    )
    logger.info("Context retrieved", extra={
        "chunks": len(hits),
        "web_results": len(web_results),
        "used_fallback": used_fallback,
    })
    return result
