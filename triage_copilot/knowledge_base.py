"""
Knowledge base retrieval for the Support Triage Copilot.

Scores articles against a free-text query with a keyword heuristic:
title hits weigh 3, body hits count once per occurrence. The top results
are stored against the ticket, replacing whatever the previous run found.

Also loads knowledge base articles from a YAML seed file.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import KBDocument, KBMatch, KBSnippet, utcnow
from .retry import RetryPolicy
from .run_log import RunLogRecorder
from .store import TriageStore


logger = logging.getLogger(__name__)


TITLE_WEIGHT = 3
ELLIPSIS = "..."


class KnowledgeBaseError(Exception):
    """Error while searching or loading the knowledge base."""
    pass


def query_terms(query: str) -> list[str]:
    """Lowercase whitespace-separated terms longer than two characters."""
    return [term for term in query.lower().split() if len(term) > 2]


def score_document(document: KBDocument, terms: list[str]) -> int:
    """
    Keyword score of one article.

    Each term adds TITLE_WEIGHT if it appears in the title, plus the
    number of times it occurs in the body.
    """
    title = document.title.lower()
    body = document.body.lower()
    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        score += body.count(term)
    return score


def make_excerpt(body: str, length: int = 150) -> str:
    """First `length` characters of the body with an ellipsis marker."""
    return body[:length] + ELLIPSIS


def rank_documents(
    documents: list[KBDocument],
    terms: list[str],
    top_k: int = 3,
    excerpt_length: int = 150,
) -> list[KBSnippet]:
    """
    Score, sort and cut the candidate articles.

    Returns:
        At most `top_k` snippets, all with a positive score, best first.
        Ties keep the store's order.
    """
    scored = [(doc, score_document(doc, terms)) for doc in documents]
    scored.sort(key=lambda item: item[1], reverse=True)
    return [
        KBSnippet(
            id=doc.id,
            title=doc.title,
            excerpt=make_excerpt(doc.body, excerpt_length),
            score=score,
        )
        for doc, score in scored
        if score > 0
    ][:top_k]


def format_kb_context(snippets: list[KBSnippet]) -> str:
    """Render snippets as Title/Excerpt/ID blocks for the analysis prompt."""
    return "\n\n".join(
        f"Title: {s.title}\nExcerpt: {s.excerpt}\nID: {s.id}" for s in snippets
    )


class KnowledgeBaseRetriever:
    """
    Keyword search over the knowledge base with retry on storage errors.
    """

    def __init__(
        self,
        store: TriageStore,
        run_log: RunLogRecorder,
        retry_policy: Optional[RetryPolicy] = None,
        top_k: int = 3,
        excerpt_length: int = 150,
    ):
        self._store = store
        self._run_log = run_log
        self._retry = retry_policy or RetryPolicy()
        self._top_k = top_k
        self._excerpt_length = excerpt_length

    def search(self, query: str, ticket_id: Optional[str] = None) -> list[KBSnippet]:
        """
        Find the articles that best match `query`.

        When a ticket id is given, the results become that ticket's KB match
        set and a run log entry is written.

        Args:
            query: Free-text search query.
            ticket_id: Optional ticket to store the matches against.

        Returns:
            Up to `top_k` snippets with score > 0, best first.

        Raises:
            KnowledgeBaseError: If storage keeps failing after all retries.
        """
        started_at = utcnow()
        terms = query_terms(query)

        try:
            snippets = self._retry.call(self._search_once, terms, ticket_id)
        except Exception as e:
            logger.error(f"Knowledge base search failed: {e}")
            if ticket_id:
                self._run_log.record(
                    step="rag_search",
                    status="failed",
                    started_at=started_at,
                    finished_at=utcnow(),
                    ticket_id=ticket_id,
                    error_code=type(e).__name__,
                    error_message=str(e),
                )
            raise KnowledgeBaseError(f"Knowledge base search failed: {e}") from e

        if snippets is None:
            # Nothing to rank: no usable terms or an empty knowledge base
            return []

        if ticket_id:
            self._run_log.record(
                step="rag_search",
                status="success",
                started_at=started_at,
                finished_at=utcnow(),
                ticket_id=ticket_id,
                payload={"count": len(snippets)},
            )

        logger.debug(f"Knowledge base search returned {len(snippets)} snippets")
        return snippets

    def _search_once(
        self,
        terms: list[str],
        ticket_id: Optional[str],
    ) -> Optional[list[KBSnippet]]:
        documents = self._store.list_kb_documents()

        if not terms or not documents:
            if ticket_id:
                self._store.delete_kb_matches(ticket_id)
            return None

        snippets = rank_documents(
            documents, terms, top_k=self._top_k, excerpt_length=self._excerpt_length
        )

        if ticket_id:
            self._replace_matches(ticket_id, snippets)

        return snippets

    def _replace_matches(self, ticket_id: str, snippets: list[KBSnippet]) -> None:
        self._store.delete_kb_matches(ticket_id)
        for snippet in snippets:
            self._store.add_kb_match(
                KBMatch(
                    ticket_id=ticket_id,
                    kb_document_id=snippet.id,
                    score=snippet.score,
                    title_snapshot=snippet.title,
                    excerpt_snapshot=snippet.excerpt,
                )
            )


def parse_kb_documents(content: str) -> list[KBDocument]:
    """
    Parse YAML content into knowledge base articles.

    Implements graceful handling of:
    - Different top-level layouts (tries multiple paths)
    - Tags given as a list or a comma-separated string
    - Malformed entries (skips with warning)

    Args:
        content: Raw YAML string.

    Returns:
        Parsed articles, in file order.
    """
    data = yaml.safe_load(content)

    if not data:
        logger.warning("Empty knowledge base file, no articles loaded")
        return []

    entries: Any = None
    possible_paths = [
        lambda d: d.get("knowledge_base", {}).get("articles", []),
        lambda d: d.get("articles", []),
        lambda d: d if isinstance(d, list) else [],
    ]

    for path_fn in possible_paths:
        try:
            result = path_fn(data)
            if result:
                entries = result
                break
        except (AttributeError, TypeError):
            continue

    if not entries:
        logger.warning("Could not find articles in knowledge base file")
        return []

    documents = []
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping knowledge base entry {idx}: not a mapping")
            continue

        title = str(entry.get("title", "")).strip()
        body = str(entry.get("body", "")).strip()
        if not title or not body:
            logger.warning(f"Skipping knowledge base entry {idx}: missing title or body")
            continue

        tags = entry.get("tags")
        if isinstance(tags, list):
            tags = ", ".join(str(tag) for tag in tags)

        fields = {"title": title, "body": body, "tags": tags or None}
        if entry.get("id"):
            fields["id"] = str(entry["id"])
        documents.append(KBDocument(**fields))

    logger.info(f"Parsed {len(documents)} knowledge base articles")
    return documents


def load_kb_documents(path: Path) -> list[KBDocument]:
    """
    Read knowledge base articles from a YAML file.

    Raises:
        KnowledgeBaseError: If the file cannot be read or is not valid YAML.
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
        return parse_kb_documents(content)
    except OSError as e:
        raise KnowledgeBaseError(f"Cannot read knowledge base file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise KnowledgeBaseError(f"Invalid YAML in {path}: {e}") from e
