# =============================================================================
# Vector Store — Chunk Embeddings and Nearest-Neighbour Search
# =============================================================================
#
# Two backends behind one Protocol:
#
#   VectorStore (Protocol)
#   ├── PgVectorStore       chunks table, pgvector cosine_distance
#   └── ChromaVectorStore   one cosine-space collection, metadata filters
#
# Writes are sync (Celery ingestion), reads are async (FastAPI chat). The
# Chroma client is blocking, so its queries run in a worker thread.
#
# search() hands back raw candidates: stored chunk + cosine distance,
# nearest first. Turning distances into a prompt order belongs to
# veritas.services.reranker.
#
# Scope: one document, else one owner's documents, else everything.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import chromadb
from sqlalchemy import delete, select

from veritas.config import settings
from veritas.db.engine import async_session_factory, get_sync_session
from veritas.db.models import Chunk, Document
from veritas.services.reranker import Candidate, RetrievedChunk
from veritas.services.tokens import estimate_tokens

logger = logging.getLogger(__name__)

CHROMA_COLLECTION = "veritas_chunks"

Embedding = list[float]


class VectorStore(Protocol):
    def add_chunks(
        self,
        document_id: int,
        contents: list[str],
        embeddings: list[Embedding],
        metadatas: list[dict],
        owner_id: int | None = None,
    ) -> list[int | str]:
        """Persist one document's chunks; returns their ids in input order."""
        ...

    async def search(
        self,
        query_embedding: Embedding,
        top_k: int = 20,
        document_id: int | None = None,
        owner_id: int | None = None,
    ) -> list[Candidate]:
        """At most `top_k` candidates, ascending cosine distance."""
        ...


# ---------------------------------------------------------------------------
# pgvector
# ---------------------------------------------------------------------------


class PgVectorStore:
    """Chunks as ORM rows; reads use the HNSW index on chunks.embedding."""

    def add_chunks(
        self,
        document_id: int,
        contents: list[str],
        embeddings: list[Embedding],
        metadatas: list[dict],
        owner_id: int | None = None,
    ) -> list[int | str]:
        # owner_id lives on the documents row; search joins through it
        rows = [
            Chunk(
                document_id=document_id,
                chunk_index=meta.get("chunk_index", position),
                content=content,
                token_count=estimate_tokens(content),
                embedding=vector,
                metadata_=meta,
            )
            for position, (content, vector, meta) in enumerate(
                zip(contents, embeddings, metadatas, strict=True)
            )
        ]
        with get_sync_session() as session:
            # A retried ingestion replaces the rows of the earlier attempt
            session.execute(delete(Chunk).where(Chunk.document_id == document_id))
            session.add_all(rows)
            session.flush()
            ids: list[int | str] = [row.id for row in rows]

        logger.info("pgvector: stored %d chunks for document %d", len(ids), document_id)
        return ids

    async def search(
        self,
        query_embedding: Embedding,
        top_k: int = 20,
        document_id: int | None = None,
        owner_id: int | None = None,
    ) -> list[Candidate]:
        distance = Chunk.embedding.cosine_distance(query_embedding).label("distance")
        stmt = select(Chunk, distance).order_by(distance).limit(top_k)

        if document_id is not None:
            stmt = stmt.where(Chunk.document_id == document_id)
        elif owner_id is not None:
            stmt = stmt.join(Document, Chunk.document_id == Document.id).where(
                Document.owner_id == owner_id
            )

        async with async_session_factory() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug(
            "pgvector: %d rows (top_k=%d, document_id=%s, owner_id=%s)",
            len(rows), top_k, document_id, owner_id,
        )
        return [
            Candidate(
                chunk=RetrievedChunk(
                    chunk_id=row.id,
                    document_id=row.document_id,
                    content=row.content,
                    metadata=row.metadata_ or {},
                ),
                distance=None if dist is None else float(dist),
            )
            for row, dist in rows
        ]


# ---------------------------------------------------------------------------
# ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    All chunks in one collection. Each chunk's metadata carries its
    `document_id` (and `owner_id` when known) for where-filtering.

    In-process by default; set CHROMA_URL to talk to a Chroma server.
    """

    def __init__(self, client: chromadb.ClientAPI | None = None) -> None:
        if client is None:
            client = (
                chromadb.HttpClient(host=settings.chroma_url)
                if settings.chroma_url
                else chromadb.Client()
            )
        self._client = client
        # Same metric as pgvector's vector_cosine_ops
        self._collection = client.get_or_create_collection(
            name=CHROMA_COLLECTION,
            metadata={"hnsw:space": "cosine"},
        )

    def add_chunks(
        self,
        document_id: int,
        contents: list[str],
        embeddings: list[Embedding],
        metadatas: list[dict],
        owner_id: int | None = None,
    ) -> list[int | str]:
        ids: list[int | str] = []
        tagged: list[dict] = []
        for position, meta in enumerate(metadatas):
            ids.append(f"doc{document_id}_chunk{meta.get('chunk_index', position)}")
            tagged.append(_sanitise_chroma_metadata(
                {**meta, "document_id": document_id, "owner_id": owner_id}
            ))

        # A retried ingestion replaces the earlier attempt, even when it stores
        # fewer chunks
        self._collection.delete(where={"document_id": document_id})
        self._collection.upsert(
            ids=ids,
            documents=contents,
            embeddings=embeddings,
            metadatas=tagged,
        )
        logger.info("ChromaDB: stored %d chunks for document %d", len(ids), document_id)
        return ids

    async def search(
        self,
        query_embedding: Embedding,
        top_k: int = 20,
        document_id: int | None = None,
        owner_id: int | None = None,
    ) -> list[Candidate]:
        response = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[query_embedding],
            n_results=top_k,
            where=_where_filter(document_id, owner_id),
            include=["documents", "metadatas", "distances"],
        )
        return _chroma_candidates(response)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: PgVectorStore | ChromaVectorStore | None = None


def get_vector_store() -> PgVectorStore | ChromaVectorStore:
    """Process-wide store for `settings.vectorstore_type` ("pgvector" or "chroma")."""
    global _store
    if _store is None:
        _store = ChromaVectorStore() if settings.vectorstore_type == "chroma" else PgVectorStore()
        logger.info("Vector store backend: %s", type(_store).__name__)
    return _store


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _where_filter(document_id: int | None, owner_id: int | None) -> dict | None:
    if document_id is not None:
        return {"document_id": document_id}
    if owner_id is not None:
        return {"owner_id": owner_id}
    return None


def _chroma_candidates(response: dict | None) -> list[Candidate]:
    """Flatten a single-query Chroma response into candidates."""
    if not response or not response.get("ids") or not response["ids"][0]:
        return []

    def _first(key: str) -> list:
        values = response.get(key)
        return values[0] if values else []

    ids = response["ids"][0]
    distances = _first("distances")
    metadatas = _first("metadatas")
    documents = _first("documents")

    candidates = []
    for i, chroma_id in enumerate(ids):
        metadata = dict(metadatas[i] or {}) if metadatas else {}
        document_id = metadata.get("document_id")
        candidates.append(Candidate(
            chunk=RetrievedChunk(
                chunk_id=chroma_id,
                document_id=None if document_id in (None, "") else int(document_id),
                content=documents[i] if documents else "",
                metadata=metadata,
            ),
            distance=distances[i] if distances else None,
        ))
    return candidates


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Chroma accepts only str, int, float and bool values. Lists become
    comma-joined strings, None is dropped (an empty string would never match
    an int filter), anything else is str()'d.
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
