"""Knowledge-base lookups: BGE-M3 embedding plus Qdrant similarity search."""

from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from commsflow.config import Settings
from commsflow.logging_config import get_logger

logger = get_logger("knowledge_service")


class KnowledgeError(Exception):
    pass


class KnowledgeClient(ABC):
    @abstractmethod
    def search(self, query: str, company_id: str, limit: int = 5) -> List[dict]:
        pass


class QdrantKnowledgeClient(KnowledgeClient):
    def __init__(
        self,
        qdrant_host: str,
        collection: str,
        embedding_url: str,
        api_key: Optional[str] = None,
        score_threshold: float = 0.5,
    ):
        self.qdrant_host = qdrant_host.rstrip("/")
        self.collection = collection
        self.embedding_url = embedding_url
        self.api_key = api_key
        self.score_threshold = score_threshold

    def get_embedding(self, text: str) -> List[float]:
        with httpx.Client(timeout=30.0) as client:
            response = client.post(self.embedding_url, json={"inputs": text})
        if response.status_code != 200:
            raise KnowledgeError(f"Embedding error: {response.status_code} - {response.text[:200]}")

        data = response.json()
        # TEI returns [[...]], some deployments return {"embedding": [...]}
        if isinstance(data, list) and len(data) > 0:
            return data[0] if isinstance(data[0], list) else data
        return data.get("embedding") or data.get("embeddings") or []

    def search(self, query: str, company_id: str, limit: int = 5) -> List[dict]:
        embedding = self.get_embedding(query)
        headers = {"api-key": self.api_key} if self.api_key else {}

        with httpx.Client(timeout=30.0) as client:
            response = client.post(
                f"{self.qdrant_host}/collections/{self.collection}/points/search",
                headers=headers,
                json={
                    "vector": embedding,
                    "limit": limit,
                    "score_threshold": self.score_threshold,
                    "filter": {"must": [{"key": "metadata.company_id", "match": {"value": company_id}}]},
                    "with_payload": True,
                },
            )
        if response.status_code != 200:
            raise KnowledgeError(f"Qdrant search error: {response.status_code} - {response.text[:200]}")

        results = []
        for point in response.json().get("result", []):
            payload = point.get("payload", {})
            results.append(
                {
                    "score": point.get("score"),
                    "text": payload.get("content"),
                    "source": payload.get("metadata", {}).get("doc_name"),
                }
            )
        logger.info(f"Knowledge search: found {len(results)} results for '{query[:30]}...'")
        return results


def build_knowledge_client(settings: Settings) -> KnowledgeClient:
    return QdrantKnowledgeClient(
        qdrant_host=settings.qdrant_host,
        collection=settings.qdrant_collection,
        embedding_url=settings.embedding_url,
        api_key=settings.qdrant_api_key,
    )
