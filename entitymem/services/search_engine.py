"""
Search Engine: relevance-ranked observation search over one scope.

Each candidate is scored by cosine similarity when both the query and the
observation have embeddings of the same length, and lexically otherwise.
The base score is then weighted by the observation's importance.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.core import IMPORTANCE_WEIGHTS, Entity, EntityWithObservations, Observation, SearchResult
from ..utils.logging_config import get_logger
from .embedding import EmbeddingService
from .graph_engine import GraphEngine

logger = get_logger(__name__)

EXACT_MATCH_SCORE = 1.0
TOKEN_MATCH_WEIGHT = 0.8
MIN_TOKEN_LENGTH = 3


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 for zero vectors."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def query_tokens(query: str) -> List[str]:
    """Lower-cased whitespace tokens, dropping those of two characters or fewer."""
    return [token for token in query.lower().split() if len(token) >= MIN_TOKEN_LENGTH]


def lexical_score(query: str, text: str) -> Optional[float]:
    """Score a text against a query without embeddings.

    Returns:
        1.0 for a verbatim (case-insensitive) phrase match, otherwise
        0.8 * matched tokens / query tokens, or None when nothing matches
    """
    needle = query.strip().lower()
    haystack = text.lower()
    if needle and needle in haystack:
        return EXACT_MATCH_SCORE

    tokens = query_tokens(query)
    if not tokens:
        return None
    matched = sum(1 for token in tokens if token in haystack)
    if not matched:
        return None
    return matched / len(tokens) * TOKEN_MATCH_WEIGHT


def vector_score(query: str, query_embedding: List[float], observation: Observation) -> float:
    """Cosine score, floored at the exact-phrase score for verbatim matches."""
    score = cosine_similarity(query_embedding, observation.embedding)
    needle = query.strip().lower()
    if needle and needle in observation.text.lower():
        score = max(score, EXACT_MATCH_SCORE)
    return score


class SearchEngine:
    """Ranks a scope's observations against free text."""

    def __init__(self, graph: GraphEngine, embeddings: EmbeddingService):
        """
        Args:
            graph: Graph engine used to read the scope's observations
            embeddings: Embedding service; when disabled every row is scored lexically
        """
        self.graph = graph
        self.embeddings = embeddings

        logger.info(f'Initialized SearchEngine (vector scoring {"on" if embeddings.enabled else "off"})')

    def search(self, user_id: str, project_id: Optional[str], query: str, limit: int = 10) -> List[SearchResult]:
        """Return the ``limit`` best observations for ``query`` within one scope.

        Args:
            user_id: Owner whose memory is searched
            project_id: Optional project scope
            query: Free-text query
            limit: Maximum number of results

        Returns:
            SearchResult list sorted by descending score
        """
        if not query or not query.strip() or limit < 1:
            return []

        results = self._rank(user_id, project_id, query)
        logger.debug(f'Search for user {user_id} returning {min(limit, len(results))} of {len(results)} hits')
        return results[:limit]

    def search_nodes(self,
                     user_id: str,
                     project_id: Optional[str],
                     query: str,
                     limit: int = 10) -> List[EntityWithObservations]:
        """Return the ``limit`` best entities for ``query`` within one scope.

        An entity scores the best of its observation hits and of a lexical
        match on its name or type, so an entity is found by name even when
        none of its observations match. Entities scoring zero are dropped.

        Returns:
            Entities with their observations, best first
        """
        if not query or not query.strip() or limit < 1:
            return []

        best: Dict[str, Tuple[Entity, float]] = {}
        # Results are sorted, so the first hit of an entity is its best
        for result in self._rank(user_id, project_id, query):
            if result.score > 0 and result.entity.id not in best:
                best[result.entity.id] = (result.entity, result.score)

        for entity in self.graph.list_entities(user_id, project_id):
            scores = [s for s in (lexical_score(query, entity.name), lexical_score(query, entity.type)) if s is not None]
            if scores and (entity.id not in best or max(scores) > best[entity.id][1]):
                best[entity.id] = (entity, max(scores))

        ranked = sorted(best.values(), key=lambda pair: pair[1], reverse=True)[:limit]
        logger.debug(f'Node search for user {user_id} matched {len(best)} entities, returning {len(ranked)}')
        if not ranked:
            return []
        return self.graph.open_nodes(user_id, project_id, [entity.name for entity, _ in ranked]).entities

    def _rank(self, user_id: str, project_id: Optional[str], query: str) -> List[SearchResult]:
        """Score every observation of the scope; unmatched rows are dropped on the lexical path."""
        # The scope filter runs in SQL before any scoring
        candidates = self.graph.scope_observations(user_id, project_id, with_embeddings=self.embeddings.enabled)
        if not candidates:
            return []

        query_embedding = self.embeddings.embed_query(query)

        results = []
        vector_hits = 0
        mismatched = 0
        for entity, observation in candidates:
            usable = query_embedding is not None and observation.embedding is not None
            if usable and len(observation.embedding) != len(query_embedding):
                mismatched += 1
                usable = False

            if usable:
                base = vector_score(query, query_embedding, observation)
                vector_hits += 1
            else:
                base = lexical_score(query, observation.text)
                if base is None:
                    continue

            weight = IMPORTANCE_WEIGHTS.get(observation.importance, 1.0)
            results.append(SearchResult(entity=entity, observation=observation, score=base * weight))

        results.sort(key=lambda result: result.score, reverse=True)

        if mismatched:
            logger.warning(f'{mismatched} stored embeddings have a different dimension than the query; '
                           'scored them lexically')

        logger.debug(f'Scored {len(results)}/{len(candidates)} observations for user {user_id} '
                     f'({vector_hits} by vector)')
        return results
