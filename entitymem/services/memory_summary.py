"""
Memory summary snapshots and their staleness.

Writing the summary text is someone else's job (an LLM, a UI). This module
only stores it together with the entity/observation counts it was written
from; a summary is stale whenever the live counts differ from that snapshot.
"""

from typing import Optional

from ..models.core import MemoryOverview, MemorySummary, SummaryStatus
from ..utils.logging_config import get_logger
from ..utils.sqlite_store import retry_on_locked
from ..utils.timestamp_utils import now_ms, to_datetime
from .graph_engine import SCOPE, GraphEngine

logger = get_logger(__name__)


class SummaryService:
    """Stores one summary per scope and reports whether it is still current."""

    def __init__(self, graph: GraphEngine):
        self.graph = graph
        self.store = graph.store

    @retry_on_locked
    def save_summary(self, user_id: str, project_id: Optional[str], summary_text: str) -> MemorySummary:
        """Store (or replace) the summary of a scope, snapshotting the live counts."""
        generated_at = now_ms()
        with self.store.transaction() as conn:
            stats = self.graph.count_scope(conn, user_id, project_id)
            conn.execute(f'DELETE FROM memory_summaries WHERE {SCOPE}', (user_id, project_id))
            conn.execute(
                'INSERT INTO memory_summaries (user_id, project_id, summary_text, entity_count_snapshot, '
                'observation_count_snapshot, generated_at) VALUES (?, ?, ?, ?, ?, ?)',
                (user_id, project_id, summary_text, stats.entity_count, stats.observation_count, generated_at))

        logger.debug(f'Saved summary for user {user_id} (project {project_id}) at '
                     f'{stats.entity_count} entities / {stats.observation_count} observations')
        return MemorySummary(user_id=user_id,
                             project_id=project_id,
                             summary_text=summary_text,
                             entity_count_snapshot=stats.entity_count,
                             observation_count_snapshot=stats.observation_count,
                             generated_at=to_datetime(generated_at))

    @retry_on_locked
    def get_summary(self, user_id: str, project_id: Optional[str] = None) -> SummaryStatus:
        """The stored summary of a scope (if any) with its staleness."""
        with self.store.reader() as conn:
            row = conn.execute(f'SELECT * FROM memory_summaries WHERE {SCOPE}', (user_id, project_id)).fetchone()
            stats = self.graph.count_scope(conn, user_id, project_id)

        if row is None:
            return SummaryStatus(summary=None, is_stale=True)

        summary = MemorySummary(user_id=row['user_id'],
                                project_id=row['project_id'],
                                summary_text=row['summary_text'],
                                entity_count_snapshot=row['entity_count_snapshot'],
                                observation_count_snapshot=row['observation_count_snapshot'],
                                generated_at=to_datetime(row['generated_at']))
        is_stale = (summary.entity_count_snapshot != stats.entity_count
                    or summary.observation_count_snapshot != stats.observation_count)
        return SummaryStatus(summary=summary, is_stale=is_stale)

    def is_summary_stale(self, user_id: str, project_id: Optional[str] = None) -> bool:
        """True when no summary exists or the counts moved since it was generated."""
        return self.get_summary(user_id, project_id).is_stale

    @retry_on_locked
    def delete_summary(self, user_id: str, project_id: Optional[str] = None) -> bool:
        with self.store.transaction() as conn:
            cursor = conn.execute(f'DELETE FROM memory_summaries WHERE {SCOPE}', (user_id, project_id))
        return cursor.rowcount > 0

    def get_overview(self, user_id: str, project_id: Optional[str] = None) -> MemoryOverview:
        """Summary status plus live counts, as shown on a memory management screen."""
        status = self.get_summary(user_id, project_id)
        stats = self.graph.get_stats(user_id, project_id)
        return MemoryOverview(summary_text=status.summary.summary_text if status.summary else None,
                              summary_generated_at=status.summary.generated_at if status.summary else None,
                              is_stale=status.is_stale,
                              entity_count=stats.entity_count,
                              observation_count=stats.observation_count,
                              edit_count=self.graph.count_user_edits(user_id, project_id))
