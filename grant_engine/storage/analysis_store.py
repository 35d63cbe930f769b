"""
Storage layer for analysis results.

Handles:
- Persisting every analysis result keyed by (operation, fingerprint)
- Recovering a result still inside the TTL after a cache miss
- Looking up the latest result for a subject (grant, organization, application)
- Persisting mined success patterns
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from grant_engine.core.domain_models import SuccessPatternResult
from grant_engine.core.time_utils import utcnow, ensure_aware
from .db import Database


logger = logging.getLogger(__name__)


class AnalysisStore:
    """
    Persistent storage for analysis results.

    Usage:
        store = AnalysisStore(Database("data/grant_engine.db"))
        store.record("analyze_grant_requirements", fingerprint, "grant-1", result.to_dict())
        payload = store.latest_for_subject("analyze_grant_requirements", "grant-1")
    """

    def __init__(self, db: Database):
        """
        Initialize analysis store.

        Args:
            db: Database or PostgresDatabase
        """
        self.db = db
        self._ph = db.placeholder

    def record(self, operation: str, fingerprint: str, subject_id: Optional[str],
               payload: Dict[str, Any]) -> None:
        """
        Insert or replace the result for (operation, fingerprint).

        Args:
            operation: Operation name
            fingerprint: Input fingerprint
            subject_id: Grant, organization or application id the result is about
            payload: Result payload from to_dict()
        """
        ph = self._ph
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO analysis_results (
                    operation, fingerprint, subject_id, status, confidence,
                    payload_json, created_at
                )
                VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
                ON CONFLICT(operation, fingerprint) DO UPDATE SET
                    subject_id=excluded.subject_id,
                    status=excluded.status,
                    confidence=excluded.confidence,
                    payload_json=excluded.payload_json,
                    created_at=excluded.created_at
                """,
                (
                    operation,
                    fingerprint,
                    subject_id,
                    payload.get("status"),
                    payload.get("confidence"),
                    json.dumps(payload, sort_keys=True, default=str),
                    utcnow().isoformat(),
                ),
            )

        logger.debug(f"Recorded {operation} result for {subject_id} ({fingerprint[:12]})")

    def latest(self, operation: str, fingerprint: str,
               max_age: Optional[timedelta] = None) -> Optional[Dict[str, Any]]:
        """
        Get the stored payload for (operation, fingerprint).

        Args:
            max_age: Ignore records older than this

        Returns:
            Payload dict or None
        """
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT payload_json, created_at FROM analysis_results
                WHERE operation = {self._ph} AND fingerprint = {self._ph}
                LIMIT 1
                """,
                (operation, fingerprint),
            )
            row = cursor.fetchone()

        if not row:
            return None
        if max_age is not None and self._age(row["created_at"]) > max_age:
            return None
        return json.loads(row["payload_json"])

    def latest_for_subject(self, operation: str, subject_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the most recent payload for a subject.

        Used by guidance generation to find the latest requirement analysis
        of a grant.
        """
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT payload_json FROM analysis_results
                WHERE operation = {self._ph} AND subject_id = {self._ph}
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (operation, subject_id),
            )
            row = cursor.fetchone()

        return json.loads(row["payload_json"]) if row else None

    def count(self, operation: Optional[str] = None) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            if operation:
                cursor.execute(
                    f"SELECT COUNT(*) AS n FROM analysis_results WHERE operation = {self._ph}",
                    (operation,),
                )
            else:
                cursor.execute("SELECT COUNT(*) AS n FROM analysis_results")
            return int(cursor.fetchone()["n"])

    def upsert_patterns(self, result: SuccessPatternResult) -> int:
        """
        Replace the stored patterns for the result's grant type and scope.

        Returns:
            Number of patterns written
        """
        ph = self._ph
        scope = result.analysis_scope.value
        created_at = utcnow().isoformat()

        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"DELETE FROM success_patterns WHERE grant_type = {ph} AND analysis_scope = {ph}",
                (result.grant_type, scope),
            )
            for pattern in result.patterns:
                cursor.execute(
                    f"""
                    INSERT INTO success_patterns (
                        id, grant_type, organization_type, analysis_scope, title,
                        frequency, impact, confidence, payload_json, created_at
                    )
                    VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
                    ON CONFLICT(id, analysis_scope) DO UPDATE SET
                        grant_type=excluded.grant_type,
                        organization_type=excluded.organization_type,
                        title=excluded.title,
                        frequency=excluded.frequency,
                        impact=excluded.impact,
                        confidence=excluded.confidence,
                        payload_json=excluded.payload_json,
                        created_at=excluded.created_at
                    """,
                    (
                        pattern.id,
                        result.grant_type,
                        pattern.organization_type,
                        scope,
                        pattern.pattern.title,
                        pattern.pattern.frequency,
                        pattern.pattern.impact,
                        pattern.confidence,
                        json.dumps(pattern.to_dict(), sort_keys=True, default=str),
                        created_at,
                    ),
                )

        logger.info(f"Stored {len(result.patterns)} success patterns for {result.grant_type} ({scope})")
        return len(result.patterns)

    def list_patterns(self, grant_type: str, limit: int = 100) -> List[Dict[str, Any]]:
        """
        List stored pattern payloads for a grant type, highest impact first.
        """
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT payload_json FROM success_patterns
                WHERE grant_type = {self._ph}
                ORDER BY impact DESC, frequency DESC
                LIMIT {self._ph}
                """,
                (grant_type, limit),
            )
            rows = cursor.fetchall()

        return [json.loads(row["payload_json"]) for row in rows]

    def _age(self, created_at: str) -> timedelta:
        return utcnow() - ensure_aware(datetime.fromisoformat(created_at))
