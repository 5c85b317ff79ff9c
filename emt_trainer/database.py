"""
Database operations for EMT Trainer.
Supabase CRUD for topic performance, cached scenarios, exam items and exam sessions.
Implements the performance store, scenario store, exam seed source and answer sink.
"""
import logging
import random
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from postgrest.exceptions import APIError
from supabase import Client, create_client

from .config import SCENARIO_PAGE_SIZE, Settings, get_settings
from .exam_session import clamp_exam_length
from .models import PerformanceRecord, Scenario, SeededItem

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _search_term(query: Optional[str]) -> str:
    # PostgREST or-filter syntax reserves these characters
    return re.sub(r"[,()%*\\]", " ", query or "").strip()


class DatabaseClient:
    """Wrapper around Supabase client with EMT Trainer-specific operations."""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        if client is None:
            settings = settings or get_settings()
            if not settings.supabase_url or not settings.supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
            client = create_client(settings.supabase_url, settings.supabase_key)
        self.client: Client = client

    # ============= Performance =============

    def get_performance(self, user_id: str, topic: str) -> Optional[PerformanceRecord]:
        response = (
            self.client.table("performance")
            .select("topic, accuracy, attempts, last_practiced")
            .eq("user_id", str(user_id))
            .eq("topic", topic)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return PerformanceRecord.from_row(rows[0]) if rows else None

    def list_performance(self, user_id: str) -> List[PerformanceRecord]:
        response = (
            self.client.table("performance")
            .select("topic, accuracy, attempts, last_practiced")
            .eq("user_id", str(user_id))
            .order("accuracy")
            .execute()
        )
        return [PerformanceRecord.from_row(r) for r in response.data or []]

    def insert_performance(self, user_id: str, record: PerformanceRecord) -> bool:
        """Insert the first row for (user, topic). False if another writer inserted it first."""
        row = {
            "user_id": str(user_id),
            "topic": record.topic,
            "accuracy": record.accuracy,
            "attempts": record.attempts,
            "last_practiced": _iso(record.last_practiced),
        }
        try:
            self.client.table("performance").insert(row).execute()
            return True
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                return False
            logger.error(f"Error inserting performance for {record.topic!r}: {e}")
            raise

    def update_performance(self, user_id: str, record: PerformanceRecord, expected_attempts: int) -> bool:
        """Compare-and-set on attempts. False if the row moved on since it was read."""
        update_data = {
            "accuracy": record.accuracy,
            "attempts": record.attempts,
            "last_practiced": _iso(record.last_practiced),
        }
        try:
            response = (
                self.client.table("performance")
                .update(update_data)
                .eq("user_id", str(user_id))
                .eq("topic", record.topic)
                .eq("attempts", expected_attempts)
                .execute()
            )
        except APIError as e:
            logger.error(f"Error updating performance for {record.topic!r}: {e}")
            raise
        return bool(response.data)

    # ============= Generated scenarios =============

    def latest_scenario(self, user_id: str, topic: str) -> Optional[Scenario]:
        response = (
            self.client.table("generated_scenarios")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("topic", topic)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return Scenario.from_dict(rows[0]) if rows else None

    def insert_scenario(self, user_id: str, scenario: Scenario, created_at: datetime) -> Scenario:
        """Store a validated scenario. Returns it as stored, carrying the database-assigned id."""
        row = scenario.to_dict()
        row.pop("id", None)
        row["user_id"] = str(user_id)
        row["created_at"] = created_at.isoformat()
        response = self.client.table("generated_scenarios").insert(row).execute()
        rows = response.data or []
        if not rows:
            raise LookupError(f"Insert into generated_scenarios returned no row for {scenario.topic!r}")
        logger.debug(f"Cached scenario {rows[0].get('id')} for {scenario.topic!r}")
        return Scenario.from_dict(rows[0])

    def list_scenarios(
        self,
        user_id: str,
        page: int = 0,
        page_size: int = SCENARIO_PAGE_SIZE,
        topic: Optional[str] = None,
        query: Optional[str] = None,
    ) -> Tuple[List[Scenario], int]:
        """
        One page of a learner's generated scenarios, newest first.

        Args:
            page: Zero-based page number
            topic: Only this topic
            query: Case-insensitive substring of the vignette or question

        Returns:
            (scenarios on this page, total matching rows)
        """
        start = max(0, page) * page_size
        q = (
            self.client.table("generated_scenarios")
            .select("*", count="exact")
            .eq("user_id", str(user_id))
        )
        if topic:
            q = q.eq("topic", topic)
        term = _search_term(query)
        if term:
            q = q.or_(f"vignette.ilike.%{term}%,question.ilike.%{term}%")
        response = q.order("created_at", desc=True).range(start, start + page_size - 1).execute()
        rows = response.data or []
        total = response.count if response.count is not None else len(rows)
        return [Scenario.from_dict(r) for r in rows], total

    # ============= Exam items =============

    def get_exam_eligible_items(self) -> List[Scenario]:
        response = self.client.table("items").select("*").eq("is_exam_eligible", True).execute()
        return [Scenario.from_dict(r) for r in response.data or []]

    def seed_exam_items(self, item_count: Optional[int] = None, rng: Optional[random.Random] = None) -> List[SeededItem]:
        """
        Pick an ordered exam from the exam-eligible pool.

        Args:
            item_count: Requested length, clamped to the allowed exam range
            rng: Optional random source (shuffle order)

        Returns:
            List of SeededItem with order_index 0..n-1
        """
        count = clamp_exam_length(item_count)
        items = self.get_exam_eligible_items()
        if not items:
            raise LookupError("No exam-eligible items found. Set is_exam_eligible = true on some items.")
        (rng or random).shuffle(items)
        selected = items[:count]
        logger.info(f"Seeded exam with {len(selected)} of {len(items)} eligible items")
        return [SeededItem(order_index=i, item_id=item.id, item=item) for i, item in enumerate(selected)]

    def upsert_items(self, rows: List[Dict], chunk_size: int = 200) -> int:
        """Bulk upsert validated items. Dedupes by id so no chunk has duplicates."""
        by_id = {r["id"]: r for r in rows}
        rows = list(by_id.values())
        total = 0
        for i in range(0, len(rows), chunk_size):
            chunk = rows[i : i + chunk_size]
            self.client.table("items").upsert(chunk, on_conflict="id").execute()
            total += len(chunk)
            logger.info("Upserted chunk %d (%d items)", i // chunk_size + 1, len(chunk))
        return total

    # ============= Exam sessions =============

    def create_exam_session(self, user_id: str, item_count: int) -> Optional[str]:
        session_data = {
            "user_id": str(user_id),
            "status": "in_progress",
            "item_count": item_count,
            "started_at": datetime.now(timezone.utc).isoformat(),
        }
        response = self.client.table("exam_sessions").insert(session_data).execute()
        if response.data:
            return str(response.data[0]["id"])
        return None

    def complete_exam_session(self, session_id: str, correct: int, total: int, exited: bool) -> None:
        update_data = {
            "status": "exited" if exited else "completed",
            "correct_count": correct,
            "total": total,
            "ended_at": datetime.now(timezone.utc).isoformat(),
        }
        self.client.table("exam_sessions").update(update_data).eq("id", str(session_id)).execute()

    def record_answer(
        self,
        session_id: str,
        item_id: str,
        order_index: int,
        selected_choice_id: Optional[str],
        time_spent_seconds: int,
    ) -> bool:
        """Log one exam answer. Best-effort: the caller logs failures and moves on."""
        answer_data = {
            "session_id": str(session_id),
            "item_id": str(item_id),
            "order_index": order_index,
            "selected_choice_id": selected_choice_id,
            "time_spent_seconds": time_spent_seconds,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.client.table("exam_session_items").insert(answer_data).execute()
        return True

    def get_session_history(self, user_id: str, limit: int = 10) -> List[Dict]:
        response = (
            self.client.table("exam_sessions")
            .select("*")
            .eq("user_id", str(user_id))
            .order("started_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []
