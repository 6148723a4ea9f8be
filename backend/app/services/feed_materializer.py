"""
Feed Materializer

Projects RecipientEdge + Content into per-recipient FeedEntry rows. The
projection is disposable: rebuild_feed() recomputes it from the two
sources and verify_feed() reports drift against a rebuild.

Change feed:
    RecipientGraphService writes an EdgeChange outbox row in the same commit
    as every new edge. ChangeFeedConsumer reads them in seq order after its
    StreamCheckpoint and hands bounded batches to FeedMaterializer. A batch
    stops at a sequence gap until CHANGE_FEED_GAP_GRACE_SECONDS have passed,
    since the missing record may still be committing.

Delivery is at-least-once and may be out of order:
    - The upsert is keyed by (recipient, content)
    - When several edges exist for the pair, the entry reflects the
      earliest one (ties by edge id), so applying edges in any order
      converges on the same row
    - Edges removed by cleanup and deleted content are skipped

Failure isolation:
    A batch is applied as a whole first. If that fails it is bisected;
    a single record is retried with RETRY_FEED_RECORD and then written to
    the dead_letters table, so one poisoned record never blocks the rest.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, get_db_session, insert_if_absent
from app.core.ids import feed_entry_id
from app.core.logging_config import work_unit
from app.core.metrics import (
    record_batch_split,
    record_dead_letter,
    record_feed_upsert,
    update_change_feed_lag,
)
from app.core.retry import RETRY_FEED_RECORD, RetryConfig, retry_async
from app.models.change_feed import DeadLetter, EdgeChange, StreamCheckpoint
from app.models.content import Content
from app.models.feed_entry import FeedEntry
from app.models.recipient_edge import RecipientEdge

logger = logging.getLogger(__name__)

FEED_CONSUMER = "feed-materializer"


@dataclass(frozen=True)
class ChangeRecord:
    """One change-feed record, detached from any session."""
    seq: int
    edge_id: str
    recipient_id: str
    content_id: str

    @classmethod
    def from_row(cls, row: EdgeChange) -> "ChangeRecord":
        return cls(seq=row.seq, edge_id=row.edge_id, recipient_id=row.recipient_id, content_id=row.content_id)


@dataclass
class BatchResult:
    applied: int = 0
    dead_lettered: int = 0
    splits: int = 0
    results: Dict[str, int] = field(default_factory=dict)

    def add(self, result: str) -> None:
        self.applied += 1
        self.results[result] = self.results.get(result, 0) + 1


def _as_utc(value: datetime) -> datetime:
    # Stored datetimes may come back naive (SQLite); compare in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _edge_sort_key(edge_created_at: datetime, edge_id: str):
    return (_as_utc(edge_created_at), edge_id)


def build_entry(edge: RecipientEdge, content: Content) -> FeedEntry:
    """Derive the feed row for one (edge, content) pair."""
    return FeedEntry(
        id=feed_entry_id(edge.recipient_id, edge.content_id),
        recipient_id=edge.recipient_id,
        content_id=content.id,
        content_owner_id=content.owner_id,
        object_key=content.object_key,
        thumbnail_key=content.thumbnail_key,
        media_type=content.media_type,
        content_created_at=content.created_at,
        edge_id=edge.id,
        edge_created_at=edge.created_at,
        method=edge.method,
        confidence=edge.confidence,
    )


class FeedMaterializer:
    """Idempotent RecipientEdge -> FeedEntry projector."""

    def __init__(self, session_factory=None, retry_config: RetryConfig = RETRY_FEED_RECORD):
        self.session_factory = session_factory or SessionLocal
        self.retry_config = retry_config

    def upsert_entry(self, db: Session, edge: RecipientEdge, content: Content) -> str:
        """
        Apply one edge to the feed.

        Returns:
            inserted, updated or unchanged
        """
        derived = build_entry(edge, content)
        entry, created = insert_if_absent(db, FeedEntry, derived)
        if created:
            return "inserted"

        if _edge_sort_key(edge.created_at, edge.id) >= _edge_sort_key(entry.edge_created_at, entry.edge_id):
            return "unchanged"

        entry.edge_id = edge.id
        entry.edge_created_at = edge.created_at
        entry.method = edge.method
        entry.confidence = edge.confidence
        entry.updated_at = datetime.now(timezone.utc)
        db.commit()
        return "updated"

    def apply_change(self, db: Session, record: ChangeRecord) -> str:
        """
        Apply one change record.

        Returns:
            inserted, updated, unchanged or skipped
        """
        edge = db.get(RecipientEdge, record.edge_id)
        if edge is None:
            return "skipped"
        content = db.get(Content, edge.content_id)
        if content is None or content.is_deleted:
            return "skipped"
        outcome = self.upsert_entry(db, edge, content)
        if outcome == "unchanged":
            return outcome

        # Deleted while the entry was written; cleanup may already have swept it
        db.refresh(content)
        if content.is_deleted:
            db.query(FeedEntry).filter(
                FeedEntry.id == feed_entry_id(edge.recipient_id, edge.content_id)
            ).delete(synchronize_session=False)
            db.commit()
            return "skipped"
        return outcome

    async def process_batch(self, records: List[ChangeRecord]) -> BatchResult:
        """Apply a batch, isolating failures down to single records."""
        result = BatchResult()
        if not records:
            return result

        with work_unit("feed-batch", f"{records[0].seq}-{records[-1].seq}"):
            await self._process(records, result)
            logger.info(
                f"Feed batch applied: {result.applied} records, {result.dead_lettered} dead-lettered",
                extra={
                    "event_type": "feed_batch_processed",
                    "first_seq": records[0].seq,
                    "last_seq": records[-1].seq,
                    "applied": result.applied,
                    "dead_lettered": result.dead_lettered,
                    "splits": result.splits,
                }
            )
        return result

    async def _process(self, records: List[ChangeRecord], result: BatchResult) -> None:
        if len(records) == 1:
            await self._process_single(records[0], result)
            return

        try:
            outcomes = self._apply_all(records)
        except Exception as e:
            middle = len(records) // 2
            result.splits += 1
            record_batch_split()
            logger.warning(
                f"Feed batch of {len(records)} failed, splitting: {e}",
                extra={
                    "event_type": "feed_batch_split",
                    "batch_size": len(records),
                    "error_type": type(e).__name__,
                }
            )
            await self._process(records[:middle], result)
            await self._process(records[middle:], result)
            return

        for outcome in outcomes:
            result.add(outcome)
            record_feed_upsert(outcome)

    def _apply_all(self, records: List[ChangeRecord]) -> List[str]:
        with get_db_session(self.session_factory) as db:
            return [self.apply_change(db, record) for record in records]

    async def _apply_one(self, record: ChangeRecord) -> str:
        return self._apply_all([record])[0]

    async def _process_single(self, record: ChangeRecord, result: BatchResult) -> None:
        try:
            outcome = await retry_async(
                self._apply_one,
                record,
                config=self.retry_config,
                operation_name="feed_record_apply",
            )
        except Exception as e:
            self._dead_letter(record, e)
            result.dead_lettered += 1
            return
        result.add(outcome)
        record_feed_upsert(outcome)

    def _dead_letter(self, record: ChangeRecord, error: Exception) -> None:
        with get_db_session(self.session_factory) as db:
            db.add(DeadLetter(
                consumer=FEED_CONSUMER,
                seq=record.seq,
                edge_id=record.edge_id,
                error=f"{type(error).__name__}: {error}"[:2000],
                attempts=self.retry_config.max_attempts,
            ))
            db.commit()
        record_dead_letter()
        logger.error(
            f"Change record {record.seq} dead-lettered after {self.retry_config.max_attempts} attempts: {error}",
            extra={
                "event_type": "feed_record_dead_lettered",
                "seq": record.seq,
                "edge_id": record.edge_id,
                "recipient_id": record.recipient_id,
                "error_type": type(error).__name__,
            }
        )

    async def replay_dead_letter(self, dead_letter_id: str) -> Optional[str]:
        """
        Re-apply a dead-lettered record; marks it resolved on success.

        Returns:
            The apply outcome, or None if the dead letter does not exist
        """
        with get_db_session(self.session_factory) as db:
            dead_letter = db.get(DeadLetter, dead_letter_id)
            if dead_letter is None:
                return None
            change = db.query(EdgeChange).filter(EdgeChange.seq == dead_letter.seq).first()
            if change is not None:
                record = ChangeRecord.from_row(change)
            else:
                record = ChangeRecord(seq=dead_letter.seq, edge_id=dead_letter.edge_id, recipient_id="", content_id="")

        outcome = await self._apply_one(record)

        with get_db_session(self.session_factory) as db:
            dead_letter = db.get(DeadLetter, dead_letter_id)
            dead_letter.resolved_at = datetime.now(timezone.utc)
            db.commit()
        logger.info(
            f"Dead letter {dead_letter_id} replayed: {outcome}",
            extra={"event_type": "dead_letter_replayed", "seq": record.seq, "outcome": outcome},
        )
        return outcome

    def list_dead_letters(self, include_resolved: bool = False, limit: int = 100) -> List[dict]:
        with get_db_session(self.session_factory) as db:
            query = db.query(DeadLetter).filter(DeadLetter.consumer == FEED_CONSUMER)
            if not include_resolved:
                query = query.filter(DeadLetter.resolved_at.is_(None))
            return [
                {
                    "id": dl.id,
                    "seq": dl.seq,
                    "edge_id": dl.edge_id,
                    "error": dl.error,
                    "attempts": dl.attempts,
                    "created_at": dl.created_at,
                    "resolved_at": dl.resolved_at,
                }
                for dl in query.order_by(DeadLetter.seq).limit(limit).all()
            ]

    def derive_feed(self, db: Session, recipient_id: str) -> Dict[str, FeedEntry]:
        """Compute the recipient's feed from RecipientEdge + Content, without writing."""
        rows = (
            db.query(RecipientEdge, Content)
            .join(Content, Content.id == RecipientEdge.content_id)
            .filter(
                RecipientEdge.recipient_id == recipient_id,
                Content.deleted_at.is_(None),
            )
            .all()
        )
        derived: Dict[str, FeedEntry] = {}
        for edge, content in rows:
            current = derived.get(content.id)
            if current is None or _edge_sort_key(edge.created_at, edge.id) < _edge_sort_key(
                current.edge_created_at, current.edge_id
            ):
                derived[content.id] = build_entry(edge, content)
        return derived

    def rebuild_feed(self, recipient_id: str) -> int:
        """
        Replace the recipient's feed with a fresh derivation.

        Returns:
            Number of entries written
        """
        with get_db_session(self.session_factory) as db:
            derived = self.derive_feed(db, recipient_id)
            db.query(FeedEntry).filter(FeedEntry.recipient_id == recipient_id).delete(
                synchronize_session=False
            )
            for entry in derived.values():
                db.add(entry)
            db.commit()

        logger.info(
            f"Feed rebuilt for {recipient_id}: {len(derived)} entries",
            extra={"event_type": "feed_rebuilt", "recipient_id": recipient_id, "entries": len(derived)},
        )
        return len(derived)

    def verify_feed(self, recipient_id: str) -> dict:
        """
        Compare the live feed against a rebuild from source.

        Returns:
            {"missing": [...], "unexpected": [...], "mismatched": [...], "consistent": bool}
            where each list holds content ids
        """
        with get_db_session(self.session_factory) as db:
            derived = self.derive_feed(db, recipient_id)
            live = {
                entry.content_id: entry
                for entry in db.query(FeedEntry).filter(FeedEntry.recipient_id == recipient_id).all()
            }
            missing = sorted(set(derived) - set(live))
            unexpected = sorted(set(live) - set(derived))
            mismatched = sorted(
                content_id for content_id in set(derived) & set(live)
                if derived[content_id].projection() != live[content_id].projection()
            )

        report = {
            "recipient_id": recipient_id,
            "missing": missing,
            "unexpected": unexpected,
            "mismatched": mismatched,
            "consistent": not (missing or unexpected or mismatched),
        }
        if not report["consistent"]:
            logger.warning(
                f"Feed drift for {recipient_id}: {len(missing)} missing, "
                f"{len(unexpected)} unexpected, {len(mismatched)} mismatched",
                extra={"event_type": "feed_drift_detected", **report},
            )
        return report


class ChangeFeedConsumer:
    """Polls the edge_changes outbox and feeds the materializer."""

    def __init__(
        self,
        materializer: Optional[FeedMaterializer] = None,
        session_factory=None,
        consumer_name: str = FEED_CONSUMER,
        batch_size: Optional[int] = None,
        gap_grace_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.materializer = materializer or FeedMaterializer(session_factory=self.session_factory)
        self.consumer_name = consumer_name
        self.batch_size = batch_size or settings.FEED_BATCH_SIZE
        self.gap_grace_seconds = (
            settings.CHANGE_FEED_GAP_GRACE_SECONDS if gap_grace_seconds is None else gap_grace_seconds
        )

    def _checkpoint(self, db: Session) -> StreamCheckpoint:
        checkpoint, _ = insert_if_absent(
            db, StreamCheckpoint, StreamCheckpoint(consumer=self.consumer_name, last_seq=0)
        )
        return checkpoint

    def _read_batch(self) -> List[ChangeRecord]:
        with get_db_session(self.session_factory) as db:
            last_seq = self._checkpoint(db).last_seq
            rows = db.query(EdgeChange).filter(EdgeChange.seq > last_seq).order_by(
                EdgeChange.seq
            ).limit(self.batch_size).all()
            return [ChangeRecord.from_row(row) for row in self._up_to_open_gap(last_seq, rows)]

    def _up_to_open_gap(self, last_seq: int, rows: List[EdgeChange]) -> List[EdgeChange]:
        """
        Cut the batch at the first sequence gap that is still inside the grace window.

        Sequence numbers are allocated before commit, so a missing seq may
        belong to a transaction that commits later. Advancing past it would
        put that record behind the checkpoint for good. A gap whose next
        record is older than the grace window is taken to be a rolled-back
        insert and is passed over.
        """
        horizon = datetime.now(timezone.utc) - timedelta(seconds=self.gap_grace_seconds)
        expected = last_seq + 1
        kept = []
        for row in rows:
            if row.seq != expected and _as_utc(row.created_at) > horizon:
                logger.debug(
                    f"Change feed waiting on seq {expected} (next committed seq {row.seq})",
                    extra={
                        "event_type": "change_feed_gap_wait",
                        "consumer": self.consumer_name,
                        "missing_seq": expected,
                        "next_seq": row.seq,
                    }
                )
                break
            if row.seq != expected:
                logger.warning(
                    f"Change feed skipping seqs {expected}..{row.seq - 1} after grace window",
                    extra={
                        "event_type": "change_feed_gap_skipped",
                        "consumer": self.consumer_name,
                        "missing_seq": expected,
                        "next_seq": row.seq,
                    }
                )
            kept.append(row)
            expected = row.seq + 1
        return kept

    def _advance(self, seq: int) -> int:
        """Move the checkpoint forward to seq; never backwards."""
        with get_db_session(self.session_factory) as db:
            self._checkpoint(db)
            db.query(StreamCheckpoint).filter(
                StreamCheckpoint.consumer == self.consumer_name,
                StreamCheckpoint.last_seq < seq,
            ).update(
                {
                    StreamCheckpoint.last_seq: seq,
                    StreamCheckpoint.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
            db.commit()
            pending = db.query(EdgeChange).filter(EdgeChange.seq > seq).count()
        update_change_feed_lag(pending)
        return pending

    async def poll_once(self, max_batches: Optional[int] = None) -> dict:
        """
        Drain the outbox in batches until it is empty (or max_batches).

        A crash between applying a batch and advancing the checkpoint
        redelivers the batch; the idempotent upsert absorbs it.
        """
        totals = {"batches": 0, "applied": 0, "dead_lettered": 0, "splits": 0}
        while max_batches is None or totals["batches"] < max_batches:
            records = self._read_batch()
            if not records:
                update_change_feed_lag(self.get_position()["pending"])
                break

            result = await self.materializer.process_batch(records)
            self._advance(records[-1].seq)

            totals["batches"] += 1
            totals["applied"] += result.applied
            totals["dead_lettered"] += result.dead_lettered
            totals["splits"] += result.splits
        return totals

    def get_position(self) -> dict:
        with get_db_session(self.session_factory) as db:
            checkpoint = self._checkpoint(db)
            pending = db.query(EdgeChange).filter(EdgeChange.seq > checkpoint.last_seq).count()
            return {"consumer": self.consumer_name, "last_seq": checkpoint.last_seq, "pending": pending}


# Global instances
_feed_materializer: Optional[FeedMaterializer] = None
_change_feed_consumer: Optional[ChangeFeedConsumer] = None


def get_feed_materializer() -> FeedMaterializer:
    """Get the global FeedMaterializer instance."""
    global _feed_materializer
    if _feed_materializer is None:
        _feed_materializer = FeedMaterializer()
    return _feed_materializer


def get_change_feed_consumer() -> ChangeFeedConsumer:
    """Get the global ChangeFeedConsumer instance."""
    global _change_feed_consumer
    if _change_feed_consumer is None:
        _change_feed_consumer = ChangeFeedConsumer(materializer=get_feed_materializer())
    return _change_feed_consumer
