"""Tests for the access-filtered feed read path."""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ContentNotFoundError
from app.models.content import ProcessingStatus
from app.models.feed_entry import FeedEntry
from app.models.recipient_edge import GrantMethod, Provenance
from app.services.feed_materializer import FeedMaterializer
from app.services.feed_service import FeedService
from app.services.recipient_graph_service import NON_FACE_CONFIDENCE, RecipientGraphService
from tests.conftest import make_content, make_user


@pytest.fixture
def people(db_session):
    return (
        make_user(db_session=db_session, username="alice"),
        make_user(db_session=db_session, username="bob"),
        make_user(db_session=db_session, username="carol"),
    )


@pytest.fixture
def service(db_session):
    return FeedService(db_session)


def share(db_session, content, recipient_id, granted_at=None):
    """Grant and materialize in one step."""
    edge, _ = RecipientGraphService(db_session).grant(
        content, recipient_id, GrantMethod.MANUAL, NON_FACE_CONFIDENCE, Provenance.REALTIME
    )
    if granted_at is not None:
        edge.created_at = granted_at
        db_session.commit()
    FeedMaterializer().upsert_entry(db_session, edge, content)
    return edge


class TestListFeed:

    def test_newest_grant_first(self, service, people, db_session):
        alice, bob, _ = people
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        older = make_content(db_session=db_session, owner_id=alice.id)
        newer = make_content(db_session=db_session, owner_id=alice.id)
        share(db_session, older, bob.id, granted_at=base)
        share(db_session, newer, bob.id, granted_at=base + timedelta(hours=1))

        feed = service.list_feed(bob.id)

        assert [content.id for _, content in feed] == [newer.id, older.id]
        assert all(isinstance(entry, FeedEntry) for entry, _ in feed)

    def test_pagination_with_before(self, service, people, db_session):
        alice, bob, _ = people
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        items = [make_content(db_session=db_session, owner_id=alice.id) for _ in range(3)]
        for i, content in enumerate(items):
            share(db_session, content, bob.id, granted_at=base + timedelta(hours=i))

        first_page = service.list_feed(bob.id, limit=2)
        second_page = service.list_feed(bob.id, limit=2, before=base + timedelta(hours=1))

        assert [c.id for _, c in first_page] == [items[2].id, items[1].id]
        assert [c.id for _, c in second_page] == [items[0].id]

    def test_pagination_keeps_entries_sharing_a_timestamp(self, service, people, db_session):
        alice, bob, _ = people
        granted_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        items = [make_content(db_session=db_session, owner_id=alice.id) for _ in range(3)]
        for content in items:
            share(db_session, content, bob.id, granted_at=granted_at)

        first_page = service.list_feed(bob.id, limit=2)
        last_entry = first_page[-1][0]
        second_page = service.list_feed(
            bob.id, limit=2, before=last_entry.edge_created_at, before_id=last_entry.edge_id
        )

        edge_ids = [entry.edge_id for entry, _ in first_page + second_page]
        assert len(second_page) == 1
        assert edge_ids == sorted(edge_ids, reverse=True)
        assert {c.id for _, c in first_page + second_page} == {c.id for c in items}

    def test_only_the_viewers_entries(self, service, people, db_session):
        alice, bob, carol = people
        share(db_session, make_content(db_session=db_session, owner_id=alice.id), bob.id)

        assert service.list_feed(carol.id) == []
        assert service.list_feed(alice.id) == []

    def test_hides_deleted_and_unfinished_content(self, service, people, db_session):
        alice, bob, _ = people
        deleted = make_content(db_session=db_session, owner_id=alice.id)
        processing = make_content(
            db_session=db_session, owner_id=alice.id, processing_status=ProcessingStatus.PROCESSING.value
        )
        share(db_session, deleted, bob.id)
        share(db_session, processing, bob.id)
        deleted.deleted_at = datetime.now(timezone.utc)
        db_session.commit()

        assert service.list_feed(bob.id) == []


class TestOwnContent:

    def test_owner_sees_everything_not_deleted(self, service, people, db_session):
        alice, _, _ = people
        pending = make_content(db_session=db_session, owner_id=alice.id, processing_status=ProcessingStatus.PENDING.value)
        make_content(db_session=db_session, owner_id=alice.id, deleted_at=datetime.now(timezone.utc))

        assert [c.id for c in service.list_own_content(alice.id)] == [pending.id]


class TestGetContent:

    def test_visibility(self, service, people, db_session):
        alice, bob, carol = people
        content = make_content(db_session=db_session, owner_id=alice.id)
        share(db_session, content, bob.id)

        assert service.get_content(content.id, alice.id).id == content.id
        assert service.get_content(content.id, bob.id).id == content.id
        with pytest.raises(ContentNotFoundError):
            service.get_content(content.id, carol.id)
        with pytest.raises(ContentNotFoundError):
            service.get_content("missing", alice.id)
