"""Tests for RecipientGraphService: idempotent grants, outbox and access checks."""
from datetime import datetime, timezone

import pytest

from app.core.exceptions import ContentNotFoundError, NotAuthorizedError
from app.core.ids import recipient_edge_id
from app.models.change_feed import EdgeChange
from app.models.content import ProcessingStatus
from app.models.recipient_edge import GrantMethod, Provenance, RecipientEdge
from app.services.recipient_graph_service import NON_FACE_CONFIDENCE, RecipientGraphService
from tests.conftest import make_content, make_content_face, make_face_identity, make_user


@pytest.fixture
def users(db_session):
    alice = make_user(db_session=db_session, username="alice")
    bob = make_user(db_session=db_session, username="bob")
    carol = make_user(db_session=db_session, username="carol")
    return alice, bob, carol


@pytest.fixture
def graph(db_session):
    return RecipientGraphService(db_session)


class TestGrant:

    def test_creates_edge_and_outbox_record(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        edge, created = graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 92, Provenance.REALTIME)

        assert created is True
        assert edge.id == recipient_edge_id(content.id, bob.id, "FACE_MATCH")
        assert edge.content_owner_id == alice.id
        assert edge.confidence == 92
        change = db_session.query(EdgeChange).one()
        assert change.edge_id == edge.id
        assert change.recipient_id == bob.id

    def test_repeat_grant_is_absorbed(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 92, Provenance.REALTIME)
        edge, created = graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 85, Provenance.RETROACTIVE)

        assert created is False
        assert edge.provenance == Provenance.REALTIME.value
        assert db_session.query(RecipientEdge).count() == 1
        assert db_session.query(EdgeChange).count() == 1

    def test_different_methods_are_separate_edges(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 92, Provenance.REALTIME)
        graph.grant(content, bob.id, GrantMethod.SHARED_EVENT, NON_FACE_CONFIDENCE, Provenance.REALTIME)

        assert db_session.query(RecipientEdge).count() == 2

    def test_owner_never_gets_an_edge(self, graph, users, db_session):
        alice, _, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        edge, created = graph.grant(content, alice.id, GrantMethod.FACE_MATCH, 99, Provenance.REALTIME)

        assert edge is None and created is False
        assert db_session.query(RecipientEdge).count() == 0


class TestShareContent:

    def test_manual_share(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        edge, created = graph.share_content(content.id, alice.id, bob.id)

        assert created is True
        assert edge.method == GrantMethod.MANUAL.value
        assert edge.confidence == NON_FACE_CONFIDENCE

    def test_only_owner_can_share(self, graph, users, db_session):
        alice, bob, carol = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        with pytest.raises(NotAuthorizedError):
            graph.share_content(content.id, bob.id, carol.id)

    def test_share_with_self_or_unknown_user(self, graph, users, db_session):
        alice, _, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)

        with pytest.raises(ValueError):
            graph.share_content(content.id, alice.id, alice.id)
        with pytest.raises(ValueError):
            graph.share_content(content.id, alice.id, "nobody")

    def test_deleted_content(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id, deleted_at=datetime.now(timezone.utc))

        with pytest.raises(ContentNotFoundError):
            graph.share_content(content.id, alice.id, bob.id)


class TestFanOutIdentity:

    def test_grants_every_live_content_of_identity(self, graph, users, db_session):
        alice, bob, _ = users
        identity = make_face_identity(db_session=db_session, owner_id=alice.id, signature_ref="sig-bob")
        photos = [make_content(db_session=db_session, owner_id=alice.id) for _ in range(3)]
        deleted = make_content(db_session=db_session, owner_id=alice.id, deleted_at=datetime.now(timezone.utc))
        for content in photos + [deleted]:
            make_content_face(db_session=db_session, content=content, identity=identity)

        created = graph.fan_out_identity(identity, bob.id, 90, Provenance.RETROACTIVE)

        assert created == 3
        edges = graph.list_edges_for_recipient(bob.id)
        assert {e.content_id for e in edges} == {c.id for c in photos}
        assert all(e.provenance == Provenance.RETROACTIVE.value for e in edges)

    def test_rerun_creates_nothing(self, graph, users, db_session):
        alice, bob, _ = users
        identity = make_face_identity(db_session=db_session, owner_id=alice.id, signature_ref="sig-bob")
        content = make_content(db_session=db_session, owner_id=alice.id)
        make_content_face(db_session=db_session, content=content, identity=identity)

        assert graph.fan_out_identity(identity, bob.id, 90, Provenance.RETROACTIVE) == 1
        assert graph.fan_out_identity(identity, bob.id, 90, Provenance.RETROACTIVE) == 0

    def test_exclude_content(self, graph, users, db_session):
        alice, bob, _ = users
        identity = make_face_identity(db_session=db_session, owner_id=alice.id, signature_ref="sig-bob")
        first = make_content(db_session=db_session, owner_id=alice.id)
        second = make_content(db_session=db_session, owner_id=alice.id)
        for content in (first, second):
            make_content_face(db_session=db_session, content=content, identity=identity)

        assert graph.fan_out_identity(identity, bob.id, 90, Provenance.REALTIME, exclude_content_id=first.id) == 1
        assert [e.content_id for e in graph.list_edges_for_recipient(bob.id)] == [second.id]


class TestCanView:

    def test_owner_sees_own_content_in_any_status(self, graph, users, db_session):
        alice, _, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id, processing_status=ProcessingStatus.PENDING.value)
        assert graph.can_view(content, alice.id)

    def test_recipient_needs_an_edge(self, graph, users, db_session):
        alice, bob, carol = users
        content = make_content(db_session=db_session, owner_id=alice.id)
        graph.grant(content, bob.id, GrantMethod.MANUAL, NON_FACE_CONFIDENCE, Provenance.REALTIME)

        assert graph.can_view(content, bob.id)
        assert not graph.can_view(content, carol.id)

    def test_edge_before_completion_does_not_expose_content(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(
            db_session=db_session, owner_id=alice.id, processing_status=ProcessingStatus.PROCESSING.value
        )
        graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 95, Provenance.REALTIME)

        assert not graph.can_view(content, bob.id)

    def test_deleted_content_is_hidden_from_everyone(self, graph, users, db_session):
        alice, bob, _ = users
        content = make_content(db_session=db_session, owner_id=alice.id)
        graph.grant(content, bob.id, GrantMethod.MANUAL, NON_FACE_CONFIDENCE, Provenance.REALTIME)
        content.deleted_at = datetime.now(timezone.utc)
        db_session.commit()

        assert not graph.can_view(content, bob.id)
        assert not graph.can_view(content, alice.id)
