"""
E2E test configuration and fixtures.

End-to-end flows drive the whole pipeline through the HTTP surface: an
upload notification runs access decisions, friendship events run
retroactive matching, and polling the change feed materializes feeds.
The wiring is the same as the API tests (see tests/test_api/conftest.py).
"""
import pytest

from tests.conftest import make_user
from tests.test_api.conftest import api  # noqa: F401


@pytest.fixture
def people(db):
    """alice, bob and carol, with bob's profile face not yet enrolled."""
    return (
        make_user(db_session=db, username="alice"),
        make_user(db_session=db, username="bob"),
        make_user(db_session=db, username="carol"),
    )
