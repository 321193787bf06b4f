from __future__ import annotations

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from gameia.apps.events import router as events_router
from gameia.security import create_access_token


def _request(query: str = "", authorization: str = "") -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization else []
    return Request({"type": "http", "query_string": query.encode(), "headers": headers})


def test_stream_accepts_query_or_bearer_token(db_session, organization, make_user):
    player = make_user(organization)
    token = create_access_token(data={"sub": player.id})

    assert events_router.stream_user(_request(query=f"token={token}"), db=db_session).id == player.id
    assert events_router.stream_user(_request(authorization=f"Bearer {token}"), db=db_session).id == player.id


def test_stream_rejects_missing_or_bad_tokens(db_session):
    for request in (_request(), _request(query="token=not-a-jwt"), _request(authorization="Basic abc")):
        with pytest.raises(HTTPException) as excinfo:
            events_router.stream_user(request, db=db_session)
        assert excinfo.value.status_code == 401
