"""Tests for the CSRF guard on state-changing routes"""

from unittest.mock import patch

from flask import jsonify
import pytest

from ltipapi.api_decorators import csrf_protected
from ltipapi.errors import CsrfError
from ltipapi.services.token_service import TokenService

CSRF_HEADER = "X-CSRF-Token"


@pytest.fixture
def browser_session(app, regular_user, csrf_token_service):
    """Refresh token of a live session and its current CSRF token"""
    pair = TokenService.issue(regular_user.id, regular_user.email)
    session_id = TokenService.family_id_from(pair.refresh_token)
    return pair.refresh_token, session_id, csrf_token_service.generate(session_id)


def post_with(app, refresh_token, csrf_token):
    return app.test_request_context(
        "/api/v1/auth/anything",
        method="POST",
        headers={"Cookie": f"refreshToken={refresh_token}", CSRF_HEADER: csrf_token},
    )


class TestCsrfProtected:
    def test_token_is_spent_before_the_route_runs(
        self, app, browser_session, csrf_token_service
    ):
        refresh_token, session_id, token = browser_session
        seen = []

        @csrf_protected
        def handler():
            # A second request racing this one presents the same token
            seen.append(csrf_token_service.consume(session_id, token))
            return jsonify(data="ok")

        with post_with(app, refresh_token, token):
            response = handler()

        assert response.status_code == 200
        assert seen == [False]
        fresh = response.headers[CSRF_HEADER]
        assert fresh != token
        assert csrf_token_service.validate(session_id, fresh)

    def test_replayed_token_never_reaches_the_route(
        self, app, browser_session, csrf_token_service
    ):
        refresh_token, _, token = browser_session
        calls = []

        @csrf_protected
        def handler():
            calls.append(1)
            return jsonify(data="ok")

        with post_with(app, refresh_token, token):
            assert handler().status_code == 200
        with post_with(app, refresh_token, token):
            replay = handler()

        assert replay[1] == 403
        assert replay[0].json["error"] == "csrf_invalid"
        assert calls == [1]

    def test_failed_reissue_leaves_no_live_token(
        self, app, browser_session, csrf_token_service
    ):
        refresh_token, session_id, token = browser_session

        @csrf_protected
        def handler():
            return jsonify(data="ok")

        with patch.object(
            csrf_token_service, "generate", side_effect=CsrfError("store down")
        ):
            with post_with(app, refresh_token, token):
                response = handler()

        assert response.status_code == 200
        assert CSRF_HEADER not in response.headers
        assert not csrf_token_service.validate(session_id, token)

    def test_failed_route_still_spends_the_token(
        self, app, browser_session, csrf_token_service
    ):
        refresh_token, session_id, token = browser_session

        @csrf_protected
        def handler():
            return jsonify(error="conflict"), 409

        with post_with(app, refresh_token, token):
            response = handler()

        assert response.status_code == 409
        assert not csrf_token_service.validate(session_id, token)
        assert csrf_token_service.validate(session_id, response.headers[CSRF_HEADER])

    def test_safe_methods_are_not_checked(self, app, browser_session):
        refresh_token, _, _ = browser_session

        @csrf_protected
        def handler():
            return jsonify(data="ok")

        with app.test_request_context(
            "/api/v1/auth/anything",
            method="GET",
            headers={"Cookie": f"refreshToken={refresh_token}"},
        ):
            assert handler().status_code == 200
