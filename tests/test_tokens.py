"""Tests for the check-in token gate and token lifecycle."""

from datetime import datetime, timedelta, timezone

import pytest

from burnout_pulse.errors import InvalidInputError, NotFoundOrUnauthorizedError, TokenInvalidError
from burnout_pulse.models import CheckinToken

from conftest import ADMIN, BEST, FIXED_NOW, MANAGER_ALPHA, MANAGER_BETA


class TestTokenGate:
    def test_valid_token_returns_team(self, service, teams, alpha_token):
        team = service.gate.validate(alpha_token, FIXED_NOW)

        assert team.id == teams["ALPHA"]
        assert team.team_code == "ALPHA"
        assert team.team_name == "Alpha Squad"

    def test_unknown_and_empty_tokens_rejected(self, service, teams):
        with pytest.raises(TokenInvalidError):
            service.gate.validate("does-not-exist", FIXED_NOW)
        with pytest.raises(TokenInvalidError):
            service.gate.validate("", FIXED_NOW)

    def test_expiry_is_exclusive(self, service, teams):
        issued = service.tokens.issue(teams["ALPHA"], ADMIN, expires_at=FIXED_NOW + timedelta(seconds=1))

        assert service.gate.validate(issued.token, FIXED_NOW).id == teams["ALPHA"]
        with pytest.raises(TokenInvalidError):
            service.gate.validate(issued.token, FIXED_NOW + timedelta(seconds=1))
        with pytest.raises(TokenInvalidError):
            service.gate.validate(issued.token, FIXED_NOW + timedelta(seconds=2))

    def test_revoked_token_rejected(self, service, teams, alpha_token):
        token_id = service.tokens.list(teams["ALPHA"], ADMIN)[0]["id"]
        service.tokens.revoke(teams["ALPHA"], token_id, ADMIN)

        with pytest.raises(TokenInvalidError):
            service.gate.validate(alpha_token, FIXED_NOW)

    def test_inactive_team_rejects_its_tokens(self, service, database, teams, alpha_token):
        database.set_team_active(teams["ALPHA"], False)

        with pytest.raises(TokenInvalidError):
            service.gate.validate(alpha_token, FIXED_NOW)

    def test_failures_share_one_message(self, service, database, teams, alpha_token):
        database.set_team_active(teams["ALPHA"], False)
        messages = set()
        for token in (alpha_token, "unknown"):
            with pytest.raises(TokenInvalidError) as excinfo:
                service.gate.validate(token, FIXED_NOW)
            messages.add(str(excinfo.value))

        assert messages == {"Invalid or expired token"}

    def test_latest_for_team_code_prefers_newest_usable(self, service, clock, teams, alpha_token):
        clock.advance(minutes=5)
        newer = service.tokens.issue(teams["ALPHA"], ADMIN)

        assert service.gate.latest_for_team_code("alpha", clock()) == newer.token

        service.tokens.revoke(teams["ALPHA"], newer.id, ADMIN)
        assert service.gate.latest_for_team_code("ALPHA", clock()) == alpha_token

    def test_latest_for_team_code_without_tokens(self, service, teams):
        with pytest.raises(TokenInvalidError):
            service.gate.latest_for_team_code("BETA", FIXED_NOW)


class TestTokenManager:
    def test_issue_defaults_to_configured_lifetime(self, service, teams):
        issued = service.tokens.issue(teams["ALPHA"], MANAGER_ALPHA)

        assert isinstance(issued, CheckinToken)
        assert issued.is_active is True
        assert issued.created_by == 1
        assert issued.created_at == FIXED_NOW
        assert issued.expires_at == FIXED_NOW + timedelta(days=365)
        assert len(issued.token) == 32

    def test_tokens_are_unique(self, service, teams):
        tokens = {service.tokens.issue(teams["ALPHA"], ADMIN).token for _ in range(5)}

        assert len(tokens) == 5

    def test_naive_expiry_is_treated_as_utc(self, service, teams):
        issued = service.tokens.issue(teams["ALPHA"], ADMIN, expires_at=datetime(2025, 3, 1, 9, 30))

        assert issued.expires_at == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_past_expiry_rejected(self, service, teams):
        with pytest.raises(InvalidInputError):
            service.tokens.issue(teams["ALPHA"], ADMIN, expires_at=FIXED_NOW - timedelta(days=1))

    def test_manager_cannot_issue_for_foreign_team(self, service, teams):
        with pytest.raises(NotFoundOrUnauthorizedError):
            service.tokens.issue(teams["ALPHA"], MANAGER_BETA)

    def test_list_reports_state_and_usage(self, service, clock, teams, alpha_token):
        short = service.tokens.issue(teams["ALPHA"], ADMIN, expires_at=FIXED_NOW + timedelta(hours=1))
        revoked = service.tokens.issue(teams["ALPHA"], ADMIN)
        service.tokens.revoke(teams["ALPHA"], revoked.id, ADMIN)
        service.ingestion.submit(alpha_token, **BEST)
        service.ingestion.submit(alpha_token, **BEST)
        clock.advance(hours=2)

        listed = {entry["token"]: entry for entry in service.tokens.list(teams["ALPHA"], ADMIN)}

        assert listed[alpha_token]["state"] == "active"
        assert listed[alpha_token]["usage_count"] == 2
        assert listed[short.token]["state"] == "expired"
        assert listed[revoked.token]["state"] == "revoked"
        assert listed[revoked.token]["usage_count"] == 0

    def test_revoke_unknown_token(self, service, teams, beta_token):
        beta_id = service.tokens.list(teams["BETA"], ADMIN)[0]["id"]

        with pytest.raises(NotFoundOrUnauthorizedError):
            service.tokens.revoke(teams["ALPHA"], 12345, ADMIN)
        # a token id from another team does not match either
        with pytest.raises(NotFoundOrUnauthorizedError):
            service.tokens.revoke(teams["ALPHA"], beta_id, ADMIN)
