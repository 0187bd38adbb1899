"""Tests for principal authorization."""

import pytest

from src.app.core.promotion.errors import AuthorizationError
from src.app.core.promotion.identity import PrincipalAuthorizer, StaticIdentityProvider


class TestStaticIdentityProvider:
    def test_groups_for_member(self):
        provider = StaticIdentityProvider({"release-managers": ["Bob"], "sre": ["bob", "dan"]})

        assert provider.groups_for("BOB") == {"release-managers", "sre"}
        assert provider.groups_for("eve") == set()


class TestPrincipalAuthorizer:
    def test_allow_listed_principal(self, authorizer):
        assert authorizer.is_authorized("alice")
        assert authorizer.is_authorized("Alice")

    def test_group_member(self, authorizer):
        assert authorizer.is_authorized("carol")

    @pytest.mark.parametrize("principal", ["mallory", ""])
    def test_unknown_principal(self, authorizer, principal):
        assert not authorizer.is_authorized(principal)

    def test_group_membership_ignored_without_authorized_groups(self):
        authorizer = PrincipalAuthorizer(
            ["alice"], [], StaticIdentityProvider({"release-managers": ["bob"]})
        )

        assert not authorizer.is_authorized("bob")

    def test_require_raises(self, authorizer):
        with pytest.raises(AuthorizationError) as exc_info:
            authorizer.require("mallory", "approve promotion to 'prod'")

        assert exc_info.value.principal == "mallory"
        assert exc_info.value.message == "'mallory' is not authorized to approve promotion to 'prod'"
        assert "release-managers" in exc_info.value.details
