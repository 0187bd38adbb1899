"""Tests for explicit per-stage credential passing."""

import pytest

from src.app.core.promotion.credentials import (
    STAGE_DEPLOY,
    STAGE_ROLLBACK,
    STAGE_TAG,
    CredentialBroker,
)
from src.app.core.promotion.errors import ConfigurationError

SOURCE = {
    "AZURE_CLIENT_ID": "client",
    "AZURE_CLIENT_SECRET": "secret",
    "GIT_TOKEN": "token",
    "UNRELATED": "leak",
}


@pytest.fixture
def broker() -> CredentialBroker:
    return CredentialBroker(
        {
            STAGE_DEPLOY: ["AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"],
            STAGE_ROLLBACK: ["AZURE_CLIENT_ID", "AZURE_TENANT_ID"],
            STAGE_TAG: ["GIT_TOKEN"],
        },
        source=SOURCE,
    )


class TestCredentialBroker:
    def test_stage_receives_only_declared_variables(self, broker):
        assert broker.for_stage(STAGE_DEPLOY) == {
            "AZURE_CLIENT_ID": "client",
            "AZURE_CLIENT_SECRET": "secret",
        }
        assert broker.for_stage(STAGE_TAG) == {"GIT_TOKEN": "token"}

    def test_undeclared_stage_receives_nothing(self, broker):
        assert broker.for_stage("build") == {}

    def test_missing_optional_credentials_are_dropped(self, broker):
        assert broker.for_stage(STAGE_ROLLBACK) == {"AZURE_CLIENT_ID": "client"}

    def test_missing_required_credentials(self, broker):
        with pytest.raises(ConfigurationError) as exc_info:
            broker.for_stage(STAGE_ROLLBACK, required=True)

        assert "AZURE_TENANT_ID" in exc_info.value.details

    def test_declared_returns_a_copy(self, broker):
        broker.declared(STAGE_TAG).append("EXTRA")

        assert broker.declared(STAGE_TAG) == ["GIT_TOKEN"]
