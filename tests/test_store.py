"""Tests for ReportStore settings writes."""

from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from models.report_models import SettingsUpdate
from reporting.store import ReportStore
from scripts.lib.credentials import CredentialCipher

STORED = {
    "hubspot_account_id": "acc",
    "pipeline_ids": ["default"],
    "mql_stage": "lead",
    "ga_property_id": "123",
    "gbp_location": "locations/1",
}


@pytest.fixture
def store():
    return ReportStore(client=object(), cipher=CredentialCipher(Fernet.generate_key()))


@pytest.fixture
def upserts():
    rows = []

    def fake_upsert(table, row, on_conflict=None, client=None):
        rows.append((table, row, on_conflict))
        return row

    with patch("reporting.store.query_table", return_value=[dict(STORED)]), \
         patch("reporting.store.upsert_row", side_effect=fake_upsert):
        yield rows


class TestSaveSettings:
    def test_refresh_token_is_encrypted(self, store, upserts):
        settings = store.save_settings("acc", SettingsUpdate(gbp_refresh_token="rt-1"))
        table, row, conflict = upserts[0]
        assert (table, conflict) == ("report_settings", "hubspot_account_id")
        assert row["gbp_refresh_token"] != "rt-1"
        assert store.cipher.decrypt(row["gbp_refresh_token"]) == "rt-1"
        assert settings.ga_property_id == "123"

    def test_explicit_null_resets_field(self, store, upserts):
        update = SettingsUpdate.model_validate({"ga_property_id": None, "mql_stage": None})
        settings = store.save_settings("acc", update)
        assert settings.ga_property_id is None
        assert settings.mql_stage == "marketingqualifiedlead"
        assert settings.gbp_location == "locations/1"
        assert upserts[0][1]["ga_property_id"] is None

    def test_unset_fields_are_kept(self, store, upserts):
        settings = store.save_settings("acc", SettingsUpdate(sql_stage="opportunity"))
        assert settings.sql_stage == "opportunity"
        assert settings.pipeline_ids == ["default"]
        assert settings.ga_property_id == "123"
