"""Tests for credentials and the spreadsheet connection."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from voxledger.sheets.base import ContainerNotFound
from voxledger.sheets.client import (
    SCOPES,
    BearerCredential,
    MissingCredential,
    SpreadsheetConnection,
    authorize,
    create_spreadsheet,
)

from tests.fakes import make_api_error


class TestBearerCredential:
    def test_unknown_expiry_is_live(self):
        assert not BearerCredential("tok").is_expired()

    def test_expiry(self):
        cred = BearerCredential("tok", expires_at=1000.0)
        assert not cred.is_expired(now=999.0)
        assert cred.is_expired(now=1000.0)

    def test_empty_token_is_expired(self):
        assert BearerCredential("").is_expired()


class TestAuthorize:
    def test_no_credential(self):
        with pytest.raises(MissingCredential):
            authorize()

    def test_expired_token(self):
        with pytest.raises(MissingCredential, match="expired"):
            authorize(BearerCredential("tok", expires_at=1.0))

    @patch("voxledger.sheets.client.gspread.authorize")
    @patch("voxledger.sheets.client.UserCredentials")
    def test_bearer_token(self, mock_creds, mock_authorize):
        client = authorize(BearerCredential("tok"))
        mock_creds.assert_called_once_with(token="tok", scopes=SCOPES)
        mock_authorize.assert_called_once_with(mock_creds.return_value)
        assert client is mock_authorize.return_value

    @patch("voxledger.sheets.client.gspread.authorize")
    @patch("voxledger.sheets.client.ServiceAccountCredentials.from_service_account_file")
    def test_service_account_preferred(self, mock_from_file, mock_authorize):
        authorize(BearerCredential("", expires_at=1.0), service_account_file="/keys/sa.json")
        mock_from_file.assert_called_once_with("/keys/sa.json", scopes=SCOPES)
        mock_authorize.assert_called_once_with(mock_from_file.return_value)


class TestCreateSpreadsheet:
    def test_uses_title(self, fake_client):
        ss = create_spreadsheet(fake_client, "My Expenses")
        assert ss.title == "My Expenses"
        assert fake_client.open_by_key(ss.id) is ss


class TestSpreadsheetConnection:
    def test_lazy_open(self, fake_client, spreadsheet):
        conn = SpreadsheetConnection(fake_client, spreadsheet.id)
        assert fake_client.open_calls == 0
        assert conn.spreadsheet is spreadsheet
        assert conn.spreadsheet is spreadsheet
        assert fake_client.open_calls == 1

    def test_probe_detects_deleted_spreadsheet(self, fake_client, spreadsheet):
        conn = SpreadsheetConnection(fake_client, spreadsheet.id)
        fake_client.delete(spreadsheet.id)
        with pytest.raises(ContainerNotFound) as exc_info:
            conn.probe()
        assert exc_info.value.scope == "spreadsheet"
        assert exc_info.value.sheet_name == spreadsheet.id

    def test_404_api_error_is_container_not_found(self):
        client = MagicMock()
        client.open_by_key.side_effect = make_api_error(404, "Requested entity was not found.")
        with pytest.raises(ContainerNotFound):
            SpreadsheetConnection(client, "gone").probe()

    def test_other_api_errors_propagate(self):
        client = MagicMock()
        client.open_by_key.side_effect = make_api_error(500, "internal")
        with pytest.raises(Exception, match="internal") as exc_info:
            SpreadsheetConnection(client, "x").probe()
        assert not isinstance(exc_info.value, ContainerNotFound)

    def test_recreate_updates_id_and_notifies(self, fake_client, spreadsheet):
        saved = []
        conn = SpreadsheetConnection(fake_client, spreadsheet.id, title="Orbitric Expenses",
                                     on_recreated=saved.append)
        fake_client.delete(spreadsheet.id)
        conn.recreate()
        assert conn.spreadsheet_id != spreadsheet.id
        assert saved == [conn.spreadsheet_id]
        assert conn.spreadsheet.title == "Orbitric Expenses"

    def test_require_credential(self, fake_client, spreadsheet):
        SpreadsheetConnection(fake_client, spreadsheet.id).require_credential()
        SpreadsheetConnection(fake_client, spreadsheet.id,
                              credential=BearerCredential("tok")).require_credential()
        expired = SpreadsheetConnection(fake_client, spreadsheet.id,
                                        credential=BearerCredential("tok", expires_at=1.0))
        with pytest.raises(MissingCredential):
            expired.require_credential()
