"""Google Sheets client setup: credentials, opening and creating spreadsheets.

Auth is either a service account key file or an opaque bearer token with
a known lifetime (from an external sign-in flow). Without a usable
credential nothing is sent: MissingCredential is raised before any call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import gspread
from google.oauth2.credentials import Credentials as UserCredentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
from gspread.exceptions import APIError, SpreadsheetNotFound

from voxledger.sheets.base import ContainerNotFound, is_not_found

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

DEFAULT_SPREADSHEET_TITLE = "Orbitric Expenses"


class MissingCredential(Exception):
    """No credential, or the credential has expired."""


@dataclass
class BearerCredential:
    """Opaque OAuth access token and its expiry (epoch seconds, None = unknown)."""
    token: str
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if not self.token:
            return True
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


def authorize(
    credential: BearerCredential | None = None,
    service_account_file: str | None = None,
) -> gspread.Client:
    """Build an authorized gspread client.

    Raises:
        MissingCredential: Neither a service account file nor a live
            bearer token was given.
    """
    if service_account_file:
        creds = ServiceAccountCredentials.from_service_account_file(
            service_account_file, scopes=SCOPES,
        )
        return gspread.authorize(creds)

    if credential is None:
        raise MissingCredential("No Google credential configured")
    if credential.is_expired():
        raise MissingCredential("Google credential has expired")
    return gspread.authorize(UserCredentials(token=credential.token, scopes=SCOPES))


def create_spreadsheet(client: gspread.Client, title: str = DEFAULT_SPREADSHEET_TITLE):
    """Create a new spreadsheet and return it."""
    spreadsheet = client.create(title)
    logger.info("Created spreadsheet '%s' (%s)", title, spreadsheet.id)
    return spreadsheet


class SpreadsheetConnection:
    """Lazily opened handle on one spreadsheet, able to recreate it.

    Args:
        client: An authorized gspread.Client (or fake).
        spreadsheet_id: Key of the spreadsheet to open.
        credential: Bearer credential to re-check before each operation.
            None when the client refreshes its own credentials.
        title: Title used when the spreadsheet has to be recreated.
        on_recreated: Callback receiving the new spreadsheet id.
    """

    def __init__(
        self,
        client,
        spreadsheet_id: str,
        credential: BearerCredential | None = None,
        title: str = DEFAULT_SPREADSHEET_TITLE,
        on_recreated: Callable[[str], None] | None = None,
    ):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.credential = credential
        self.title = title
        self.on_recreated = on_recreated
        self._spreadsheet = None

    @property
    def spreadsheet(self):
        if self._spreadsheet is None:
            self._spreadsheet = self._open()
        return self._spreadsheet

    def _open(self):
        try:
            return self.client.open_by_key(self.spreadsheet_id)
        except SpreadsheetNotFound as e:
            raise ContainerNotFound(self.spreadsheet_id, "spreadsheet") from e
        except APIError as e:
            if is_not_found(e):
                raise ContainerNotFound(self.spreadsheet_id, "spreadsheet") from e
            raise

    def require_credential(self) -> None:
        if self.credential is not None and self.credential.is_expired():
            raise MissingCredential("Google credential has expired")

    def probe(self) -> None:
        """Re-open the spreadsheet to detect external deletion."""
        self._spreadsheet = self._open()

    def recreate(self) -> None:
        spreadsheet = create_spreadsheet(self.client, self.title)
        old_id = self.spreadsheet_id
        self.spreadsheet_id = spreadsheet.id
        self._spreadsheet = spreadsheet
        logger.warning("Spreadsheet %s was missing, recreated as %s", old_id, spreadsheet.id)
        if self.on_recreated is not None:
            self.on_recreated(spreadsheet.id)
