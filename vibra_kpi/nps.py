"""
Google Sheets NPS source
Reads one site's monthly NPS with a service-account RS256 JWT
https://developers.google.com/identity/protocols/oauth2/service-account
"""

import os
import time
import logging
from datetime import date
from typing import Dict, Optional

import jwt
import requests

from .errors import NpsUnavailable, SiteNotFound
from .models import Site

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"

# The NPS for the current month is the first cell of the second row (K3).
SPREADSHEET_DATA_RANGE = "K2:P3"


def parse_nps_value(values) -> float:
    """
    Extract the NPS from a K2:P3 values block

    Args:
        values: Rows as returned by the Sheets values API

    Returns:
        NPS as float (decimal comma accepted)
    """
    if not values or len(values) < 2 or not values[1]:
        raise NpsUnavailable("Not enough data in the expected spreadsheet range")

    raw = values[1][0]
    text = str(raw).replace(',', '.').strip() or '0'
    try:
        value = float(text)
    except ValueError:
        raise NpsUnavailable(f'NPS value "{raw}" is not a valid number')
    if value < 0:
        raise NpsUnavailable(f'NPS value "{raw}" is negative')
    return value


class SheetsNpsClient:
    """Reads NPS values from Google Sheets"""

    def __init__(self,
                 client_email: Optional[str] = None,
                 private_key: Optional[str] = None,
                 timeout: float = 15.0):
        """
        Args:
            client_email: Service account e-mail (GOOGLE_SHEETS_CLIENT_EMAIL)
            private_key: PEM private key (GOOGLE_SHEETS_PRIVATE_KEY); literal \\n are unescaped
            timeout: HTTP timeout in seconds
        """
        self.client_email = client_email or os.environ.get('GOOGLE_SHEETS_CLIENT_EMAIL')
        private_key = private_key or os.environ.get('GOOGLE_SHEETS_PRIVATE_KEY')
        self.private_key = private_key.replace('\\n', '\n') if private_key else None
        self.timeout = timeout

        self._access_token = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_email and self.private_key)

    def _assertion(self, ttl_seconds: int = 3600) -> str:
        now = int(time.time())
        payload = {
            "iss": self.client_email,
            "scope": SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        token = jwt.encode(payload, self.private_key, algorithm="RS256")
        if isinstance(token, bytes):
            token = token.decode('utf-8')
        return token

    def _get_access_token(self) -> str:
        if self._access_token and self._token_expires_at - time.time() > 60:
            return self._access_token

        response = requests.post(
            TOKEN_URL,
            data={
                'grant_type': 'urn:ietf:params:oauth:grant-type:jwt-bearer',
                'assertion': self._assertion(),
            },
            timeout=self.timeout
        )
        if response.status_code != 200:
            raise NpsUnavailable(f"Service account token exchange failed: {response.text[:200]}")

        data = response.json()
        self._access_token = data['access_token']
        self._token_expires_at = time.time() + data.get('expires_in', 3600)
        return self._access_token

    def get_monthly_nps(self, site: Site) -> float:
        """
        Read the current month's NPS for a site

        Raises:
            NpsUnavailable: credentials missing, sheet unreadable or value invalid
        """
        if not self.is_configured:
            raise NpsUnavailable(
                "Google Sheets credentials missing. Set GOOGLE_SHEETS_CLIENT_EMAIL and GOOGLE_SHEETS_PRIVATE_KEY."
            )
        if not site.spreadsheet_id:
            raise NpsUnavailable(f"Site {site.name} has no spreadsheet id configured")

        try:
            headers = {'Authorization': f'Bearer {self._get_access_token()}'}
            response = requests.get(
                f"{SHEETS_URL}/{site.spreadsheet_id}/values/{SPREADSHEET_DATA_RANGE}",
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as exc:
            logger.error(f"Error fetching NPS from Google Sheets: {exc}")
            raise NpsUnavailable("Could not read the NPS value from Google Sheets") from exc
        except (jwt.PyJWTError, ValueError, KeyError) as exc:
            # Unparseable private key or a token response without access_token
            logger.error(f"Google Sheets service account authentication failed: {exc!r}")
            raise NpsUnavailable("Could not authenticate with the Google Sheets service account") from exc

        if response.status_code == 403:
            raise NpsUnavailable(
                f"Permission denied. Share the spreadsheet with '{self.client_email}' as a viewer."
            )
        if response.status_code == 404:
            raise NpsUnavailable(f"Spreadsheet {site.spreadsheet_id} was not found")
        if response.status_code == 400:
            raise NpsUnavailable(f"Range '{SPREADSHEET_DATA_RANGE}' is not valid in the spreadsheet")
        if response.status_code != 200:
            raise NpsUnavailable(f"Google Sheets returned HTTP {response.status_code}")

        try:
            data: Dict = response.json()
        except ValueError as exc:
            raise NpsUnavailable("Google Sheets returned a response that is not JSON") from exc
        if not isinstance(data, dict):
            raise NpsUnavailable("Google Sheets returned an unexpected response")
        return parse_nps_value(data.get('values'))


def refresh_site_nps(store, client: SheetsNpsClient, site: Site,
                     today: Optional[date] = None, force: bool = False) -> Optional[float]:
    """
    Pull the site's NPS once per day and store it

    Failures are logged and swallowed here: NPS is an independent KPI and
    must never block forecast or compliance work.

    Returns:
        The new NPS, the stored one when already fresh, or None on failure
    """
    today = today or date.today()
    if not force and site.nps_updated_on == today:
        return site.nps_score

    try:
        value = client.get_monthly_nps(site)
        store.update_site_nps(site.id, value, updated_on=today)
    except (NpsUnavailable, SiteNotFound, ValueError) as e:
        logger.warning(f"NPS refresh skipped for {site.id}: {e}")
        return None

    logger.info(f"NPS for {site.id} updated to {value}")
    return value
