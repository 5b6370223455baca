"""
Lunch Money API client implementation.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.actions import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

STATUS_CLEARED = "cleared"
STATUS_UNCLEARED = "uncleared"


class LedgerError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerAPIError(LedgerError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Ledger API error {status_code}: {message}")


class LedgerConnectionError(LedgerError):
    """Failed to connect to the ledger, or the request timed out."""

    pass


def _error_message(error: object) -> str:
    """Flatten an API "error" value (string or list of strings)."""
    if isinstance(error, list):
        return "; ".join(str(item) for item in error)
    return str(error)


@dataclass
class LedgerTransaction:
    """Ledger transaction snapshot.

    The amount is held in integer minor units; the API's decimal string
    ("12.3400") is converted on read.
    """

    id: int
    payee: str
    amount: int
    occurred_at: date
    notes: str | None = None
    category_id: int | None = None
    status: str | None = None

    @property
    def has_note(self) -> bool:
        return self.notes is not None and self.notes != ""

    @classmethod
    def from_api(cls, data: dict) -> "LedgerTransaction":
        """Build from a /transactions item."""
        category_id = data.get("category_id")
        return cls(
            id=int(data["id"]),
            payee=data.get("payee") or "",
            amount=to_minor_units(data["amount"]),
            occurred_at=date.fromisoformat(str(data["date"])[:10]),
            notes=data.get("notes"),
            category_id=int(category_id) if category_id is not None else None,
            status=data.get("status"),
        )


@dataclass
class SplitRequest:
    """One line of a split mutation; amount in minor units."""

    amount: int
    notes: str
    category_id: int | None
    status: str

    def to_api(self) -> dict:
        return {
            "amount": from_minor_units(self.amount),
            "notes": self.notes,
            "category_id": self.category_id,
            "status": self.status,
        }


class LedgerClient:
    """
    Client for the Lunch Money v1 API.

    Features:
    - List transactions in a date window
    - Update notes/status of a transaction
    - Split a transaction into lines
    - Automatic retry with backoff
    """

    DEFAULT_BASE_URL = "https://dev.lunchmoney.app/v1"
    DEFAULT_TIMEOUT = 30

    STATUS_CLEARED = STATUS_CLEARED
    STATUS_UNCLEARED = STATUS_UNCLEARED

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize ledger client.

        Args:
            token: Lunch Money API key (sent as bearer credential)
            base_url: API root including version prefix
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

        # Configure session with retry
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict:
        """Make an API request with error handling. Returns the decoded body."""
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, indent=2)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise LedgerConnectionError(
                f"Failed to connect to ledger at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise LedgerConnectionError(f"Request to ledger timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise LedgerError(f"Request failed: {e}") from e

        logger.debug(f"Response status: {response.status_code}")

        if not response.ok:
            try:
                error_body = response.json()
            except ValueError:
                error_body = None

            message = None
            if isinstance(error_body, dict) and error_body.get("error"):
                message = _error_message(error_body["error"])
            message = message or response.reason or "Unknown error"

            logger.error(f"API Error {response.status_code}: {message}")
            logger.debug(f"Full response body: {response.text}")

            raise LedgerAPIError(
                status_code=response.status_code,
                message=str(message),
                response_body=response.text,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerAPIError(
                status_code=response.status_code,
                message="Response is not valid JSON",
                response_body=response.text,
            ) from e

        if not isinstance(body, dict):
            logger.error(f"Unexpected response body from {url}: {response.text}")
            raise LedgerAPIError(
                status_code=response.status_code,
                message="Response is not a JSON object",
                response_body=response.text,
            )

        # Lunch Money reports some validation failures as 200 + {"error": ...}
        if body.get("error"):
            message = _error_message(body["error"])
            logger.error(f"API Error in body: {message}")
            raise LedgerAPIError(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
            )

        return body

    def test_connection(self) -> bool:
        """Test connection to the ledger API."""
        try:
            self._request("GET", "/me")
            return True
        except LedgerError:
            return False

    def list_transactions(
        self,
        start_date: date,
        end_date: date,
        status: str | None = STATUS_UNCLEARED,
        pending: bool | None = True,
    ) -> list[LedgerTransaction]:
        """
        List transactions in a date range.

        Args:
            start_date: Window start (inclusive)
            end_date: Window end (inclusive)
            status: Optional server-side status filter
            pending: Optional pending-state filter

        Returns:
            List of LedgerTransaction objects in API order
        """
        params = {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        if status:
            params["status"] = status
        if pending is not None:
            params["pending"] = "true" if pending else "false"

        data = self._request("GET", "/transactions", params=params)
        items = data.get("transactions", [])

        transactions = []
        for item in items:
            try:
                transactions.append(LedgerTransaction.from_api(item))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping unreadable transaction %s: %s", item.get("id"), e)

        logger.debug("Fetched %d transactions", len(transactions))
        return transactions

    def update_transaction(
        self,
        transaction_id: int,
        notes: str | None = None,
        status: str | None = None,
    ) -> bool:
        """
        Update notes and/or status of a transaction.

        Returns:
            True if updated successfully

        Raises:
            LedgerAPIError: If API returns an error
        """
        transaction: dict = {}
        if notes is not None:
            transaction["notes"] = notes
        if status is not None:
            transaction["status"] = status

        if not transaction:
            raise ValueError("Nothing to update")

        self._request(
            "PUT",
            f"/transactions/{transaction_id}",
            json_data={"transaction": transaction},
        )

        logger.info(f"Updated ledger transaction id={transaction_id}")
        return True

    def split_transaction(
        self,
        transaction_id: int,
        splits: list[SplitRequest],
    ) -> list[int]:
        """
        Split a transaction into lines in one request.

        Returns:
            IDs of the created split transactions (may be empty)

        Raises:
            LedgerAPIError: If API returns an error
        """
        if not splits:
            raise ValueError("A split needs at least one line")

        data = self._request(
            "PUT",
            f"/transactions/{transaction_id}",
            json_data={"split": [split.to_api() for split in splits]},
        )

        # The split is already applied here; unreadable ids must not fail it
        try:
            split_ids = [int(i) for i in data.get("split", []) or []]
        except (TypeError, ValueError):
            logger.warning(
                f"Unreadable split ids for transaction id={transaction_id}: {data.get('split')!r}"
            )
            split_ids = []

        logger.info(
            f"Split ledger transaction id={transaction_id} into {len(splits)} lines"
        )
        return split_ids
