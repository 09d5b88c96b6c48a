from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from http.client import HTTPException
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from pydantic import ValidationError

from config import get_settings
from models import TransactionStatus
from schemas import RemoteAccount, RemoteCategory, RemoteTransaction

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class LedgerApiError(RuntimeError):
    """Transport or unexpected-response failure talking to the remote ledger."""

    default_message = "Could not reach the bank. Please try again."

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message or self.default_message)
        self.status = status


class LedgerRateLimitError(LedgerApiError):
    default_message = "Too many requests. Please wait a minute and try again."


class LedgerUnauthorizedError(LedgerApiError):
    default_message = (
        "The bank rejected the API token. It may have expired or been revoked; "
        "update it in Settings."
    )


@dataclass(frozen=True)
class TransactionPage:
    data: list[RemoteTransaction]
    next_url: Optional[str]


class LedgerClient:
    def __init__(
        self,
        token: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.token = token
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout_secs

    def _get_json(self, url: str) -> dict:
        logger.debug(f"ledger_get: url={url}")
        req = Request(
            url,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            if exc.code == 401:
                raise LedgerUnauthorizedError(status=401) from exc
            if exc.code == 429:
                raise LedgerRateLimitError(status=429) from exc
            raise LedgerApiError(
                f"Bank API error: {exc.code}. Please try again.", status=exc.code
            ) from exc
        except (URLError, HTTPException, OSError) as exc:
            raise LedgerApiError() from exc
        except ValueError as exc:
            # Undecodable or non-JSON body.
            raise LedgerApiError("Unexpected response from the bank API") from exc
        if not isinstance(payload, dict):
            raise LedgerApiError("Unexpected response from the bank API")
        return payload

    def _list(self, url: str, model):
        payload = self._get_json(url)
        try:
            return [model.model_validate(item) for item in payload.get("data") or []]
        except ValidationError as exc:
            raise LedgerApiError("Unexpected response from the bank API") from exc

    def validate_token(self) -> bool:
        try:
            self._get_json(f"{self.base_url}/accounts")
        except LedgerUnauthorizedError:
            return False
        return True

    def fetch_accounts(self) -> list[RemoteAccount]:
        return self._list(f"{self.base_url}/accounts", RemoteAccount)

    def fetch_categories(self) -> list[RemoteCategory]:
        return self._list(f"{self.base_url}/categories", RemoteCategory)

    def build_transactions_url(
        self,
        since: Optional[datetime],
        page_size: int = DEFAULT_PAGE_SIZE,
        status: Optional[TransactionStatus] = None,
    ) -> str:
        params = {"page[size]": str(page_size)}
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            params["filter[since]"] = since.isoformat()
        if status is not None:
            params["filter[status]"] = TransactionStatus(status).value
        return f"{self.base_url}/transactions?{urlencode(params)}"

    def fetch_transactions_page(self, url: str) -> TransactionPage:
        payload = self._get_json(url)
        try:
            data = [
                RemoteTransaction.model_validate(item)
                for item in payload.get("data") or []
            ]
        except ValidationError as exc:
            raise LedgerApiError("Unexpected response from the bank API") from exc
        links = payload.get("links") or {}
        return TransactionPage(data=data, next_url=links.get("next") or None)
