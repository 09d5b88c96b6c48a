"""Pull accounts, transactions and categories from the remote ledger and
merge them into the local store.

Phases run strictly in order: accounts, transactions, categories, savers.
Each phase commits when its upserts are issued, so a failure in a later
phase leaves earlier phases durable; the next sync simply re-runs them all.
Every upsert is keyed by the remote identifier, which makes re-running a
sync with the same remote data a no-op.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from database import require_session, session_scope
from ledger_client import LedgerApiError, LedgerClient, LedgerUnauthorizedError
from models import Account, AccountType, Category, Saver, Transaction, TransactionStatus
from periods import to_date
from recurrence import PeriodEngine, local_today
from schemas import RemoteAccount, RemoteCategory, RemoteTransaction
from services import LAST_SYNC, ONBOARDING_COMPLETE, SettingsService

logger = logging.getLogger(__name__)

UPSERT_CHUNK = 500


@dataclass(frozen=True)
class SyncProgress:
    phase: str  # accounts | transactions | categories | savers | done
    fetched: Optional[int] = None
    has_more: Optional[bool] = None


ProgressCallback = Callable[[SyncProgress], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def merge_transaction_batches(
    held: Mapping[str, RemoteTransaction],
    settled: Mapping[str, RemoteTransaction],
) -> dict[str, RemoteTransaction]:
    """Combine the HELD and SETTLED fetches; a settled copy replaces a hold."""
    merged = dict(held)
    merged.update(settled)
    return merged


def display_date_of(txn: RemoteTransaction) -> date:
    stamp = txn.attributes.created_at or txn.attributes.settled_at
    if stamp is None:
        raise LedgerApiError(f"Transaction {txn.id} has no created or settled date")
    return to_date(stamp)


def _status_of(txn: RemoteTransaction) -> TransactionStatus:
    try:
        return TransactionStatus(txn.attributes.status)
    except ValueError:
        return TransactionStatus.settled


def _account_type_of(acc: RemoteAccount) -> AccountType:
    try:
        return AccountType(acc.attributes.account_type)
    except ValueError:
        return AccountType.transactional


def _transfer_type(
    amount: int, has_round_up: bool, transfer_account_id: Optional[str]
) -> Optional[str]:
    if transfer_account_id is None:
        return None
    if has_round_up and amount > 0:
        return "ROUND_UP"
    return "TRANSFER"


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class LedgerSynchronizer:
    def __init__(
        self,
        session: Optional[Session],
        client: LedgerClient,
        *,
        page_size: Optional[int] = None,
        page_delay_secs: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        settings = get_settings()
        self.session = require_session(session)
        self.client = client
        self.page_size = page_size or settings.sync_page_size
        self.page_delay_secs = (
            page_delay_secs
            if page_delay_secs is not None
            else settings.sync_page_delay_secs
        )
        self.sleep = sleep
        self.now = now
        self.settings = SettingsService(self.session)

    # Entry points

    def perform_initial_sync(self, progress: Optional[ProgressCallback] = None) -> None:
        logger.info("sync_start: kind=initial")
        self._run_phases(None, progress)
        self.settings.set(ONBOARDING_COMPLETE, "1")
        self._report(progress, SyncProgress("done"))
        logger.info("sync_done: kind=initial")

    def perform_sync(
        self,
        progress: Optional[ProgressCallback] = None,
        since: Optional[datetime] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        today = today or local_today()
        periods = PeriodEngine(self.session)
        periods.advance_payday_if_needed(today)
        periods.recalculate_trackers(today)

        since = since if since is not None else self.settings.last_sync()
        logger.info(f"sync_start: kind=incremental since={since}")
        self._run_phases(since, progress)
        periods.recalculate_trackers(today)
        self._report(progress, SyncProgress("done"))
        logger.info("sync_done: kind=incremental")

    def _run_phases(
        self, since: Optional[datetime], progress: Optional[ProgressCallback]
    ) -> None:
        phase = "accounts"
        try:
            self._report(progress, SyncProgress("accounts"))
            accounts = self.client.fetch_accounts()
            self.upsert_accounts(accounts)
            self.session.commit()
            logger.info(f"sync_phase: phase=accounts count={len(accounts)}")

            phase = "transactions"
            self._report(progress, SyncProgress("transactions", fetched=0, has_more=True))
            transactions = self.fetch_all_transactions(since, progress)
            self.upsert_transactions(transactions.values())
            self.session.commit()
            logger.info(f"sync_phase: phase=transactions count={len(transactions)}")

            phase = "categories"
            self._report(progress, SyncProgress("categories"))
            categories = self.client.fetch_categories()
            self.upsert_categories(categories)
            self.session.commit()
            logger.info(f"sync_phase: phase=categories count={len(categories)}")
        except LedgerApiError as exc:
            logger.warning(
                f"sync_failed: phase={phase} kind={type(exc).__name__} "
                f"status={exc.status} error={exc}"
            )
            raise

        self._report(progress, SyncProgress("savers"))
        savers = self.merge_savers(accounts)
        self.session.commit()
        logger.info(f"sync_phase: phase=savers count={savers}")

        self.settings.set(LAST_SYNC, self.now().isoformat())

    @staticmethod
    def _report(progress: Optional[ProgressCallback], update: SyncProgress) -> None:
        if progress is not None:
            progress(update)

    # Fetching

    def fetch_transactions_by_status(
        self,
        since: Optional[datetime],
        status: TransactionStatus,
        on_page: Optional[Callable[[int, bool], None]] = None,
    ) -> dict[str, RemoteTransaction]:
        by_id: dict[str, RemoteTransaction] = {}
        url: Optional[str] = self.client.build_transactions_url(
            since, self.page_size, status
        )
        while url:
            page = self.client.fetch_transactions_page(url)
            for txn in page.data:
                by_id[txn.id] = txn
            url = page.next_url
            logger.debug(
                f"sync_page: status={status.value} fetched={len(by_id)} "
                f"has_more={url is not None}"
            )
            if on_page is not None:
                on_page(len(by_id), url is not None)
            if url:
                self.sleep(self.page_delay_secs)
        return by_id

    def fetch_all_transactions(
        self,
        since: Optional[datetime],
        progress: Optional[ProgressCallback] = None,
    ) -> dict[str, RemoteTransaction]:
        def report(offset: int):
            def on_page(fetched: int, has_more: bool) -> None:
                self._report(
                    progress,
                    SyncProgress("transactions", fetched=offset + fetched, has_more=has_more),
                )

            return on_page

        held = self.fetch_transactions_by_status(
            since, TransactionStatus.held, report(0)
        )
        settled = self.fetch_transactions_by_status(
            since, TransactionStatus.settled, report(len(held))
        )
        return merge_transaction_batches(held, settled)

    # Upserts

    def upsert_accounts(self, accounts: Iterable[RemoteAccount]) -> None:
        now = _naive_utc(self.now())
        for acc in accounts:
            row = self.session.get(Account, acc.id)
            if row is None:
                row = Account(id=acc.id)
                self.session.add(row)
            row.display_name = acc.attributes.display_name
            row.account_type = _account_type_of(acc)
            row.balance_cents = acc.balance_cents
            row.created_at = _naive_utc(acc.attributes.created_at) or now
            row.updated_at = now
            row.synced_at = now

    def upsert_transactions(self, transactions: Iterable[RemoteTransaction]) -> None:
        batch = list(transactions)
        existing: dict[str, Transaction] = {}
        for ids in _chunks([txn.id for txn in batch], UPSERT_CHUNK):
            stmt = select(Transaction).where(Transaction.id.in_(ids))
            existing.update({row.id: row for row in self.session.scalars(stmt)})

        now = _naive_utc(self.now())
        for txn in batch:
            row = existing.get(txn.id)
            if row is None:
                row = Transaction(id=txn.id)
                self.session.add(row)
                existing[txn.id] = row
            self._apply_transaction(row, txn, now)

    @staticmethod
    def _apply_transaction(row: Transaction, txn: RemoteTransaction, now: datetime) -> None:
        attrs = txn.attributes
        amount = txn.amount_cents
        # A purchase that triggered a round-up may carry the saver as its
        # transfer account; only the round-up credit itself is a transfer.
        if amount < 0 and attrs.round_up is not None:
            transfer_account_id = None
        else:
            transfer_account_id = txn.transfer_account_id

        row.account_id = txn.account_id
        row.status = _status_of(txn)
        row.raw_text = attrs.raw_text
        row.description = attrs.description or ""
        row.message = attrs.message
        row.is_categorizable = attrs.is_categorizable
        row.category_id = txn.category_id
        row.parent_category_id = txn.parent_category_id
        row.amount_cents = amount
        row.currency_code = attrs.amount.currency_code if attrs.amount else "AUD"
        row.settled_at = _naive_utc(attrs.settled_at)
        row.created_at = _naive_utc(attrs.created_at)
        row.display_date = display_date_of(txn)
        row.is_round_up = attrs.round_up is not None
        # The list endpoint never links a round-up to its purchase.
        row.round_up_parent_id = None
        row.transfer_account_id = transfer_account_id
        row.transfer_type = _transfer_type(
            amount, attrs.round_up is not None, transfer_account_id
        )
        row.synced_at = now

    def upsert_categories(self, categories: Iterable[RemoteCategory]) -> None:
        for cat in categories:
            row = self.session.get(Category, cat.id)
            if row is None:
                row = Category(id=cat.id)
                self.session.add(row)
            row.name = cat.attributes.name or cat.id
            row.parent_id = cat.parent_id

    def merge_savers(self, accounts: Iterable[RemoteAccount]) -> int:
        """Mirror saver accounts without touching user-set goal fields."""
        count = 0
        for acc in accounts:
            if _account_type_of(acc) != AccountType.saver:
                continue
            saver = self.session.get(Saver, acc.id)
            if saver is None:
                saver = Saver(id=acc.id, is_goal_based=False)
                self.session.add(saver)
            saver.name = acc.attributes.display_name or "Saver"
            saver.current_balance_cents = acc.balance_cents
            count += 1
        return count


def run_sync(
    token: Optional[str] = None,
    *,
    full: bool = False,
    progress: Optional[ProgressCallback] = None,
) -> None:
    """Sync using the configured store, starting from scratch when never synced."""
    token = token or get_settings().api_token
    if not token:
        raise LedgerUnauthorizedError("No API token configured; add one in Settings.")
    with session_scope() as session:
        synchronizer = LedgerSynchronizer(session, LedgerClient(token))
        if full or SettingsService(session).last_sync() is None:
            synchronizer.perform_initial_sync(progress)
        else:
            synchronizer.perform_sync(progress)
