import logging
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from calendar_rules import (
    charge_date_for_statement_month,
    due_date_for_bill,
    parse_month_key,
)
from config import get_settings
from models import Card, FixedBill, PaymentMethod, Transaction, TransactionStatus
from schemas import TransactionIn

logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


class RecurrenceMaterializer:
    """Turns active fixed bills into at most one transaction per month."""

    def __init__(
        self,
        session: Session,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        from services import LedgerService

        self.session = session
        self.ledger = LedgerService(session, id_factory, clock)

    def ensure_month(self, ref_month: str, *, commit: bool = True) -> int:
        parse_month_key(ref_month)
        bills = self.session.scalars(
            select(FixedBill)
            .where(FixedBill.active.is_(True))
            .order_by(FixedBill.created_at, FixedBill.id)
        ).all()

        created = 0
        for bill in bills:
            if self._existing(bill.id, ref_month) is not None:
                continue
            draft = self._draft_for(bill, ref_month)
            if draft is None:
                continue
            if self._insert_if_absent(bill, ref_month, draft):
                created += 1

        if commit:
            self.session.commit()
        logger.info(
            f"ensure_month: month={ref_month} active_bills={len(bills)} created={created}"
        )
        return created

    def _existing(self, bill_id: str, ref_month: str) -> Optional[str]:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.ref_month == ref_month,
                Transaction.fixed_bill_id == bill_id,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _draft_for(self, bill: FixedBill, ref_month: str) -> Optional[TransactionIn]:
        if bill.method == PaymentMethod.card:
            card = self.session.get(Card, bill.card_id) if bill.card_id else None
            if card is None:
                logger.info(
                    f"ensure_month_skip: bill_id={bill.id} month={ref_month} reason=card_missing"
                )
                return None
            # The bill's due day is the day the card gets charged; the ledger
            # derives ref_month from the resulting statement month.
            purchase_date = charge_date_for_statement_month(
                ref_month, bill.due_day, card.closing_day
            )
            return TransactionIn(
                date=purchase_date,
                description=bill.name,
                category_id=bill.category_id,
                type=bill.type,
                method=bill.method,
                amount_cents=bill.amount_cents,
                status=TransactionStatus.pending,
                card_id=bill.card_id,
                fixed_bill_id=bill.id,
                notes=bill.notes,
            )

        due = due_date_for_bill(ref_month, bill.due_day)
        return TransactionIn(
            date=due,
            description=bill.name,
            category_id=bill.category_id,
            type=bill.type,
            method=bill.method,
            institution=bill.institution,
            amount_cents=bill.amount_cents,
            status=TransactionStatus.pending,
            ref_month=ref_month,
            due_date=due,
            fixed_bill_id=bill.id,
            notes=bill.notes,
        )

    def _insert_if_absent(
        self, bill: FixedBill, ref_month: str, draft: TransactionIn
    ) -> bool:
        # Another caller may insert the same (bill, month) between the check and
        # this insert; the unique constraint turns that into a no-op.
        try:
            with self.session.begin_nested():
                self.ledger.add_transaction(draft, commit=False)
        except IntegrityError:
            logger.info(
                f"ensure_month_race: bill_id={bill.id} month={ref_month} already_materialized"
            )
            return False
        return True
