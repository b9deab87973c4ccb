"""
Institute credit ledger.

Every balance change goes through `debit` / `credit`, which mutate the balance with a
single conditional UPDATE and append a CreditHistory row in the caller's transaction.
Callers commit (or roll back) once, so the balance and its history entry land together.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.credit import (
    ACTION_JOB_CREATE,
    ACTION_JOB_RENEW,
    ACTION_PURCHASE,
    CreditAccount,
    CreditHistory,
)
from ..utils.error_handlers import (
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
    get_error_message,
)

logger = logging.getLogger(__name__)

# Job creation price by role category.
JOB_ROLE_CREDITS = {
    "Doctor": 50,
    "Other": 30,
    "Student": 10,
}
RENEWAL_CREDITS = 10
STUDENT_RENEWAL_CREDITS = 5


def normalize_job_role(role: str | None) -> str:
    """Return the canonical role category, case-insensitively; unknown roles raise."""
    for known in JOB_ROLE_CREDITS:
        if known.lower() == (role or "").strip().lower():
            return known
    raise ValidationError(
        f"Invalid job role. Supported roles: {', '.join(JOB_ROLE_CREDITS)}",
        details={"supported_roles": list(JOB_ROLE_CREDITS)},
    )


def creation_cost(role: str) -> int:
    return JOB_ROLE_CREDITS[normalize_job_role(role)]


def renewal_cost(role: str | None) -> int:
    # Substring match on the free-text role.
    return STUDENT_RENEWAL_CREDITS if "student" in (role or "").lower() else RENEWAL_CREDITS


def get_account_by_id(db: Session, account_id: int) -> CreditAccount:
    account = db.query(CreditAccount).filter(CreditAccount.id == int(account_id)).first()
    if not account:
        raise NotFoundError(get_error_message("credit_account_not_found"))
    return account


def get_account_by_institute(db: Session, institute_id: int) -> CreditAccount:
    account = db.query(CreditAccount).filter(CreditAccount.institute_id == int(institute_id)).first()
    if not account:
        raise NotFoundError(get_error_message("credit_account_not_found"))
    return account


def find_account_by_institute(db: Session, institute_id: int) -> CreditAccount | None:
    return db.query(CreditAccount).filter(CreditAccount.institute_id == int(institute_id)).first()


def current_balance(db: Session, account_id: int) -> int:
    row = db.query(CreditAccount.balance).filter(CreditAccount.id == int(account_id)).first()
    return int(row[0]) if row else 0


def _append_history(
    db: Session,
    account: CreditAccount,
    *,
    action: str,
    amount: int,
    balance_after: int,
    job_id: int | None,
    note: str | None,
) -> CreditHistory:
    entry = CreditHistory(
        account_id=account.id,
        institute_id=account.institute_id,
        job_id=job_id,
        action=action,
        amount=int(amount),
        balance_after=int(balance_after),
        note=note,
    )
    db.add(entry)
    db.flush()
    return entry


def debit(
    db: Session,
    account: CreditAccount,
    amount: int,
    *,
    action: str,
    job_id: int | None = None,
    note: str | None = None,
) -> int:
    """
    Take `amount` credits from `account`; returns the new balance.

    The balance check and decrement are one UPDATE statement, so two concurrent debits
    can never both pass against a balance that only covers one. Raises
    InsufficientCreditsError (no mutation) when the balance is too low.
    """
    amount = int(amount)
    if amount <= 0:
        raise ValidationError("Debit amount must be positive")

    result = db.execute(
        update(CreditAccount)
        .where(CreditAccount.id == account.id, CreditAccount.balance >= amount)
        .values(balance=CreditAccount.balance - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        available = current_balance(db, account.id)
        logger.info(
            "Debit rejected account_id=%s required=%s available=%s", account.id, amount, available
        )
        raise InsufficientCreditsError(required=amount, available=available)

    new_balance = current_balance(db, account.id)
    db.refresh(account)
    _append_history(db, account, action=action, amount=amount, balance_after=new_balance, job_id=job_id, note=note)
    logger.info("Debited %s credits account_id=%s action=%s balance=%s", amount, account.id, action, new_balance)
    return new_balance


def credit(
    db: Session,
    account: CreditAccount,
    amount: int,
    *,
    action: str = ACTION_PURCHASE,
    note: str | None = None,
) -> int:
    """Add `amount` credits to `account`; returns the new balance."""
    amount = int(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")

    db.execute(
        update(CreditAccount)
        .where(CreditAccount.id == account.id)
        .values(balance=CreditAccount.balance + amount)
        .execution_options(synchronize_session=False)
    )
    new_balance = current_balance(db, account.id)
    db.refresh(account)
    _append_history(db, account, action=action, amount=amount, balance_after=new_balance, job_id=None, note=note)
    logger.info("Credited %s credits account_id=%s balance=%s", amount, account.id, new_balance)
    return new_balance


def open_account(db: Session, institute_id: int, initial_balance: int = 0) -> CreditAccount:
    """Create the institute's single account. Caller commits."""
    if find_account_by_institute(db, institute_id):
        raise ConflictError(get_error_message("credit_account_exists"))
    if int(initial_balance) < 0:
        raise ValidationError("Initial balance cannot be negative")

    account = CreditAccount(institute_id=int(institute_id), balance=0)
    db.add(account)
    db.flush()
    if int(initial_balance) > 0:
        credit(db, account, int(initial_balance), action=ACTION_PURCHASE, note="Opening balance")
    return account


def charge_job_creation(db: Session, account: CreditAccount, role: str, job_id: int) -> int:
    return debit(db, account, creation_cost(role), action=ACTION_JOB_CREATE, job_id=job_id)


def charge_job_renewal(db: Session, account: CreditAccount, role: str, job_id: int) -> int:
    return debit(db, account, renewal_cost(role), action=ACTION_JOB_RENEW, job_id=job_id)


def history_to_public(entry: CreditHistory) -> dict:
    return {
        "id": entry.id,
        "account_id": entry.account_id,
        "institute_id": entry.institute_id,
        "job_id": entry.job_id,
        "action": entry.action,
        "amount": entry.amount,
        "balance_after": entry.balance_after,
        "note": entry.note,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def account_to_public(account: CreditAccount) -> dict:
    return {
        "id": account.id,
        "institute_id": account.institute_id,
        "balance": account.balance,
        "created_at": account.created_at.isoformat() if account.created_at else None,
        "updated_at": account.updated_at.isoformat() if account.updated_at else None,
    }
