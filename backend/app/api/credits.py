import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.credit import CreditAccount, CreditHistory
from ..models.institute import Institute
from ..services import credit_ledger
from ..services.job_postings import pagination_meta
from ..utils.error_handlers import AppError, ForbiddenError, NotFoundError, get_error_message
from ..utils.roles import Principal, admin_only, institute_only, institute_or_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["Credits"])


class OpenAccountRequest(BaseModel):
    institute_id: int
    initial_balance: int = Field(default=0, ge=0)


class PurchaseRequest(BaseModel):
    amount: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=255)


def _ensure_can_view(principal: Principal, account: CreditAccount) -> None:
    if principal.is_institute and account.institute_id != principal.id:
        raise ForbiddenError(get_error_message("forbidden"))


@router.get("/pricing")
def pricing():
    return {
        "success": True,
        "creation": credit_ledger.JOB_ROLE_CREDITS,
        "renewal": {
            "default": credit_ledger.RENEWAL_CREDITS,
            "student": credit_ledger.STUDENT_RENEWAL_CREDITS,
        },
    }


@router.post("/accounts", status_code=201)
def open_account(
    payload: OpenAccountRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    if not db.query(Institute.id).filter(Institute.id == payload.institute_id).first():
        raise NotFoundError("Institute not found")
    try:
        account = credit_ledger.open_account(db, payload.institute_id, payload.initial_balance)
        db.commit()
    except (AppError, SQLAlchemyError):
        db.rollback()
        raise
    db.refresh(account)
    logger.info("Credit account opened institute_id=%s by admin_id=%s", payload.institute_id, principal.id)
    return {"success": True, "account": credit_ledger.account_to_public(account)}


@router.get("/accounts")
def list_accounts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    q = db.query(CreditAccount)
    total = q.count()
    rows = q.order_by(CreditAccount.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "accounts": [credit_ledger.account_to_public(a) for a in rows],
        "pagination": pagination_meta(page=page, page_size=limit, total=total),
    }


@router.get("/accounts/{account_id:int}")
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    account = credit_ledger.get_account_by_id(db, account_id)
    _ensure_can_view(principal, account)
    return {"success": True, "account": credit_ledger.account_to_public(account)}


@router.get("/institutes/{institute_id:int}")
def get_account_for_institute(
    institute_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    account = credit_ledger.get_account_by_institute(db, institute_id)
    _ensure_can_view(principal, account)
    return {"success": True, "account": credit_ledger.account_to_public(account)}


@router.get("/me")
def my_account(db: Session = Depends(get_db), principal: Principal = Depends(institute_only)):
    account = credit_ledger.get_account_by_institute(db, principal.id)
    return {"success": True, "account": credit_ledger.account_to_public(account)}


@router.post("/accounts/{account_id:int}/purchase")
def purchase_credits(
    account_id: int,
    payload: PurchaseRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    account = credit_ledger.get_account_by_id(db, account_id)
    try:
        balance = credit_ledger.credit(db, account, payload.amount, note=payload.note)
        db.commit()
    except (AppError, SQLAlchemyError):
        db.rollback()
        raise
    logger.info("Credits purchased account_id=%s amount=%s by admin_id=%s", account_id, payload.amount, principal.id)
    return {"success": True, "balance": balance}


@router.get("/history")
def all_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    q = db.query(CreditHistory)
    total = q.count()
    rows = q.order_by(CreditHistory.created_at.desc(), CreditHistory.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "history": [credit_ledger.history_to_public(h) for h in rows],
        "pagination": pagination_meta(page=page, page_size=limit, total=total),
    }


@router.get("/history/{entry_id:int}")
def history_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    entry = db.query(CreditHistory).filter(CreditHistory.id == entry_id).first()
    if not entry:
        raise NotFoundError(get_error_message("not_found"))
    if principal.is_institute and entry.institute_id != principal.id:
        raise ForbiddenError(get_error_message("forbidden"))
    return {"success": True, "entry": credit_ledger.history_to_public(entry)}


@router.get("/history/institutes/{institute_id:int}")
def institute_history(
    institute_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    if principal.is_institute and institute_id != principal.id:
        raise ForbiddenError(get_error_message("forbidden"))
    rows = (
        db.query(CreditHistory)
        .filter(CreditHistory.institute_id == institute_id)
        .order_by(CreditHistory.created_at.desc(), CreditHistory.id.desc())
        .all()
    )
    return {"success": True, "history": [credit_ledger.history_to_public(h) for h in rows]}
