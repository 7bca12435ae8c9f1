from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from rebooked.extensions import db
from rebooked.models import PayoutRequest, User, UserWallet, WalletTransaction
from rebooked.services.errors import (
    InsufficientFunds,
    InvalidAmount,
    InvalidPayoutState,
    PayoutNotFound,
)
from rebooked.utils.events import log_event
from rebooked.utils.money import seller_credit_minor

# Sign applied to each transaction type when rebuilding available_balance.
LEDGER_SIGNS = {
    "credit": 1,
    "release": 1,
    "debit": -1,
    "hold": -1,
}


@dataclass
class CreditResult:
    success: bool
    credit_amount: int
    new_balance: int
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "credit_amount": self.credit_amount,
            "new_balance": self.new_balance,
            "duplicate": self.duplicate,
        }


def get_or_create_wallet(user_id: str) -> UserWallet:
    wallet = UserWallet.query.filter_by(user_id=user_id).first()
    if wallet:
        return wallet
    wallet = UserWallet(user_id=user_id, available_balance=0, pending_balance=0, total_earned=0)
    try:
        with db.session.begin_nested():
            db.session.add(wallet)
    except IntegrityError:
        # Created concurrently by another request.
        wallet = UserWallet.query.filter_by(user_id=user_id).first()
    return wallet


def _locked_wallet(user_id: str) -> UserWallet:
    get_or_create_wallet(user_id)
    # FOR UPDATE on Postgres; SQLite serialises writers anyway.
    return UserWallet.query.filter_by(user_id=user_id).with_for_update().populate_existing().one()


def _existing_credit(order_id: str) -> WalletTransaction | None:
    return WalletTransaction.query.filter_by(reference_order_id=order_id, type="credit").first()


def credit_on_collection(order_id: str, seller_id: str, amount: int) -> CreditResult:
    """Credit the seller 90% of `amount` (cents) once per order."""
    amount = int(amount or 0)
    if amount <= 0:
        raise InvalidAmount()

    existing = _existing_credit(order_id)
    if existing:
        wallet = get_or_create_wallet(seller_id)
        return CreditResult(True, int(existing.amount), int(wallet.available_balance or 0), duplicate=True)

    credit = seller_credit_minor(amount)
    try:
        _locked_wallet(seller_id)
        db.session.add(
            WalletTransaction(
                user_id=seller_id,
                type="credit",
                amount=credit,
                status="completed",
                reference_order_id=order_id,
                reason="Sale proceeds after 10% platform commission",
            )
        )
        db.session.flush()
        db.session.execute(
            update(UserWallet)
            .where(UserWallet.user_id == seller_id)
            .values(
                available_balance=UserWallet.available_balance + credit,
                total_earned=UserWallet.total_earned + credit,
                updated_at=datetime.utcnow(),
            )
        )
        log_event(
            "wallet_credited",
            actor_user_id=seller_id,
            subject_type="order",
            subject_id=order_id,
            idempotency_key=f"wallet_credit:{order_id}",
            metadata={"gross_minor": amount, "credit_minor": credit},
        )
        db.session.commit()
    except IntegrityError:
        # Lost the race on (reference_order_id, type); the other credit stands.
        db.session.rollback()
        existing = _existing_credit(order_id)
        wallet = get_or_create_wallet(seller_id)
        return CreditResult(True, int(existing.amount if existing else 0), int(wallet.available_balance or 0), duplicate=True)

    wallet = UserWallet.query.filter_by(user_id=seller_id).populate_existing().one()
    current_app.logger.info("wallet_credit_ok order_id=%s seller_id=%s credit=%s", order_id, seller_id, credit)
    return CreditResult(True, credit, int(wallet.available_balance or 0))


def request_payout(user_id: str, amount: int, notes: str = "") -> PayoutRequest:
    amount = int(amount or 0)
    if amount <= 0:
        raise InvalidAmount()
    get_or_create_wallet(user_id)

    # Reserve funds in the same statement that checks them.
    reserved = db.session.execute(
        update(UserWallet)
        .where(UserWallet.user_id == user_id, UserWallet.available_balance >= amount)
        .values(
            available_balance=UserWallet.available_balance - amount,
            pending_balance=UserWallet.pending_balance + amount,
            updated_at=datetime.utcnow(),
        )
    )
    if reserved.rowcount != 1:
        db.session.rollback()
        raise InsufficientFunds()

    payout = PayoutRequest(user_id=user_id, amount=amount, notes=(notes or "").strip()[:1000] or None, status="pending")
    db.session.add(payout)
    db.session.flush()
    db.session.add(
        WalletTransaction(
            user_id=user_id,
            type="hold",
            amount=amount,
            status="completed",
            reference_payout_id=payout.id,
            reason="Reserved for payout request",
        )
    )
    log_event(
        "payout_requested",
        actor_user_id=user_id,
        subject_type="payout_request",
        subject_id=payout.id,
        metadata={"amount_minor": amount},
    )
    db.session.commit()
    current_app.logger.info("payout_requested user_id=%s payout_id=%s amount=%s", user_id, payout.id, amount)
    return payout


def _load_payout(payout_id: str) -> PayoutRequest:
    payout = db.session.get(PayoutRequest, payout_id)
    if payout is None:
        raise PayoutNotFound()
    return payout


def _transition(payout: PayoutRequest, *, from_status: str, to_status: str, admin_id: str, notes: str = "") -> None:
    now = datetime.utcnow()
    values = {"status": to_status, "processed_by": admin_id, "updated_at": now}
    if notes:
        values["admin_notes"] = notes[:1000]
    stamp = {"approved": "approved_at", "denied": "denied_at", "paid": "paid_at"}.get(to_status)
    if stamp:
        values[stamp] = now
    moved = db.session.execute(
        update(PayoutRequest).where(PayoutRequest.id == payout.id, PayoutRequest.status == from_status).values(**values)
    )
    if moved.rowcount != 1:
        db.session.rollback()
        raise InvalidPayoutState(f"Payout is {payout.status}, expected {from_status}")


def _settle_hold(payout: PayoutRequest, *, return_to_available: bool) -> None:
    values = {"pending_balance": UserWallet.pending_balance - payout.amount, "updated_at": datetime.utcnow()}
    if return_to_available:
        values["available_balance"] = UserWallet.available_balance + payout.amount
    db.session.execute(update(UserWallet).where(UserWallet.user_id == payout.user_id).values(**values))


def approve_payout(payout_id: str, admin_id: str, notes: str = "") -> PayoutRequest:
    payout = _load_payout(payout_id)
    _transition(payout, from_status="pending", to_status="approved", admin_id=admin_id, notes=notes)
    # release + debit: the hold is closed out and the money leaves the wallet.
    db.session.add_all(
        [
            WalletTransaction(
                user_id=payout.user_id,
                type="release",
                amount=payout.amount,
                status="completed",
                reference_payout_id=payout.id,
                reason="Payout hold released",
            ),
            WalletTransaction(
                user_id=payout.user_id,
                type="debit",
                amount=payout.amount,
                status="completed",
                reference_payout_id=payout.id,
                reason="Payout approved",
            ),
        ]
    )
    _settle_hold(payout, return_to_available=False)
    log_event("payout_approved", actor_user_id=admin_id, subject_type="payout_request", subject_id=payout.id)
    db.session.commit()
    db.session.refresh(payout)
    return payout


def deny_payout(payout_id: str, admin_id: str, notes: str = "") -> PayoutRequest:
    payout = _load_payout(payout_id)
    _transition(payout, from_status="pending", to_status="denied", admin_id=admin_id, notes=notes)
    db.session.add(
        WalletTransaction(
            user_id=payout.user_id,
            type="release",
            amount=payout.amount,
            status="completed",
            reference_payout_id=payout.id,
            reason="Payout denied; funds returned",
        )
    )
    _settle_hold(payout, return_to_available=True)
    log_event(
        "payout_denied",
        actor_user_id=admin_id,
        subject_type="payout_request",
        subject_id=payout.id,
        metadata={"notes": notes or ""},
    )
    db.session.commit()
    db.session.refresh(payout)
    return payout


def mark_payout_paid(payout_id: str, admin_id: str, notes: str = "") -> PayoutRequest:
    payout = _load_payout(payout_id)
    _transition(payout, from_status="approved", to_status="paid", admin_id=admin_id, notes=notes)
    log_event("payout_paid", actor_user_id=admin_id, subject_type="payout_request", subject_id=payout.id)
    db.session.commit()
    db.session.refresh(payout)
    return payout


def wallet_summary(user_id: str, *, limit: int = 50) -> dict:
    wallet = get_or_create_wallet(user_id)
    db.session.commit()
    txns = (
        WalletTransaction.query.filter_by(user_id=user_id)
        .order_by(WalletTransaction.created_at.desc())
        .limit(max(1, min(limit, 200)))
        .all()
    )
    payouts = (
        PayoutRequest.query.filter_by(user_id=user_id)
        .order_by(PayoutRequest.created_at.desc())
        .limit(20)
        .all()
    )
    return {
        "wallet": wallet.to_dict(),
        "transactions": [t.to_dict() for t in txns],
        "payouts": [p.to_dict() for p in payouts],
    }


def payout_owner(payout: PayoutRequest) -> User | None:
    return db.session.get(User, payout.user_id)
