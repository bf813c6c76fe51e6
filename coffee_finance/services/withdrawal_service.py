"""
Withdrawal service — the approval state machine.

    pending --(1 or 3 admin sign-offs)--> pending_finance
    pending_finance --(finance sign-off)--> approved
    pending | pending_finance --(reject, with reason)--> rejected

Rules:
- Nobody approves their own request, at any stage
- Nobody fills two admin slots on the same request
- Amounts above the threshold need three distinct admins
- Finance cannot approve more than the requester's wallet holds

Every write is conditional on the state that was read (status,
and for admin approvals the slot still being empty). Losing
that race raises ConcurrencyConflictError instead of silently
overwriting another admin's sign-off.

Notifications are queued on self.outbox; the router sends them
after the commit.
"""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coffee_finance.config import FinanceSettings
from coffee_finance.exceptions import (
    AlreadyProcessedError,
    AuthorizationDeniedError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidRequestError,
    NotFoundError,
)
from coffee_finance.models.enums import PaymentChannel, WithdrawalStatus
from coffee_finance.models.user_wallet import UserWallet
from coffee_finance.models.withdrawal_request import WithdrawalRequest
from coffee_finance.schemas.withdrawal import (
    Disbursement,
    WalletCredit,
    WithdrawalCreate,
    WithdrawalTransition,
)
from coffee_finance.services.ledger_service import LedgerService
from coffee_finance.services.notification_service import (
    Notification,
    NotificationChannel,
)

logger = logging.getLogger(__name__)


class WithdrawalService:

    def __init__(
        self,
        db: Session,
        settings: FinanceSettings,
        finance_notify_phone: str | None = None,
    ):
        self.db = db
        self.settings = settings
        self.finance_notify_phone = finance_notify_phone
        self.ledger_service = LedgerService(db)
        self.outbox: list[Notification] = []

    # --- Wallets ---

    def get_wallet_balance(self, user_email: str) -> int:
        wallet = self.db.execute(
            select(UserWallet).where(UserWallet.user_email == user_email)
        ).scalar_one_or_none()
        return wallet.current_balance if wallet else 0

    def credit_wallet(self, request: WalletCredit, actor: str) -> UserWallet:
        """Credit a user's wallet, opening it on first use."""
        wallet = self.db.execute(
            select(UserWallet).where(UserWallet.user_email == request.user_email)
        ).scalar_one_or_none()

        if wallet is None:
            wallet = UserWallet(user_email=request.user_email, current_balance=0)
            self.db.add(wallet)
            self.db.flush()

        self.db.execute(
            update(UserWallet)
            .where(UserWallet.id == wallet.id)
            .values(current_balance=UserWallet.current_balance + request.amount)
            .execution_options(synchronize_session="fetch")
        )
        self.ledger_service.audit("WALLET_CREDITED", actor, {
            "user_email": request.user_email,
            "amount": request.amount,
        })
        self.db.flush()
        return wallet

    # --- Submission ---

    def _validate_disbursement(self, request: WithdrawalCreate) -> None:
        if request.payment_channel == PaymentChannel.MOBILE_MONEY:
            if not (request.phone_number or "").strip():
                raise InvalidRequestError(
                    "Please provide a mobile money phone number"
                )
        elif request.payment_channel == PaymentChannel.BANK:
            details = (
                request.disbursement_bank_name,
                request.disbursement_account_number,
                request.disbursement_account_name,
            )
            if not all((d or "").strip() for d in details):
                raise InvalidRequestError("Please provide complete bank details")

    def submit_withdrawal(
        self, request: WithdrawalCreate, actor: str
    ) -> WithdrawalRequest:
        """
        Create a pending withdrawal request for the acting user.

        All checks run before anything is written.
        """
        self._validate_disbursement(request)

        available = self.get_wallet_balance(actor)
        if request.amount > available:
            raise InsufficientFundsError(
                available=available, required=request.amount
            )

        channel = request.payment_channel
        withdrawal = WithdrawalRequest(
            amount=request.amount,
            reason=request.reason,
            status=WithdrawalStatus.PENDING,
            requested_by=actor,
            payment_channel=channel,
            requires_three_approvals=self.settings.requires_three_approvals(
                request.amount
            ),
        )
        if channel == PaymentChannel.MOBILE_MONEY:
            withdrawal.phone_number = request.phone_number.strip()
        if channel == PaymentChannel.BANK:
            withdrawal.disbursement_bank_name = request.disbursement_bank_name.strip()
            withdrawal.disbursement_account_number = (
                request.disbursement_account_number.strip()
            )
            withdrawal.disbursement_account_name = (
                request.disbursement_account_name.strip()
            )

        self.db.add(withdrawal)
        self.db.flush()
        logger.info(
            "Withdrawal %s of %s submitted by %s (%d admin approvals needed)",
            withdrawal.id, withdrawal.amount, actor,
            withdrawal.approvals_required,
        )
        return withdrawal

    # --- Queries ---

    def get_request(self, request_id: int) -> WithdrawalRequest:
        withdrawal = self.db.get(WithdrawalRequest, request_id)
        if not withdrawal:
            raise NotFoundError(f"Withdrawal request {request_id} not found")
        return withdrawal

    def list_requests(
        self, status: WithdrawalStatus | None = None
    ) -> list[WithdrawalRequest]:
        query = select(WithdrawalRequest).order_by(
            WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()
        )
        if status is not None:
            query = query.where(WithdrawalRequest.status == status)
        return list(self.db.execute(query).scalars().all())

    # --- Eligibility ---

    def can_approve(
        self, withdrawal: WithdrawalRequest, actor: str
    ) -> tuple[bool, str | None]:
        """
        Decide whether actor may approve the request right now.

        Returns (allowed, reason). The reason is shown to the
        operator when approval is refused.
        """
        if withdrawal.requested_by == actor:
            return False, "Cannot approve your own withdrawal request"

        if withdrawal.status == WithdrawalStatus.PENDING:
            if actor in withdrawal.approvers:
                return False, "You have already approved this request"
            if withdrawal.next_open_slot() is None:
                return False, "All required admin approvals are complete"
            return True, None

        if withdrawal.status == WithdrawalStatus.PENDING_FINANCE:
            available = self.get_wallet_balance(withdrawal.requested_by)
            if available < withdrawal.amount:
                return False, (
                    f"Insufficient wallet balance: available={available}, "
                    f"required={withdrawal.amount}"
                )
            return True, None

        return False, f"Request is already {withdrawal.status.value}"

    # --- Transitions ---

    def approve_withdrawal(
        self, request_id: int, actor: str
    ) -> WithdrawalTransition:
        """
        Record actor's approval at whatever stage the request is in.
        """
        withdrawal = self.get_request(request_id)

        if withdrawal.status not in (
            WithdrawalStatus.PENDING, WithdrawalStatus.PENDING_FINANCE
        ):
            raise AlreadyProcessedError(
                f"Withdrawal request {request_id} is already "
                f"{withdrawal.status.value}"
            )

        allowed, reason = self.can_approve(withdrawal, actor)
        if not allowed:
            if withdrawal.status == WithdrawalStatus.PENDING_FINANCE and (
                withdrawal.requested_by != actor
            ):
                raise InsufficientFundsError(
                    available=self.get_wallet_balance(withdrawal.requested_by),
                    required=withdrawal.amount,
                )
            raise AuthorizationDeniedError(reason)

        if withdrawal.status == WithdrawalStatus.PENDING:
            return self._admin_approve(withdrawal, actor)
        return self._finance_approve(withdrawal, actor)

    def _admin_approve(
        self, withdrawal: WithdrawalRequest, actor: str
    ) -> WithdrawalTransition:
        slot = withdrawal.next_open_slot()
        slot_column = getattr(WithdrawalRequest, f"admin_approved_{slot}")
        now = datetime.utcnow()

        values = {
            f"admin_approved_{slot}": True,
            f"admin_approved_{slot}_by": actor,
            f"admin_approved_{slot}_at": now,
            "updated_at": now,
        }
        final_slot = slot == withdrawal.approvals_required
        if final_slot:
            values.update({
                "admin_approved": True,
                "admin_approved_by": actor,
                "admin_approved_at": now,
                "status": WithdrawalStatus.PENDING_FINANCE,
            })

        result = self.db.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal.id,
                WithdrawalRequest.status == WithdrawalStatus.PENDING,
                slot_column.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Approval slot {slot} of withdrawal {withdrawal.id} was "
                f"taken by another approver; reload and try again"
            )

        self.ledger_service.audit("WITHDRAWAL_ADMIN_APPROVED", actor, {
            "request_id": withdrawal.id,
            "slot": slot,
            "final": final_slot,
        })
        logger.info(
            "Withdrawal %s: admin slot %d filled by %s",
            withdrawal.id, slot, actor,
        )
        self.db.flush()
        return WithdrawalTransition(
            id=withdrawal.id,
            next_state=withdrawal.status,
            approvals_collected=withdrawal.approvals_collected,
            approvals_required=withdrawal.approvals_required,
        )

    def _finance_approve(
        self, withdrawal: WithdrawalRequest, actor: str
    ) -> WithdrawalTransition:
        now = datetime.utcnow()
        result = self.db.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal.id,
                WithdrawalRequest.status == WithdrawalStatus.PENDING_FINANCE,
                WithdrawalRequest.admin_approved.is_(True),
            )
            .values(
                status=WithdrawalStatus.APPROVED,
                approved_by=actor,
                approved_at=now,
                finance_approved_by=actor,
                finance_approved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Withdrawal {withdrawal.id} changed while being approved; "
                f"reload and try again"
            )

        # Debit only if the wallet still covers it at write time
        debit = self.db.execute(
            update(UserWallet)
            .where(
                UserWallet.user_email == withdrawal.requested_by,
                UserWallet.current_balance >= withdrawal.amount,
            )
            .values(
                current_balance=UserWallet.current_balance - withdrawal.amount,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        if debit.rowcount != 1:
            raise InsufficientFundsError(
                available=self.get_wallet_balance(withdrawal.requested_by),
                required=withdrawal.amount,
            )

        disbursement = self._disburse(withdrawal)
        self.ledger_service.audit("WITHDRAWAL_APPROVED", actor, {
            "request_id": withdrawal.id,
            "amount": withdrawal.amount,
            "channel": withdrawal.payment_channel.value,
        })
        logger.info(
            "Withdrawal %s of %s approved by finance (%s)",
            withdrawal.id, withdrawal.amount, actor,
        )
        self.db.flush()
        return WithdrawalTransition(
            id=withdrawal.id,
            next_state=withdrawal.status,
            approvals_collected=withdrawal.approvals_collected,
            approvals_required=withdrawal.approvals_required,
            disbursement=disbursement,
        )

    def reject_withdrawal(
        self, request_id: int, actor: str, reason: str
    ) -> WithdrawalTransition:
        """Reject a request that has not been paid out yet."""
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("Rejection reason is required")

        withdrawal = self.get_request(request_id)
        if not withdrawal.can_transition_to(WithdrawalStatus.REJECTED):
            raise AlreadyProcessedError(
                f"Withdrawal request {request_id} is already "
                f"{withdrawal.status.value}"
            )

        now = datetime.utcnow()
        result = self.db.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal.id,
                WithdrawalRequest.status == withdrawal.status,
            )
            .values(
                status=WithdrawalStatus.REJECTED,
                rejected_by=actor,
                rejected_at=now,
                rejection_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Withdrawal {withdrawal.id} changed while being rejected; "
                f"reload and try again"
            )

        if withdrawal.phone_number:
            self.outbox.append(Notification(
                channel=NotificationChannel.SMS,
                recipient=withdrawal.phone_number,
                message=self.settings.sms_rejection_template.format(
                    name=withdrawal.requested_by,
                    type="withdrawal",
                    currency=self.settings.currency,
                    amount=f"{withdrawal.amount:,}",
                    reason=reason,
                    ref=f"WR-{withdrawal.id}",
                ),
            ))

        self.ledger_service.audit("WITHDRAWAL_REJECTED", actor, {
            "request_id": withdrawal.id,
            "reason": reason,
        })
        logger.info("Withdrawal %s rejected by %s", withdrawal.id, actor)
        self.db.flush()
        return WithdrawalTransition(
            id=withdrawal.id,
            next_state=withdrawal.status,
            approvals_collected=withdrawal.approvals_collected,
            approvals_required=withdrawal.approvals_required,
        )

    # --- Disbursement ---

    def _approval_message(self, withdrawal: WithdrawalRequest) -> str:
        return self.settings.sms_approval_template.format(
            name=withdrawal.requested_by,
            type="withdrawal",
            currency=self.settings.currency,
            amount=f"{withdrawal.amount:,}",
            ref=f"WR-{withdrawal.id}",
        )

    def _disburse(self, withdrawal: WithdrawalRequest) -> Disbursement:
        """
        Work out the hand-over for the request's payment channel.

        Nothing here touches money; it produces the cash slip or
        queues the SMS that tells someone to pay.
        """
        amount = f"{self.settings.currency} {withdrawal.amount:,}"
        channel = withdrawal.payment_channel

        if channel == PaymentChannel.CASH:
            return Disbursement(
                channel=channel,
                instruction=f"Pay {amount} in cash and have the slip signed",
                cash_slip=render_cash_slip(withdrawal, amount),
            )

        if channel == PaymentChannel.MOBILE_MONEY:
            self.outbox.append(Notification(
                channel=NotificationChannel.SMS,
                recipient=withdrawal.phone_number,
                message=self._approval_message(withdrawal),
            ))
            return Disbursement(
                channel=channel,
                instruction=f"Send {amount} by mobile money to "
                            f"{withdrawal.phone_number}",
            )

        instruction = (
            f"Transfer {amount} to {withdrawal.disbursement_account_name}, "
            f"{withdrawal.disbursement_bank_name} "
            f"account {withdrawal.disbursement_account_number}"
        )
        if self.finance_notify_phone:
            self.outbox.append(Notification(
                channel=NotificationChannel.SMS,
                recipient=self.finance_notify_phone,
                message=f"Bank transfer due (WR-{withdrawal.id}): {instruction}",
            ))
        else:
            logger.warning(
                "No finance notification number configured; bank transfer "
                "for withdrawal %s must be picked up from the portal",
                withdrawal.id,
            )
        return Disbursement(channel=channel, instruction=instruction)


def render_cash_slip(withdrawal: WithdrawalRequest, amount: str) -> str:
    """Plain-text cash payment slip for printing."""
    approved_at = withdrawal.approved_at or datetime.utcnow()
    return "\n".join([
        "CASH PAYMENT SLIP",
        f"Reference:   WR-{withdrawal.id}",
        f"Date:        {approved_at:%Y-%m-%d %H:%M}",
        f"Payee:       {withdrawal.requested_by}",
        f"Amount:      {amount}",
        f"Reason:      {withdrawal.reason}",
        f"Approved by: {withdrawal.finance_approved_by or ''}",
        "",
        "Received by: ____________________   "
        "Paid by: ____________________",
    ])
