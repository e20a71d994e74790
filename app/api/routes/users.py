from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.purchases import TransactionOut
from app.schemas.users import GrantOut, UserOut, UserSummaryOut, UserUpdate
from app.services.ledger.service import AccessLedgerService
from app.services.users.service import UserService
from app.utils.currency import format_price

router = APIRouter(prefix="/me", tags=["users"])


def _user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        wallet_address=user.wallet_address,
        farcaster_id=user.farcaster_id,
        email=user.email,
        phone=user.phone,
        created_at=user.created_at,
    )


@router.get("", response_model=UserSummaryOut)
def get_me(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> UserSummaryOut:
    summary = UserService(db).get_summary(user)
    return UserSummaryOut(
        user=_user_out(user),
        total_spent_cents=summary["total_spent_cents"],
        total_spent_label=format_price(summary["total_spent_cents"]),
        grants=[
            GrantOut(
                content_id=g.content_id,
                template_id=g.template_id,
                transaction_id=g.transaction_id,
                access_granted_at=g.access_granted_at,
                expires_at=g.expires_at,
            )
            for g in summary["grants"]
        ],
        transactions_count=len(summary["transactions"]),
    )


@router.patch("", response_model=UserOut)
def update_me(
    body: UserUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> UserOut:
    user = UserService(db).update_profile(
        user,
        farcaster_id=body.farcaster_id,
        email=str(body.email) if body.email is not None else None,
        phone=body.phone,
    )
    return _user_out(user)


@router.get("/transactions", response_model=list[TransactionOut])
def list_my_transactions(
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> list[TransactionOut]:
    return [
        TransactionOut(
            id=tx.id,
            content_id=tx.content_id,
            template_id=tx.template_id,
            amount_cents=tx.amount_cents,
            currency=tx.currency,
            status=tx.status,
            transaction_hash=tx.transaction_hash,
            created_at=tx.created_at,
        )
        for tx in AccessLedgerService(db).list_transactions(user.id, limit=min(max(limit, 1), 200))
    ]
