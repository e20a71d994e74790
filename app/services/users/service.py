from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.user import User
from app.services.ledger.service import AccessLedgerService


def normalize_wallet(wallet_address: str) -> str:
    return (wallet_address or "").strip().lower()


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_or_create_by_wallet(self, wallet_address: str, farcaster_id: str | None = None) -> User:
        address = normalize_wallet(wallet_address)
        if not address:
            raise ValueError("wallet_address is required")
        user = self.get_by_wallet(address)
        if user:
            if farcaster_id is not None and user.farcaster_id != farcaster_id:
                user.farcaster_id = farcaster_id
                self.db.add(user)
                self.db.commit()
                self.db.refresh(user)
            return user
        user = User(wallet_address=address, farcaster_id=farcaster_id)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # параллельный запрос уже создал пользователя с этим кошельком
            self.db.rollback()
            return self.db.query(User).filter(User.wallet_address == address).one()
        self.db.refresh(user)
        return user

    def get_by_wallet(self, wallet_address: str) -> User | None:
        return (
            self.db.query(User)
            .filter(User.wallet_address == normalize_wallet(wallet_address))
            .one_or_none()
        )

    def get(self, user_id: str) -> User | None:
        return self.db.query(User).filter(User.id == user_id).one_or_none()

    def update_profile(
        self,
        user: User,
        farcaster_id: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> User:
        """Меняются только переданные поля; кошелёк не меняется никогда."""
        if farcaster_id is not None:
            user.farcaster_id = farcaster_id
        if email is not None:
            user.email = email
        if phone is not None:
            user.phone = phone
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_summary(self, user: User) -> dict:
        ledger = AccessLedgerService(self.db)
        transactions = ledger.list_transactions(user.id)
        grants = ledger.list_grants(user.id)
        return {
            "user": user,
            "transactions": transactions,
            "grants": grants,
            "total_spent_cents": ledger.total_spent(user.id),
        }
