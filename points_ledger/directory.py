"""User lookup and the few identity mutations the ledger depends on."""

import secrets

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError, ValidationError
from .models import RegisterUserRequest, User
from .schema import UserRow
from .store import LedgerStore


def load_user(session: Session, user_id: int) -> UserRow:
    user = session.get(UserRow, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def load_user_by_external_id(session: Session, external_id: int) -> UserRow:
    user = session.execute(
        select(UserRow).where(UserRow.external_id == external_id)
    ).scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User with external id {external_id} not found")
    return user


class UserDirectory:
    def __init__(self, store: LedgerStore):
        self.store = store

    def register(self, request: RegisterUserRequest) -> User:
        if not request.first_name.strip():
            raise ValidationError("first_name is required")

        with self.store.transaction() as session:
            user = UserRow(
                external_id=request.external_id,
                username=request.username,
                first_name=request.first_name.strip(),
                last_name=request.last_name,
                affiliate_code=request.affiliate_code or secrets.token_hex(4).upper(),
                referred_by=request.referred_by,
                is_admin=request.is_admin,
            )
            session.add(user)
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError(
                    f"User with external id {request.external_id} or affiliate code already exists"
                )
            logger.info(f"Registered user {user.id} (external id {user.external_id})")
            return User.from_row(user)

    def get(self, user_id: int) -> User:
        with self.store.transaction() as session:
            return User.from_row(load_user(session, user_id))

    def get_by_external_id(self, external_id: int) -> User:
        with self.store.transaction() as session:
            return User.from_row(load_user_by_external_id(session, external_id))

    def set_banned(self, external_id: int, banned: bool) -> User:
        with self.store.transaction() as session:
            user = load_user_by_external_id(session, external_id)
            user.is_banned = banned
            session.flush()
            logger.info(f"User {user.id} {'banned' if banned else 'unbanned'}")
            return User.from_row(user)

    def promote(self, external_id: int) -> User:
        with self.store.transaction() as session:
            user = load_user_by_external_id(session, external_id)
            user.is_admin = True
            session.flush()
            logger.info(f"User {user.id} promoted to admin")
            return User.from_row(user)
