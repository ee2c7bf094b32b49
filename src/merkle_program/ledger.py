"""Ledger - Account storage for the Merkle program host."""

# Merkle Program - ledger.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

import hashlib
import logging
import sys
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    DateTime,
    Engine,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    create_engine,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from merkle_program.constants import (
    ACCOUNT_STORAGE_OVERHEAD,
    DB_NAME,
    EXEMPTION_THRESHOLD_YEARS,
    LAMPORTS_PER_BYTE_YEAR,
    PDA_MARKER,
    PUBKEY_SIZE,
)
from merkle_program.errors import (
    AccountAlreadyInitialized,
    AccountNotFound,
    InsufficientFunds,
    InvalidArgument,
)

logger = logging.getLogger("ledger")

stdout_handler = logging.StreamHandler(stream=sys.stdout)
stdout_handler.setFormatter(
    logging.Formatter(
        "[%(name)s] %(asctime)s | %(levelname)s | %(filename)s:%(lineno)s >>> %(message)s",
    ),
)
logger.addHandler(stdout_handler)
logger.setLevel(logging.INFO)
logger.propagate = False

ENGINE = create_engine(f"sqlite:///{DB_NAME}")
SessionMaker = sessionmaker(bind=ENGINE)

MAX_BUMP = 255


class Base(DeclarativeBase):
    """DeclarativeBase subclass."""

    __slots__ = ()


class Wallet(Base):
    """A payer identity holding lamports to fund new accounts."""

    __tablename__ = "wallets"
    public_key: Mapped[str] = mapped_column(String, primary_key=True)
    lamports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    accounts: Mapped[list[TreeAccount]] = relationship(back_populates="payer")


class TreeAccount(Base):
    """A program-owned storage region holding one encoded tree."""

    __tablename__ = "tree_accounts"
    address: Mapped[str] = mapped_column(String, primary_key=True)
    owner: Mapped[str] = mapped_column(String, nullable=False)
    payer_pubkey: Mapped[str] = mapped_column(
        String,
        ForeignKey("wallets.public_key"),
        nullable=False,
    )
    bump: Mapped[int] = mapped_column(Integer, nullable=False)
    lamports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    payer: Mapped[Wallet] = relationship(back_populates="accounts")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the account header, leaving out the raw data."""
        return {
            "address": self.address,
            "owner": self.owner,
            "payer": self.payer_pubkey,
            "bump": self.bump,
            "lamports": self.lamports,
            "space": len(self.data),
        }


def initialize_database(engine: Engine) -> None:
    """Ensure the database file and ALL required tables exist."""
    Base.metadata.create_all(engine)
    logger.info("initialized database")


# --- Address Derivation ---
def create_program_address(
    seeds: Sequence[bytes],
    bump: int,
    program_id: bytes,
) -> bytes:
    """Hash seeds, bump and program id into a candidate address."""
    if len(program_id) != PUBKEY_SIZE:
        raise InvalidArgument(f"program id must be {PUBKEY_SIZE} bytes")
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(bytes([bump]))
    hasher.update(program_id)
    hasher.update(PDA_MARKER)
    return hasher.digest()


# ed25519 field prime and curve constant, RFC 8032 section 5.1.
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(key: bytes) -> bool:
    """Check whether 32 bytes decode to a point of the ed25519 curve.

    Wallet keys are curve points; program addresses must not be, so nobody
    holds a private key for them.
    """
    if len(key) != PUBKEY_SIZE:
        return False
    y = int.from_bytes(key, "little") & ((1 << 255) - 1)
    if y >= _P:
        return False
    y2 = y * y % _P
    x2 = (y2 - 1) * pow(_D * y2 + 1, _P - 2, _P) % _P
    # x exists iff x^2 is zero or a quadratic residue (Euler's criterion).
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def find_program_address(
    seeds: Sequence[bytes],
    program_id: bytes,
) -> tuple[bytes, int]:
    """Find the first bump, counting down, whose address is off the curve.

    The result only depends on the seeds and the program id.
    """
    for bump in range(MAX_BUMP, -1, -1):
        address = create_program_address(seeds, bump, program_id)
        if not is_on_curve(address):
            return address, bump
    raise InvalidArgument("unable to find a viable program address bump seed")


# --- Rent ---
def minimum_balance(space: int) -> int:
    """Return the lamports that make an account of ``space`` bytes rent exempt."""
    return (
        (ACCOUNT_STORAGE_OVERHEAD + space)
        * LAMPORTS_PER_BYTE_YEAR
        * EXEMPTION_THRESHOLD_YEARS
    )


# --- Wallets ---
def fund_wallet(session: Session, public_key: bytes, lamports: int) -> Wallet:
    """Credit lamports to a wallet, creating it on first use.

    Raises:
        InvalidArgument: If the key is not an ed25519 point, which covers
            every program-derived address.

    """
    if lamports < 0:
        raise ValueError("cannot fund a wallet with a negative amount")
    if not is_on_curve(public_key):
        raise InvalidArgument(
            f"{public_key.hex()} is not an ed25519 public key",
        )
    wallet = session.get(Wallet, public_key.hex())
    if wallet is None:
        wallet = Wallet(public_key=public_key.hex(), lamports=0)
        session.add(wallet)
    wallet.lamports += lamports
    logger.info(f"Funded wallet {public_key.hex()} with {lamports} lamports.")
    return wallet


def debit(session: Session, public_key: bytes, lamports: int) -> Wallet:
    """Take lamports from a wallet, refusing to overdraw it."""
    wallet = session.get(Wallet, public_key.hex())
    balance = wallet.lamports if wallet is not None else 0
    if wallet is None or balance < lamports:
        raise InsufficientFunds(
            f"wallet {public_key.hex()} holds {balance} lamports, needs {lamports}",
        )
    wallet.lamports -= lamports
    return wallet


# --- Tree Accounts ---
def create_tree_account(
    session: Session,
    *,
    address: bytes,
    owner: bytes,
    payer: bytes,
    bump: int,
    data: bytes,
) -> TreeAccount:
    """Allocate a rent-exempt account, paid for by ``payer``."""
    if session.get(TreeAccount, address.hex()) is not None:
        raise AccountAlreadyInitialized(f"account {address.hex()} already exists")

    lamports = minimum_balance(len(data))
    debit(session, payer, lamports)

    account = TreeAccount(
        address=address.hex(),
        owner=owner.hex(),
        payer_pubkey=payer.hex(),
        bump=bump,
        lamports=lamports,
        data=data,
    )
    session.add(account)
    logger.info(
        f"Allocated {len(data)} bytes at {address.hex()} for {lamports} lamports.",
    )
    return account


def get_tree_account(session: Session, address: bytes) -> TreeAccount:
    """Return the account stored at ``address``."""
    account = session.get(TreeAccount, address.hex())
    if account is None:
        raise AccountNotFound(f"no account at {address.hex()}")
    return account


def list_tree_accounts(session: Session) -> list[TreeAccount]:
    """Return every stored tree account, oldest first."""
    return (
        session.query(TreeAccount).order_by(TreeAccount.created_at.asc()).all()
    )
