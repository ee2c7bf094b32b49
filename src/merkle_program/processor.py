"""Processor - Entry point dispatching instructions to the Merkle tree."""

# Merkle Program - processor.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING

from merkle_program import ledger
from merkle_program.constants import TREE_SEED
from merkle_program.errors import (
    InvalidArgument,
    MerkleProgramError,
    MissingRequiredSignature,
    NotEnoughAccountKeys,
)
from merkle_program.instructions import (
    InitializeTree,
    InsertLeaf,
    Instruction,
    VerifyProof,
    decode_instruction,
)
from merkle_program.merkle import MerkleTree, check_proof

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from sqlalchemy.orm import Session

logger = logging.getLogger("merkle-program")

stdout_handler = logging.StreamHandler(stream=sys.stdout)
stdout_handler.setFormatter(
    logging.Formatter(
        "[%(name)s] %(asctime)s | %(levelname)s | %(filename)s:%(lineno)s >>> %(message)s",
    ),
)
logger.addHandler(stdout_handler)
logger.setLevel(logging.INFO)
logger.propagate = False


@dataclass(frozen=True)
class AccountMeta:
    """An account reference passed along with an instruction."""

    pubkey: bytes
    is_signer: bool = False
    is_writable: bool = False


def _next_account(accounts: Iterator[AccountMeta]) -> AccountMeta:
    try:
        return next(accounts)
    except StopIteration as e:
        raise NotEnoughAccountKeys("instruction is missing an account") from e


def _load_tree(
    session: Session,
    program_id: bytes,
    account: AccountMeta,
) -> tuple[ledger.TreeAccount, MerkleTree]:
    stored = ledger.get_tree_account(session, account.pubkey)
    if stored.owner != program_id.hex():
        raise InvalidArgument(
            f"account {account.pubkey.hex()} is not owned by this program",
        )
    return stored, MerkleTree.from_bytes(stored.data)


def process_instruction(
    program_id: bytes,
    accounts: Sequence[AccountMeta],
    instruction_data: bytes,
    session: Session,
) -> bytes:
    """Decode and run one instruction, committing only if it succeeds.

    Returns the root of the tree the instruction touched; for a proof it is
    the root the proof recomputed, which equals the tree's root.
    """
    try:
        instruction = decode_instruction(instruction_data)
        root = _dispatch(program_id, accounts, instruction, session)
        session.commit()
    except MerkleProgramError as e:
        session.rollback()
        logger.error(f"Instruction failed with {e.code.name}: {e}")
        raise
    return root


def _dispatch(
    program_id: bytes,
    accounts: Sequence[AccountMeta],
    instruction: Instruction,
    session: Session,
) -> bytes:
    if isinstance(instruction, InitializeTree):
        return initialize_tree(program_id, accounts, session)
    if isinstance(instruction, InsertLeaf):
        return insert_leaf(program_id, accounts, instruction, session)
    return verify_leaf(program_id, accounts, instruction, session)


def initialize_tree(
    program_id: bytes,
    accounts: Sequence[AccountMeta],
    session: Session,
) -> bytes:
    """Allocate the payer's tree account at its derived address."""
    accounts_iter = iter(accounts)
    payer = _next_account(accounts_iter)
    tree_account = _next_account(accounts_iter)

    if not payer.is_signer:
        raise MissingRequiredSignature(
            f"payer {payer.pubkey.hex()} did not sign the instruction",
        )

    expected_pda, bump = ledger.find_program_address(
        [TREE_SEED, payer.pubkey],
        program_id,
    )
    if expected_pda != tree_account.pubkey:
        logger.warning("Invalid PDA provided")
        raise InvalidArgument(
            f"expected tree address {expected_pda.hex()}, got {tree_account.pubkey.hex()}",
        )

    tree = MerkleTree.empty()
    ledger.create_tree_account(
        session,
        address=expected_pda,
        owner=program_id,
        payer=payer.pubkey,
        bump=bump,
        data=tree.to_bytes(),
    )
    logger.info(f"Merkle Tree PDA initialized at {expected_pda.hex()}")
    return tree.root


def insert_leaf(
    program_id: bytes,
    accounts: Sequence[AccountMeta],
    instruction: InsertLeaf,
    session: Session,
) -> bytes:
    """Append a leaf to the referenced tree and store it back."""
    tree_account = _next_account(iter(accounts))
    stored, tree = _load_tree(session, program_id, tree_account)

    tree.insert_leaf(instruction.leaf)
    stored.data = tree.to_bytes()

    logger.info(f"Leaf inserted. Root: {tree.root.hex()}")
    return tree.root


def verify_leaf(
    program_id: bytes,
    accounts: Sequence[AccountMeta],
    instruction: VerifyProof,
    session: Session,
) -> bytes:
    """Check a proof against the current root of the referenced tree."""
    tree_account = _next_account(iter(accounts))
    _, tree = _load_tree(session, program_id, tree_account)

    root = check_proof(
        instruction.leaf,
        instruction.proof,
        tree.root,
        instruction.leaf_index,
    )
    logger.info(f"Proof verified. Root: {root.hex()}")
    return root
