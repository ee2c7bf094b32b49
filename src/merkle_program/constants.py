"""Defining constants shared by the tree, the ledger and the node."""

# Merkle Program - constants.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from typing import Final

# --- Tree Geometry ---
MAX_DEPTH: Final[int] = 3  # tree with 8 leaves max
LEAF_COUNT: Final[int] = 1 << MAX_DEPTH
TREE_SIZE: Final[int] = (1 << (MAX_DEPTH + 1)) - 1  # 15 nodes
FIRST_LEAF_INDEX: Final[int] = LEAF_COUNT - 1
HASH_SIZE: Final[int] = 32  # in bytes
COUNTER_SIZE: Final[int] = 1  # in bytes
TREE_SIZE_BYTES: Final[int] = TREE_SIZE * HASH_SIZE + COUNTER_SIZE
assert LEAF_COUNT < 1 << (8 * COUNTER_SIZE), "Leaf counter must fit a byte."

ZERO_LEAF: Final[bytes] = bytes(HASH_SIZE)


# --- Instruction Tags ---
TAG_INITIALIZE: Final[int] = 0
TAG_INSERT_LEAF: Final[int] = 1
TAG_VERIFY_PROOF: Final[int] = 2

PROOF_COUNT_SIZE: Final[int] = 1  # in bytes
PROOF_INDEX_SIZE: Final[int] = 1  # in bytes


# --- Address Derivation ---
TREE_SEED: Final[bytes] = b"tree"
PDA_MARKER: Final[bytes] = b"ProgramDerivedAddress"
PUBKEY_SIZE: Final[int] = 32  # in bytes
SIGNATURE_SIZE: Final[int] = 64  # in bytes, ed25519


# --- Rent ---
# Mirrors the default rent sysvar of the original host runtime.
ACCOUNT_STORAGE_OVERHEAD: Final[int] = 128  # in bytes
LAMPORTS_PER_BYTE_YEAR: Final[int] = 3480
EXEMPTION_THRESHOLD_YEARS: Final[int] = 2


# --- Host Configuration ---
ENCODING: Final[str] = "utf-8"
DB_NAME: Final[str] = "merkle_program.db"
DEFAULT_PROGRAM_ID: Final[str] = "4d65726b6c6550726f6772616d000000000000000000000000000000000000a1"
NODE_HOST: Final[str] = "127.0.0.1"
NODE_PORT: Final[int] = 8_010
CLIENT_TIMEOUT: Final[int] = 10  # in seconds
