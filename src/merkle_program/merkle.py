# Merkle Program - merkle.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.
"""A fixed-depth Merkle Tree engine with incremental roots and proofs.

The tree lives in a flat array: index 0 is the root, node ``i`` has its
children at ``2i + 1`` and ``2i + 2``, and the last ``LEAF_COUNT`` slots are
leaves. Leaves are stored as ``leaf_hash(leaf)``, which is also where proof
verification starts, so a proof taken from the tree always folds back into
its root.
"""

from __future__ import annotations

import hashlib
import hmac
from functools import lru_cache
from typing import TYPE_CHECKING

from merkle_program.constants import (
    COUNTER_SIZE,
    FIRST_LEAF_INDEX,
    HASH_SIZE,
    LEAF_COUNT,
    MAX_DEPTH,
    TREE_SIZE,
    TREE_SIZE_BYTES,
    ZERO_LEAF,
)
from merkle_program.errors import (
    InvalidAccountData,
    InvalidAccountDataLength,
    InvalidLeafLength,
    RootMismatch,
    TreeOverflow,
)

if TYPE_CHECKING:
    from collections.abc import Sequence


def combine(left: bytes, right: bytes) -> bytes:
    """Hash two digests into their parent digest using SHA-256.

    The order is significant: ``combine(a, b) != combine(b, a)`` for
    ``a != b``.
    """
    if len(left) != HASH_SIZE or len(right) != HASH_SIZE:
        raise ValueError(
            f"expected two {HASH_SIZE}-byte digests, got {len(left)} and {len(right)}",
        )
    return hashlib.sha256(left + right).digest()


def leaf_hash(leaf: bytes) -> bytes:
    """Hash raw leaf bytes into the digest stored in a leaf slot."""
    return hashlib.sha256(leaf).digest()


@lru_cache(maxsize=1)
def default_nodes() -> tuple[bytes, ...]:
    """Return the digest of an empty subtree for each height 0..MAX_DEPTH."""
    defaults = [ZERO_LEAF]
    for _ in range(MAX_DEPTH):
        defaults.append(combine(defaults[-1], defaults[-1]))
    return tuple(defaults)


def parent_of(index: int) -> int:
    return (index - 1) // 2


def sibling_of(index: int) -> int:
    # Left children sit at odd indices.
    return index + 1 if index % 2 == 1 else index - 1


def _height_of(index: int) -> int:
    """Distance between a node and the leaf level."""
    depth = (index + 1).bit_length() - 1
    return MAX_DEPTH - depth


class MerkleTree:
    """An append-only Merkle tree of fixed capacity.

    Instances are cheap, plain containers: ``nodes`` and ``next_leaf_index``
    are the whole state, and ``to_bytes``/``from_bytes`` map it to the
    account layout the host stores.
    """

    __slots__ = ("next_leaf_index", "nodes")

    def __init__(self, nodes: list[bytes], next_leaf_index: int = 0) -> None:
        """Initialize the tree from an existing node array."""
        if len(nodes) != TREE_SIZE:
            raise ValueError(f"a tree holds exactly {TREE_SIZE} nodes")
        self.nodes: list[bytes] = nodes
        self.next_leaf_index: int = next_leaf_index

    @classmethod
    def empty(cls) -> MerkleTree:
        """Build a tree where every slot holds its empty-subtree digest."""
        defaults = default_nodes()
        return cls([defaults[_height_of(i)] for i in range(TREE_SIZE)])

    @property
    def root(self) -> bytes:
        """The digest summarizing the whole tree."""
        return self.nodes[0]

    @property
    def is_full(self) -> bool:
        return self.next_leaf_index >= LEAF_COUNT

    def insert_leaf(self, leaf: bytes) -> None:
        """Append a leaf and recompute its authentication path.

        Raises:
            InvalidLeafLength: If the leaf is not a single digest long.
            TreeOverflow: If every leaf slot is already taken.

        """
        if len(leaf) != HASH_SIZE:
            raise InvalidLeafLength(
                f"leaf must be {HASH_SIZE} bytes, got {len(leaf)}",
            )

        leaf_pos = FIRST_LEAF_INDEX + self.next_leaf_index
        if leaf_pos >= TREE_SIZE:
            raise TreeOverflow(f"tree is full ({LEAF_COUNT} leaves)")

        self.nodes[leaf_pos] = leaf_hash(leaf)
        current = leaf_pos
        while current > 0:
            parent = parent_of(current)
            self.nodes[parent] = combine(
                self.nodes[2 * parent + 1],
                self.nodes[2 * parent + 2],
            )
            current = parent

        self.next_leaf_index += 1

    def get_proof(self, index: int) -> list[bytes]:
        """Generate the sibling path of the leaf at a given index.

        The first entry is the sibling next to the leaf, the last one the
        child of the root that is not on the path.
        """
        if index < 0 or index >= self.next_leaf_index:
            raise IndexError("Leaf index out of range.")

        proof: list[bytes] = []
        current = FIRST_LEAF_INDEX + index
        while current > 0:
            proof.append(self.nodes[sibling_of(current)])
            current = parent_of(current)
        return proof

    def to_bytes(self) -> bytes:
        """Encode the tree into the account layout: nodes, then counter."""
        return b"".join(self.nodes) + self.next_leaf_index.to_bytes(
            COUNTER_SIZE,
            "little",
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> MerkleTree:
        """Decode an account buffer into a tree.

        Raises:
            InvalidAccountDataLength: If the buffer has the wrong size.
            InvalidAccountData: If the leaf counter is out of range.

        """
        if len(data) != TREE_SIZE_BYTES:
            raise InvalidAccountDataLength(
                f"tree account must be {TREE_SIZE_BYTES} bytes, got {len(data)}",
            )

        next_leaf_index = int.from_bytes(data[-COUNTER_SIZE:], "little")
        if next_leaf_index > LEAF_COUNT:
            raise InvalidAccountData(
                f"leaf counter {next_leaf_index} exceeds capacity {LEAF_COUNT}",
            )

        nodes = [
            bytes(data[i : i + HASH_SIZE])
            for i in range(0, TREE_SIZE * HASH_SIZE, HASH_SIZE)
        ]
        return cls(nodes, next_leaf_index)

    def __repr__(self) -> str:
        return (
            f"MerkleTree(root={self.root.hex()}, "
            f"next_leaf_index={self.next_leaf_index})"
        )


def verify(leaf: bytes, proof: Sequence[bytes]) -> bytes:
    """Fold a leaf with its siblings, always keeping the running digest left."""
    current_hash = leaf_hash(leaf)
    for sibling in proof:
        current_hash = combine(current_hash, sibling)
    return current_hash


def compute_root(
    leaf: bytes,
    proof: Sequence[bytes],
    leaf_index: int = 0,
) -> bytes:
    """Recompute the root a proof commits to.

    Bit ``k`` of ``leaf_index`` tells whether the running digest is the right
    child at level ``k``. With ``leaf_index == 0`` this is exactly ``verify``.
    """
    if leaf_index < 0 or leaf_index >= 1 << len(proof):
        raise IndexError(
            f"leaf index {leaf_index} does not fit a proof of {len(proof)} siblings",
        )

    current_hash = leaf_hash(leaf)
    for level, sibling in enumerate(proof):
        if (leaf_index >> level) & 1:
            current_hash = combine(sibling, current_hash)
        else:
            current_hash = combine(current_hash, sibling)
    return current_hash


def verify_proof(
    leaf: bytes,
    proof: Sequence[bytes],
    expected_root: bytes,
    leaf_index: int = 0,
) -> bool:
    """Verify a proof against a root without needing the tree."""
    computed = compute_root(leaf, proof, leaf_index)
    return hmac.compare_digest(computed, expected_root)


def check_proof(
    leaf: bytes,
    proof: Sequence[bytes],
    expected_root: bytes,
    leaf_index: int = 0,
) -> bytes:
    """Like ``verify_proof`` but raise on mismatch; return the computed root."""
    computed = compute_root(leaf, proof, leaf_index)
    if not hmac.compare_digest(computed, expected_root):
        raise RootMismatch(
            f"computed root {computed.hex()} != expected {expected_root.hex()}",
        )
    return computed
