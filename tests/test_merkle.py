# Merkle Program - test_merkle.py

from __future__ import annotations

import hashlib

import pytest

from merkle_program.constants import (
    FIRST_LEAF_INDEX,
    LEAF_COUNT,
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
from merkle_program.merkle import (
    MerkleTree,
    check_proof,
    combine,
    compute_root,
    default_nodes,
    leaf_hash,
    verify,
    verify_proof,
)


def make_leaf(i: int) -> bytes:
    return hashlib.sha256(f"leaf-{i}".encode()).digest()


def reference_root(leaves: list[bytes]) -> bytes:
    """Root of a full tree where unused slots hold the zero filler."""
    level = [leaf_hash(leaf) for leaf in leaves]
    level += [ZERO_LEAF] * (LEAF_COUNT - len(level))
    while len(level) > 1:
        level = [combine(level[i], level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


@pytest.fixture
def full_tree() -> tuple[MerkleTree, list[bytes]]:
    """Return a tree holding eight leaves, and those leaves."""
    tree = MerkleTree.empty()
    leaves = [make_leaf(i) for i in range(LEAF_COUNT)]
    for leaf in leaves:
        tree.insert_leaf(leaf)
    return tree, leaves


def test_combine_is_order_sensitive() -> None:
    a, b = make_leaf(1), make_leaf(2)
    assert combine(a, b) != combine(b, a)
    assert combine(a, b) == hashlib.sha256(a + b).digest()


def test_combine_rejects_short_digests() -> None:
    with pytest.raises(ValueError):
        combine(b"short", make_leaf(0))


def test_empty_tree_is_consistent() -> None:
    tree = MerkleTree.empty()
    assert tree.next_leaf_index == 0
    for i in range(FIRST_LEAF_INDEX, TREE_SIZE):
        assert tree.nodes[i] == ZERO_LEAF
    for i in range(FIRST_LEAF_INDEX):
        assert tree.nodes[i] == combine(tree.nodes[2 * i + 1], tree.nodes[2 * i + 2])
    assert tree.root == default_nodes()[-1]
    assert tree.root == reference_root([])


def test_inserts_fill_capacity_then_overflow() -> None:
    tree = MerkleTree.empty()
    for i in range(LEAF_COUNT):
        tree.insert_leaf(make_leaf(i))
        assert tree.next_leaf_index == i + 1
    assert tree.is_full

    before = tree.to_bytes()
    with pytest.raises(TreeOverflow):
        tree.insert_leaf(make_leaf(99))
    assert tree.to_bytes() == before


@pytest.mark.parametrize("length", [0, 31, 33, 64])
def test_invalid_leaf_length_changes_nothing(length: int) -> None:
    tree = MerkleTree.empty()
    tree.insert_leaf(make_leaf(0))
    before = tree.to_bytes()

    with pytest.raises(InvalidLeafLength):
        tree.insert_leaf(b"\x01" * length)
    assert tree.to_bytes() == before


@pytest.mark.parametrize("count", range(LEAF_COUNT + 1))
def test_partial_root_matches_zero_filled_tree(count: int) -> None:
    tree = MerkleTree.empty()
    leaves = [make_leaf(i) for i in range(count)]
    for leaf in leaves:
        tree.insert_leaf(leaf)
    assert tree.root == reference_root(leaves)


def test_insert_rewrites_only_the_authentication_path() -> None:
    tree = MerkleTree.empty()
    tree.insert_leaf(make_leaf(0))
    before = list(tree.nodes)

    tree.insert_leaf(make_leaf(1))
    changed = {i for i in range(TREE_SIZE) if tree.nodes[i] != before[i]}
    # Leaf 1 sits at slot 8, whose path is 8 -> 3 -> 1 -> 0.
    assert changed == {8, 3, 1, 0}


def test_verify_with_empty_proof_is_leaf_hash() -> None:
    leaf = make_leaf(7)
    assert verify(leaf, []) == hashlib.sha256(leaf).digest()


def test_verify_folds_siblings_left_to_right() -> None:
    leaf = make_leaf(0)
    s1, s2, s3 = make_leaf(1), make_leaf(2), make_leaf(3)
    expected = combine(combine(combine(leaf_hash(leaf), s1), s2), s3)
    assert verify(leaf, [s1, s2, s3]) == expected
    assert compute_root(leaf, [s1, s2, s3]) == expected


def test_proofs_round_trip_on_full_tree(full_tree: tuple[MerkleTree, list[bytes]]) -> None:
    tree, leaves = full_tree
    for k, leaf in enumerate(leaves):
        proof = tree.get_proof(k)
        assert len(proof) == 3
        assert compute_root(leaf, proof, k) == tree.root
        assert verify_proof(leaf, proof, tree.root, k)


def test_proofs_round_trip_at_insertion_time() -> None:
    tree = MerkleTree.empty()
    for k in range(LEAF_COUNT):
        leaf = make_leaf(k)
        tree.insert_leaf(leaf)
        assert check_proof(leaf, tree.get_proof(k), tree.root, k) == tree.root


def test_leftmost_leaf_needs_no_direction_bits(
    full_tree: tuple[MerkleTree, list[bytes]],
) -> None:
    tree, leaves = full_tree
    assert verify(leaves[0], tree.get_proof(0)) == tree.root


def test_wrong_index_or_sibling_is_rejected(
    full_tree: tuple[MerkleTree, list[bytes]],
) -> None:
    tree, leaves = full_tree
    proof = tree.get_proof(5)

    assert not verify_proof(leaves[5], proof, tree.root, 4)
    assert not verify_proof(leaves[4], proof, tree.root, 5)

    tampered = [proof[0], make_leaf(42), proof[2]]
    assert not verify_proof(leaves[5], tampered, tree.root, 5)
    with pytest.raises(RootMismatch):
        check_proof(leaves[5], tampered, tree.root, 5)


def test_leaf_index_must_fit_the_proof() -> None:
    with pytest.raises(IndexError):
        compute_root(make_leaf(0), [make_leaf(1)], 2)


def test_get_proof_rejects_unfilled_slots() -> None:
    tree = MerkleTree.empty()
    tree.insert_leaf(make_leaf(0))
    with pytest.raises(IndexError):
        tree.get_proof(1)
    with pytest.raises(IndexError):
        tree.get_proof(-1)


def test_account_layout(full_tree: tuple[MerkleTree, list[bytes]]) -> None:
    tree, _ = full_tree
    data = tree.to_bytes()
    assert len(data) == TREE_SIZE_BYTES == 481
    assert data[:32] == tree.root
    assert data[-1] == LEAF_COUNT

    decoded = MerkleTree.from_bytes(data)
    assert decoded.nodes == tree.nodes
    assert decoded.next_leaf_index == tree.next_leaf_index


def test_from_bytes_validates_buffer() -> None:
    with pytest.raises(InvalidAccountDataLength):
        MerkleTree.from_bytes(bytes(TREE_SIZE_BYTES - 1))

    data = bytearray(MerkleTree.empty().to_bytes())
    data[-1] = LEAF_COUNT + 1
    with pytest.raises(InvalidAccountData):
        MerkleTree.from_bytes(bytes(data))
