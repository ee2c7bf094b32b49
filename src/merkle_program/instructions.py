"""Instructions - Binary payload codec for the Merkle program."""

# Merkle Program - instructions.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

from enum import IntEnum
from typing import Union

from pydantic import BaseModel, field_validator, model_validator

from merkle_program.constants import (
    HASH_SIZE,
    PROOF_COUNT_SIZE,
    PROOF_INDEX_SIZE,
    TAG_INITIALIZE,
    TAG_INSERT_LEAF,
    TAG_VERIFY_PROOF,
)
from merkle_program.errors import (
    InvalidInstructionData,
    InvalidInstructionDataLength,
    InvalidLeafLength,
    ProofCountMismatch,
)

MAX_PROOF_COUNT = (1 << (8 * PROOF_COUNT_SIZE)) - 1
PROOF_HEADER_SIZE = HASH_SIZE + PROOF_COUNT_SIZE


class InstructionTag(IntEnum):
    """Represent the possible instruction types."""

    INITIALIZE = TAG_INITIALIZE
    INSERT_LEAF = TAG_INSERT_LEAF
    VERIFY_PROOF = TAG_VERIFY_PROOF


class InitializeTree(BaseModel):
    """Create the tree account derived from the payer."""

    def to_bytes(self) -> bytes:
        """Encode this into a tagged payload."""
        return bytes([InstructionTag.INITIALIZE])

    @staticmethod
    def from_body(body: bytes) -> InitializeTree:
        # Trailing bytes carry no meaning and are ignored.
        return InitializeTree()


class InsertLeaf(BaseModel):
    """Append one leaf to a tree."""

    leaf: bytes

    @field_validator("leaf")
    @classmethod
    def check_leaf(cls, value: bytes) -> bytes:
        if len(value) != HASH_SIZE:
            raise InvalidLeafLength(
                f"leaf must be {HASH_SIZE} bytes, got {len(value)}",
            )
        return value

    def to_bytes(self) -> bytes:
        """Encode this into a tagged payload."""
        return bytes([InstructionTag.INSERT_LEAF]) + self.leaf

    @staticmethod
    def from_body(body: bytes) -> InsertLeaf:
        """Decode the body of an insert request: exactly one leaf."""
        if len(body) != HASH_SIZE:
            raise InvalidLeafLength(
                f"leaf must be {HASH_SIZE} bytes, got {len(body)}",
            )
        return InsertLeaf(leaf=body)


class VerifyProof(BaseModel):
    """Check that a leaf and its siblings fold into the tree's root.

    Wire layout of the body::

        leaf (32) | n (1) | n siblings (32 each) | leaf_index (1, optional)
    """

    leaf: bytes
    proof: list[bytes]
    leaf_index: int = 0

    @field_validator("leaf")
    @classmethod
    def check_leaf(cls, value: bytes) -> bytes:
        if len(value) != HASH_SIZE:
            raise InvalidLeafLength(
                f"leaf must be {HASH_SIZE} bytes, got {len(value)}",
            )
        return value

    @field_validator("proof")
    @classmethod
    def check_siblings(cls, value: list[bytes]) -> list[bytes]:
        if len(value) > MAX_PROOF_COUNT:
            raise ProofCountMismatch(
                f"at most {MAX_PROOF_COUNT} siblings fit a proof",
            )
        if any(len(sibling) != HASH_SIZE for sibling in value):
            raise ProofCountMismatch(f"siblings must be {HASH_SIZE} bytes each")
        return value

    @field_validator("leaf_index")
    @classmethod
    def check_leaf_index(cls, value: int) -> int:
        if not 0 <= value < 1 << (8 * PROOF_INDEX_SIZE):
            raise InvalidInstructionData(f"leaf index {value} does not fit a byte")
        return value

    @model_validator(mode="after")
    def check_directions(self) -> VerifyProof:
        if self.leaf_index >= 1 << len(self.proof):
            raise ProofCountMismatch(
                f"leaf index {self.leaf_index} needs more than {len(self.proof)} siblings",
            )
        return self

    def to_bytes(self) -> bytes:
        """Encode this into a tagged payload.

        The leaf index byte is only written when it is not zero, so proofs
        without direction bits keep the short layout.
        """
        data = (
            bytes([InstructionTag.VERIFY_PROOF])
            + self.leaf
            + len(self.proof).to_bytes(PROOF_COUNT_SIZE, "little")
            + b"".join(self.proof)
        )
        if self.leaf_index:
            data += self.leaf_index.to_bytes(PROOF_INDEX_SIZE, "little")
        return data

    @staticmethod
    def from_body(body: bytes) -> VerifyProof:
        """Decode the body of a verification request.

        The body is ``33 + 32n`` bytes, or ``34 + 32n`` when it ends with the
        optional leaf index byte that sets the left/right direction per level.

        Raises:
            InvalidInstructionDataLength: If the header is incomplete.
            ProofCountMismatch: If the length is neither ``33 + 32n`` nor
                ``34 + 32n`` for the declared count ``n``, or if the trailing
                leaf index needs more than ``n`` direction bits.

        """
        if len(body) < PROOF_HEADER_SIZE:
            raise InvalidInstructionDataLength(
                f"proof payload needs at least {PROOF_HEADER_SIZE} bytes, got {len(body)}",
            )

        leaf = body[:HASH_SIZE]
        count = int.from_bytes(body[HASH_SIZE:PROOF_HEADER_SIZE], "little")
        siblings_end = PROOF_HEADER_SIZE + count * HASH_SIZE

        if len(body) == siblings_end:
            leaf_index = 0
        elif len(body) == siblings_end + PROOF_INDEX_SIZE:
            leaf_index = int.from_bytes(body[siblings_end:], "little")
        else:
            raise ProofCountMismatch(
                f"{count} siblings need {siblings_end} bytes, got {len(body)}",
            )

        proof = [
            body[i : i + HASH_SIZE]
            for i in range(PROOF_HEADER_SIZE, siblings_end, HASH_SIZE)
        ]
        return VerifyProof(leaf=leaf, proof=proof, leaf_index=leaf_index)


Instruction = Union[InitializeTree, InsertLeaf, VerifyProof]

_DECODERS = {
    InstructionTag.INITIALIZE: InitializeTree.from_body,
    InstructionTag.INSERT_LEAF: InsertLeaf.from_body,
    InstructionTag.VERIFY_PROOF: VerifyProof.from_body,
}


def decode_instruction(data: bytes) -> Instruction:
    """Split off the tag byte and decode the rest of the payload."""
    if not data:
        raise InvalidInstructionData("empty instruction payload")

    tag, body = data[0], data[1:]
    try:
        decoder = _DECODERS[InstructionTag(tag)]
    except ValueError as e:
        raise InvalidInstructionData(f"unknown instruction tag {tag}") from e
    return decoder(bytes(body))
