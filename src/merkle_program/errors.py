"""Errors - The closed set of failures a Merkle program call can produce."""

# Merkle Program - errors.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

import enum


class ErrorCode(enum.IntEnum):
    """Stable numeric codes, returned to callers of the program."""

    INVALID_LEAF_LENGTH = 0
    TREE_OVERFLOW = 1
    INVALID_INSTRUCTION_DATA_LENGTH = 2
    PROOF_COUNT_MISMATCH = 3
    ROOT_MISMATCH = 4
    INVALID_INSTRUCTION_DATA = 5
    INVALID_ACCOUNT_DATA_LENGTH = 6
    INVALID_ACCOUNT_DATA = 7
    INVALID_ARGUMENT = 8
    ACCOUNT_ALREADY_INITIALIZED = 9
    ACCOUNT_NOT_FOUND = 10
    NOT_ENOUGH_ACCOUNT_KEYS = 11
    INSUFFICIENT_FUNDS = 12
    MISSING_REQUIRED_SIGNATURE = 13


class MerkleProgramError(Exception):
    """Base class of every error raised by the program."""

    __slots__ = ()

    code: ErrorCode

    def to_dict(self) -> dict[str, str | int]:
        """Serialize the error for an API response."""
        return {"error": self.code.name, "code": int(self.code), "message": str(self)}


class InvalidLeafLength(MerkleProgramError):
    """Leaf payload is not exactly one digest long."""

    code = ErrorCode.INVALID_LEAF_LENGTH


class TreeOverflow(MerkleProgramError):
    """Every leaf slot is already taken."""

    code = ErrorCode.TREE_OVERFLOW


class InvalidInstructionDataLength(MerkleProgramError):
    """Proof payload is too short to hold a leaf and a count."""

    code = ErrorCode.INVALID_INSTRUCTION_DATA_LENGTH


class ProofCountMismatch(MerkleProgramError):
    """Proof payload length disagrees with its declared sibling count."""

    code = ErrorCode.PROOF_COUNT_MISMATCH


class RootMismatch(MerkleProgramError):
    """A proof recomputed a root other than the expected one."""

    code = ErrorCode.ROOT_MISMATCH


class InvalidInstructionData(MerkleProgramError):
    """Empty payload or unknown instruction tag."""

    code = ErrorCode.INVALID_INSTRUCTION_DATA


class InvalidAccountDataLength(MerkleProgramError):
    """Stored tree buffer does not have the expected size."""

    code = ErrorCode.INVALID_ACCOUNT_DATA_LENGTH


class InvalidAccountData(MerkleProgramError):
    """Stored tree buffer has the right size but an impossible content."""

    code = ErrorCode.INVALID_ACCOUNT_DATA


class InvalidArgument(MerkleProgramError):
    """An account reference does not match what the program derived."""

    code = ErrorCode.INVALID_ARGUMENT


class AccountAlreadyInitialized(MerkleProgramError):
    code = ErrorCode.ACCOUNT_ALREADY_INITIALIZED


class AccountNotFound(MerkleProgramError):
    code = ErrorCode.ACCOUNT_NOT_FOUND


class NotEnoughAccountKeys(MerkleProgramError):
    code = ErrorCode.NOT_ENOUGH_ACCOUNT_KEYS


class InsufficientFunds(MerkleProgramError):
    code = ErrorCode.INSUFFICIENT_FUNDS


class MissingRequiredSignature(MerkleProgramError):
    code = ErrorCode.MISSING_REQUIRED_SIGNATURE


ERRORS_BY_CODE: dict[ErrorCode, type[MerkleProgramError]] = {
    cls.code: cls
    for cls in (
        InvalidLeafLength,
        TreeOverflow,
        InvalidInstructionDataLength,
        ProofCountMismatch,
        RootMismatch,
        InvalidInstructionData,
        InvalidAccountDataLength,
        InvalidAccountData,
        InvalidArgument,
        AccountAlreadyInitialized,
        AccountNotFound,
        NotEnoughAccountKeys,
        InsufficientFunds,
        MissingRequiredSignature,
    )
}


def from_code(code: int, message: str = "") -> MerkleProgramError:
    """Rebuild an error from its numeric code, e.g. on the client side."""
    return ERRORS_BY_CODE[ErrorCode(code)](message)
