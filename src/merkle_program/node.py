"""Merkle Node - HTTP host running the Merkle program over a local ledger."""

# Merkle Program - node.py
# Copyright (C) 2025 The Axiom Contributors
# This program is licensed under the Peer Production License (PPL).
# See the LICENSE file for full details.

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from pydantic import BaseModel, ValidationError

from merkle_program import ledger
from merkle_program.errors import (
    AccountNotFound,
    ErrorCode,
    MerkleProgramError,
)
from merkle_program.merkle import MerkleTree
from merkle_program.processor import AccountMeta, process_instruction
from merkle_program.signer import verify_signature

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

logger = logging.getLogger("merkle-node")

stdout_handler = logging.StreamHandler(stream=sys.stdout)
stdout_handler.setFormatter(
    logging.Formatter(
        "[%(name)s] %(asctime)s | %(levelname)s | %(filename)s:%(lineno)s >>> %(message)s",
    ),
)
logger.addHandler(stdout_handler)
logger.setLevel(logging.INFO)
logger.propagate = False


class SerializedAccount(BaseModel):
    """An account reference as sent by a client."""

    pubkey: str
    signature: str | None = None


class InstructionRequest(BaseModel):
    """Body of a POST /instruction request."""

    accounts: list[SerializedAccount]
    data: str


class FundRequest(BaseModel):
    """Body of a POST /wallets request."""

    public_key: str
    lamports: int


def _to_account_meta(account: SerializedAccount, data: bytes) -> AccountMeta:
    """Turn a serialized reference into an account, checking its signature."""
    pubkey = bytes.fromhex(account.pubkey)
    is_signer = account.signature is not None and verify_signature(
        bytes.fromhex(account.signature),
        data,
        pubkey,
    )
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=True)


def _error_response(error: MerkleProgramError) -> tuple[Response, int]:
    status = 404 if isinstance(error, AccountNotFound) else 400
    return jsonify(error.to_dict()), status


def _bad_request(message: str) -> tuple[Response, int]:
    return jsonify({"error": message}), 400


def create_app(
    program_id: bytes,
    session_maker: sessionmaker = ledger.SessionMaker,
) -> Flask:
    """Build the Flask app serving one program id."""
    app = Flask(__name__)
    CORS(app)
    # The program assumes exclusive access to a tree for each call.
    process_lock = threading.Lock()

    @app.route("/instruction", methods=["POST"])
    def handle_instruction() -> Response | tuple[Response, int]:
        """Run a raw instruction against the ledger."""
        try:
            payload = request.get_json(force=True, silent=True)
            body = InstructionRequest.model_validate(payload)
            data = bytes.fromhex(body.data)
            accounts = [_to_account_meta(a, data) for a in body.accounts]
        except (ValidationError, ValueError, TypeError) as exc:
            return _bad_request(f"malformed instruction request: {exc}")

        with process_lock, session_maker() as session:
            try:
                root = process_instruction(program_id, accounts, data, session)
            except MerkleProgramError as exc:
                return _error_response(exc)
        return jsonify({"ok": True, "root": root.hex()})

    @app.route("/wallets", methods=["POST"])
    def handle_fund_wallet() -> Response | tuple[Response, int]:
        """Credit lamports to a payer wallet."""
        try:
            payload = request.get_json(force=True, silent=True)
            body = FundRequest.model_validate(payload)
            public_key = bytes.fromhex(body.public_key)
        except (ValidationError, ValueError, TypeError) as exc:
            return _bad_request(f"malformed funding request: {exc}")

        with process_lock, session_maker() as session:
            try:
                wallet = ledger.fund_wallet(session, public_key, body.lamports)
            except MerkleProgramError as exc:
                return _error_response(exc)
            except ValueError as exc:
                return _bad_request(str(exc))
            session.commit()
            return jsonify(
                {"public_key": wallet.public_key, "lamports": wallet.lamports},
            )

    @app.route("/trees/<address>", methods=["GET"])
    def handle_get_tree(address: str) -> Response | tuple[Response, int]:
        """Return the decoded state of a tree account."""
        try:
            raw_address = bytes.fromhex(address)
        except ValueError:
            return _bad_request("address must be hex encoded")

        with session_maker() as session:
            try:
                account = ledger.get_tree_account(session, raw_address)
                tree = MerkleTree.from_bytes(account.data)
            except MerkleProgramError as exc:
                return _error_response(exc)
            return jsonify(
                {
                    **account.to_dict(),
                    "root": tree.root.hex(),
                    "next_leaf_index": tree.next_leaf_index,
                    "nodes": [node.hex() for node in tree.nodes],
                },
            )

    @app.route("/trees/<address>/proof/<int:index>", methods=["GET"])
    def handle_get_proof(address: str, index: int) -> Response | tuple[Response, int]:
        """Return the current sibling path of one leaf."""
        try:
            raw_address = bytes.fromhex(address)
        except ValueError:
            return _bad_request("address must be hex encoded")

        with session_maker() as session:
            try:
                account = ledger.get_tree_account(session, raw_address)
                tree = MerkleTree.from_bytes(account.data)
            except MerkleProgramError as exc:
                return _error_response(exc)

        try:
            proof = tree.get_proof(index)
        except IndexError as exc:
            logger.error(f"Error generating Merkle proof: {exc}")
            return jsonify({"error": str(exc)}), 404
        return jsonify(
            {
                "address": address,
                "leaf_index": index,
                "root": tree.root.hex(),
                "proof": [sibling.hex() for sibling in proof],
            },
        )

    @app.route("/status", methods=["GET"])
    def handle_get_status() -> Response:
        """Report the program id and the number of stored trees."""
        with session_maker() as session:
            trees = ledger.list_tree_accounts(session)
            return jsonify(
                {
                    "status": "ok",
                    "program_id": program_id.hex(),
                    "tree_count": len(trees),
                    "error_codes": {code.name: int(code) for code in ErrorCode},
                },
            )

    return app
