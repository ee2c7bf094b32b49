from __future__ import annotations

import hashlib
from collections.abc import Generator

import pytest
from flask.testing import FlaskClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from merkle_program.constants import TREE_SEED
from merkle_program.errors import ErrorCode
from merkle_program.instructions import InitializeTree, InsertLeaf, VerifyProof
from merkle_program.ledger import Base, find_program_address
from merkle_program.merkle import MerkleTree
from merkle_program.node import create_app
from merkle_program.signer import Keypair

engine = create_engine("sqlite:///:memory:")
SessionLocal = sessionmaker(bind=engine)

PROGRAM_ID = b"\x7e" * 32


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """Return a test client bound to a fresh in-memory ledger."""
    Base.metadata.create_all(engine)
    app = create_app(PROGRAM_ID, SessionLocal)
    app.config["TESTING"] = True
    try:
        yield app.test_client()
    finally:
        Base.metadata.drop_all(engine)


@pytest.fixture
def payer() -> Keypair:
    return Keypair.generate()


def tree_address(payer: Keypair) -> bytes:
    address, _ = find_program_address([TREE_SEED, payer.public_key], PROGRAM_ID)
    return address


def send(client: FlaskClient, data: bytes, accounts: list[dict]) -> tuple[int, dict]:
    response = client.post(
        "/instruction",
        json={"data": data.hex(), "accounts": accounts},
    )
    return response.status_code, response.get_json()


def initialize(client: FlaskClient, payer: Keypair) -> tuple[int, dict]:
    data = InitializeTree().to_bytes()
    return send(
        client,
        data,
        [
            {"pubkey": payer.public_key.hex(), "signature": payer.sign(data).hex()},
            {"pubkey": tree_address(payer).hex()},
        ],
    )


def make_leaf(i: int) -> bytes:
    return hashlib.sha256(f"leaf-{i}".encode()).digest()


def test_status(client: FlaskClient) -> None:
    body = client.get("/status").get_json()
    assert body["program_id"] == PROGRAM_ID.hex()
    assert body["tree_count"] == 0
    assert body["error_codes"]["ROOT_MISMATCH"] == 4


def test_initialize_insert_and_prove(client: FlaskClient, payer: Keypair) -> None:
    client.post(
        "/wallets",
        json={"public_key": payer.public_key.hex(), "lamports": 10_000_000},
    )
    status, body = initialize(client, payer)
    assert status == 200
    assert body["root"] == MerkleTree.empty().root.hex()

    address = tree_address(payer)
    reference = MerkleTree.empty()
    for i in range(4):
        reference.insert_leaf(make_leaf(i))
        status, body = send(
            client,
            InsertLeaf(leaf=make_leaf(i)).to_bytes(),
            [{"pubkey": address.hex()}],
        )
        assert status == 200
        assert body["root"] == reference.root.hex()

    tree = client.get(f"/trees/{address.hex()}").get_json()
    assert tree["next_leaf_index"] == 4
    assert tree["root"] == reference.root.hex()
    assert len(tree["nodes"]) == 15

    proof = client.get(f"/trees/{address.hex()}/proof/2").get_json()
    assert proof["proof"] == [p.hex() for p in reference.get_proof(2)]

    instruction = VerifyProof(
        leaf=make_leaf(2),
        proof=[bytes.fromhex(p) for p in proof["proof"]],
        leaf_index=2,
    )
    status, body = send(client, instruction.to_bytes(), [{"pubkey": address.hex()}])
    assert status == 200
    assert body == {"ok": True, "root": reference.root.hex()}


def test_forged_signature_is_not_a_signer(client: FlaskClient, payer: Keypair) -> None:
    client.post(
        "/wallets",
        json={"public_key": payer.public_key.hex(), "lamports": 10_000_000},
    )
    data = InitializeTree().to_bytes()
    impostor = Keypair.generate()
    status, body = send(
        client,
        data,
        [
            {"pubkey": payer.public_key.hex(), "signature": impostor.sign(data).hex()},
            {"pubkey": tree_address(payer).hex()},
        ],
    )
    assert status == 400
    assert body["code"] == ErrorCode.MISSING_REQUIRED_SIGNATURE


def test_unfunded_payer(client: FlaskClient, payer: Keypair) -> None:
    status, body = initialize(client, payer)
    assert status == 400
    assert body["error"] == "INSUFFICIENT_FUNDS"


def test_missing_tree_is_not_found(client: FlaskClient) -> None:
    status, body = send(
        client,
        InsertLeaf(leaf=make_leaf(0)).to_bytes(),
        [{"pubkey": (b"\x01" * 32).hex()}],
    )
    assert status == 404
    assert body["code"] == ErrorCode.ACCOUNT_NOT_FOUND

    assert client.get(f"/trees/{'ab' * 32}").status_code == 404


def test_malformed_requests(client: FlaskClient) -> None:
    status, body = send(client, b"", [])
    assert status == 400
    assert body["error"] == "INVALID_INSTRUCTION_DATA"

    response = client.post("/instruction", json={"data": "not hex", "accounts": []})
    assert response.status_code == 400

    response = client.get("/trees/zz")
    assert response.status_code == 400


def test_proof_for_unfilled_leaf(client: FlaskClient, payer: Keypair) -> None:
    client.post(
        "/wallets",
        json={"public_key": payer.public_key.hex(), "lamports": 10_000_000},
    )
    initialize(client, payer)
    response = client.get(f"/trees/{tree_address(payer).hex()}/proof/0")
    assert response.status_code == 404


def test_tree_address_cannot_be_funded_as_a_wallet(
    client: FlaskClient,
    payer: Keypair,
) -> None:
    address = tree_address(payer)
    response = client.post(
        "/wallets",
        json={"public_key": address.hex(), "lamports": 1},
    )
    assert response.status_code == 400
    assert response.get_json()["code"] == ErrorCode.INVALID_ARGUMENT

    client.post(
        "/wallets",
        json={"public_key": payer.public_key.hex(), "lamports": 10_000_000},
    )
    status, _ = initialize(client, payer)
    assert status == 200
    tree = client.get(f"/trees/{address.hex()}").get_json()
    assert tree["payer"] == payer.public_key.hex()


@pytest.mark.parametrize("route", ["/instruction", "/wallets"])
def test_non_json_body_gets_json_error(client: FlaskClient, route: str) -> None:
    response = client.post(route, data="{not json", content_type="application/json")
    assert response.status_code == 400
    assert response.is_json
    assert "error" in response.get_json()

    response = client.post(route, data="plain text", content_type="text/plain")
    assert response.status_code == 400
    assert response.is_json
