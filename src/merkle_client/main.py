"""Merkle Client - Talks to a Merkle node and checks proofs locally."""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Any, TypedDict, cast

import requests

from merkle_program.constants import CLIENT_TIMEOUT, NODE_HOST, NODE_PORT, TREE_SEED
from merkle_program.errors import MerkleProgramError, from_code
from merkle_program.instructions import InitializeTree, InsertLeaf, VerifyProof
from merkle_program.ledger import find_program_address
from merkle_program.merkle import verify_proof
from merkle_program.signer import Keypair

DEFAULT_NODE_URL = f"http://{NODE_HOST}:{NODE_PORT}"


# --- Data models to match the node's API responses ---
class InstructionResponse(TypedDict):
    """The expected JSON response from the /instruction endpoint."""

    ok: bool
    root: str


class TreeResponse(TypedDict):
    """The expected JSON response from the /trees/<address> endpoint."""

    address: str
    owner: str
    payer: str
    bump: int
    lamports: int
    space: int
    root: str
    next_leaf_index: int
    nodes: list[str]


class ProofResponse(TypedDict):
    """The expected JSON response from the /trees/<address>/proof endpoint."""

    address: str
    leaf_index: int
    root: str
    proof: list[str]


# --- Local Merkle Proof Verification Logic ---
def verify_merkle_proof(
    leaf_hex: str,
    proof: list[str],
    root_hex: str,
    leaf_index: int = 0,
) -> bool:
    """Verify a Merkle proof locally, without asking the node."""
    try:
        return verify_proof(
            bytes.fromhex(leaf_hex),
            [bytes.fromhex(sibling) for sibling in proof],
            bytes.fromhex(root_hex),
            leaf_index,
        )
    except (ValueError, TypeError, IndexError):
        # Malformed hex, a bad digest length, or an index the proof cannot hold
        return False


class MerkleClient:
    """A thin wrapper around the node's HTTP API."""

    def __init__(
        self,
        node_url: str = DEFAULT_NODE_URL,
        timeout: int = CLIENT_TIMEOUT,
    ) -> None:
        """Initialize the client for a single node."""
        self.node_url = node_url.rstrip("/")
        self.timeout = timeout

    def _post(self, route: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = requests.post(
            f"{self.node_url}{route}",
            json=payload,
            timeout=self.timeout,
        )
        return self._unwrap(response)

    def _get(self, route: str) -> dict[str, Any]:
        response = requests.get(
            f"{self.node_url}{route}",
            timeout=self.timeout,
        )
        return self._unwrap(response)

    @staticmethod
    def _unwrap(response: requests.Response) -> dict[str, Any]:
        """Raise the program error a failed response carries, if any."""
        if response.ok:
            return cast("dict[str, Any]", response.json())
        try:
            body = response.json()
        except ValueError:
            response.raise_for_status()
            raise
        if "code" in body:
            raise from_code(body["code"], body.get("message", ""))
        response.raise_for_status()
        raise requests.HTTPError(body.get("error", "request failed"))

    def send_instruction(
        self,
        data: bytes,
        accounts: list[bytes],
        signers: list[Keypair] | None = None,
    ) -> InstructionResponse:
        """Send a raw instruction, signing it with each of ``signers``."""
        signatures = {
            signer.public_key: signer.sign(data) for signer in signers or []
        }
        payload = {
            "data": data.hex(),
            "accounts": [
                {
                    "pubkey": account.hex(),
                    "signature": signatures[account].hex()
                    if account in signatures
                    else None,
                }
                for account in accounts
            ],
        }
        return cast("InstructionResponse", self._post("/instruction", payload))

    def fund(self, public_key: bytes, lamports: int) -> dict[str, Any]:
        return self._post(
            "/wallets",
            {"public_key": public_key.hex(), "lamports": lamports},
        )

    def status(self) -> dict[str, Any]:
        return self._get("/status")

    def tree_address(self, payer: bytes) -> bytes:
        """Derive the payer's tree address under the node's program id."""
        program_id = bytes.fromhex(self.status()["program_id"])
        address, _ = find_program_address([TREE_SEED, payer], program_id)
        return address

    def initialize(self, payer: Keypair, tree_address: bytes) -> InstructionResponse:
        """Create the payer's tree at its derived address."""
        return self.send_instruction(
            InitializeTree().to_bytes(),
            [payer.public_key, tree_address],
            signers=[payer],
        )

    def insert(self, tree_address: bytes, leaf: bytes) -> InstructionResponse:
        return self.send_instruction(
            InsertLeaf(leaf=leaf).to_bytes(),
            [tree_address],
        )

    def verify(
        self,
        tree_address: bytes,
        leaf: bytes,
        proof: list[bytes],
        leaf_index: int = 0,
    ) -> InstructionResponse:
        """Ask the node to check a proof against the tree's root."""
        instruction = VerifyProof(leaf=leaf, proof=proof, leaf_index=leaf_index)
        return self.send_instruction(instruction.to_bytes(), [tree_address])

    def get_tree(self, tree_address: bytes) -> TreeResponse:
        return cast("TreeResponse", self._get(f"/trees/{tree_address.hex()}"))

    def get_proof(self, tree_address: bytes, index: int) -> ProofResponse:
        return cast(
            "ProofResponse",
            self._get(f"/trees/{tree_address.hex()}/proof/{index}"),
        )


def _load_keypair(path: Path) -> Keypair:
    """Load a key pair from its seed file, creating one on first use."""
    if path.exists():
        return Keypair.from_seed(bytes.fromhex(path.read_text().strip()))
    keypair = Keypair.generate()
    path.write_text(keypair.seed().hex())
    return keypair


def _leaf_from_arg(value: str) -> bytes:
    """Accept a 32-byte hex leaf, or hash any other text into one."""
    try:
        leaf = bytes.fromhex(value)
    except ValueError:
        leaf = b""
    if len(leaf) == 32:
        return leaf
    return hashlib.sha256(value.encode("utf-8")).digest()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merkle program client.")
    parser.add_argument("--node", default=DEFAULT_NODE_URL, help="node base URL")
    parser.add_argument(
        "--keypair",
        type=Path,
        default=Path("payer.key"),
        help="file holding the payer's hex encoded private seed",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="fund the payer and create its tree")
    init.add_argument("--lamports", type=int, default=10_000_000)

    insert = commands.add_parser("insert", help="append a leaf")
    insert.add_argument("leaf", help="32-byte hex leaf, or text to hash")

    proof = commands.add_parser("proof", help="fetch and check a proof")
    proof.add_argument("index", type=int)
    proof.add_argument("leaf", help="the leaf inserted at INDEX")

    commands.add_parser("show", help="print the payer's tree")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one client command and print its JSON result."""
    arguments = build_parser().parse_args(argv)
    client = MerkleClient(arguments.node)
    payer = _load_keypair(arguments.keypair)

    try:
        if arguments.command == "init":
            client.fund(payer.public_key, arguments.lamports)
            address = client.tree_address(payer.public_key)
            result: Any = client.initialize(payer, address)
        elif arguments.command == "insert":
            address = client.tree_address(payer.public_key)
            result = client.insert(address, _leaf_from_arg(arguments.leaf))
        elif arguments.command == "proof":
            address = client.tree_address(payer.public_key)
            leaf = _leaf_from_arg(arguments.leaf)
            response = client.get_proof(address, arguments.index)
            proof = [bytes.fromhex(p) for p in response["proof"]]
            result = {
                **response,
                "locally_verified": verify_merkle_proof(
                    leaf.hex(),
                    response["proof"],
                    response["root"],
                    arguments.index,
                ),
                "node_verified": client.verify(
                    address,
                    leaf,
                    proof,
                    arguments.index,
                )["ok"],
            }
        else:
            result = client.get_tree(client.tree_address(payer.public_key))
    except MerkleProgramError as exc:
        print(json.dumps({"error": exc.code.name, "message": str(exc)}))
        return 1
    except requests.RequestException as exc:
        print(json.dumps({"error": "network", "message": str(exc)}))
        return 2

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
