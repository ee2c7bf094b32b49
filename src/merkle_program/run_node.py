"""Command line entry point starting a Merkle node."""

import logging
import os
import sys
from argparse import ArgumentParser
from typing import Final

from pydantic import BaseModel, field_validator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from merkle_program.constants import (
    DB_NAME,
    DEFAULT_PROGRAM_ID,
    NODE_HOST,
    NODE_PORT,
    PUBKEY_SIZE,
)
from merkle_program.ledger import initialize_database
from merkle_program.node import create_app

logger = logging.getLogger("merkle-run-node")

stdout_handler = logging.StreamHandler(stream=sys.stdout)
stdout_handler.setFormatter(
    logging.Formatter(
        "[%(name)s] %(asctime)s | %(levelname)s | %(filename)s:%(lineno)s >>> %(message)s",
    ),
)

logger.addHandler(stdout_handler)
logger.setLevel(logging.INFO)
logger.propagate = False


class Config(BaseModel):
    """Used as a checkpoint between user input and software."""

    host: str
    port: int
    program_id: str
    database: str

    @field_validator("program_id")
    @classmethod
    def check_program_id(cls, value: str) -> str:
        if len(bytes.fromhex(value)) != PUBKEY_SIZE:
            raise ValueError(f"program id must be {PUBKEY_SIZE} hex-encoded bytes")
        return value


COMPUTED_HOST: Final[str] = os.environ.get("MERKLE_NODE_HOST", NODE_HOST)
COMPUTED_PORT: Final[int] = int(os.environ.get("MERKLE_NODE_PORT", NODE_PORT))
COMPUTED_PROGRAM_ID: Final[str] = os.environ.get(
    "MERKLE_PROGRAM_ID",
    DEFAULT_PROGRAM_ID,
)

parser = ArgumentParser(
    prog="merkle-node",
    description=f"""
Run the Merkle program behind an HTTP API.

Defaults are computed like this:

    If supplied by CLI, use that.
    If not, look into MERKLE_NODE_HOST, MERKLE_NODE_PORT and MERKLE_PROGRAM_ID.
    If not defined, use the standard defaults ({NODE_HOST}, {NODE_PORT}).

""",
)
parser.add_argument(
    "-a",
    "--addr",
    default=COMPUTED_HOST,
    help="IP address the API binds to",
)
parser.add_argument(
    "-p",
    "--port",
    default=COMPUTED_PORT,
    type=int,
    help="port the API listens on",
)
parser.add_argument(
    "--program-id",
    default=COMPUTED_PROGRAM_ID,
    help="hex encoded id of the program owning the tree accounts",
)
parser.add_argument(
    "--db",
    default=DB_NAME,
    help="path of the SQLite ledger file",
)


def build_config(argv: list[str] | None = None) -> Config:
    """Parse the command line into a validated config."""
    arguments = parser.parse_args(argv)
    return Config(
        host=arguments.addr,
        port=arguments.port,
        program_id=arguments.program_id,
        database=arguments.db,
    )


def main(argv: list[str] | None = None) -> None:
    """Handle running a Merkle node from the command line."""
    config = build_config(argv)
    logger.info(f"running with config {config}")

    engine = create_engine(f"sqlite:///{config.database}")
    initialize_database(engine)
    app = create_app(
        bytes.fromhex(config.program_id),
        sessionmaker(bind=engine),
    )

    try:
        app.run(
            host=config.host,
            port=config.port,
            debug=False,
            use_reloader=False,
        )
    except KeyboardInterrupt:
        logger.info("user interrupted the node. goodbye! ^-^")


if __name__ == "__main__":
    main()
