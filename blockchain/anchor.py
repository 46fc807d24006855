"""
Ballot Anchor Service

Records one irreversible Ethereum transaction per committed ballot. Only the
synthetic ballot reference goes on chain; the voter id never leaves the
server, so the chain proves that a ballot existed at a point in time without
revealing who cast it or what it contained.

The call is synchronous: submit() returns the transaction hash once the
transaction is mined, or raises AnchorError. Nothing here retries.
"""

import json
import logging
import re
import threading
from typing import Optional

from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

import config

logger = logging.getLogger(__name__)

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

ANCHOR_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "recorder", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "ballotRef", "type": "bytes32"},
            {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
        ],
        "name": "VoteRecorded",
        "type": "event",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "ballotRef", "type": "bytes32"}],
        "name": "recordVote",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class AnchorError(RuntimeError):
    pass


def compute_ballot_id(voter_id: int, scores: dict, cast_at: str) -> str:
    """
    Deterministic keccak-256 reference for one vote event.

    scores maps candidate id -> score; pairs are sorted by candidate id so the
    reference does not depend on the order the client sent them in.
    """
    payload = json.dumps(
        {
            "voter": int(voter_id),
            "scores": [[int(c), int(s)] for c, s in sorted(scores.items())],
            "cast_at": cast_at,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return Web3.to_hex(Web3.keccak(text=payload))


class AnchorService:
    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        timeout: float = 30.0,
    ):
        if not private_key:
            raise AnchorError("Signer private key is not configured")
        if not _PRIVATE_KEY_RE.match(private_key):
            raise AnchorError("Signer private key must be a 32-byte hex string with 0x prefix")
        if not contract_address or not Web3.is_address(contract_address):
            raise AnchorError("Anchor contract address is missing or malformed")

        self.timeout = timeout
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.account = self.w3.eth.account.from_key(private_key)
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=ANCHOR_ABI,
        )
        # Nonce assignment must not interleave between request threads
        self._send_lock = threading.Lock()

    def submit(self, voter_id: int, ballot_id: str) -> str:
        """Send recordVote(ballot_id), wait until mined and return the tx hash."""
        ballot_ref = Web3.to_bytes(hexstr=ballot_id)
        if len(ballot_ref) != 32:
            raise AnchorError(f"Ballot reference must be 32 bytes, got {len(ballot_ref)}")

        try:
            with self._send_lock:
                tx = self.contract.functions.recordVote(ballot_ref).build_transaction({
                    "from": self.account.address,
                    "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                    "chainId": self.w3.eth.chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Anchor transaction sent for voter %s: %s", voter_id, Web3.to_hex(tx_hash))
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        except TimeExhausted as e:
            raise AnchorError(f"Anchor transaction not mined within {self.timeout:g}s") from e
        except (Web3Exception, ValueError, OSError) as e:
            raise AnchorError(f"Anchor transaction failed: {e}") from e

        if receipt["status"] != 1:
            raise AnchorError("Anchor transaction reverted")

        mined_hash = Web3.to_hex(receipt["transactionHash"])
        logger.info("Anchor transaction mined in block %s: %s", receipt["blockNumber"], mined_hash)
        return mined_hash


# Singleton instance shared across the application
_anchor_instance: Optional[AnchorService] = None
_anchor_lock = threading.Lock()


def get_anchor_service() -> AnchorService:
    """Build the service from config on first use. Raises AnchorError if misconfigured."""
    global _anchor_instance
    if _anchor_instance is None:
        with _anchor_lock:
            if _anchor_instance is None:
                _anchor_instance = AnchorService(
                    rpc_url=config.ANCHOR_RPC_URL,
                    contract_address=config.ANCHOR_CONTRACT_ADDRESS,
                    private_key=config.ANCHOR_SIGNER_PRIVATE_KEY,
                    timeout=config.ANCHOR_TIMEOUT_SECONDS,
                )
    return _anchor_instance


def set_anchor_service(service):
    """Install a specific anchor implementation (None resets to lazy construction)."""
    global _anchor_instance
    with _anchor_lock:
        _anchor_instance = service
