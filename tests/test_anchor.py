"""
Unit tests for the Ethereum anchor service. The JSON-RPC side is replaced
with mocks; nothing here talks to a node.
"""

from unittest.mock import MagicMock

import pytest
from web3.exceptions import TimeExhausted

import anchor as anchor_module
from anchor import AnchorError, AnchorService, compute_ballot_id

PRIVATE_KEY = "0x" + "11" * 32
CONTRACT = "0x" + "22" * 20
MINED_HASH = bytes.fromhex("ab" * 32)
BALLOT_ID = "0x" + "cd" * 32


@pytest.fixture
def service():
    svc = AnchorService("http://127.0.0.1:8545", CONTRACT, PRIVATE_KEY, timeout=5)
    svc.w3 = MagicMock()
    svc.w3.eth.chain_id = 1337
    svc.w3.eth.get_transaction_count.return_value = 7
    svc.w3.eth.send_raw_transaction.return_value = MINED_HASH
    svc.w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "transactionHash": MINED_HASH,
        "blockNumber": 12,
    }
    svc.contract = MagicMock()
    svc.account = MagicMock()
    svc.account.address = "0x" + "33" * 20
    return svc


class TestBallotId:
    def test_deterministic(self):
        a = compute_ballot_id(1, {2: 8, 3: 3}, "2026-01-01T00:00:00")
        b = compute_ballot_id(1, {3: 3, 2: 8}, "2026-01-01T00:00:00")
        assert a == b
        assert a.startswith("0x") and len(a) == 66

    def test_depends_on_every_input(self):
        base = compute_ballot_id(1, {2: 8}, "t")
        assert compute_ballot_id(2, {2: 8}, "t") != base
        assert compute_ballot_id(1, {2: 7}, "t") != base
        assert compute_ballot_id(1, {2: 8}, "u") != base


class TestConfiguration:
    def test_missing_key(self):
        with pytest.raises(AnchorError):
            AnchorService("http://x", CONTRACT, "", timeout=1)

    def test_key_without_prefix(self):
        with pytest.raises(AnchorError):
            AnchorService("http://x", CONTRACT, "11" * 32, timeout=1)

    def test_bad_contract_address(self):
        with pytest.raises(AnchorError):
            AnchorService("http://x", "0x1234", PRIVATE_KEY, timeout=1)

    def test_singleton_override(self, service):
        anchor_module.set_anchor_service(service)
        try:
            assert anchor_module.get_anchor_service() is service
        finally:
            anchor_module.set_anchor_service(None)

    def test_singleton_built_from_config(self, monkeypatch):
        monkeypatch.setattr(anchor_module.config, "ANCHOR_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setattr(anchor_module.config, "ANCHOR_SIGNER_PRIVATE_KEY", PRIVATE_KEY)
        anchor_module.set_anchor_service(None)
        try:
            svc = anchor_module.get_anchor_service()
            assert isinstance(svc, AnchorService)
            assert anchor_module.get_anchor_service() is svc
        finally:
            anchor_module.set_anchor_service(None)


class TestSubmit:
    def test_returns_mined_hash(self, service):
        tx_hash = service.submit(1, BALLOT_ID)

        assert tx_hash == "0x" + "ab" * 32
        service.contract.functions.recordVote.assert_called_once_with(bytes.fromhex("cd" * 32))
        tx_params = service.contract.functions.recordVote.return_value.build_transaction.call_args[0][0]
        assert tx_params["nonce"] == 7
        assert tx_params["chainId"] == 1337
        service.w3.eth.wait_for_transaction_receipt.assert_called_once_with(MINED_HASH, timeout=5)

    def test_timeout(self, service):
        service.w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined")
        with pytest.raises(AnchorError, match="not mined within"):
            service.submit(1, BALLOT_ID)

    def test_node_unreachable(self, service):
        service.w3.eth.get_transaction_count.side_effect = ConnectionError("refused")
        with pytest.raises(AnchorError):
            service.submit(1, BALLOT_ID)
        service.w3.eth.send_raw_transaction.assert_not_called()

    def test_reverted_transaction(self, service):
        service.w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 0,
            "transactionHash": MINED_HASH,
            "blockNumber": 12,
        }
        with pytest.raises(AnchorError, match="reverted"):
            service.submit(1, BALLOT_ID)

    def test_rejects_short_reference(self, service):
        with pytest.raises(AnchorError):
            service.submit(1, "0x1234")
        service.contract.functions.recordVote.assert_not_called()
