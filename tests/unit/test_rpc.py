"""Unit tests for the JSON-RPC chain client."""

import json
from typing import Any, Dict, List

import pytest
import responses

from deployment_orchestrator.constants import DETERMINISTIC_DEPLOYMENT_PROXY
from deployment_orchestrator.exceptions import (
    CallError,
    ConfigurationError,
    ConfirmationTimeout,
    RpcError,
    SubmissionError,
)
from deployment_orchestrator.rpc import JsonRpcChainClient, create2_address, rpc_request
from deployment_orchestrator.types import NetworkConfig

RPC_URL = "http://test-rpc.example.com"
SENDER = "0x" + "5" * 40
SALT = "0x" + "0" * 63 + "1"
PREDICTED = "0x" + "ab" * 20
FEE_HANDLER_INITCODE = "0x6080" + b"FeeHandler".hex()
TX_HASH = "0x" + "cd" * 32


class StaticEncoder:
    def encode_deployment(self, artifact_kind: str, args: List[Any]) -> str:
        return "0x6080" + artifact_kind.encode().hex()

    def encode_call(self, method: str, args: List[Any]) -> str:
        return "0x" + method.encode().hex()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def fake_node(results: Dict[str, Any], log: List[Dict[str, Any]]):
    """Callback answering each RPC method from results; callables get the params."""

    def callback(request):
        body = json.loads(request.body)
        log.append(body)
        result = results[body["method"]]
        if callable(result):
            result = result(body["params"])
        return (200, {}, json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": result}))

    return callback


class TestRpcRequest:
    """Test the rpc_request function."""

    @responses.activate
    def test_returns_result(self):
        responses.add(
            responses.POST, RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": "0x10"}
        )

        assert rpc_request(RPC_URL, "eth_blockNumber", []) == "0x10"

    @responses.activate
    def test_request_format(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node({"eth_getCode": "0x"}, log),
            content_type="application/json",
        )

        rpc_request(RPC_URL, "eth_getCode", [PREDICTED, "latest"])

        assert log[0]["jsonrpc"] == "2.0"
        assert log[0]["method"] == "eth_getCode"
        assert log[0]["params"] == [PREDICTED, "latest"]
        assert isinstance(log[0]["id"], int)

    @responses.activate
    def test_rpc_error(self):
        responses.add(
            responses.POST,
            RPC_URL,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "nonce too low"}},
        )

        with pytest.raises(RpcError, match="nonce too low"):
            rpc_request(RPC_URL, "eth_sendTransaction", [{}])

    @responses.activate
    def test_http_error(self):
        responses.add(responses.POST, RPC_URL, body="Bad gateway", status=502)

        with pytest.raises(RpcError):
            rpc_request(RPC_URL, "eth_blockNumber", [])

    @responses.activate
    def test_non_json_body(self):
        responses.add(responses.POST, RPC_URL, body="not json", status=200)

        with pytest.raises(RpcError):
            rpc_request(RPC_URL, "eth_blockNumber", [])

    def test_connection_error(self):
        with responses.RequestsMock():
            # No registered response: requests raises ConnectionError
            with pytest.raises(RpcError, match="Network error"):
                rpc_request(RPC_URL, "eth_blockNumber", [])


class TestJsonRpcChainClient:
    """Test deterministic deployment over JSON-RPC."""

    def make_client(self, clock: FakeClock) -> JsonRpcChainClient:
        return JsonRpcChainClient(
            RPC_URL,
            SENDER,
            StaticEncoder(),
            poll_interval=1.0,
            confirmation_timeout=10.0,
            sleep=clock.sleep,
            clock=clock,
        )

    @responses.activate
    def test_deploys_through_proxy(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_getCode": "0x",
                    "eth_sendTransaction": TX_HASH,
                    "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x1"},
                    "eth_blockNumber": "0x11",
                },
                log,
            ),
            content_type="application/json",
        )

        receipt = self.make_client(FakeClock()).deploy("FeeHandler", [8500], SALT, 2)

        assert receipt.address == create2_address(
            DETERMINISTIC_DEPLOYMENT_PROXY, SALT, FEE_HANDLER_INITCODE
        )
        assert receipt.transaction_hash == TX_HASH
        assert receipt.confirmed_at_block == 0x11

        sent = [c for c in log if c["method"] == "eth_sendTransaction"][0]["params"][0]
        assert sent["to"] == DETERMINISTIC_DEPLOYMENT_PROXY
        assert sent["from"] == SENDER
        # Salt followed by initcode
        assert sent["data"] == "0x" + "0" * 63 + "1" + "6080" + b"FeeHandler".hex()

    @responses.activate
    def test_waits_for_confirmation_depth(self):
        heads = iter(["0x10", "0x11", "0x12"])
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_getCode": "0x",
                    "eth_sendTransaction": TX_HASH,
                    "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x1"},
                    "eth_blockNumber": lambda params: next(heads),
                },
                log,
            ),
            content_type="application/json",
        )
        clock = FakeClock()

        receipt = self.make_client(clock).deploy("FeeHandler", [8500], SALT, 3)

        assert receipt.confirmed_at_block == 0x12
        assert clock.now == 2.0

    @responses.activate
    def test_existing_code_is_not_resubmitted(self):
        heads = iter(["0x20", "0x20", "0x21"])
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_getCode": "0x6080604052",
                    "eth_blockNumber": lambda params: next(heads),
                },
                log,
            ),
            content_type="application/json",
        )
        clock = FakeClock()

        receipt = self.make_client(clock).deploy("FeeHandler", [8500], SALT, 2)

        assert receipt.address == create2_address(
            DETERMINISTIC_DEPLOYMENT_PROXY, SALT, FEE_HANDLER_INITCODE
        )
        assert receipt.transaction_hash == ""
        # Head 0x20 when code was found, so two confirmations means 0x21
        assert receipt.confirmed_at_block == 0x21
        assert clock.now == 1.0
        methods = [c["method"] for c in log]
        assert "eth_sendTransaction" not in methods
        assert "eth_call" not in methods
        assert log[0]["params"] == [receipt.address, "latest"]

    @responses.activate
    def test_existing_code_waits_for_depth_within_timeout(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node({"eth_getCode": "0x6080604052", "eth_blockNumber": "0x20"}, log),
            content_type="application/json",
        )

        with pytest.raises(ConfirmationTimeout):
            self.make_client(FakeClock()).deploy("FeeHandler", [8500], SALT, 3)

    @responses.activate
    def test_confirmation_timeout(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_getCode": "0x",
                    "eth_sendTransaction": TX_HASH,
                    "eth_getTransactionReceipt": None,
                },
                log,
            ),
            content_type="application/json",
        )

        with pytest.raises(ConfirmationTimeout):
            self.make_client(FakeClock()).deploy("FeeHandler", [8500], SALT, 2)

    @responses.activate
    def test_reverted_deployment(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_getCode": "0x",
                    "eth_sendTransaction": TX_HASH,
                    "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x0"},
                },
                log,
            ),
            content_type="application/json",
        )

        with pytest.raises(SubmissionError, match="reverted"):
            self.make_client(FakeClock()).deploy("FeeHandler", [8500], SALT, 2)

    @responses.activate
    def test_call_sends_to_artifact(self):
        log: List[Dict[str, Any]] = []
        responses.add_callback(
            responses.POST,
            RPC_URL,
            callback=fake_node(
                {
                    "eth_sendTransaction": TX_HASH,
                    "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x1"},
                    "eth_blockNumber": "0x10",
                },
                log,
            ),
            content_type="application/json",
        )

        tx_hash = self.make_client(FakeClock()).call(PREDICTED, "updateTokenAllowance", [])

        assert tx_hash == TX_HASH
        sent = log[0]["params"][0]
        assert sent["to"] == PREDICTED
        assert sent["data"] == "0x" + b"updateTokenAllowance".hex()

    @responses.activate
    def test_failed_call_is_call_error(self):
        responses.add(
            responses.POST,
            RPC_URL,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": 3, "message": "execution reverted"}},
        )

        with pytest.raises(CallError):
            self.make_client(FakeClock()).call(PREDICTED, "setOracleID", [])


class TestCreate2Address:
    """Test local CREATE2 address computation against EIP-1014 examples."""

    @pytest.mark.parametrize(
        "deployer, salt, initcode, expected",
        [
            (
                "0x0000000000000000000000000000000000000000",
                "0x" + "00" * 32,
                "0x00",
                "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38",
            ),
            (
                "0xdeadbeef00000000000000000000000000000000",
                "0x" + "00" * 32,
                "0x00",
                "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3",
            ),
            (
                "0x00000000000000000000000000000000deadbeef",
                "0x00000000000000000000000000000000000000000000000000000000cafebabe",
                "0xdeadbeef",
                "0x60f3f640a8508fC6a86d45DF051962668E1e8AC7",
            ),
        ],
    )
    def test_eip1014_examples(self, deployer: str, salt: str, initcode: str, expected: str):
        assert create2_address(deployer, salt, initcode) == expected.lower()

    def test_short_salt_is_left_padded(self):
        assert create2_address(DETERMINISTIC_DEPLOYMENT_PROXY, "0x1", "0x00") == create2_address(
            DETERMINISTIC_DEPLOYMENT_PROXY, SALT, "0x00"
        )

    def test_oversized_salt(self):
        with pytest.raises(ValueError):
            create2_address(DETERMINISTIC_DEPLOYMENT_PROXY, "0x" + "00" * 33, "0x00")


class TestFromNetwork:
    """Test building a client from network configuration."""

    def test_reads_rpc_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("TEST_RPC_URL", RPC_URL)
        network = NetworkConfig(421614, "testnet", SALT, rpc_url_env="TEST_RPC_URL")

        client = JsonRpcChainClient.from_network(network, SENDER, StaticEncoder())

        assert client.rpc_url == RPC_URL

    def test_unset_variable(self, monkeypatch):
        monkeypatch.delenv("TEST_RPC_URL", raising=False)
        network = NetworkConfig(421614, "testnet", SALT, rpc_url_env="TEST_RPC_URL")

        with pytest.raises(ConfigurationError, match="TEST_RPC_URL"):
            JsonRpcChainClient.from_network(network, SENDER, StaticEncoder())

    def test_network_without_rpc_variable(self):
        network = NetworkConfig(31337, "hardhat", SALT)

        with pytest.raises(ConfigurationError):
            JsonRpcChainClient.from_network(network, SENDER, StaticEncoder())
