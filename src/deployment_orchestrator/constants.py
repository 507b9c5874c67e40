"""Configuration constants for deployment-orchestrator library."""

# Salt handed to the deterministic deployment proxy (CREATE2)
DEFAULT_DEPLOYMENT_SALT = (
    "0x90d8084deab30c2a37c45e8d47f49f2f7965183cb6990a98943ef94940681de3"
)

# Arachnid deterministic deployment proxy, same address on every EVM chain
DETERMINISTIC_DEPLOYMENT_PROXY = "0x4e59b44847b379578588920ca78fbf26c0b4956c"

DEFAULT_CONFIRMATIONS = 2

# Sandbox networks never get explorer verification
LOCAL_NETWORKS = frozenset({"localhost", "hardhat"})

# Fields of a DeploymentRecord that other nodes may reference
OUTPUT_FIELDS = frozenset(
    {"address", "transaction_hash", "confirmed_at_block", "network", "artifact_kind"}
)

# Environment variables
NETWORKS_FILE_ENV = "DEPLOY_NETWORKS_FILE"
REGISTRY_DIR_ENV = "DEPLOY_REGISTRY_DIR"

# Network configuration based on ethereum-lists/chains
NETWORK_CONFIG = {
    "arbitrumSepolia": {
        "chain_id": 421614,
        "chain_name": "Arbitrum Sepolia",
        "block_explorer_url": "https://sepolia.arbiscan.io",
        "explorer_api_url": "https://api-sepolia.arbiscan.io/api",
        "rpc_url_env": "ARB_SEP_RPC_URL",
        "confirmations": 2,
        "parameters": {
            "uniswapV2Router": "0x2bC5d014a1C1f9Fd76618304Cf3121199e438bDd",
            "poolAddressProviderAaveV3": "0xB25a5D144626a0D488e52AE717A051a2E9997076",
            "octoDefiFeeManager": "0xB25a5D144626a0D488e52AE717A051a2E9997076",
        },
    },
    "localhost": {
        "chain_id": 31337,
        "chain_name": "Localhost",
        "rpc_url_env": "LOCALHOST_RPC_URL",
        "confirmations": 1,
        "local": True,
        "parameters": {},
    },
    "hardhat": {
        "chain_id": 31337,
        "chain_name": "Hardhat Network",
        "confirmations": 1,
        "local": True,
        "parameters": {},
    },
}
