"""
Cryptoon configuration.

Everything is read from environment variables, optionally seeded from a
.env file (CRYPTOON_ENV_FILE, or ./.env in the working directory).
"""

import os
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger("Config")

# Base Sepolia USDC
DEFAULT_USDC_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
DEFAULT_RECEIVER_WALLET = "0x6f21c2155bf93b49348a422a604310f8ccd6ec74"
DEFAULT_RPC_URL = "https://sepolia.base.org"


def _env_bool(name, default):
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    catalog_path: Path
    wallet_file: Path
    agent_private_key: str | None
    rpc_url: str
    network: str
    chain_id: int
    usdc_address: str
    receiver_wallet: str
    agent_interval_seconds: int
    agent_enabled: bool
    rpc_timeout_seconds: int
    enable_x402: bool
    x402_network: str
    x402_facilitator_url: str
    default_monthly_limit: Decimal
    funder_private_key: str | None
    fund_usdc_amount: Decimal
    fund_eth_amount: Decimal
    faucet_usdc_amount: Decimal
    port: int


def load_env(env_file=None):
    """Load a .env file into os.environ. Returns True if one was found."""
    env_path = Path(env_file or os.getenv("CRYPTOON_ENV_FILE", ".env")).resolve()
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=True)
        logger.info(f"✅ .env loaded from {env_path}")
        return True
    logger.info(f"⚠️  No .env at {env_path}, using process environment only")
    return False


def load_settings():
    """Build Settings from the current environment."""
    return Settings(
        data_dir=Path(os.getenv("CRYPTOON_DATA_DIR", ".agent/data")),
        catalog_path=Path(os.getenv("CRYPTOON_CATALOG_PATH", "client/public/db.json")),
        wallet_file=Path(os.getenv("AGENT_WALLET_FILE", ".agent/secure/agent_wallet.json")),
        agent_private_key=os.getenv("AGENT_PRIVATE_KEY") or None,
        rpc_url=os.getenv("AGENT_RPC_URL", DEFAULT_RPC_URL),
        network=os.getenv("AGENT_NETWORK", "base-sepolia"),
        chain_id=int(os.getenv("AGENT_CHAIN_ID", "84532")),
        usdc_address=os.getenv("USDC_CONTRACT_ADDRESS", DEFAULT_USDC_ADDRESS),
        receiver_wallet=os.getenv("RECEIVER_WALLET", DEFAULT_RECEIVER_WALLET),
        agent_interval_seconds=int(os.getenv("AGENT_INTERVAL_SECONDS", "60")),
        agent_enabled=_env_bool("AGENT_ENABLED", True),
        rpc_timeout_seconds=int(os.getenv("RPC_TIMEOUT_SECONDS", "30")),
        enable_x402=_env_bool("ENABLE_X402", True),
        x402_network=os.getenv("X402_NETWORK", "eip155:84532"),
        x402_facilitator_url=os.getenv("X402_FACILITATOR_URL", "https://x402.org/facilitator"),
        default_monthly_limit=Decimal(os.getenv("AGENT_DEFAULT_MONTHLY_LIMIT", "1.0")),
        funder_private_key=os.getenv("FUNDER_PRIVATE_KEY") or None,
        fund_usdc_amount=Decimal(os.getenv("FUND_USDC_AMOUNT", "1.0")),
        fund_eth_amount=Decimal(os.getenv("FUND_ETH_AMOUNT", "0.001")),
        faucet_usdc_amount=Decimal(os.getenv("FAUCET_USDC_AMOUNT", "1.0")),
        port=int(os.getenv("PORT", "3001")),
    )
