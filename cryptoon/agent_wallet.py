"""
Agent Wallet - the custodial USDC wallet the auto-purchase agent spends from.
=============================================================================

The agent loop only needs the PaymentExecutor contract below; AgentWallet is
the real implementation on an EVM chain (Base Sepolia by default) using web3.

The wallet identity is created once and saved to disk, so a restart reuses
the same address instead of minting a new one and stranding its funds:

    wallet = AgentWallet(rpc_url, wallet_file=".agent/secure/agent_wallet.json")
    address = wallet.get_or_create_wallet_address()
    balance = wallet.get_balance()              # Decimal USDC
    tx_hash = wallet.transfer(receiver, Decimal("0.01"))

TreasuryWallet is the platform's funding account (testnet admin helpers):
it tops up the agent wallet with USDC or gas and drips USDC to readers.
"""

import json
import logging
import os
from decimal import Decimal, ROUND_DOWN
from pathlib import Path
from typing import Protocol

from eth_account import Account
from web3 import Web3

from .json_store import utc_now, to_timestamp

logger = logging.getLogger("AgentWallet")

USDC_DECIMALS = 6

# Minimal ERC-20 ABI: balanceOf + transfer
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "payable": False,
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class WalletError(Exception):
    """The agent wallet is not usable or a transfer did not go through."""


class PaymentExecutor(Protocol):

    network: str

    def is_configured(self) -> bool: ...

    def get_or_create_wallet_address(self) -> str: ...

    def get_balance(self) -> Decimal: ...

    def transfer(self, to_address: str, amount: Decimal) -> str: ...


def to_units(amount):
    """USDC amount -> integer base units (6 decimals). Sub-unit dust is rejected."""
    amount = Decimal(str(amount))
    units = (amount * (10 ** USDC_DECIMALS)).to_integral_value(rounding=ROUND_DOWN)
    if amount <= 0 or units != amount * (10 ** USDC_DECIMALS):
        raise WalletError(f"Invalid USDC amount: {amount}")
    return int(units)


def from_units(units):
    return Decimal(units) / (10 ** USDC_DECIMALS)


class UsdcAccount:
    """A signing account on the chain plus the USDC contract it talks to."""

    def __init__(self, rpc_url, usdc_address, chain_id=84532, network="base-sepolia", timeout=30, receipt_timeout=120):
        self.rpc_url = rpc_url
        self.usdc_address = Web3.to_checksum_address(usdc_address)
        self.chain_id = chain_id
        self.network = network
        self.receipt_timeout = receipt_timeout
        self.account = None

        # Bounded per-request timeout so a hung RPC cannot stall the agent forever
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    @property
    def address(self):
        if self.account is None:
            raise WalletError("Wallet not initialized. Call get_or_create_wallet_address() first.")
        return self.account.address

    # --- Balances ---

    def _usdc(self):
        return self.w3.eth.contract(address=self.usdc_address, abi=ERC20_ABI)

    def get_token_balance(self, address):
        """USDC balance of any address."""
        units = self._usdc().functions.balanceOf(Web3.to_checksum_address(address)).call()
        return from_units(units)

    def get_balance(self):
        return self.get_token_balance(self.address)

    def get_gas_balance(self):
        wei = self.w3.eth.get_balance(self.address)
        return Decimal(str(self.w3.from_wei(wei, 'ether')))

    # --- Transfers ---

    def _send(self, tx):
        """Sign, broadcast and wait for the receipt. Returns the 0x tx hash."""
        signed_tx = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise WalletError(f"Transaction reverted: {tx_hex}")
        return tx_hex

    def send_usdc(self, to_address, amount):
        """
        Send USDC and wait for the receipt.

        Returns:
            The transaction hash (0x-prefixed hex).

        Raises:
            WalletError: wallet not initialized, bad amount, or the transfer reverted.
            Any web3 / RPC error is propagated unchanged.
        """
        units = to_units(amount)
        sender = self.address
        receiver = Web3.to_checksum_address(to_address)

        logger.info(f"💸 Transferring {amount} USDC {sender} -> {receiver}...")

        nonce = self.w3.eth.get_transaction_count(sender, 'pending')
        tx = self._usdc().functions.transfer(receiver, units).build_transaction({
            'chainId': self.chain_id,
            'from': sender,
            'gas': 100000,
            'gasPrice': int(self.w3.eth.gas_price * 1.2),
            'nonce': nonce,
        })

        tx_hex = self._send(tx)
        logger.info(f"✅ Transfer successful! Tx: {tx_hex}")
        return tx_hex

    def send_eth(self, to_address, amount):
        """Send native gas token (ETH) and wait for the receipt."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise WalletError(f"Invalid ETH amount: {amount}")
        sender = self.address

        logger.info(f"⛽ Sending {amount} ETH {sender} -> {to_address}...")

        tx = {
            'to': Web3.to_checksum_address(to_address),
            'value': self.w3.to_wei(amount, 'ether'),
            'gas': 21000,
            'gasPrice': int(self.w3.eth.gas_price * 1.2),
            'nonce': self.w3.eth.get_transaction_count(sender, 'pending'),
            'chainId': self.chain_id,
        }

        tx_hex = self._send(tx)
        logger.info(f"✅ ETH sent! Tx: {tx_hex}")
        return tx_hex


class AgentWallet(UsdcAccount):

    def __init__(
        self,
        rpc_url,
        wallet_file,
        usdc_address,
        chain_id=84532,
        network="base-sepolia",
        private_key=None,
        timeout=30,
        receipt_timeout=120,
    ):
        super().__init__(rpc_url, usdc_address, chain_id, network, timeout, receipt_timeout)
        self.wallet_file = Path(wallet_file)
        self._private_key = private_key

    def is_configured(self):
        return bool(self.rpc_url) and self.account is not None

    # --- Identity ---

    def _load_wallet_data(self):
        if not self.wallet_file.exists():
            return None
        with open(self.wallet_file, 'r') as f:
            return json.load(f)

    def _save_wallet_data(self, data):
        # Holds the custodial key: owner read/write only
        self.wallet_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.wallet_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
        os.chmod(self.wallet_file, 0o600)

    def get_or_create_wallet_address(self):
        """
        Restore the agent account, or create and persist a new one.

        Order: explicit private key (AGENT_PRIVATE_KEY) > saved wallet file > new account.
        """
        if self.account is not None:
            return self.account.address

        data = self._load_wallet_data()

        if self._private_key:
            self.account = Account.from_key(self._private_key)
            if not data or data.get("address", "").lower() != self.account.address.lower():
                self._save_wallet_data({
                    "address": self.account.address,
                    "network": self.network,
                    "createdAt": to_timestamp(utc_now()),
                })
            logger.info(f"✅ Agent Wallet loaded from key: {self.account.address}")

        elif data and data.get("privateKey"):
            self.account = Account.from_key(data["privateKey"])
            if data.get("address", "").lower() != self.account.address.lower():
                raise WalletError(f"Wallet file {self.wallet_file} is inconsistent (address/key mismatch)")
            self.network = data.get("network", self.network)
            logger.info(f"✅ Agent Wallet restored: {self.account.address}")

        else:
            if data:
                raise WalletError(
                    f"Wallet file {self.wallet_file} has no key for {data.get('address')}; "
                    "set AGENT_PRIVATE_KEY instead of creating a new wallet"
                )
            self.account = Account.create()
            self._save_wallet_data({
                "address": self.account.address,
                "network": self.network,
                "privateKey": Web3.to_hex(self.account.key),
                "createdAt": to_timestamp(utc_now()),
            })
            logger.info(f"✅ New Agent Wallet created: {self.account.address}")
            logger.info("⚠️  Please fund this wallet with USDC (and gas) to enable auto-purchases")

        return self.account.address

    def transfer(self, to_address, amount):
        """Pay for a chapter from the agent wallet. See send_usdc."""
        return self.send_usdc(to_address, amount)


class TreasuryWallet(UsdcAccount):
    """Platform funding account, loaded from FUNDER_PRIVATE_KEY."""

    def __init__(self, rpc_url, private_key, usdc_address, chain_id=84532, network="base-sepolia", timeout=30, receipt_timeout=120):
        super().__init__(rpc_url, usdc_address, chain_id, network, timeout, receipt_timeout)
        self.account = Account.from_key(private_key)
        logger.info(f"🏦 Treasury wallet: {self.account.address}")
