"""
Affordability check for agent purchases.

Read-only: asks the wallet for its balance and the history for this
month's spend, never writes anything.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

logger = logging.getLogger("Affordability")

INSUFFICIENT_BALANCE = "insufficient agent balance"
MONTHLY_LIMIT_EXCEEDED = "monthly limit exceeded"


@dataclass
class Decision:
    approved: bool
    reason: str | None = None


class AffordabilityEvaluator:

    def __init__(self, executor, agent_store):
        self.executor = executor
        self.agent_store = agent_store

    async def evaluate(self, address, price, monthly_limit, now=None):
        price = Decimal(str(price))

        try:
            balance = await asyncio.to_thread(self.executor.get_balance)
        except Exception as e:
            logger.warning(f"⚠️ Agent balance unavailable: {e}")
            return Decision(False, f"{INSUFFICIENT_BALANCE}: balance unavailable ({e})")

        if Decimal(str(balance)) < price:
            logger.info(f"      💰 Agent balance: {balance} USDC < {price} USDC")
            return Decision(False, INSUFFICIENT_BALANCE)

        spent = self.agent_store.get_monthly_spend(address, now=now)
        if spent + price > Decimal(str(monthly_limit)):
            logger.info(f"      📉 {address} spent {spent}/{monthly_limit} USDC this month")
            return Decision(False, MONTHLY_LIMIT_EXCEEDED)

        return Decision(True)
