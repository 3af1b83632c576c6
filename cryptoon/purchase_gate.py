"""
x402 payment gate for manual chapter purchases.

Every premium chapter gets its own x402 route priced at the chapter's own
price:

    POST /api/purchase/{series_id}/{chapter_id}?address=0x...

The x402 middleware verifies the payment, lets the purchase handler check the
request, and settles only when the handler answered 200. The purchase is
written here, after settlement, with the transaction hash taken from the
facilitator's PAYMENT-RESPONSE receipt.
"""

import base64
import json
import logging
import re

from fastapi.responses import JSONResponse

from .catalog import CatalogError

logger = logging.getLogger("PurchaseGate")

PURCHASE_PATH = re.compile(r"^/api/purchase/(?P<series_id>[^/]+)/(?P<chapter_id>[^/]+)$")
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"


def purchase_path(series_id, chapter_id):
    return f"/api/purchase/{series_id}/{chapter_id}"


def settled_transaction(header_value):
    """Transaction hash from a base64 JSON settlement receipt, or None."""
    if not header_value:
        return None
    try:
        receipt = json.loads(base64.b64decode(header_value))
    except ValueError:
        return None
    if not isinstance(receipt, dict) or receipt.get("success") is False:
        return None
    return receipt.get("transaction") or None


class PurchaseGate:

    def __init__(self, ledger, x402_middleware, prices):
        self.ledger = ledger
        self.x402_middleware = x402_middleware
        self.prices = prices

    def price_for(self, series_id, chapter_id):
        """Price the gate charges for a chapter, or None if the chapter has no paid route."""
        return self.prices.get((str(series_id), str(chapter_id)))

    async def __call__(self, request, call_next):
        match = PURCHASE_PATH.match(request.url.path)
        if request.method != "POST" or match is None:
            return await self.x402_middleware(request, call_next)

        response = await self.x402_middleware(request, call_next)
        if response.status_code != 200:
            return response

        receipt = response.headers.get(PAYMENT_RESPONSE_HEADER)
        tx_hash = settled_transaction(receipt)
        if tx_hash is None:
            logger.error(f"❌ [x402] No settlement receipt for {request.url.path}")
            return JSONResponse(status_code=402, content={"success": False, "error": "Payment was not settled"})

        series_id, chapter_id = match.group("series_id"), match.group("chapter_id")
        address = request.query_params.get("address")
        result = self.ledger.purchases.record_purchase(
            address, series_id, chapter_id, tx_hash=tx_hash, amount=self.price_for(series_id, chapter_id),
        )
        logger.info(f"⚡ [x402] Settled {tx_hash}: {address} unlocked Series {series_id}, Chapter {chapter_id}")
        return JSONResponse(
            content={
                "success": True,
                "alreadyPurchased": result.already_recorded,
                "purchase": result.purchase.to_record(),
            },
            headers={PAYMENT_RESPONSE_HEADER: receipt},
        )


def build_purchase_gate(settings, ledger, catalog):
    """
    One x402 route per premium chapter in the catalog. Returns None when x402
    is switched off, no receiving wallet is configured, or the catalog cannot
    be read.
    """
    if not settings.enable_x402:
        logger.info("ℹ️  [x402] Disabled via ENABLE_X402=false")
        return None
    if not settings.receiver_wallet:
        logger.info("⚠️  [x402] Disabled: No RECEIVER_WALLET set")
        return None

    try:
        snapshot = catalog.load_catalog()
    except CatalogError as e:
        logger.error(f"❌ [x402] Disabled: {e}")
        return None

    from x402.http import FacilitatorConfig, HTTPFacilitatorClient, PaymentOption
    from x402.http.middleware.fastapi import payment_middleware
    from x402.http.types import RouteConfig
    from x402.mechanisms.evm.exact import ExactEvmServerScheme
    from x402.server import x402ResourceServer

    facilitator = HTTPFacilitatorClient(FacilitatorConfig(url=settings.x402_facilitator_url))
    server = x402ResourceServer(facilitator)
    server.register(settings.x402_network, ExactEvmServerScheme())

    prices = {}
    routes = {}
    for series in snapshot:
        for chapter in series.premium_chapters():
            prices[(series.series_id, chapter.chapter_id)] = chapter.price
            routes[f"POST {purchase_path(series.series_id, chapter.chapter_id)}"] = RouteConfig(
                accepts=[PaymentOption(
                    scheme="exact",
                    pay_to=settings.receiver_wallet,
                    price=f"${chapter.price}",
                    network=settings.x402_network,
                )],
                mime_type="application/json",
                description=f"Unlock {series.title}, chapter {chapter.chapter_id}",
            )

    logger.info(f"✅ [x402] Middleware initialized: network={settings.x402_network}, {len(routes)} paid chapter(s)")
    return PurchaseGate(ledger, payment_middleware(routes=routes, server=server), prices)
