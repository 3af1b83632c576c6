"""
Cryptoon API server.

FastAPI surface for the web client (favorites, agent settings/history,
chapter access, x402 chapter purchases, testnet funding, admin reset) plus
the background auto-purchase agent.

Run:
    cryptoon-server            # or: python -m cryptoon.gateway_server
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .agent_service import AgentService
from .agent_wallet import AgentWallet, TreasuryWallet
from .catalog import Catalog, CatalogError
from .config import load_env, load_settings
from .ledger import Ledger
from .purchase_gate import build_purchase_gate

logger = logging.getLogger("Gateway")


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _json_body(request):
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_app(
    settings=None,
    ledger=None,
    catalog=None,
    wallet=None,
    agent=None,
    purchase_gate=None,
    treasury=None,
    start_agent=False,
):
    settings = settings or load_settings()
    ledger = ledger or Ledger(settings.data_dir, settings.default_monthly_limit)
    catalog = catalog or Catalog(settings.catalog_path)
    wallet = wallet or AgentWallet(
        rpc_url=settings.rpc_url,
        wallet_file=settings.wallet_file,
        usdc_address=settings.usdc_address,
        chain_id=settings.chain_id,
        network=settings.network,
        private_key=settings.agent_private_key,
        timeout=settings.rpc_timeout_seconds,
    )
    agent = agent or AgentService(
        ledger, catalog, wallet,
        receiver_wallet=settings.receiver_wallet,
        interval_seconds=settings.agent_interval_seconds,
    )
    if treasury is None and settings.funder_private_key:
        treasury = TreasuryWallet(
            rpc_url=settings.rpc_url,
            private_key=settings.funder_private_key,
            usdc_address=settings.usdc_address,
            chain_id=settings.chain_id,
            network=settings.network,
            timeout=settings.rpc_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(app):
        if start_agent:
            try:
                address = await asyncio.to_thread(wallet.get_or_create_wallet_address)
                logger.info(f"🤖 Agent wallet: {address} ({wallet.network})")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Agent Wallet: {e}")
            agent.start()
        yield
        if start_agent:
            await agent.stop()

    app = FastAPI(title="Cryptoon API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.catalog = catalog
    app.state.wallet = wallet
    app.state.agent = agent
    app.state.purchase_gate = purchase_gate
    app.state.treasury = treasury

    if purchase_gate is not None:
        app.middleware("http")(purchase_gate)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["PAYMENT-RESPONSE"],
    )

    @app.get("/")
    async def root():
        return {
            "name": "Cryptoon API",
            "description": "Pay-per-chapter web comics with an auto-purchase agent",
            "version": __version__,
        }

    @app.get("/health")
    async def health():
        return {"status": "ok", "agentRunning": agent.is_running}

    # --- Catalog & chapters ---

    @app.get("/api/series")
    async def list_series():
        try:
            snapshot = catalog.load_catalog()
        except CatalogError as e:
            return _error(503, str(e))
        return {
            "success": True,
            "series": [
                {
                    "id": s.series_id,
                    "title": s.title,
                    "cover": s.cover,
                    "chapters": [
                        {"id": c.chapter_id, "title": c.title, "price": str(c.price), "free": c.is_free}
                        for c in s.chapters
                    ],
                }
                for s in snapshot
            ],
        }

    @app.get("/api/chapters/{series_id}/{chapter_id}")
    async def get_chapter(series_id: str, chapter_id: str, address: str | None = None):
        try:
            chapter = catalog.find_chapter(series_id, chapter_id)
        except CatalogError as e:
            return _error(503, str(e))
        if chapter is None:
            return _error(404, "Chapter not found")

        owned = bool(address) and ledger.purchases.has_purchased(address, series_id, chapter_id)
        if not chapter.is_free and not owned:
            return JSONResponse(status_code=402, content={
                "success": False,
                "error": "Payment required",
                "price": str(chapter.price),
                "seriesId": chapter.series_id,
                "chapterId": chapter.chapter_id,
            })

        return {
            "success": True,
            "free": chapter.is_free,
            "content": catalog.get_chapter_content(series_id, chapter_id),
        }

    @app.post("/api/purchase/{series_id}/{chapter_id}")
    async def confirm_purchase(series_id: str, chapter_id: str, address: str | None = None):
        # Runs between x402 verification and settlement; a non-200 answer means no charge
        if purchase_gate is None:
            return _error(503, "Payments are not configured")
        if not address:
            return _error(400, "address is required")

        try:
            chapter = catalog.find_chapter(series_id, chapter_id)
        except CatalogError as e:
            return _error(503, str(e))
        if chapter is None:
            return _error(404, "Chapter not found")
        if chapter.is_free:
            return _error(400, "Chapter is free")
        if ledger.purchases.has_purchased(address, series_id, chapter_id):
            return _error(409, "Chapter already purchased")

        gate_price = purchase_gate.price_for(series_id, chapter_id)
        if gate_price != chapter.price:
            logger.warning(f"⚠️ [x402] Series {series_id}, Chapter {chapter_id}: gate price {gate_price} != catalog price {chapter.price}")
            return _error(409, "Chapter price changed, payment gate needs a restart")

        return {"success": True, "seriesId": chapter.series_id, "chapterId": chapter.chapter_id, "price": str(chapter.price)}

    # --- Favorites ---

    @app.get("/api/favorites/{address}")
    async def get_favorites(address: str):
        favorites = ledger.favorites.list_favorites(address)
        return {"success": True, "favorites": [f.to_record() for f in favorites]}

    @app.get("/api/favorites/{address}/{series_id}")
    async def check_favorite(address: str, series_id: str):
        return {"success": True, "isFavorite": ledger.favorites.is_favorited(address, series_id)}

    @app.post("/api/favorites")
    async def add_favorite(request: Request):
        body = await _json_body(request)
        if body is None:
            return _error(400, "Invalid JSON")
        try:
            favorite = ledger.favorites.add_favorite(
                body.get("address"),
                body.get("seriesId"),
                body.get("seriesTitle"),
                body.get("seriesCover"),
            )
        except ValueError as e:
            return _error(400, str(e))
        return {"success": True, "favorite": favorite.to_record()}

    @app.delete("/api/favorites/{address}/{series_id}")
    async def remove_favorite(address: str, series_id: str):
        try:
            ledger.favorites.remove_favorite(address, series_id)
        except ValueError as e:
            return _error(404, str(e))
        return {"success": True}

    # --- Agent ---

    @app.get("/api/agent/settings/{address}")
    async def get_agent_settings(address: str):
        settings_ = ledger.agent.get_settings_or_default(address)
        return {"success": True, "settings": settings_.to_record()}

    @app.post("/api/agent/settings")
    async def update_agent_settings(request: Request):
        body = await _json_body(request)
        if body is None:
            return _error(400, "Invalid JSON")
        if body.get("enabled") is not None and not isinstance(body.get("enabled"), bool):
            return _error(400, "enabled must be true or false")
        try:
            updated = ledger.agent.update_settings(
                body.get("address"),
                enabled=body.get("enabled"),
                monthly_limit=body.get("monthlyLimit"),
            )
        except (ValueError, ArithmeticError) as e:
            return _error(400, str(e) or "Invalid monthlyLimit")
        return {"success": True, "settings": updated.to_record()}

    @app.get("/api/agent/history/{address}")
    async def get_agent_history(address: str):
        history = ledger.agent.get_history(address)
        return {
            "success": True,
            "history": [h.to_record() for h in history],
            "monthlySpent": float(ledger.agent.get_monthly_spend(address)),
        }

    @app.get("/api/agent/wallet")
    async def get_agent_wallet():
        try:
            address = await asyncio.to_thread(wallet.get_or_create_wallet_address)
            balance = await asyncio.to_thread(wallet.get_balance)
        except Exception as e:
            logger.error(f"❌ Error loading agent wallet: {e}")
            return _error(502, str(e))
        return {
            "success": True,
            "address": address,
            "network": wallet.network,
            "balance": str(balance),
        }

    @app.post("/api/agent/run")
    async def run_agent_now():
        report = await agent.run_check()
        return {"success": not report.skipped, "report": vars(report)}

    # --- Funding (testnet admin helpers) ---

    @app.post("/api/agent/fund")
    async def fund_agent():
        if treasury is None:
            return _error(503, "Funding is not configured (FUNDER_PRIVATE_KEY)")
        amount = settings.fund_usdc_amount
        try:
            address = await asyncio.to_thread(wallet.get_or_create_wallet_address)
            tx_hash = await asyncio.to_thread(treasury.send_usdc, address, amount)
            balance = await asyncio.to_thread(wallet.get_balance)
        except Exception as e:
            logger.error(f"❌ Error funding agent wallet: {e}")
            return _error(502, str(e))
        logger.info(f"💰 Agent wallet funded with {amount} USDC")
        return {
            "success": True,
            "agentAddress": address,
            "amount": str(amount),
            "balance": str(balance),
            "transactionHash": tx_hash,
        }

    @app.post("/api/agent/fund-eth")
    async def fund_agent_gas():
        if treasury is None:
            return _error(503, "Funding is not configured (FUNDER_PRIVATE_KEY)")
        amount = settings.fund_eth_amount
        try:
            address = await asyncio.to_thread(wallet.get_or_create_wallet_address)
            tx_hash = await asyncio.to_thread(treasury.send_eth, address, amount)
        except Exception as e:
            logger.error(f"❌ Error funding agent with ETH: {e}")
            return _error(502, str(e))
        logger.info(f"⛽ Agent wallet funded with {amount} ETH")
        return {"success": True, "agentAddress": address, "amount": str(amount), "transactionHash": tx_hash}

    @app.post("/api/faucet")
    async def faucet(request: Request):
        if treasury is None:
            return _error(503, "Faucet is not configured (FUNDER_PRIVATE_KEY)")
        body = await _json_body(request)
        if body is None or not body.get("address"):
            return _error(400, "address is required")
        amount = settings.faucet_usdc_amount
        try:
            tx_hash = await asyncio.to_thread(treasury.send_usdc, body["address"], amount)
        except Exception as e:
            logger.error(f"❌ Faucet request failed for {body['address']}: {e}")
            return _error(502, str(e))
        return {"success": True, "amount": str(amount), "token": "USDC", "transactionHash": tx_hash}

    @app.get("/api/balance/{address}")
    async def get_balance(address: str):
        try:
            balance = await asyncio.to_thread(wallet.get_token_balance, address)
        except Exception as e:
            logger.error(f"❌ Error fetching balance for {address}: {e}")
            return _error(502, str(e))
        return {"success": True, "address": address, "balance": str(balance)}

    # --- Admin ---

    @app.delete("/api/reset/{address}")
    async def reset_user(address: str):
        try:
            result = ledger.reset_user(address)
        except ValueError as e:
            return _error(400, str(e))
        return {
            "success": True,
            "message": f"Reset complete for {address}",
            "deleted": {
                "purchases": result.purchases_deleted,
                "history": result.history_deleted,
                "total": result.total,
            },
        }

    return app


def main():
    load_env()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)-12s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    settings = load_settings()
    ledger = Ledger(settings.data_dir, settings.default_monthly_limit)
    catalog = Catalog(settings.catalog_path)
    app = create_app(
        settings,
        ledger=ledger,
        catalog=catalog,
        purchase_gate=build_purchase_gate(settings, ledger, catalog),
        start_agent=settings.agent_enabled,
    )
    logger.info(f"🎭 Cryptoon server running on http://localhost:{settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
