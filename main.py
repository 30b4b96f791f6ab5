import logging
import os
from contextlib import asynccontextmanager

from eth_account import Account
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from adapters.entry.http.engine_router import router as engine_router
from adapters.entry.http.order_router import router as order_router
from adapters.entry.http.strategy_router import router as strategy_router

from adapters.external.chain.dry_run_protocol_client import DryRunProtocolClient
from adapters.external.chain.limit_order_protocol_client import LimitOrderProtocolClient
from adapters.external.database.mongodb_client import get_mongo_client
from adapters.external.database.order_repository_mongodb import OrderRepositoryMongoDB
from adapters.external.database.strategy_repository_mongodb import StrategyRepositoryMongoDB
from adapters.external.notify.telegram_notifier import TelegramNotifier
from adapters.external.price.coingecko_price_oracle import CoinGeckoPriceOracle
from config.networks import LIMIT_ORDER_PROTOCOL, SYMBOL_ALIASES, TOKENS
from config.settings import settings
from core.domain.exceptions import StrategyNotFoundError, StrategyValidationError
from core.services.order_builder_service import OrderBuilderService
from core.services.order_submitter_service import OrderSubmitterService
from core.services.token_registry import TokenRegistry
from core.usecases.process_strategy_use_case import ProcessStrategyUseCase
from workers.execution_engine import ExecutionEngine


def _setup_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _build_protocol_client(logger: logging.Logger) -> LimitOrderProtocolClient:
    network = settings.CHAIN_NETWORK
    contract = settings.LIMIT_ORDER_PROTOCOL_ADDRESS or LIMIT_ORDER_PROTOCOL.get(network)
    if not contract:
        raise RuntimeError(f"No limit order protocol address for network {network}")

    private_key = settings.SIGNER_PRIVATE_KEY
    if not private_key:
        if not settings.CHAIN_DRY_RUN:
            raise RuntimeError("SIGNER_PRIVATE_KEY is required unless CHAIN_DRY_RUN=true")
        private_key = Account.create().key.hex()
        logger.warning("No SIGNER_PRIVATE_KEY set; dry-run uses a throwaway signer key")

    client_cls = DryRunProtocolClient if settings.CHAIN_DRY_RUN else LimitOrderProtocolClient
    return client_cls(
        rpc_url=settings.RPC_URL,
        chain_id=settings.CHAIN_ID,
        contract_address=contract,
        private_key=private_key,
        domain_name=settings.LOP_DOMAIN_NAME,
        domain_version=settings.LOP_DOMAIN_VERSION,
        receipt_timeout_sec=settings.TX_RECEIPT_TIMEOUT_SEC,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Starting %s (lifespan startup)...", settings.APP_NAME)

    mongo_client = get_mongo_client()
    db = mongo_client[settings.MONGODB_DB_NAME]

    app.state.mongo_client = mongo_client
    app.state.mongo_db = db

    try:
        await db.command("ping")
        logger.info("MongoDB ping ok.")
    except Exception:
        logger.exception("MongoDB ping failed (startup).")
        raise

    strategy_repo = StrategyRepositoryMongoDB(db)
    order_repo = OrderRepositoryMongoDB(db)
    await strategy_repo.ensure_indexes()
    await order_repo.ensure_indexes()

    tokens = TokenRegistry(TOKENS.get(settings.CHAIN_NETWORK, {}), SYMBOL_ALIASES)
    protocol_client = _build_protocol_client(logger)
    logger.info(
        "Engine signer %s on %s (chain_id=%s, dry_run=%s)",
        protocol_client.maker_address, settings.CHAIN_NETWORK, settings.CHAIN_ID, settings.CHAIN_DRY_RUN,
    )

    price_oracle = CoinGeckoPriceOracle(
        base_url=settings.PRICE_API_BASE_URL,
        api_key=settings.PRICE_API_KEY,
        cache_ttl_sec=settings.PRICE_CACHE_TTL_SEC,
        min_request_interval_sec=settings.PRICE_MIN_REQUEST_INTERVAL_SEC,
    )

    telegram_notifier = None
    if settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
        telegram_notifier = TelegramNotifier(
            bot_token=settings.TELEGRAM_BOT_TOKEN,
            chat_id=settings.TELEGRAM_CHAT_ID,
            prefix=settings.APP_NAME,
        )

    processor = ProcessStrategyUseCase(
        strategy_repo=strategy_repo,
        order_repo=order_repo,
        price_oracle=price_oracle,
        order_builder=OrderBuilderService(
            order_repo=order_repo,
            protocol_client=protocol_client,
            tokens=tokens,
            default_slippage=settings.DEFAULT_SLIPPAGE,
        ),
        order_submitter=OrderSubmitterService(
            order_repo=order_repo,
            protocol_client=protocol_client,
            tokens=tokens,
            gas_limit_multiplier=settings.GAS_LIMIT_MULTIPLIER,
            notifier=telegram_notifier,
        ),
    )
    engine = ExecutionEngine(
        strategy_repo=strategy_repo,
        processor=processor,
        tokens=tokens,
        tick_interval_sec=settings.ENGINE_TICK_INTERVAL_SEC,
        max_concurrency=settings.ENGINE_MAX_CONCURRENCY,
        lock_ttl_sec=settings.ENGINE_LOCK_TTL_SEC,
    )
    app.state.engine = engine
    app.state.price_oracle = price_oracle

    if settings.ENGINE_AUTOSTART:
        await engine.start()
    else:
        await engine.reload_all()
        logger.info("ENGINE_AUTOSTART is off; strategies loaded but not scheduled")

    try:
        yield
    finally:
        logger.info("Shutting down %s (lifespan shutdown)...", settings.APP_NAME)
        await engine.stop()
        await price_oracle.close()
        if telegram_notifier:
            await telegram_notifier.close()
        mongo_client.close()
        logger.info("MongoDB client closed.")


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)


@app.exception_handler(StrategyValidationError)
async def strategy_validation_handler(request: Request, exc: StrategyValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StrategyNotFoundError)
async def strategy_not_found_handler(request: Request, exc: StrategyNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


app.include_router(strategy_router)
app.include_router(order_router)
app.include_router(engine_router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
