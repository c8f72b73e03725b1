"""PulseTrade — application entry point.

Boots the FastAPI server and provides the CLI entry point for serve and
backtest modes.
"""

import logging

from fastapi import FastAPI

from pulsetrade.api.routers import router

app = FastAPI(title="PulseTrade API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("pulsetrade")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from pulsetrade.broker.paper import PaperBroker
    from pulsetrade.broker.upbit_client import UpbitClient
    from pulsetrade.config import load_config
    from pulsetrade.repos.db import init_db
    from pulsetrade.service import TradingService

    parser = argparse.ArgumentParser(description="PulseTrade trading engine")
    parser.add_argument(
        "--mode",
        choices=["serve", "backtest"],
        default="serve",
        help="Run the API server or a one-off backtest (default: serve)",
    )
    parser.add_argument("--strategy", default="momentum", help="Backtest strategy")
    parser.add_argument("--symbol", default="KRW-BTC", help="Backtest symbol")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument(
        "--amount", type=float, default=1_000_000.0,
        help="Backtest starting balance (default: 1000000)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)

    market_data = UpbitClient(config)
    broker = PaperBroker(starting_balance=config.paper_balance)
    service = TradingService(config, market_data, broker)

    if args.mode == "backtest":
        if not args.start or not args.end:
            parser.error("--start and --end are required in backtest mode")
        asyncio.run(_run_backtest(service, args))
        return

    from pulsetrade.api.routers import configure_routers

    configure_routers(service)
    recovered = service.recover()
    if recovered:
        logger.info("Marked %d stale session(s) stopped after restart.", len(recovered))
    asyncio.run(_serve(service, config.api_port))


async def _serve(service, port: int) -> None:
    """Run the API server; stop every session once it exits."""
    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)
    logger.info("PulseTrade API listening on port %d", port)
    try:
        await server.serve()
    finally:
        await service.shutdown()
        logger.info("PulseTrade stopped.")


async def _run_backtest(service, args) -> None:
    """Run one backtest and print its summary."""
    result = await service.run_backtest(
        args.strategy, args.symbol, args.start, args.end, args.amount,
    )
    print(
        f"{result['strategy']} on {result['symbol']} "
        f"({result['start_date']} – {result['end_date']})\n"
        f"  final amount : {result['final_amount']:.2f}\n"
        f"  total return : {result['total_return']:.2f}%\n"
        f"  trades       : {result['total_trades']} "
        f"(win {result['win_count']} / loss {result['loss_count']}, "
        f"{result['win_rate']:.1f}%)\n"
        f"  max drawdown : {result['max_drawdown']:.2f}%\n"
        f"  sharpe ratio : {result['sharpe_ratio']:.2f}"
    )


if __name__ == "__main__":
    _run_cli()
