"""
Serpo Structure - Точка входа

Запуск технического анализа для одного символа с выводом результата в JSON.

Использование:
    python src/main.py BTCUSDT --analysis sr --macro
    python src/main.py ETHUSDT --analysis rsi
    python src/main.py SOLUSDT --analysis divergence --timeframe 1h
    python src/main.py BTCUSDT --analysis ma
"""

import argparse
import asyncio
import json
import logging

from config import settings
from structure.candle_source import BinanceCandleSource
from structure.service import DEFAULT_DIVERGENCE_TIMEFRAME, TechnicalStructureService

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ANALYSES = ("sr", "rsi", "divergence", "ma")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Technical structure analysis")
    parser.add_argument("symbol", help="Symbol, e.g. BTCUSDT, ETH, EURUSD")
    parser.add_argument("--analysis", choices=ANALYSES, default="sr", help="Analysis to run")
    parser.add_argument("--market", choices=("crypto", "forex", "stock"), default=None,
                        help="Market type (detected from symbol by default)")
    parser.add_argument("--timeframe", default=DEFAULT_DIVERGENCE_TIMEFRAME,
                        help="Timeframe for divergence scan")
    parser.add_argument("--macro", action="store_true", help="Include levels outside the active band")
    return parser.parse_args(argv)


async def run_analysis(service: TechnicalStructureService, args: argparse.Namespace) -> dict:
    """Запуск выбранного анализа."""
    if args.analysis == "sr":
        return await service.support_resistance(args.symbol, args.market, show_macro=args.macro)
    if args.analysis == "rsi":
        return await service.rsi_multi_timeframe(args.symbol, args.market)
    if args.analysis == "divergence":
        return await service.divergence_scan(args.symbol, args.market, timeframe=args.timeframe)
    return await service.ma_cross(args.symbol, args.market)


async def main(argv=None):
    """Главная функция запуска."""
    args = parse_args(argv)

    source = BinanceCandleSource(
        base_url=settings.binance_base_url,
        timeout=settings.request_timeout,
        weight_limit=settings.binance_weight_limit,
        weight_window=settings.binance_weight_window,
    )
    service = TechnicalStructureService(source)

    logger.info(f"Running {args.analysis} analysis for {args.symbol}")
    try:
        result = await run_analysis(service, args)
    finally:
        await source.close()

    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Приложение остановлено")
