"""Command-line entry point.

Usage:
    python -m sentiment_api              # serve the API on SERVER_HOST:SERVER_PORT
    python -m sentiment_api headlines    # classify the latest headlines and print them
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from sentiment_api.collectors.alpaca_client import AlpacaClient, close_shared_client
from sentiment_api.collectors.news_filter import NewsFilter
from sentiment_api.config import settings
from sentiment_api.errors import SentimentAPIError
from sentiment_api.services.sentiment_service import FinBertClassifier, SentimentService


def serve(host: str, port: int) -> None:
    uvicorn.run("sentiment_api.main:app", host=host, port=port, log_level="info")


async def print_headlines(limit: int) -> int:
    """Fetch, classify and print the latest headlines, one line per symbol."""
    classifier = FinBertClassifier(settings.SENTIMENT_MODEL_PATH)
    classifier.load()
    service = SentimentService(classifier, settings)
    try:
        headlines = await AlpacaClient(settings).fetch_news(limit)
        grouped = NewsFilter().group(headlines)
        scores = await service.score_headlines(grouped.by_symbol)
    finally:
        service.shutdown()
        await close_shared_client()

    print("=" * 72)
    print(f"  {len(headlines)} headlines, {len(grouped.by_symbol)} symbols "
          f"({grouped.crypto_symbols_filtered} crypto filtered)")
    print("=" * 72)
    for r in scores.results:
        print(f"  {r.symbol:6s}  {r.sentiment.value:8s}  {r.confidence:.2f}  {r.headline[:48]}")
    if scores.classifier_failures:
        print(f"\n  {scores.classifier_failures} headline(s) could not be classified")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="sentiment_api", description=__doc__.splitlines()[0])
    parser.add_argument("command", nargs="?", default="serve", choices=("serve", "headlines"))
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=settings.PORT)
    parser.add_argument("--limit", type=int, default=settings.NEWS_LIMIT)
    args = parser.parse_args(argv)

    try:
        settings.validate()
        if args.command == "headlines":
            return asyncio.run(print_headlines(args.limit))
        serve(args.host, args.port)
    except SentimentAPIError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
