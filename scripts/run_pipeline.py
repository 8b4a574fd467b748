#!/usr/bin/env python3
"""Run one pass of the news pipeline."""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from cre_news.pipeline.jobs import run_pipeline


def main():
    parser = argparse.ArgumentParser(description="Scrape, categorize, prepare and send newsletters")
    parser.add_argument("--no-scrape", action="store_true", help="Skip scraping sources")
    parser.add_argument("--no-send", action="store_true", help="Prepare newsletters without sending")
    args = parser.parse_args()

    load_dotenv()

    print("\n" + "=" * 50)
    print("CRE NEWS PIPELINE")
    print("=" * 50 + "\n")

    stats = asyncio.run(run_pipeline(scrape=not args.no_scrape, send=not args.no_send))

    print("\nRESULTS:")
    for kind, result in stats.get("scrape", {}).items():
        if "error" in result:
            print(f"  {kind}: failed ({result['error']})")
        else:
            print(f"  {kind}: {result['loaded']} new from {result['sources']} sources, {result['failed']} failed")

    cat = stats["categorize"]
    print(f"  Categorized: {cat['categorized']} of {cat['processed']} ({cat['irrelevant']} irrelevant)")

    prep = stats["prepare"]
    print(f"  Newsletters prepared: {prep['newsletters_prepared']} for {prep['total_subscribers']} subscribers")

    if "send" in stats:
        send = stats["send"]
        print(f"  Newsletters sent: {send['emails_sent']} of {send['total_newsletters']}, {send['errors']} errors")

    db = stats["storage"]
    print(f"\nDATABASE: {db['total_articles']} articles, {db['active_subscribers']} active subscribers")
    print(f"TIME: {stats['time_ms'] / 1000:.1f}s\n")


if __name__ == "__main__":
    main()
