#!/usr/bin/env python3
"""Record raw wallet-trades pages into offline fixtures."""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from api_client import SolanaTrackerClient
from config_loader import get_api_key, get_api_settings, load_config
from utils import validate_wallet_address


def main() -> None:
    parser = argparse.ArgumentParser(description="Record SolanaTracker wallet-trades pages.")
    parser.add_argument("wallet", help="Wallet address to record")
    parser.add_argument("--out", required=True, help="Output fixture directory")
    parser.add_argument("--pages", type=int, default=2, help="Maximum pages to record")
    parser.add_argument("--delay", type=float, default=0.5, help="Seconds between pages")
    parser.add_argument("--config", default=None, help="Config file path")
    args = parser.parse_args()

    wallet = validate_wallet_address(args.wallet)
    config = load_config(args.config)
    api = get_api_settings(config)
    client = SolanaTrackerClient(
        api_key=get_api_key(config),
        base_url=api["base_url"],
        timeout=float(api["timeout"]),
    )

    out_dir = pathlib.Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    cursor: Optional[str] = None
    manifest: List[Dict[str, Any]] = []
    try:
        for page in range(1, args.pages + 1):
            params = {"cursor": cursor} if cursor else None
            # Raw body, not the parsed page, so fixtures keep unknown fields
            data = client.get(f"/wallet/{wallet}/trades", params=params)
            path = out_dir / f"page_{page:02d}.json"
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            trades = data.get("trades") if isinstance(data, dict) else None
            manifest.append({
                "page": page,
                "cursor": cursor,
                "file": path.name,
                "trades": len(trades) if isinstance(trades, list) else None,
            })
            print(f"Recorded page {page} -> {path}")

            cursor = data.get("nextCursor") if isinstance(data, dict) else None
            if not (isinstance(data, dict) and data.get("hasNextPage") and cursor):
                break
            time.sleep(args.delay)
    finally:
        client.close()

    (out_dir / "manifest.json").write_text(
        json.dumps(
            {
                "wallet": wallet,
                "recorded_at": datetime.now(timezone.utc).isoformat(),
                "pages": manifest,
            },
            indent=2,
        ),
        encoding="utf-8",
    )


if __name__ == "__main__":
    main()
