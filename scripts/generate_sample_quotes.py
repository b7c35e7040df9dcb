#!/usr/bin/env python3
"""
Generate sample_quotes.json from sample_orders.json.
Runs the orchestrator in-memory against the configured rate-card carriers (no network).
Usage: python scripts/generate_sample_quotes.py
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cbds.engine.calculator import TaxCalculator
from cbds.engine.rates import RatePolicySource
from cbds.integration.orchestrator import IntegrationOrchestrator
from cbds.logistics.aggregator import QuoteAggregator
from cbds.schemas.integration import IntegratedQuoteRequest
from cbds.storage.accumulation import AccumulationStore


async def main() -> None:
    root = Path(__file__).resolve().parent.parent
    orders = json.loads((root / "examples" / "sample_orders.json").read_text())

    source = RatePolicySource()
    orchestrator = IntegrationOrchestrator(
        TaxCalculator(source, AccumulationStore()),
        QuoteAggregator.from_configs(),
        source,
    )

    out = []
    for order in orders:
        request = IntegratedQuoteRequest(**order)
        response = await orchestrator.get_integrated_quotes(request)
        decision = await orchestrator.compare_delivery_modes(request)
        out.append({
            "order_id": request.order_id,
            "response": response.model_dump(mode="json"),
            "delivery_mode": decision.model_dump(mode="json", exclude={"ddp", "dap"}),
        })

    out_path = root / "examples" / "sample_quotes.json"
    out_path.write_text(json.dumps(out, indent=2))
    print(f"Wrote {len(out)} responses to {out_path}")


if __name__ == "__main__":
    asyncio.run(main())
