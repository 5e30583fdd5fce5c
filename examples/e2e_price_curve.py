#!/usr/bin/env python3
# =============================================================================
# e2e_price_curve.py — 价格曲线：每日防晒保湿霜 × clean-beauty 画像
#
# 在多个价格点上模拟同一画像的购买意向，打印每个价格的
# Top-2-Box / 期望评分，并标出 Top-2-Box 明显下降的价格断崖。
# 模型与密钥从 llm_config.yaml 读取（支持 ${ENV} 展开）。
#
# Usage:
#   python examples/e2e_price_curve.py
#   python examples/e2e_price_curve.py --method DLR --respondents 10
#   python examples/e2e_price_curve.py --dry-run
# =============================================================================

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from intentlab.api.simulate import (  # noqa: E402
    PricePointResult,
    detect_price_cliffs,
    simulate_price_curve,
)
from intentlab.llm.backend import create_backend  # noqa: E402
from intentlab.pipeline.config import build_pipeline_config  # noqa: E402
from intentlab.pipeline.guardrails import estimate_cost  # noqa: E402
from intentlab.primitives.events import PipelineProgress  # noqa: E402
from intentlab.primitives.models import PRESET_PERSONAS, PricePoint, ProductConcept  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Sample data
# =============================================================================
SAMPLE_CONCEPT = ProductConcept(
    name="Daily SPF Moisturizer",
    category="Skincare",
    description=(
        "A lightweight daily moisturizer with broad-spectrum SPF 30, "
        "mineral filters and no added fragrance."
    ),
    features=("SPF 30 mineral filters", "Fragrance-free", "50 ml pump bottle"),
    claims=("Dermatologist tested", "Reef-safe"),
    positioning="Clean sun care that replaces two steps of a morning routine.",
)
SAMPLE_PRICES = [
    PricePoint(price=14),
    PricePoint(price=19),
    PricePoint(price=24),
    PricePoint(price=29),
    PricePoint(price=22, purchase_type="subscription", shipping="Free shipping"),
]
PERSONA_KEY = "clean-beauty"


def _print_progress(price_idx: int, n_prices: int, event: PipelineProgress) -> None:
    print(
        f"\r  [{price_idx + 1}/{n_prices}] {event.stage} "
        f"{event.completed}/{event.total} 任务，失败 {event.failed}",
        end="",
        flush=True,
    )
    if event.completed == event.total:
        print()


def _print_results(results: List[PricePointResult]) -> None:
    print("─" * 60)
    print(f"  {'价格':>8}  {'Top-2-Box':>10}  {'95% CI':>17}  {'期望评分':>8}")
    for r in results:
        ci = f"[{r.confidence.lower:.2f}, {r.confidence.upper:.2f}]"
        print(f"  ${r.price_point:>7.2f}  {r.top2_box:>10.2f}  {ci:>17}  {r.expected_likert:>8.2f}")
        if r.simulation is not None and r.simulation.degraded:
            print(
                f"           ⚠ 降级结果：{r.simulation.completed_tasks}/"
                f"{r.simulation.total_tasks} 任务完成"
            )

    cliffs = detect_price_cliffs(results)
    if cliffs:
        print("  价格断崖：")
        for c in cliffs:
            print(
                f"    ${c.from_price:g} → ${c.to_price:g}: "
                f"Top-2-Box 下降 {c.drop:.2f}（{c.percent_drop:.0%}）"
            )
    else:
        print("  未发现价格断崖。")


async def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="intentlab 价格曲线示例")
    parser.add_argument("--method", choices=["DLR", "FLR", "SSR"], default="SSR")
    parser.add_argument("--respondents", type=int, default=20)
    parser.add_argument("--samples", type=int, default=2)
    parser.add_argument("--config", default=None, help="llm_config.yaml 路径")
    parser.add_argument("--dry-run", action="store_true", help="只打印成本估算")
    args = parser.parse_args(argv)

    overrides = {
        "method": args.method,
        "n_respondents": args.respondents,
        "n_samples_per_respondent": args.samples,
    }
    config = build_pipeline_config(overrides)

    estimate = estimate_cost(
        config.n_respondents, config.method, config.n_samples_per_respondent
    )
    print(
        f"  单个价格点估算: {estimate.credits_needed} 积分，"
        f"约 ${estimate.api_cost_usd:.2f} API 成本 × {len(SAMPLE_PRICES)} 个价格"
    )
    if estimate.warning:
        print(f"  ⚠ {estimate.warning}")
    if args.dry_run:
        return

    backend = create_backend(config_file=args.config)
    results = await simulate_price_curve(
        backend,
        PRESET_PERSONAS[PERSONA_KEY],
        SAMPLE_CONCEPT,
        SAMPLE_PRICES,
        config,
        segment_id=PERSONA_KEY,
        on_progress=_print_progress,
    )
    _print_results(results)


if __name__ == "__main__":
    asyncio.run(main())
