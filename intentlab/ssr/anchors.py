# intentlab/ssr/anchors.py
# 6 组 SSR 锚点语句，每组 5 句分别对应 Likert 1..5。
# 多组措辞不同的锚点取平均，可降低单一措辞带来的偏差。
# / Six anchor sets, five statements each (Likert 1..5); averaging across
#   differently worded sets reduces wording-specific bias.

from typing import Tuple

AnchorSet = Tuple[str, str, str, str, str]

ANCHOR_SETS: Tuple[AnchorSet, ...] = (
    # 直接意向 / Direct intent language
    (
        "I definitely would not buy this.",
        "I probably would not buy this.",
        "I'm unsure if I'd buy this.",
        "I probably would buy this.",
        "I definitely would buy this.",
    ),
    # 兴趣 / Interest-focused
    (
        "I have no interest in buying this.",
        "I'm not very interested in buying this.",
        "I might buy it, but I'm undecided.",
        "I'm interested and would likely buy it.",
        "I'm very interested and would buy it.",
    ),
    # 价值感知 / Value perception
    (
        "This doesn't feel worth purchasing for me.",
        "I'd likely pass on purchasing this.",
        "I could go either way on buying it.",
        "I'd be inclined to purchase it.",
        "I'd be eager to purchase it.",
    ),
    # 考虑度 / Consideration-based
    (
        "I wouldn't consider buying this.",
        "I don't think I'd buy this.",
        "I'm on the fence about buying it.",
        "I think I'd buy it.",
        "I'm very likely to buy it.",
    ),
    # 回避 vs 接近 / Avoidance vs approach
    (
        "I would avoid buying this.",
        "I'd usually skip buying something like this.",
        "I'm not sure I'd buy it.",
        "I'd consider buying it.",
        "I'd almost certainly buy it.",
    ),
    # 花费意向 / Spending intent
    (
        "I wouldn't spend money on this.",
        "I'm unlikely to purchase this.",
        "I'm neutral about purchasing this.",
        "I'm likely to purchase this.",
        "I'm very likely to purchase this.",
    ),
)
