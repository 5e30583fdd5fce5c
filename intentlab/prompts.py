"""intentlab 集中式提示词管理模块。

本文件统一管理购买意向模拟中使用的所有 LLM 提示词模板。
每个提示词均标注了调用位置和用途，方便后续优化管理。

提示词分类：
1. 通用提示词 —— 评分重试、空回复重试
2. DLR（直接 Likert 评分）提示词
3. FLR（自由文本 + Likert 评分）提示词
4. SSR（语义相似度评分）提示词

模板中的 {persona_block} / {concept_block} / {price_line} 等占位符
由 pipeline/strategies/base.py 中的辅助函数填充；可选字段为空时整行省略。
"""

# =============================================================================
# 通用提示词
# =============================================================================

# 调用位置: strategies/rating.py — rate_with_retry() 首次评分输出无法解析时
# 用途: 追加到原用户提示之后，要求 LLM 只输出单个数字
RATING_RETRY_SUFFIX = (
    "\n\nPREVIOUS RESPONSE WAS INVALID. Output ONLY a single digit 1-5:"
)

# 调用位置: strategies/base.py — generate_free_text() 首次自由文本为空时
# 用途: 追加到原用户提示之后，要求 LLM 给出非空的自然语言回答
FREE_TEXT_RETRY_SUFFIX = (
    "\n\nPREVIOUS RESPONSE WAS EMPTY. Reply with 2-4 sentences of natural "
    "language, without numbers or ratings:"
)

# 调用位置: strategies/base.py — format_persona()
# 用途: 画像段落的每一行（label 因策略而异）
PERSONA_LINES = (
    "{prefix}Age: {age}\n"
    "{prefix}Income: {income}\n"
    "{prefix}Location: {location}\n"
    "{prefix}Household: {household}\n"
    "{prefix}{values_label}: {values}"
)


# =============================================================================
# DLR（Direct Likert Rating）提示词
# =============================================================================

# 调用位置: strategies/dlr.py — DLRStrategy.execute()
# 用途: 要求 LLM 以最小 token 预算直接输出 1-5 的评分
DLR_SYSTEM_PROMPT = (
    "You are rating purchase intent on a 1-5 scale.\n"
    "1 = Definitely would NOT buy\n"
    "2 = Probably would NOT buy\n"
    "3 = Might or might not buy\n"
    "4 = Probably WOULD buy\n"
    "5 = Definitely WOULD buy\n"
    "\n"
    "Output ONLY a single digit (1, 2, 3, 4, or 5). No other text."
)

# 调用位置: strategies/dlr.py — build_dlr_prompt()
# 用途: DLR 用户提示，包含画像、产品与价格
DLR_USER_PROMPT = (
    "CONSUMER PROFILE:\n"
    "{persona_block}\n"
    "\n"
    "PRODUCT:\n"
    "{name} - {category}\n"
    "{concept_block}\n"
    "\n"
    "PRICE: ${price} ({purchase_short})\n"
    "\n"
    "As this consumer, rate your purchase intent (1-5):"
)


# =============================================================================
# FLR（Free-text then Likert Rating）提示词
# =============================================================================

# 调用位置: strategies/flr.py — FLRStrategy.execute() Stage A
# 用途: 生成第一人称的自由文本购买反应
FLR_TEXT_SYSTEM_PROMPT = (
    "You are a consumer participating in market research.\n"
    "You will see a product and price. Express your honest reaction in "
    "1-3 sentences.\n"
    "Include your key concerns, what appeals to you, and whether you'd "
    "likely buy.\n"
    "Be natural - respond as a real person would when discussing a "
    "purchase decision."
)

# 调用位置: strategies/flr.py — build_flr_text_prompt()
# 用途: FLR Stage A 用户提示
FLR_TEXT_USER_PROMPT = (
    "AS THIS CONSUMER:\n"
    "{persona_block}\n"
    "\n"
    "YOU ARE SHOWN THIS PRODUCT:\n"
    "{name} ({category})\n"
    "{concept_block}\n"
    "\n"
    "PRICE: ${price}{price_suffix}\n"
    "\n"
    "What's your honest reaction? Would you consider buying this?"
)

# 调用位置: strategies/flr.py — FLRStrategy.execute() Stage B
# 用途: 把 Stage A 的自由文本转换为 1-5 评分
FLR_RATING_SYSTEM_PROMPT = (
    "You are an expert purchase intent rater.\n"
    "Given a consumer's response about a product, rate their likelihood "
    "to purchase on a 1-5 scale:\n"
    "1 = Definitely would NOT buy\n"
    "2 = Probably would NOT buy\n"
    "3 = Might or might not buy\n"
    "4 = Probably WOULD buy\n"
    "5 = Definitely WOULD buy\n"
    "\n"
    "Output ONLY a single digit (1, 2, 3, 4, or 5). No explanation."
)

# 调用位置: strategies/flr.py — build_flr_rating_prompt()
# 用途: FLR Stage B 用户提示，引用 Stage A 的原文
FLR_RATING_USER_PROMPT = (
    "PRODUCT: {name} at ${price}\n"
    "\n"
    "CONSUMER'S RESPONSE:\n"
    '"{consumer_response}"\n'
    "\n"
    "Based on this response, what is this consumer's purchase intent? "
    "Rate 1-5:"
)


# =============================================================================
# SSR（Semantic Similarity Rating）提示词
# =============================================================================

# 调用位置: strategies/ssr.py — SSRStrategy.execute() Stage A
# 用途: 生成不含数字评分的自由文本，随后做向量相似度评分
SSR_TEXT_SYSTEM_PROMPT = (
    "You are a consumer in a market research survey.\n"
    "You must ROLEPLAY as the person described below.\n"
    "You will see a product concept and price.\n"
    'Answer honestly: "How likely are you to purchase this product at '
    'this price?"\n'
    "Reply with 2-4 sentences of natural language.\n"
    "Do NOT output numbers, ratings, or Likert labels.\n"
    "Be honest and specific - mention key reasons and concerns."
)

# 调用位置: strategies/ssr.py — build_ssr_text_prompt()
# 用途: SSR Stage A 用户提示；结构固定前缀在前，便于后端前缀缓存命中
SSR_TEXT_USER_PROMPT = (
    "PERSONA:\n"
    "{persona_block}\n"
    "\n"
    "PRODUCT CONCEPT:\n"
    "{name} ({category})\n"
    "{concept_block}\n"
    "\n"
    "PRICE CONTEXT:\n"
    "{price_block}\n"
    "\n"
    "QUESTION:\n"
    "How likely are you to purchase this product at this price?"
)
