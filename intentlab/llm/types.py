# llm/types.py
"""后端能力契约的数据类型。 / Data types of the backend capability contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class TokenUsage:
    """一次调用的 token 用量。 / Token usage of one call."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class GenerateResult:
    """文本生成结果。 / Text generation result.

    cached 为 True 表示结果来自缓存，未产生后端调用。
    """
    text: str
    usage: Optional[TokenUsage] = None
    cached: bool = False


@dataclass(frozen=True)
class EmbedResult:
    """文本向量结果。 / Embedding result."""
    embedding: List[float]
    usage: Optional[TokenUsage] = None
    cached: bool = False
