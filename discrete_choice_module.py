# -*- coding: utf-8 -*-
"""
离散选择（logit）函数 —— 由父节点注入、无状态的份额计算策略

两种形式：
- RelativeCostLogit：份额 ∝ sw · cost^e（按比例比较利润率，与单位无关）
- AbsoluteCostLogit：份额 ∝ sw · exp(e · cost / base_cost)（按差值比较利润率）

约定
----
- calc_unnormalized_share(sw, cost, t)：未归一化份额，由父节点求和后归一化
- calc_share_weight(share, cost, t)：校准用，反推使模型重现 share 的份额权重
- calc_implied_cost(share, cost, t)：由份额与上层平均利润率反推的隐含利润率
- calc_average_value(sum, t)：由子节点未归一化份额之和得到节点的综合利润指数
"""
from __future__ import annotations
from typing import Protocol, Sequence, Union

import numpy as np

# 避免 cost<=0 时 0^e / 除零
MIN_COST = 1e-6

Exponent = Union[float, Sequence[float]]


class DiscreteChoice(Protocol):
    def calc_unnormalized_share(self, share_weight: float, cost: float, period: int) -> float: ...

    def calc_share_weight(self, share: float, cost: float, period: int) -> float: ...

    def calc_implied_cost(self, share: float, cost: float, period: int) -> float: ...

    def calc_average_value(self, unnormalized_sum: float, period: int) -> float: ...


class _LogitBase:
    def __init__(self, logit_exponent: Exponent):
        self.logit_exponent = logit_exponent

    def exponent(self, period: int) -> float:
        if np.isscalar(self.logit_exponent):
            return float(self.logit_exponent)
        values = list(self.logit_exponent)
        # 未给出的后续时期沿用最后一个值
        return float(values[min(period, len(values) - 1)])


class RelativeCostLogit(_LogitBase):
    TYPE_NAME = "relative-cost"

    def calc_unnormalized_share(self, share_weight: float, cost: float, period: int) -> float:
        if share_weight <= 0.0:
            return 0.0
        return float(share_weight * np.power(max(cost, MIN_COST), self.exponent(period)))

    def calc_share_weight(self, share: float, cost: float, period: int) -> float:
        if share <= 0.0:
            return 0.0
        return float(share * np.power(max(cost, MIN_COST), -self.exponent(period)))

    def calc_implied_cost(self, share: float, cost: float, period: int) -> float:
        e = self.exponent(period)
        if share <= 0.0:
            return 0.0
        if e == 0.0:
            return float(cost)
        return float(cost * np.power(share, 1.0 / e))

    def calc_average_value(self, unnormalized_sum: float, period: int) -> float:
        e = self.exponent(period)
        if unnormalized_sum <= 0.0 or e == 0.0:
            return 0.0
        return float(np.power(unnormalized_sum, 1.0 / e))


class AbsoluteCostLogit(_LogitBase):
    TYPE_NAME = "absolute-cost"

    def __init__(self, logit_exponent: Exponent, base_cost: float = 1.0):
        super().__init__(logit_exponent)
        if base_cost <= 0.0:
            raise ValueError(f"base_cost must be positive, got {base_cost}")
        self.base_cost = float(base_cost)

    def calc_unnormalized_share(self, share_weight: float, cost: float, period: int) -> float:
        if share_weight <= 0.0:
            return 0.0
        return float(share_weight * np.exp(self.exponent(period) * cost / self.base_cost))

    def calc_share_weight(self, share: float, cost: float, period: int) -> float:
        if share <= 0.0:
            return 0.0
        return float(share * np.exp(-self.exponent(period) * cost / self.base_cost))

    def calc_implied_cost(self, share: float, cost: float, period: int) -> float:
        e = self.exponent(period)
        if share <= 0.0:
            return 0.0
        if e == 0.0:
            return float(cost)
        return float(cost + self.base_cost * np.log(share) / e)

    def calc_average_value(self, unnormalized_sum: float, period: int) -> float:
        e = self.exponent(period)
        if unnormalized_sum <= 0.0 or e == 0.0:
            return 0.0
        return float(self.base_cost * np.log(unnormalized_sum) / e)


def make_choice_function(kind: str, logit_exponent: Exponent, base_cost: float = 1.0) -> DiscreteChoice:
    k = (kind or RelativeCostLogit.TYPE_NAME).strip().lower()
    if k in ("relative-cost", "relative-cost-logit", "relative"):
        return RelativeCostLogit(logit_exponent)
    if k in ("absolute-cost", "absolute-cost-logit", "absolute"):
        return AbsoluteCostLogit(logit_exponent, base_cost)
    raise ValueError(f"Unknown logit type: {kind}")
