"""
价格服务
按日累加房价，税费按租户配置的费率计算
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional

from booking_engine.config import settings

CENT = Decimal("0.01")


def quantize(amount: Decimal) -> Decimal:
    """金额保留两位小数（四舍五入）"""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PriceBreakdown:
    """价格明细"""
    base_price: Decimal
    taxes: Decimal
    fees: Decimal
    total_amount: Decimal
    currency: str


class PricingConfig:
    """
    租户税费率配置

    优先使用 TENANT_PRICING 中的租户配置，否则回退到全局默认值
    """

    def __init__(self, default_tax_rate: Optional[Decimal] = None,
                 default_fee_rate: Optional[Decimal] = None,
                 tenant_overrides: Optional[Dict[str, Dict[str, Decimal]]] = None):
        self.default_tax_rate = Decimal(
            settings.DEFAULT_TAX_RATE if default_tax_rate is None else default_tax_rate
        )
        self.default_fee_rate = Decimal(
            settings.DEFAULT_FEE_RATE if default_fee_rate is None else default_fee_rate
        )
        self.tenant_overrides = (
            settings.TENANT_PRICING if tenant_overrides is None else tenant_overrides
        )

    def get_tax_rate(self, tenant_id: str) -> Decimal:
        rate = self.tenant_overrides.get(tenant_id, {}).get("tax_rate")
        return self.default_tax_rate if rate is None else Decimal(str(rate))

    def get_fee_rate(self, tenant_id: str) -> Decimal:
        rate = self.tenant_overrides.get(tenant_id, {}).get("fee_rate")
        return self.default_fee_rate if rate is None else Decimal(str(rate))

    def quote(self, tenant_id: str, nightly_prices: Iterable[Decimal],
              currency: str) -> PriceBreakdown:
        """
        计算预订价格

        base = Σ(每晚价格)，与预订间数无关
        taxes = base × 税率，fees = base × 服务费率
        """
        base = quantize(sum((Decimal(p) for p in nightly_prices), Decimal("0")))
        taxes = quantize(base * self.get_tax_rate(tenant_id))
        fees = quantize(base * self.get_fee_rate(tenant_id))
        return PriceBreakdown(
            base_price=base,
            taxes=taxes,
            fees=fees,
            total_amount=base + taxes + fees,
            currency=currency,
        )
