"""折扣计算与折扣单号。"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Tuple

from config.settings import settings
from .errors import InvalidAmount
from .models import DiscountCalculation

CENT = Decimal("0.01")
HUNDRED = Decimal(100)
RECORD_PREFIX = "DR"


def to_amount(value: Any) -> Decimal:
    """把输入转换为正的 Decimal 金额。

    Raises:
        InvalidAmount: 非数字、非有限值或不大于 0。
    """
    if isinstance(value, bool):
        raise InvalidAmount(value)
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmount(value)
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(value)
    return amount


def round2(value: Decimal) -> Decimal:
    """货币金额四舍五入到两位小数。"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount(original_amount: Any,
                       percentage: Optional[int] = None) -> DiscountCalculation:
    """计算折扣金额和实付金额。

    Args:
        original_amount: 原价，必须大于 0。
        percentage: 折扣比例（1-100），默认读取 settings.loyalty_discount_percentage。

    Returns:
        DiscountCalculation。

    Raises:
        InvalidAmount: 原价无效。
        ValueError: 折扣比例不在 1-100 之间。
    """
    amount = to_amount(original_amount)
    if percentage is None:
        percentage = settings.loyalty_discount_percentage
    if not 0 < percentage <= 100:
        raise ValueError(f"Invalid discount percentage: {percentage}, expected 1-100")

    rate = Decimal(percentage) / HUNDRED
    return DiscountCalculation(
        original_amount=amount,
        discount_percentage=percentage,
        discount_amount=round2(amount * rate),
        final_amount=round2(amount * (1 - rate)),
    )


def format_record_no(year: int, sequence: int) -> str:
    """生成折扣单号，例如 DR-2026-0005。"""
    if sequence < 1:
        raise ValueError(f"Invalid record sequence: {sequence}")
    return f"{RECORD_PREFIX}-{year}-{sequence:04d}"


def parse_record_no(record_no: str) -> Tuple[int, int]:
    """解析折扣单号，返回 (年份, 序号)。"""
    try:
        prefix, year, sequence = record_no.split("-")
        if prefix != RECORD_PREFIX:
            raise ValueError(prefix)
        return int(year), int(sequence)
    except ValueError:
        raise ValueError(f"Invalid record number: {record_no}, expected DR-YYYY-NNNN")
