"""折扣到店的优惠套餐限制。

折扣到店只能选择常规服务，名称包含优惠关键词的服务（套餐、特价等）不可选。
其他到店不受限制。
"""
from typing import List, Optional

from config.business_config import business_config
from .errors import OfferNotAllowed
from .models import EligibilityResult


def is_offer_service(service_name: str, keywords: Optional[List[str]] = None) -> bool:
    """服务名称是否包含优惠关键词。"""
    if keywords is None:
        keywords = business_config.get_offer_keywords()
    return any(k and k in (service_name or "") for k in keywords)


def can_select_service(service_name: str, eligibility: EligibilityResult,
                       keywords: Optional[List[str]] = None) -> bool:
    """判断下一次到店能否选择该服务（eligibility 为登记前的评估结果）。"""
    if not eligibility.next_visit_is_discount:
        return True
    return not is_offer_service(service_name, keywords)


def ensure_service_allowed(service_name: str, eligibility: EligibilityResult,
                           keywords: Optional[List[str]] = None,
                           message: Optional[str] = None) -> None:
    """折扣到店选择了优惠套餐时抛出 OfferNotAllowed。"""
    if not can_select_service(service_name, eligibility, keywords):
        raise OfferNotAllowed(service_name, message)
