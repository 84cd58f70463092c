"""
业务配置接口 - 支持可替换的业务配置

新门店可以实现自己的业务配置，替换默认配置：
服务类型、"优惠套餐"关键词、异常时段判定、面向顾客的提示文案。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Dict, Any

from config.settings import settings


class BusinessConfig(ABC):
    """业务配置抽象基类"""

    @abstractmethod
    def get_service_types(self) -> List[Dict[str, Any]]:
        """获取服务类型列表"""
        pass

    @abstractmethod
    def get_offer_keywords(self) -> List[str]:
        """获取优惠套餐关键词（折扣到店不可选择的服务）"""
        pass

    @abstractmethod
    def is_unusual_time(self, moment: datetime) -> bool:
        """判断时间点是否属于异常时段（风险评分使用）"""
        pass

    @abstractmethod
    def get_message_templates(self) -> Dict[str, str]:
        """获取面向顾客的提示文案模板"""
        pass


class SalonLoyaltyConfig(BusinessConfig):
    """美发沙龙忠诚度计划配置"""

    def __init__(self, open_hour: int = None, close_hour: int = None):
        self.open_hour = settings.business_open_hour if open_hour is None else open_hour
        self.close_hour = settings.business_close_hour if close_hour is None else close_hour

    def get_service_types(self) -> List[Dict[str, Any]]:
        return [
            {"name": "剪发", "sort_order": 1},
            {"name": "修胡须", "sort_order": 2},
            {"name": "剪发+修胡须", "sort_order": 3},
            {"name": "染发", "sort_order": 4},
            {"name": "头皮护理", "sort_order": 5},
            {"name": "门店优惠套餐", "sort_order": 6},
        ]

    def get_offer_keywords(self) -> List[str]:
        return ["优惠", "套餐", "特价"]

    def is_unusual_time(self, moment: datetime) -> bool:
        # 营业时间为 [open_hour, close_hour)，之外视为异常
        return not (self.open_hour <= moment.hour < self.close_hour)

    def get_message_templates(self) -> Dict[str, str]:
        return {
            "no_cycle": "欢迎加入会员计划！首次到店即开始 {cycle_days} 天周期。",
            "progress": "本周期已到店 {visits_in_cycle} 次，再来 {visits_until_discount} 次即可享受 {discount_percentage}% 折扣，剩余 {days_remaining} 天。",
            "second_visit": "下次到店即可享受 {discount_percentage}% 折扣！本周期剩余 {days_remaining} 天。",
            "discount_due": "本次到店可享受 {discount_percentage}% 折扣，请在结账时发放。",
            "discount_visit": "本次为周期内第 {required_visits} 次到店，审核通过后可享受 {discount_percentage}% 折扣。",
            "discount_pending": "折扣到店正在审核中，审核通过后可享受 {discount_percentage}% 折扣。",
            "discount_granted": "本周期的 {discount_percentage}% 折扣已使用，新周期开始后可再次累计。",
            "cycle_expired": "上一周期已结束，下次到店将开始新的 {cycle_days} 天周期。",
            "offer_not_allowed": "折扣到店不能选择优惠套餐，{discount_percentage}% 折扣仅适用于常规服务。",
            "not_registered": "该手机号尚未注册会员计划。",
        }


# 全局业务配置实例（可以在 app.py 中替换）
business_config: BusinessConfig = SalonLoyaltyConfig()
