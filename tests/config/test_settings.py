"""配置测试：Settings 默认值与环境变量覆盖、美发沙龙业务配置。"""
from datetime import datetime

import pytest

from config.business_config import BusinessConfig, SalonLoyaltyConfig, business_config
from config.settings import Settings


class TestSettings:

    def test_loyalty_defaults(self, monkeypatch):
        for key in ("LOYALTY_CYCLE_DAYS", "LOYALTY_REQUIRED_VISITS",
                    "LOYALTY_DISCOUNT_PERCENTAGE"):
            monkeypatch.delenv(key, raising=False)
        s = Settings(_env_file=None)
        assert s.loyalty_cycle_days == 30
        assert s.loyalty_required_visits == 3
        assert s.loyalty_discount_percentage == 60
        assert s.risk_amount_ratio_threshold == 2.0

    def test_env_override_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("loyalty_cycle_days", "14")
        monkeypatch.setenv("RISK_EMPLOYEE_DAILY_THRESHOLD", "8")
        s = Settings(_env_file=None)
        assert s.loyalty_cycle_days == 14
        assert s.risk_employee_daily_threshold == 8

    def test_extra_env_ignored(self, monkeypatch):
        monkeypatch.setenv("SOMETHING_UNRELATED", "1")
        Settings(_env_file=None)


class TestSalonLoyaltyConfig:

    def test_is_business_config(self):
        assert isinstance(business_config, BusinessConfig)

    def test_service_types_have_unique_names(self):
        names = [s["name"] for s in business_config.get_service_types()]
        assert len(names) == len(set(names))
        assert "剪发" in names

    @pytest.mark.parametrize("hour,expected", [
        (8, True), (9, False), (14, False), (22, False), (23, True), (2, True),
    ])
    def test_unusual_time(self, hour, expected):
        config = SalonLoyaltyConfig(open_hour=9, close_hour=23)
        assert config.is_unusual_time(datetime(2026, 1, 15, hour, 0)) is expected

    def test_templates_render(self):
        templates = business_config.get_message_templates()
        for key in ("no_cycle", "progress", "second_visit", "discount_due",
                    "discount_visit", "discount_granted", "cycle_expired",
                    "offer_not_allowed", "not_registered"):
            templates[key].format(
                cycle_days=30, days_remaining=10, visits_in_cycle=2,
                visits_until_discount=1, required_visits=3, discount_percentage=60,
            )
