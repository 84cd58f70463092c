"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。
忠诚度规则（周期天数、所需到店次数、折扣比例）和风险阈值都在这里，
业务代码只读取 settings，不硬编码常量。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或直接设置环境变量，例如 LOYALTY_CYCLE_DAYS=30
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/loyalty.db"

    # ========== 忠诚度规则 ==========
    loyalty_cycle_days: int = 30
    loyalty_required_visits: int = 3
    loyalty_discount_percentage: int = 60

    # ========== 风险评分阈值 ==========
    risk_discounts_6m_threshold: int = 3
    risk_amount_ratio_threshold: float = 2.0
    risk_employee_daily_threshold: int = 5
    risk_lookback_days: int = 182  # 约 6 个月

    # ========== 营业时间（用于判定异常时段） ==========
    business_open_hour: int = 9
    business_close_hour: int = 23

    # ========== 定时任务 ==========
    daily_summary_hour: int = 23
    daily_summary_minute: int = 30

    # ========== 日志 ==========
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
