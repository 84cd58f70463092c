#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写忠诚度计划的配置项，生成 .env 文件。
"""
import os

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址", "sqlite:///data/loyalty.db", False),

    # === 忠诚度规则 ===
    ("LOYALTY_CYCLE_DAYS", "周期天数", "30", False),
    ("LOYALTY_REQUIRED_VISITS", "触发折扣所需到店次数", "3", False),
    ("LOYALTY_DISCOUNT_PERCENTAGE", "折扣比例（百分比）", "60", False),

    # === 风险评分 ===
    ("RISK_DISCOUNTS_6M_THRESHOLD", "近 6 个月折扣次数阈值", "3", False),
    ("RISK_AMOUNT_RATIO_THRESHOLD", "金额偏离倍数阈值", "2.0", False),
    ("RISK_EMPLOYEE_DAILY_THRESHOLD", "员工单日发放折扣次数阈值", "5", False),

    # === 营业时间 ===
    ("BUSINESS_OPEN_HOUR", "开门时间（小时）", "9", False),
    ("BUSINESS_CLOSE_HOUR", "打烊时间（小时）", "23", False),

    # === 其他 ===
    ("DAILY_SUMMARY_HOUR", "每日汇总时间（小时）", "23", False),
    ("DAILY_SUMMARY_MINUTE", "每日汇总时间（分钟）", "30", False),
    ("LOG_LEVEL", "日志级别", "INFO", False),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "LOYALTY": "# === 忠诚度规则 ===",
    "RISK": "# === 风险评分 ===",
    "BUSINESS": "# === 营业时间 ===",
    "DAILY": "# === 其他配置 ===",
    "LOG": "# === 其他配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  Salon Loyalty 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = [
        "# Salon Loyalty 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    current_section = None

    for key, desc, default, required in CONFIG_ITEMS:
        # 根据前缀分组显示
        section = key.split("_")[0]
        if section != current_section:
            current_section = section
            header = SECTION_NAMES.get(section, f"# === {section} ===")
            # 避免重复写同一个 section header
            if header not in env_lines:
                env_lines.append("")
                env_lines.append(header)

        req_tag = " [必填]" if required else ""
        default_hint = f" (默认: {default})" if default else ""
        print(f"📝 {desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  ❌ {key} 是必填项，请输入值。")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库：")
    print("    python app.py init-db")
    print()
    print("  启动每日汇总定时任务：")
    print("    python app.py scheduler")
    print("=" * 60)


if __name__ == "__main__":
    main()
