#!/usr/bin/env python3
"""沙龙忠诚度计划 - 命令行入口

提供：
1. 会员顾客注册、到店登记与审核、到店删除申请
2. 周期与折扣资格查询
3. 折扣发放（含风险评分）
4. 忠诚度规则、服务类型、门店与员工管理
5. 忠诚度日报（手动生成、按区间查询或定时运行）

使用方式：
    python app.py init-db
    python app.py add-customer --name 王先生 --phone 0501234567
    python app.py visit --phone 0501234567 --service 剪发
    python app.py approve --visit-id 1
    python app.py request-delete --visit-id 1 --reason 重复登记
    python app.py status --phone 0501234567
    python app.py grant --phone 0501234567 --amount 250
    python app.py settings --required-visits 4 --percentage 50
    python app.py summary --date 2026-01-15
    python app.py summary --from 2026-01-01 --to 2026-01-31
    python app.py scheduler

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL                 数据库连接地址
    LOYALTY_CYCLE_DAYS           周期天数（默认 30）
    LOYALTY_REQUIRED_VISITS      触发折扣的到店次数默认值（默认 3）
    LOYALTY_DISCOUNT_PERCENTAGE  折扣比例默认值（默认 60）
    LOG_LEVEL                    日志级别（默认 INFO）
"""
import argparse
import asyncio
import signal
import sys
from datetime import datetime
from typing import Any, Dict, Iterable

from loguru import logger


def _parse_datetime(value: str) -> datetime:
    for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise argparse.ArgumentTypeError(
        f"Invalid date: {value}, expected YYYY-MM-DD or 'YYYY-MM-DD HH:MM'"
    )


def _print_result(result: Dict[str, Any]) -> None:
    for key, value in result.items():
        if key == "visits":
            print("  visits:")
            for v in value:
                number = v["visit_number"] or "-"
                print(f"    #{number} {v['visit_date']:%Y-%m-%d %H:%M} "
                      f"{v['status']} {v['service_type'] or ''}")
            continue
        print(f"  {key}: {value}")


def _print_rows(rows: Iterable[Dict[str, Any]], *keys: str) -> None:
    for row in rows:
        print("  " + " | ".join(str(row[k]) for k in keys))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="沙龙忠诚度计划")
    parser.add_argument("--db", default=None, help="数据库连接 URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="创建数据表并写入种子数据")

    # 顾客与到店
    p = sub.add_parser("add-customer", help="注册会员顾客")
    p.add_argument("--name", required=True)
    p.add_argument("--phone", required=True)
    p.add_argument("--branch-id", type=int)

    p = sub.add_parser("deactivate-customer", help="停用顾客")
    p.add_argument("--phone", required=True)

    p = sub.add_parser("search", help="按姓名或手机号搜索顾客")
    p.add_argument("--keyword", required=True)

    p = sub.add_parser("visit", help="登记到店")
    p.add_argument("--phone", required=True)
    p.add_argument("--service", required=True)
    p.add_argument("--branch-id", type=int)
    p.add_argument("--employee-id", type=int)
    p.add_argument("--date", type=_parse_datetime, help="到店时间（默认现在）")

    p = sub.add_parser("approve", help="审核通过到店")
    p.add_argument("--visit-id", type=int, required=True)
    p.add_argument("--approver-id", type=int)

    p = sub.add_parser("reject", help="拒绝到店")
    p.add_argument("--visit-id", type=int, required=True)
    p.add_argument("--reason", required=True)
    p.add_argument("--approver-id", type=int)

    p = sub.add_parser("cancel", help="作废到店")
    p.add_argument("--visit-id", type=int, required=True)
    p.add_argument("--reason")

    # 到店删除申请
    p = sub.add_parser("request-delete", help="提交到店删除申请")
    p.add_argument("--visit-id", type=int, required=True)
    p.add_argument("--reason", required=True)
    p.add_argument("--requested-by", type=int)

    p = sub.add_parser("deletion-requests", help="查看到店删除申请")
    p.add_argument("--all", action="store_true", help="包含已处理的申请")

    p = sub.add_parser("approve-delete", help="批准到店删除申请")
    p.add_argument("--request-id", type=int, required=True)
    p.add_argument("--reviewer-id", type=int)
    p.add_argument("--notes")

    p = sub.add_parser("reject-delete", help="拒绝到店删除申请")
    p.add_argument("--request-id", type=int, required=True)
    p.add_argument("--notes", required=True)
    p.add_argument("--reviewer-id", type=int)

    # 资格与折扣
    p = sub.add_parser("status", help="查询周期与折扣资格")
    p.add_argument("--phone", required=True)

    p = sub.add_parser("grant", help="发放折扣")
    p.add_argument("--phone", required=True)
    p.add_argument("--amount", required=True)
    p.add_argument("--employee-id", type=int)
    p.add_argument("--branch-id", type=int)
    p.add_argument("--visit-id", type=int)

    p = sub.add_parser("eligible", help="列出有折扣资格的顾客")
    p.add_argument("--branch-id", type=int)

    # 规则与基础数据
    p = sub.add_parser("settings", help="查看或修改忠诚度规则")
    p.add_argument("--required-visits", type=int)
    p.add_argument("--percentage", type=int)
    p.add_argument("--updated-by", type=int)

    sub.add_parser("service-types", help="列出服务类型")

    p = sub.add_parser("add-service-type", help="新增服务类型")
    p.add_argument("--name", required=True)
    p.add_argument("--sort-order", type=int)

    p = sub.add_parser("update-service-type", help="修改服务类型")
    p.add_argument("--id", type=int, required=True)
    p.add_argument("--name")
    p.add_argument("--sort-order", type=int)
    p.add_argument("--active", dest="is_active", action="store_true", default=None)
    p.add_argument("--inactive", dest="is_active", action="store_false")

    p = sub.add_parser("delete-service-type", help="停用服务类型")
    p.add_argument("--id", type=int, required=True)

    sub.add_parser("branches", help="列出门店")

    p = sub.add_parser("add-branch", help="新增门店")
    p.add_argument("--name", required=True)

    p = sub.add_parser("staff", help="列出在职员工")
    p.add_argument("--branch-id", type=int)

    p = sub.add_parser("add-staff", help="新增员工")
    p.add_argument("--name", required=True)
    p.add_argument("--branch-id", type=int)
    p.add_argument("--role", default="staff", choices=["staff", "supervisor", "admin"])

    p = sub.add_parser("deactivate-staff", help="停用员工")
    p.add_argument("--id", type=int, required=True)

    # 报表
    p = sub.add_parser("summary", help="生成忠诚度日报或查询区间内的日报")
    p.add_argument("--date", type=_parse_datetime, help="汇总日期（默认今天）")
    p.add_argument("--from", dest="start", type=_parse_datetime, help="区间开始日期")
    p.add_argument("--to", dest="end", type=_parse_datetime, help="区间结束日期")

    sub.add_parser("scheduler", help="启动定时任务（每日日报）")
    return parser


async def run_scheduler(db) -> None:
    """运行定时任务直到收到退出信号"""
    from business.reports import schedule_daily_summary
    from business.scheduler import Scheduler

    scheduler = Scheduler()
    schedule_daily_summary(scheduler, db)
    scheduler.start()

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler(signum):
        logger.info(f"收到信号 {signum}，正在关闭定时任务...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await shutdown_event.wait()
    finally:
        scheduler.stop()


def _run_summary(db, args) -> None:
    from business.reports import build_daily_summary, list_daily_summaries

    if args.start or args.end:
        if not (args.start and args.end):
            raise ValueError("--from and --to must be given together")
        summaries = list_daily_summaries(db, args.start.date(), args.end.date())
        for summary in summaries:
            print(summary["summary_text"])
        print(f"共 {len(summaries)} 天")
        return
    summary = build_daily_summary(db, args.date.date() if args.date else None)
    print(summary["summary_text"])


def _run_settings(service, args) -> None:
    if args.required_visits is None and args.percentage is None:
        rules = service.get_loyalty_settings()
        print(f"  required_visits: {rules.required_visits}")
        print(f"  discount_percentage: {rules.discount_percentage}")
        return
    current = service.get_loyalty_settings()
    _print_result(service.update_loyalty_settings(
        current.required_visits if args.required_visits is None else args.required_visits,
        current.discount_percentage if args.percentage is None else args.percentage,
        updated_by=args.updated_by,
    ))


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    from config.settings import settings
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())

    from business.errors import LoyaltyError
    from business.loyalty_service import LoyaltyService
    from database import DatabaseManager

    db = DatabaseManager(args.db)
    try:
        db.create_tables()
        service = LoyaltyService(db)

        if args.command == "init-db":
            from scripts.init_db import seed_database
            seed_database(db)
        elif args.command == "add-customer":
            _print_result(service.register_customer(args.name, args.phone, args.branch_id))
        elif args.command == "deactivate-customer":
            _print_result(service.deactivate_customer(args.phone))
        elif args.command == "search":
            _print_rows(service.search_customers(args.keyword),
                        "customer_id", "name", "phone", "is_active")
        elif args.command == "visit":
            _print_result(service.register_visit(
                args.phone, args.service, branch_id=args.branch_id,
                employee_id=args.employee_id, visit_date=args.date,
            ))
        elif args.command == "approve":
            _print_result(service.approve_visit(args.visit_id, args.approver_id))
        elif args.command == "reject":
            _print_result(service.reject_visit(args.visit_id, args.reason, args.approver_id))
        elif args.command == "cancel":
            _print_result(service.cancel_visit(args.visit_id, args.reason))
        elif args.command == "request-delete":
            _print_result(service.request_visit_deletion(
                args.visit_id, args.reason, args.requested_by
            ))
        elif args.command == "deletion-requests":
            requests = service.list_deletion_requests(None if args.all else "pending")
            _print_rows(requests, "id", "visit_id", "customer_phone", "status", "reason")
            _print_result(service.deletion_request_stats())
        elif args.command == "approve-delete":
            _print_result(service.approve_deletion_request(
                args.request_id, args.reviewer_id, args.notes
            ))
        elif args.command == "reject-delete":
            _print_result(service.reject_deletion_request(
                args.request_id, args.notes, args.reviewer_id
            ))
        elif args.command == "status":
            _print_result(service.check_by_phone(args.phone))
        elif args.command == "grant":
            _print_result(service.grant_discount(
                args.phone, args.amount, employee_id=args.employee_id,
                branch_id=args.branch_id, visit_id=args.visit_id,
            ))
        elif args.command == "eligible":
            for customer in service.list_eligible_customers(args.branch_id):
                print(f"  {customer['customer_name']} ({customer['customer_phone']}) "
                      f"到店 {customer['visits_in_cycle']} 次，剩余 {customer['days_remaining']} 天")
        elif args.command == "settings":
            _run_settings(service, args)
        elif args.command == "service-types":
            _print_rows(service.list_service_types(), "id", "name", "sort_order")
        elif args.command == "add-service-type":
            _print_result(service.add_service_type(args.name, args.sort_order))
        elif args.command == "update-service-type":
            _print_result(service.update_service_type(
                args.id, name=args.name, is_active=args.is_active,
                sort_order=args.sort_order,
            ))
        elif args.command == "delete-service-type":
            _print_result(service.delete_service_type(args.id))
        elif args.command == "branches":
            _print_rows(service.list_branches(), "id", "name")
        elif args.command == "add-branch":
            _print_result(service.add_branch(args.name))
        elif args.command == "staff":
            _print_rows(service.list_staff(args.branch_id), "id", "name", "role", "branch_id")
        elif args.command == "add-staff":
            _print_result(service.add_employee(args.name, args.branch_id, args.role))
        elif args.command == "deactivate-staff":
            if not service.deactivate_employee(args.id):
                logger.warning(f"员工不存在: {args.id}")
                return 1
        elif args.command == "summary":
            _run_summary(db, args)
        elif args.command == "scheduler":
            try:
                asyncio.run(run_scheduler(db))
            except KeyboardInterrupt:
                logger.info("收到键盘中断信号")
        return 0
    except (LoyaltyError, ValueError) as e:
        logger.warning(f"操作被拒绝: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
