"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from config.business_config import business_config
from loguru import logger


def seed_database(db: DatabaseManager) -> None:
    """写入种子数据（服务类型，幂等）"""
    logger.info("Inserting seed data...")
    for service_type in business_config.get_service_types():
        db.service_types.get_or_create(
            name=service_type['name'],
            sort_order=service_type.get('sort_order', 0)
        )
        logger.info(f"Created service type: {service_type['name']}")


def init_database():
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager()
    try:
        logger.info("Creating tables...")
        db.create_tables()
        seed_database(db)
    finally:
        db.close()

    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database()
