"""数据库基础模型导出。

仅提供 Base 定义；测试与本地开发可用 Base.metadata.create_all 建表，
生产环境的表结构由迁移脚本维护。
"""

from twofa_api.models.base import Base

__all__ = ["Base"]
