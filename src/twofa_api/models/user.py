"""用户模型。"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from twofa_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """本地账号。邮箱为大小写无关的唯一登录标识，写入前统一小写。"""

    __tablename__ = "users"

    # 登录邮箱，系统内全局唯一。
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # 口令哈希，不存明文，也不随任何接口返回。
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    # 可选展示名。
    name: Mapped[str | None] = mapped_column(String(128))
