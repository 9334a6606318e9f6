"""注册、登录与账号管理的请求/响应结构。"""

import re
from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from twofa_api.schemas.common import BaseSchema

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def check_password_strength(value: str) -> str:
    """口令需同时包含小写字母、大写字母与数字。"""
    if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value) or not re.search(r"\d", value):
        raise ValueError("password must contain a lowercase letter, an uppercase letter and a digit")
    return value


StrongPassword = Annotated[str, Field(min_length=8, max_length=100), AfterValidator(check_password_strength)]


class RegisterRequest(BaseModel):
    """本地账号注册请求。"""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(
        min_length=5,
        max_length=255,
        pattern=EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: StrongPassword = Field(description="登录密码。", examples=["Abcd1234"])
    confirm_password: str = Field(alias="confirmPassword", description="确认密码。")
    name: str | None = Field(default=None, min_length=2, max_length=50, description="展示名。")

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("passwords do not match")
        return self


class LoginRequest(BaseModel):
    """本地账号登录请求。"""

    email: str = Field(
        min_length=5,
        max_length=255,
        pattern=EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=1, max_length=100, description="登录密码。")


class ChangePasswordRequest(BaseModel):
    """修改密码请求。"""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=100, description="当前密码。")
    new_password: StrongPassword = Field(alias="newPassword", description="新密码。")
    confirm_new_password: str = Field(alias="confirmNewPassword", description="确认新密码。")

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_new_password:
            raise ValueError("passwords do not match")
        return self


class UpdateProfileRequest(BaseModel):
    """修改个人资料请求。"""

    name: str = Field(min_length=2, max_length=50, description="展示名。")


class UserData(BaseSchema):
    """对外暴露的用户信息，不含口令哈希。"""

    id: UUID = Field(description="用户 ID。")
    email: str = Field(description="登录邮箱。")
    name: str | None = Field(default=None, description="展示名。")
    created_at: datetime = Field(alias="createdAt", description="注册时间。")


class LoginData(BaseSchema):
    """登录结果：口令通过，等待邮箱验证码。"""

    requires_2fa: bool = Field(alias="requires2FA", description="是否需要二次验证，恒为 true。")
    user: UserData = Field(description="用户信息。")


class TokenData(BaseSchema):
    """签发或轮换访问令牌后的结果。"""

    user: UserData = Field(description="用户信息。")
    token: str = Field(description="访问令牌，同时写入 auth-token Cookie。")


class LogoutData(BaseSchema):
    """登出结果。"""

    logged_out: bool = Field(alias="loggedOut", description="是否已完成登出。")
