"""邮箱验证码相关结构。"""

from uuid import UUID

from pydantic import BaseModel, Field

from twofa_api.schemas.auth import EMAIL_PATTERN
from twofa_api.schemas.common import BaseSchema


class VerifyCodeRequest(BaseModel):
    """验证码校验请求。"""

    email: str = Field(min_length=5, max_length=255, pattern=EMAIL_PATTERN, description="登录邮箱。")
    code: str = Field(pattern=r"^\d{6}$", description="6 位数字验证码。", examples=["123456"])


class SendCodeData(BaseSchema):
    """验证码发送结果，不包含验证码本身。"""

    code_id: UUID = Field(alias="codeId", description="验证码记录 ID，用于审计关联。")
    expires_in: int = Field(alias="expiresIn", description="验证码剩余有效秒数。")
