"""全局通用结构。

用于定义统一响应包裹结构，便于在线接口文档展示与联调。
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力；对外字段使用驼峰别名。"""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ErrorResponse(BaseSchema):
    """统一错误响应。"""

    success: bool = Field(default=False, description="固定为 false。")
    message: str = Field(description="人类可读错误信息。")
    error: str = Field(description="机器可识别错误码。")
    details: dict[str, Any] = Field(default_factory=dict, description="可选扩展错误细节。")
    request_id: str = Field(description="服务端生成的请求追踪 ID。")


T = TypeVar("T")


class SuccessResponse(BaseSchema, Generic[T]):
    """统一成功响应。"""

    success: bool = Field(default=True, description="固定为 true。")
    message: str = Field(description="人类可读结果说明。")
    data: T = Field(description="业务返回数据主体。")
    request_id: str = Field(description="服务端生成的请求追踪 ID。")


class HealthStatusData(BaseSchema):
    """健康检查结果。"""

    status: str = Field(description="探针状态。")
    environment: str | None = Field(default=None, description="运行环境标识。")
    database: str | None = Field(default=None, description="数据库连通性。")
    mail_transport: str | None = Field(default=None, alias="mailTransport", description="验证码投递通道（smtp/log）。")
