"""登录与登出请求结构。"""

from datetime import datetime

from pydantic import BaseModel, Field

from sqlauth.schemas.common import BaseSchema


class AuthLoginRequest(BaseModel):
    """账号表登录请求。"""

    username: str = Field(min_length=1, max_length=256, description="登录标识（uid）。", examples=["alice"])
    password: str = Field(min_length=1, max_length=1024, description="登录口令。", examples=["s3cret"])


class AuthLoginData(BaseSchema):
    """登录结果结构。"""

    access_token: str = Field(description="访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")
    attributes: dict[str, list[str]] = Field(description="身份属性（属性名 -> 多值列表）。")


class AuthLogoutData(BaseSchema):
    """登出结果结构。"""

    logged_out: bool = Field(description="是否已完成登出。")
    revoked: bool = Field(description="当前 token 是否已加入黑名单。")
