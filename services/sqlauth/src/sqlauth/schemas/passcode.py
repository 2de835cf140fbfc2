"""口令重置结构。"""

from pydantic import Field

from sqlauth.schemas.common import BaseSchema


class AccountOverviewData(BaseSchema):
    """账号概览。"""

    uid: str = Field(description="登录标识。")
    last_logon: str | None = Field(default=None, description="最近一次登录时间。")
    password_last_set: str | None = Field(default=None, description="最近一次设置口令时间。")
    mail: str | None = Field(default=None, description="联系邮箱。")


class PasscodeResetData(BaseSchema):
    """口令重置结果。"""

    uid: str = Field(description="登录标识。")
    mail: str = Field(description="口令投递邮箱。")
    passcode: str = Field(description="新签发的一次性口令。")


class HealthStatusData(BaseSchema):
    """健康检查结果。"""

    status: str = Field(description="服务状态。")
