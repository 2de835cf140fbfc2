"""一次性口令重置服务。

生成 6 位数字口令，哈希后整体覆盖账号口令，再把明文交给调用方投递。
明文不落库、不写日志。写库失败后账号口令状态不确定，调用方不应盲目重试；
重试会生成新口令并再次整体覆盖，因此结果仍只有一个有效口令。
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass

from sqlauth.exceptions import NotFound
from sqlauth.services.passwords import DEFAULT_ITERATIONS, hash_password
from sqlauth.services.verifier import CredentialVerifier

logger = logging.getLogger("sqlauth")

PASSCODE_LENGTH = 6


def generate_passcode(length: int = PASSCODE_LENGTH) -> str:
    """生成数字口令，每位独立均匀取自 0-9（允许前导零）。"""
    return "".join(secrets.choice(string.digits) for _ in range(length))


@dataclass(frozen=True)
class PasscodeIssue:
    """一次重置的结果，供投递方使用。"""

    uid: str
    mail: str
    passcode: str


class PasscodeResetService:
    """口令重置：依赖认证源的记录存取，而非其认证流程。"""

    def __init__(
        self,
        verifier: CredentialVerifier,
        *,
        algorithm: str = "pbkdf2_sha256",
        iterations: int = DEFAULT_ITERATIONS,
    ) -> None:
        self.verifier = verifier
        self.algorithm = algorithm
        self.iterations = iterations

    def issue_and_store(self, uid: str) -> str:
        """生成新口令并覆盖存储，返回明文口令。"""
        passcode = generate_passcode()
        password_hash = hash_password(passcode, self.algorithm, iterations=self.iterations)
        self.verifier.store_password_hash(uid, password_hash)
        logger.info("sqlauth:%s: issued new passcode uid=%s", self.verifier.auth_id, uid)
        return passcode

    def account_overview(self, uid: str) -> dict[str, str | None]:
        """账号概览：uid、最近登录、口令设置时间、联系邮箱。"""
        attributes = self.verifier.require_attributes(uid)
        return {
            name: (attributes[name][0] if name in attributes else None)
            for name in ("uid", "last_logon", "password_last_set", "mail")
        }

    def reset(self, uid: str) -> PasscodeIssue:
        """解析联系地址后签发新口令；无联系地址时不签发。"""
        attributes = self.verifier.require_attributes(uid)
        mail_values = attributes.get("mail") or []
        if not mail_values or not mail_values[0].strip():
            raise NotFound(f"no contact address for uid {uid!r}")

        account_uid = attributes.get("uid", [uid])[0]
        passcode = self.issue_and_store(account_uid)
        return PasscodeIssue(uid=account_uid, mail=mail_values[0], passcode=passcode)
