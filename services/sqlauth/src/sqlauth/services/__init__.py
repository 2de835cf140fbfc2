"""服务层能力导出集合。"""

from sqlauth.services.passcode import PasscodeIssue, PasscodeResetService, generate_passcode
from sqlauth.services.passwords import hash_password, verify_password
from sqlauth.services.verifier import CredentialVerifier, UserAttributes, VerifierRegistry

__all__ = [
    "CredentialVerifier",
    "PasscodeIssue",
    "PasscodeResetService",
    "UserAttributes",
    "VerifierRegistry",
    "generate_passcode",
    "hash_password",
    "verify_password",
]
