"""口令哈希与校验。

哈希串自描述算法与参数，校验时按前缀分派，因此更换 `algorithm`
配置后旧哈希仍可校验：
- ``pbkdf2_sha256$<iterations>$<salt>$<digest>``
- ``pbkdf2_sha512$<iterations>$<salt>$<digest>``
- ``scrypt$<n>$<r>$<p>$<salt>$<digest>``
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

SUPPORTED_ALGORITHMS = ("pbkdf2_sha256", "pbkdf2_sha512", "scrypt")

DEFAULT_ITERATIONS = 390000
SALT_BYTES = 16

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_DKLEN = 64


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _scrypt(password: str, salt: bytes, n: int, r: int, p: int, dklen: int) -> bytes:
    # maxmem 需覆盖 128 * n * r 字节的工作内存。
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=n,
        r=r,
        p=p,
        dklen=dklen,
        maxmem=256 * n * r,
    )


def hash_password(password: str, algorithm: str = "pbkdf2_sha256", *, iterations: int = DEFAULT_ITERATIONS) -> str:
    """按指定算法生成加盐口令哈希。"""
    salt = secrets.token_bytes(SALT_BYTES)
    if algorithm in {"pbkdf2_sha256", "pbkdf2_sha512"}:
        digest = hashlib.pbkdf2_hmac(
            algorithm.split("_", 1)[1],
            password.encode("utf-8"),
            salt,
            iterations,
        )
        return f"{algorithm}${iterations}${_b64encode(salt)}${_b64encode(digest)}"
    if algorithm == "scrypt":
        digest = _scrypt(password, salt, SCRYPT_N, SCRYPT_R, SCRYPT_P, SCRYPT_DKLEN)
        return f"scrypt${SCRYPT_N}${SCRYPT_R}${SCRYPT_P}${_b64encode(salt)}${_b64encode(digest)}"
    raise ValueError(f"unsupported password hash algorithm: {algorithm}")


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配哈希，比较过程恒定时间。"""
    try:
        algorithm, params = password_hash.split("$", 1)
        if algorithm in {"pbkdf2_sha256", "pbkdf2_sha512"}:
            iterations_text, salt_b64, expected_b64 = params.split("$", 2)
            iterations = int(iterations_text)
            if iterations < 1:
                return False
            salt = _b64decode(salt_b64)
            expected_digest = _b64decode(expected_b64)
            actual_digest = hashlib.pbkdf2_hmac(
                algorithm.split("_", 1)[1],
                password.encode("utf-8"),
                salt,
                iterations,
            )
        elif algorithm == "scrypt":
            n_text, r_text, p_text, salt_b64, expected_b64 = params.split("$", 4)
            salt = _b64decode(salt_b64)
            expected_digest = _b64decode(expected_b64)
            actual_digest = _scrypt(password, salt, int(n_text), int(r_text), int(p_text), len(expected_digest))
        else:
            return False
    except (ValueError, TypeError, binascii.Error):
        return False

    return hmac.compare_digest(actual_digest, expected_digest)
