"""
密码管理器
提供密码哈希、验证、强度评分、熵计算和安全密码生成
"""

import asyncio
import math
import re
import secrets
import string
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import bcrypt

from .exceptions import InvalidConfigurationError, InvalidInputError
from .models import PasswordStrength
from ..logging import get_logger


logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

# bcrypt只使用前72字节
BCRYPT_MAX_BYTES = 72

# 32个ASCII标点符号，熵计算中特殊字符集大小为32
SPECIAL_CHARACTERS = string.punctuation

FORBIDDEN_PATTERNS = (
    re.compile(r'(.)\1{3,}'),
    re.compile(r'123456|654321|password|qwerty', re.IGNORECASE),
)

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

# 排除易混淆字符（i l o / I L O / 0 1）
LOWERCASE_UNAMBIGUOUS = "abcdefghjkmnpqrstuvwxyz"
UPPERCASE_UNAMBIGUOUS = "ABCDEFGHJKMNPQRSTUVWXYZ"
DIGITS_UNAMBIGUOUS = "23456789"


def _has_lower(password: str) -> bool:
    return re.search(r'[a-z]', password) is not None


def _has_upper(password: str) -> bool:
    return re.search(r'[A-Z]', password) is not None


def _has_digit(password: str) -> bool:
    return re.search(r'[0-9]', password) is not None


def _has_special(password: str) -> bool:
    return any(ch in SPECIAL_CHARACTERS for ch in password)


def has_forbidden_pattern(password: str) -> bool:
    """是否包含禁止的模式（连续重复字符或常见弱密码片段）"""
    return any(pattern.search(password) for pattern in FORBIDDEN_PATTERNS)


class PasswordManager:
    """密码管理器"""

    def __init__(
        self,
        rounds: Union[int, Callable[[], int]] = 12,
        executor: Optional[Executor] = None,
        max_workers: int = 4
    ):
        """
        初始化密码管理器

        Args:
            rounds: bcrypt加密轮数，或每次哈希时读取轮数的函数
            executor: 执行bcrypt计算的线程池
            max_workers: 未提供executor时创建的线程池大小
        """
        self._rounds = rounds
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="password-hash"
        )

    @property
    def rounds(self) -> int:
        """当前生效的bcrypt轮数"""
        if callable(self._rounds):
            return int(self._rounds())
        return int(self._rounds)

    @staticmethod
    def _encode(password: str) -> bytes:
        return password.encode('utf-8')[:BCRYPT_MAX_BYTES]

    def hash_password(self, password: str) -> str:
        """
        哈希密码

        bcrypt只使用UTF-8编码后的前72字节，前72字节相同的长密码会互相验证通过，
        与已有账户的哈希保持兼容

        Args:
            password: 明文密码

        Returns:
            bcrypt哈希字符串

        Raises:
            InvalidInputError: 密码为空、不是字符串或超长
        """
        if not isinstance(password, str):
            raise InvalidInputError("密码必须是字符串")
        if not password:
            raise InvalidInputError("密码不能为空")
        if len(password) > MAX_PASSWORD_LENGTH:
            raise InvalidInputError(f"密码长度不能超过{MAX_PASSWORD_LENGTH}个字符")

        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(self._encode(password), salt).decode('utf-8')

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """
        验证密码，任何异常都只返回False

        Args:
            password: 明文密码
            hashed_password: 哈希后的密码

        Returns:
            密码是否匹配
        """
        if not isinstance(password, str) or not isinstance(hashed_password, str):
            return False
        if not password or not hashed_password:
            return False

        try:
            return bcrypt.checkpw(self._encode(password), hashed_password.encode('utf-8'))
        except Exception as e:
            logger.debug("密码验证失败", extra={
                'event': 'password_verify_error',
                'error_type': type(e).__name__
            })
            return False

    async def hash_password_async(self, password: str) -> str:
        """在线程池中哈希密码，避免阻塞事件循环"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.hash_password, password)

    async def verify_password_async(self, password: str, hashed_password: str) -> bool:
        """在线程池中验证密码"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.verify_password, password, hashed_password
        )

    def shutdown(self) -> None:
        """关闭线程池"""
        self._executor.shutdown(wait=False)

    def check_password_strength(
        self,
        password: Any,
        context: Optional[Dict[str, str]] = None
    ) -> PasswordStrength:
        """
        检查密码强度（规则评分，结果确定）

        Args:
            password: 要检查的密码
            context: 账户上下文，可包含email、first_name、last_name

        Returns:
            密码强度评估结果
        """
        result = PasswordStrength()

        if not isinstance(password, str):
            result.errors.append("密码必须是字符串")
            return result
        if not password:
            result.errors.append("密码不能为空")
            return result

        context = context or {}
        length = len(password)
        lowered = password.lower()

        # 长度检查
        if length < MIN_PASSWORD_LENGTH:
            result.errors.append(f"密码长度至少为{MIN_PASSWORD_LENGTH}位")
        else:
            result.score += 20

        if length > MAX_PASSWORD_LENGTH:
            result.errors.append(f"密码长度不能超过{MAX_PASSWORD_LENGTH}位")

        # 字符类型检查
        if _has_upper(password):
            result.score += 15
        else:
            result.errors.append("密码必须包含大写字母")

        if _has_lower(password):
            result.score += 15
        else:
            result.errors.append("密码必须包含小写字母")

        if _has_digit(password):
            result.score += 15
        else:
            result.errors.append("密码必须包含数字")

        has_special = _has_special(password)
        if has_special:
            result.score += 10

        if has_forbidden_pattern(password):
            result.errors.append("密码包含禁止的模式或过于常见")

        # 上下文检查
        email = context.get('email') or ""
        local_part = email.split('@')[0].lower()
        if local_part and local_part in lowered:
            result.warnings.append("密码不应包含邮箱地址的一部分")
            result.score -= 10

        first_name = (context.get('first_name') or "").lower()
        if first_name and first_name in lowered:
            result.warnings.append("密码不应包含您的名字")
            result.score -= 5

        last_name = (context.get('last_name') or "").lower()
        if last_name and last_name in lowered:
            result.warnings.append("密码不应包含您的姓氏")
            result.score -= 5

        # 长度奖励
        if length >= 12:
            result.score += 10
        if length >= 16:
            result.score += 10

        # 字符多样性奖励
        if len(set(password)) >= length * 0.7:
            result.score += 5

        result.score = max(0, min(100, result.score))
        result.valid = not result.errors and result.score >= 60

        if result.score < 60:
            result.suggestions.append("建议使用更长且混合多种字符类型的密码")
        if not has_special:
            result.suggestions.append("添加特殊字符可以提高密码强度")
        if length < 12:
            result.suggestions.append("12位以上的密码更安全")

        return result

    def generate_password(
        self,
        length: int = 16,
        use_uppercase: bool = True,
        use_lowercase: bool = True,
        use_digits: bool = True,
        use_symbols: bool = True,
        exclude_similar: bool = True
    ) -> str:
        """
        生成随机密码

        Args:
            length: 密码长度
            use_uppercase: 是否包含大写字母
            use_lowercase: 是否包含小写字母
            use_digits: 是否包含数字
            use_symbols: 是否包含符号
            exclude_similar: 是否排除易混淆字符

        Returns:
            生成的随机密码

        Raises:
            InvalidConfigurationError: 长度越界或未选择任何字符类型
        """
        if length < MIN_PASSWORD_LENGTH or length > MAX_PASSWORD_LENGTH:
            raise InvalidConfigurationError(
                f"密码长度必须在{MIN_PASSWORD_LENGTH}到{MAX_PASSWORD_LENGTH}之间"
            )

        classes: List[str] = []
        if use_lowercase:
            classes.append(LOWERCASE_UNAMBIGUOUS if exclude_similar else LOWERCASE)
        if use_uppercase:
            classes.append(UPPERCASE_UNAMBIGUOUS if exclude_similar else UPPERCASE)
        if use_digits:
            classes.append(DIGITS_UNAMBIGUOUS if exclude_similar else DIGITS)
        if use_symbols:
            classes.append(SYMBOLS)

        if not classes:
            raise InvalidConfigurationError("至少需要选择一种字符类型")

        charset = "".join(classes)

        while True:
            # 每种选中的字符类型至少出现一次
            chars = [secrets.choice(chars_of_class) for chars_of_class in classes]
            chars.extend(secrets.choice(charset) for _ in range(length - len(chars)))

            # Fisher-Yates洗牌
            for i in range(len(chars) - 1, 0, -1):
                j = secrets.randbelow(i + 1)
                chars[i], chars[j] = chars[j], chars[i]

            password = "".join(chars)
            if not has_forbidden_pattern(password):
                return password

    def generate_password_suggestions(self, count: int = 3) -> List[str]:
        """生成多个候选密码"""
        variations = [
            {'length': 12, 'use_symbols': False},
            {'length': 16, 'use_symbols': True},
            {'length': 20, 'use_symbols': True, 'exclude_similar': False},
        ]
        return [
            self.generate_password(**variations[i % len(variations)])
            for i in range(count)
        ]

    @staticmethod
    def calculate_entropy(password: str) -> float:
        """
        计算密码熵（比特）

        Args:
            password: 要分析的密码

        Returns:
            log2(字符集大小 ** 长度)
        """
        if not password:
            return 0.0

        charset_size = 0
        if _has_lower(password):
            charset_size += 26
        if _has_upper(password):
            charset_size += 26
        if _has_digit(password):
            charset_size += 10
        if _has_special(password):
            charset_size += 32

        if charset_size == 0:
            return 0.0
        return len(password) * math.log2(charset_size)

    @staticmethod
    def get_strength_description(score: int) -> Dict[str, str]:
        """根据分数返回强度等级描述"""
        if score < 30:
            return {'level': 'Very Weak', 'description': '该密码很容易被猜中'}
        if score < 50:
            return {'level': 'Weak', 'description': '该密码可能被猜中'}
        if score < 70:
            return {'level': 'Fair', 'description': '该密码安全性一般'}
        if score < 90:
            return {'level': 'Good', 'description': '该密码是安全的'}
        return {'level': 'Excellent', 'description': '该密码非常安全'}

    @staticmethod
    def should_update_password(last_changed: Optional[datetime], max_age_days: int = 90) -> bool:
        """密码是否超过最长使用期限"""
        if last_changed is None:
            return True
        if last_changed.tzinfo is None:
            last_changed = last_changed.replace(tzinfo=timezone.utc)
        age = datetime.now(timezone.utc) - last_changed
        return age.total_seconds() > max_age_days * 24 * 60 * 60
