"""
邮件通知出口
核心流程只调用send()，不等待投递结果也不重试
"""

import smtplib
import ssl
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Any, Dict, Optional, Protocol

from .models import redact_email
from ..logging import get_logger


logger = get_logger(__name__)

TEMPLATE_WELCOME = 'welcome'
TEMPLATE_PASSWORD_RESET = 'password_reset'
TEMPLATE_EMAIL_VERIFICATION = 'email_verification'

SUBJECTS = {
    TEMPLATE_WELCOME: "欢迎加入 UniApply Hub",
    TEMPLATE_PASSWORD_RESET: "重置您的 UniApply Hub 密码",
    TEMPLATE_EMAIL_VERIFICATION: "请验证您的邮箱地址",
}


class EmailSink(Protocol):
    """邮件发送接口，send必须立即返回"""

    def send(self, template_id: str, recipient: str, data: Dict[str, Any]) -> None: ...


class LoggingEmailSink:
    """未配置SMTP时模拟发送，只记录日志"""

    def send(self, template_id: str, recipient: str, data: Dict[str, Any]) -> None:
        # 不记录data，其中包含令牌
        logger.info("邮件服务未配置，模拟发送", extra={
            'event': 'email_simulated',
            'template_id': template_id,
            'recipient': redact_email(recipient)
        })

    def shutdown(self) -> None:
        pass


class SMTPEmailSink:
    """SMTP邮件发送，在后台线程中投递"""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: str = "UniApply Hub",
        use_tls: bool = True,
        timeout: float = 10.0,
        executor: Optional[Executor] = None
    ):
        """
        初始化SMTP发送器

        Args:
            host: SMTP服务器
            port: 端口，465使用SSL直连，其他端口使用STARTTLS
            user: 登录用户名
            password: 登录密码
            from_address: 发件地址，默认使用user
            from_name: 发件人名称
            use_tls: 是否启用STARTTLS
            timeout: 连接超时（秒）
            executor: 投递线程池
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address or user
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="email")

    def build_message(self, template_id: str, recipient: str, data: Dict[str, Any]) -> EmailMessage:
        """构造纯文本邮件"""
        message = EmailMessage()
        message['Subject'] = SUBJECTS.get(template_id, "UniApply Hub 通知")
        message['From'] = f"{self.from_name} <{self.from_address}>"
        message['To'] = recipient

        lines = [f"{key}: {value}" for key, value in data.items() if key != 'token']
        message.set_content("\n".join(lines) or template_id)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        if self.port == 465:
            with smtplib.SMTP_SSL(
                self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout
            ) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(message)
            return

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(message)

    def send(self, template_id: str, recipient: str, data: Dict[str, Any]) -> None:
        message = self.build_message(template_id, recipient, data)
        future = self._executor.submit(self._deliver, message)
        future.add_done_callback(
            lambda f: self._on_delivered(f, template_id, recipient)
        )

    def shutdown(self) -> None:
        """等待排队中的邮件投递完成后关闭自建的线程池"""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    @staticmethod
    def _on_delivered(future: Future, template_id: str, recipient: str) -> None:
        error = future.exception()
        if error is None:
            logger.info("邮件发送成功", extra={
                'event': 'email_sent',
                'template_id': template_id,
                'recipient': redact_email(recipient)
            })
        else:
            logger.error("邮件发送失败", extra={
                'event': 'email_send_failed',
                'template_id': template_id,
                'recipient': redact_email(recipient),
                'error_type': type(error).__name__
            })


def build_email_sink(settings) -> EmailSink:
    """根据配置选择邮件发送方式"""
    smtp = settings.smtp
    if not smtp.is_configured:
        return LoggingEmailSink()

    return SMTPEmailSink(
        host=smtp.host,
        port=smtp.port,
        user=smtp.user,
        password=smtp.password,
        from_address=smtp.from_address,
        from_name=smtp.from_name,
        use_tls=smtp.use_tls,
        timeout=smtp.timeout
    )
