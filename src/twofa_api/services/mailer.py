"""邮件发送。

对外只暴露 send(to, subject, body) -> bool 约定：返回 False 即视为投递失败，
超时与任何 SMTP 异常均按失败处理，不向调用方抛出。
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from twofa_api.core.config import Settings

logger = logging.getLogger(__name__)


class MailTransport(Protocol):
    """邮件投递约定。"""

    def send(self, to: str, subject: str, body: str) -> bool: ...


def redact_email(email: str) -> str:
    """日志中隐藏邮箱本地部分。"""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """基于 SMTP 的邮件投递；未配置主机时只写日志并视为成功（本地开发模式）。"""

    def __init__(self, settings: Settings) -> None:
        self.host = settings.mail_host
        self.port = settings.mail_port
        self.username = settings.mail_username
        self.password = settings.mail_password
        self.use_tls = settings.mail_use_tls
        self.timeout = settings.mail_timeout_seconds
        self.from_email = settings.mail_from or settings.mail_username
        self.from_name = settings.mail_from_name

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def send(self, to: str, subject: str, body: str) -> bool:
        if not self.is_configured:
            # 正文可能包含验证码，开发模式下也不输出。
            logger.info("mail transport not configured, skip delivery to=%s subject=%s", redact_email(to), subject)
            return True

        msg = self._build_message(to, subject, body)
        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            # socket.timeout 是 OSError 子类，超时同样落到这里。
            logger.exception("mail delivery failed to=%s", redact_email(to))
            return False

        logger.info("mail sent to=%s subject=%s", redact_email(to), subject)
        return True


def otp_message(code: str, *, ttl_minutes: int) -> tuple[str, str]:
    """构造验证码邮件的主题与正文。"""
    subject = "您的登录验证码"
    body = (
        f"您的验证码是：{code}\n\n"
        f"验证码 {ttl_minutes} 分钟内有效，且只能使用一次。\n"
        "如果这不是您本人的操作，请忽略本邮件并尽快修改密码。"
    )
    return subject, body


def welcome_message(name: str | None) -> tuple[str, str]:
    """构造注册欢迎邮件的主题与正文。"""
    greeting = f"{name}，您好：" if name else "您好："
    subject = "欢迎注册"
    body = f"{greeting}\n\n您的账号已创建成功，登录时将通过邮箱验证码完成二次验证。"
    return subject, body
