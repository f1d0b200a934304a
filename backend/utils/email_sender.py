"""
SMTP 邮件发送
"""
import logging
import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

logger = logging.getLogger(__name__)

# SMTP 配置（从环境变量读取）
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM = os.getenv("SMTP_FROM", "")

SUBJECTS = {
    "verify": "注册验证码",
    "reset": "密码重置验证码",
}


def send_code_email(to_email: str, code: str, purpose: str = "verify") -> bool:
    """
    发送验证码邮件

    Args:
        to_email: 收件人邮箱
        code: 验证码
        purpose: verify（注册）或 reset（重置密码）

    Returns:
        是否发送成功
    """
    # 检查 SMTP 是否配置
    if not all([SMTP_HOST, SMTP_USER, SMTP_PASSWORD]):
        logger.warning(f"⚠️ SMTP未配置，验证码: {code} -> {to_email}")
        return False

    try:
        # 构建邮件
        msg = MIMEMultipart()
        msg['From'] = SMTP_FROM or SMTP_USER
        msg['To'] = to_email
        msg['Subject'] = SUBJECTS.get(purpose, SUBJECTS["verify"])

        # 邮件正文
        body = f"""您好！

您的验证码是：{code}

验证码有效期为10分钟，请尽快使用。

如果这不是您的操作，请忽略此邮件。
"""

        msg.attach(MIMEText(body, 'plain', 'utf-8'))

        # 发送邮件
        with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
            server.login(SMTP_USER, SMTP_PASSWORD)
            server.sendmail(SMTP_FROM or SMTP_USER, to_email, msg.as_string())

        logger.info(f"✅ 邮件发送成功: {to_email}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"❌ 邮件发送失败: {e}")
        return False
