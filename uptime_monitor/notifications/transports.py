"""通知传输层

传输层只负责把已经渲染好的消息送达外部服务：
- SmtpEmailTransport 通过 aiosmtplib 发送 HTML 邮件
- HttpWebhookTransport 通过 aiohttp 发送 HTTP POST
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any, Optional

import aiohttp
import aiosmtplib

from ..utils.exceptions import NotificationError
from ..utils.log_manager import get_logger


class SmtpEmailTransport:
    """SMTP 邮件传输"""

    def __init__(self, config: Dict[str, Any]):
        """
        初始化 SMTP 传输

        Args:
            config: smtp 配置段（hostname、port、username、password、use_tls、
                start_tls、from_email、from_name、timeout）
        """
        self.logger = get_logger('transport.smtp')
        self.hostname = config.get('hostname', '')
        self.port = int(config.get('port', 587))
        self.username = config.get('username') or None
        self.password = config.get('password') or None
        self.use_tls = bool(config.get('use_tls', False))
        self.start_tls = config.get('start_tls')
        self.from_email = config.get('from_email') or self.username or ''
        self.from_name = config.get('from_name', '在线监控')
        self.timeout = config.get('timeout', 30)

    def _create_message(self, to: str, subject: str, html_body: str) -> MIMEMultipart:
        message = MIMEMultipart('alternative')
        message['From'] = formataddr((self.from_name, self.from_email))
        message['To'] = to
        message['Subject'] = subject
        message.attach(MIMEText(html_body, 'html', 'utf-8'))
        return message

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        """
        发送邮件

        Args:
            to: 收件人
            subject: 主题
            html_body: HTML 正文

        Returns:
            bool: 发送是否成功

        Raises:
            NotificationError: 未配置 SMTP 服务器或 SMTP 发送失败
        """
        if not self.hostname:
            raise NotificationError("未配置SMTP服务器，无法发送邮件", channel_type='email')

        message = self._create_message(to, subject, html_body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.hostname,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=self.start_tls,
                timeout=self.timeout
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            self.logger.error(f"SMTP发送失败: {self.from_email} -> {to}: {e}")
            raise NotificationError(f"SMTP发送失败: {e}", channel_type='email', cause=e)

        self.logger.debug(f"邮件发送成功: {self.from_email} -> {to}")
        return True


class HttpWebhookTransport:
    """HTTP 推送传输"""

    def __init__(self, timeout: float = 10, verify_ssl: bool = True,
                 session: Optional[aiohttp.ClientSession] = None):
        self.logger = get_logger('transport.webhook')
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._session = session

    async def send(self, url: str, headers: Dict[str, str], body: str) -> int:
        """
        发送 POST 请求

        Args:
            url: 目标地址
            headers: 请求头
            body: 纯文本请求体

        Returns:
            int: 响应状态码

        Raises:
            NotificationError: 请求无法完成
        """
        try:
            if self._session is not None:
                return await self._post(self._session, url, headers, body)

            timeout = aiohttp.ClientTimeout(total=self.timeout)
            connector = aiohttp.TCPConnector(ssl=bool(self.verify_ssl))
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                return await self._post(session, url, headers, body)
        except (aiohttp.ClientError, ValueError) as e:
            self.logger.error(f"推送请求失败: {url}: {e}")
            raise NotificationError(f"推送请求失败: {e}", channel_type='webhook', cause=e)

    async def _post(self, session: aiohttp.ClientSession, url: str,
                    headers: Dict[str, str], body: str) -> int:
        async with session.post(url, headers=headers, data=body.encode('utf-8')) as response:
            text = await response.text()
            if response.status >= 300:
                self.logger.warning(f"推送服务返回状态码 {response.status}: {text[:200]}")
            return response.status
