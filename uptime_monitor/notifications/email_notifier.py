"""邮件通知器"""

import html

from ..models.channel import EmailChannelConfig
from ..models.monitor import MonitorStatus, TransitionEvent
from ..utils.exceptions import NotificationError
from .base import BaseNotifier, register_notifier

SUBJECT_TEMPLATE = '[{{status_label}}] {{monitor_name}}'

BODY_TEMPLATE = """<html>
<body>
<h2>{{headline}}</h2>
<table>
<tr><td>监控名称</td><td>{{monitor_name}}</td></tr>
<tr><td>监控目标</td><td>{{target}}</td></tr>
<tr><td>当前状态</td><td>{{status}}</td></tr>
<tr><td>发生时间</td><td>{{timestamp}}</td></tr>
<tr><td>失败原因</td><td>{{reason}}</td></tr>
<tr><td>响应时间</td><td>{{latency}}ms</td></tr>
<tr><td>详细信息</td><td>{{message}}</td></tr>
</table>
<p>此邮件由在线监控系统自动发送，请勿回复。</p>
</body>
</html>
"""

TEST_SUBJECT = '[TEST] 通知渠道测试'
TEST_BODY = """<html>
<body>
<p>这是一条来自在线监控系统的测试消息，收到说明邮件通知配置正确。</p>
</body>
</html>
"""


@register_notifier('email')
class EmailNotifier(BaseNotifier):
    """邮件通知器，主题和正文由状态变化事件渲染"""

    channel: EmailChannelConfig

    def _template_vars(self, event: TransitionEvent, monitor_name: str) -> dict:
        outcome = event.outcome
        is_down = event.new_status == MonitorStatus.DOWN
        return {
            'status_label': event.new_status.value.upper(),
            'headline': f"{monitor_name} 无法访问" if is_down else f"{monitor_name} 已恢复",
            'monitor_name': monitor_name,
            'target': outcome.target or '未知',
            'status': event.new_status.value,
            'timestamp': event.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'reason': outcome.reason or '无',
            'latency': f"{outcome.latency * 1000:.0f}",
            'message': outcome.message or '无',
        }

    async def deliver(self, event: TransitionEvent, monitor_name: str) -> None:
        variables = self._template_vars(event, monitor_name)
        subject = self.render_template(SUBJECT_TEMPLATE, variables)
        body = self.render_template(
            BODY_TEMPLATE, {key: html.escape(str(value)) for key, value in variables.items()})
        await self._send(subject, body)

    async def send_test(self) -> None:
        await self._send(TEST_SUBJECT, TEST_BODY)

    async def _send(self, subject: str, body: str) -> None:
        sent = await self.transport.send(self.channel.address, subject, body)
        if not sent:
            raise NotificationError(f"邮件发送失败: {self.channel.address}", channel_type='email')
        self.logger.info(f"邮件通知已发送: {self.channel.address} ({subject})")
