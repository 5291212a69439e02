"""在线监控引擎

周期性探测 HTTP/Ping 目标，按连续成功/失败次数判定 up/down，
状态变化时通过邮件或推送渠道发送通知。
"""

__version__ = "1.0.0"
