from __future__ import annotations

import threading
from typing import List, Optional

import requests

from .config import AlertConfig
from .events import AttackEvent
from .logging_system import LoggerFactory


class AlertSender:
    """Posts attack detections to chat webhooks.

    Each detection is sent from a short-lived daemon thread so a slow
    webhook never holds up the request that tripped the detector.
    """

    def __init__(self, cfg: AlertConfig) -> None:
        self.cfg = cfg
        self.logger = LoggerFactory.get_logger("apiguard.alerts")

    @property
    def enabled(self) -> bool:
        return bool(self.cfg.discord_webhook_url or self.cfg.slack_webhook_url)

    def format(self, event: AttackEvent) -> str:
        return (f"Attack detected: {event.attack_type}\n"
                f"- ip: {event.identity}\n"
                f"- time: {event.timestamp.isoformat()}")

    def send_discord(self, content: str) -> None:
        if not self.cfg.discord_webhook_url:
            return
        requests.post(self.cfg.discord_webhook_url, json={"content": content}, timeout=self.cfg.timeout)

    def send_slack(self, text: str) -> None:
        if not self.cfg.slack_webhook_url:
            return
        requests.post(self.cfg.slack_webhook_url, json={"text": text}, timeout=self.cfg.timeout)

    def deliver(self, event: AttackEvent) -> List[str]:
        """Send to every configured channel. Returns the channels that failed."""
        content = self.format(event)
        failed = []
        for channel, send in (("discord", self.send_discord), ("slack", self.send_slack)):
            try:
                send(content)
            except requests.RequestException as e:
                self.logger.warning("%s alert for %s failed: %s", channel, event.identity, e)
                failed.append(channel)
        return failed

    def __call__(self, event: AttackEvent) -> Optional[threading.Thread]:
        if not self.enabled:
            return None
        t = threading.Thread(target=self.deliver, args=(event,), daemon=True, name="apiguard-alert")
        t.start()
        return t
