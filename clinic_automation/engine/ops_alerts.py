"""
Ops alerts for failed tenant runs.

Posts a Slack message to SLACK_OPS_WEBHOOK_URL so operators notice when a
tenant's automation could not run (record store down, settings unreachable).
Alert failures are logged and never propagate.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from clinic_automation.utils.timeouts import SLACK_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class OpsAlerter:
    """Sends tenant-run failure alerts to Slack."""

    def __init__(self, webhook_url: Optional[str]):
        self.webhook_url = webhook_url

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def _build_message(self, job_id: str, tenant_id: Optional[str], reason: str) -> dict:
        title = f"Automation {job_id} failed for tenant {tenant_id or 'untenanted'}"
        return {
            "text": f"🚨 {title}",
            "blocks": [{
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*{title}*\n\n"
                        f"Job: `{job_id}`\n"
                        f"Tenant: `{tenant_id or 'untenanted'}`\n"
                        f"Failed: {datetime.now(timezone.utc).isoformat()}\n"
                        f"Reason: {reason}\n\n"
                        f"*Action*: check the record store / settings service, then rerun with "
                        f"`run_automation.py run {job_id} --tenant {tenant_id or ''}`"
                    )
                }
            }]
        }

    async def tenant_run_failed(self, job_id: str, tenant_id: Optional[str], reason: str) -> bool:
        """Send an alert; returns whether Slack accepted it."""
        if not self.webhook_url:
            logger.debug("SLACK_OPS_WEBHOOK_URL not configured, skipping alert")
            return False

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=self._build_message(job_id, tenant_id, reason),
                    timeout=aiohttp.ClientTimeout(total=SLACK_TIMEOUT_SECONDS)
                ) as response:
                    if response.status == 200:
                        logger.info(f"Slack alert sent for {job_id} / tenant {tenant_id}")
                        return True
                    logger.error(f"Slack alert failed: {response.status}")
                    return False

        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}", exc_info=True)
            return False
