from eventsub_bridge.automation.base import AutomationSink
from eventsub_bridge.automation.obs import OBSClient

__all__ = ["AutomationSink", "OBSClient"]
