import httpx

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils


class ChannelService:
    """Client for the messaging-channel service that delivers outbound texts."""
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.channel_service_url = environment_utils.get_env_variable("CHANNEL_SERVICE_URL")
        self.timeout = environment_utils.get_env_variable("COLLABORATOR_TIMEOUT_SECONDS")

    async def send_message(self, phone: str, text: str) -> bool:
        """
        Send a text to a contact. Fire-and-forget: failures are logged and
        reported as False, never raised and never retried here.
        """
        send_url = f"{self.channel_service_url}/messages/send"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(send_url, json={"to": phone, "message": text})
            if response.status_code >= 400:
                self.log_util.error(
                    service_name="ChannelService",
                    message=f"[SEND] ❌ Channel rejected message to {phone}: HTTP {response.status_code}"
                )
                return False
            self.log_util.info(
                service_name="ChannelService",
                message=f"[SEND] ✅ Message sent to {phone}"
            )
            return True
        except httpx.HTTPError as e:
            self.log_util.error(
                service_name="ChannelService",
                message=f"[SEND] ❌ Error sending message to {phone}: {str(e)}"
            )
            return False
