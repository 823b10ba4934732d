"""
HTTP Action Service
Runs the outbound call of http_request action nodes.
"""
from typing import Optional, Dict, Any
import httpx

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.interpolation_utils import interpolate

# Exceptions
from exceptions.flow_exception import HttpActionError


class HttpActionService:
    """
    Outbound HTTP client for action nodes. Every call is bounded by a timeout;
    per-action timeouts can shorten it but never extend it.
    """

    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.max_timeout_seconds = float(environment_utils.get_env_variable("HTTP_ACTION_TIMEOUT_SECONDS"))

    def _resolve_timeout(self, requested: Optional[Any]) -> float:
        try:
            timeout = float(requested) if requested is not None else self.max_timeout_seconds
        except (TypeError, ValueError):
            timeout = self.max_timeout_seconds
        if timeout <= 0:
            return self.max_timeout_seconds
        return min(timeout, self.max_timeout_seconds)

    def _interpolate_body(self, body: Any, variables: Dict[str, Any], **identifiers) -> Any:
        if isinstance(body, str):
            return interpolate(body, variables, **identifiers)
        if isinstance(body, dict):
            return {key: self._interpolate_body(value, variables, **identifiers) for key, value in body.items()}
        if isinstance(body, list):
            return [self._interpolate_body(item, variables, **identifiers) for item in body]
        return body

    async def execute(
        self,
        action_config: Dict[str, Any],
        variables: Dict[str, Any],
        contact_name: Optional[str] = None,
        phone: Optional[str] = None
    ) -> Any:
        """
        Perform the request described by action_config and return the parsed
        response (JSON when possible, text otherwise). contact_name and phone
        fill their placeholders in the url, headers and body.

        Raises:
            HttpActionError: missing url, transport error, timeout or non-2xx status
        """
        identifiers = {"contact_name": contact_name, "phone": phone}
        url = interpolate(action_config.get("url") or "", variables, **identifiers)
        if not url:
            raise HttpActionError(message="http_request action has no url")

        method = str(action_config.get("method") or "GET").upper()
        headers = {
            str(key): interpolate(str(value), variables, **identifiers)
            for key, value in (action_config.get("headers") or {}).items()
        }
        body = action_config.get("body")
        timeout = self._resolve_timeout(action_config.get("timeout"))

        self.log_util.info(
            service_name="HttpActionService",
            message=f"[HTTP_ACTION] {method} {url} (timeout {timeout}s)"
        )
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=self._interpolate_body(body, variables, **identifiers) if body is not None else None
                )
        except httpx.TimeoutException as e:
            raise HttpActionError(message=f"HTTP request to {url} timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise HttpActionError(message=f"HTTP request to {url} failed: {str(e)}") from e

        if response.status_code >= 400:
            raise HttpActionError(message=f"HTTP request to {url} returned status {response.status_code}")

        try:
            return response.json()
        except ValueError:
            return response.text
