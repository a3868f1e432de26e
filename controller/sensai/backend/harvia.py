"""HTTP client for the sauna hardware vendor API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..models import SensorReading

logger = logging.getLogger(__name__)


class HarviaClient:
    """Bearer-token client for telemetry reads and device commands.

    The token from the login call is cached; a 401 drops it, logs in again,
    and retries the request once.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.harvia.base_url, timeout=settings.http_timeout_seconds
        )
        self._token: Optional[str] = None

    async def login(self) -> Optional[str]:
        cfg = self.settings.harvia
        try:
            logger.info("harvia.login: requesting access token")
            response = await self._client.post(cfg.login_path, json={"email": cfg.email, "password": cfg.password})
            response.raise_for_status()
            data = response.json()
            token = data.get("idToken") or data.get("token") or data.get("accessToken")
            if not token:
                logger.error("harvia.login: response missing token %s", sorted(data))
                return None
            self._token = token
            return token
        except httpx.TimeoutException:
            logger.error("harvia.login: request timeout")
        except httpx.HTTPStatusError as e:
            logger.error("harvia.login: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("harvia.login: network error - %s", e)
        except ValueError as e:
            logger.error("harvia.login: malformed response - %s", e)
        return None

    async def get_sensor_data(self) -> Optional[SensorReading]:
        """Latest telemetry, or None when the read failed for any reason."""

        try:
            response = await self._authorized("GET", self.settings.harvia.sensors_path)
            if response is None:
                return None
            response.raise_for_status()
            data = response.json()
            return SensorReading(
                temperature=float(data["temperature"]),
                humidity=float(data["humidity"]),
                presence=bool(data.get("presence", False)),
                timestamp=data.get("timestamp"),
            )
        except httpx.TimeoutException:
            logger.warning("harvia.sensors: request timeout")
        except httpx.HTTPStatusError as e:
            logger.warning("harvia.sensors: HTTP %d", e.response.status_code)
        except httpx.HTTPError as e:
            logger.warning("harvia.sensors: network error - %s", e)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("harvia.sensors: malformed response - %s", e)
        return None

    async def control_device(
        self,
        device_id: str,
        target_temperature: Optional[int] = None,
        target_humidity: Optional[int] = None,
    ) -> bool:
        payload: Dict[str, Any] = {"deviceId": device_id}
        if target_temperature is not None:
            payload["targetTemperature"] = target_temperature
        if target_humidity is not None:
            payload["targetHumidity"] = target_humidity
        try:
            response = await self._authorized("POST", self.settings.harvia.control_path, json=payload)
            if response is None:
                return False
            response.raise_for_status()
            logger.info("harvia.control: %s accepted", payload)
            return True
        except httpx.HTTPStatusError as e:
            logger.error("harvia.control: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("harvia.control: transport error - %s", e)
        return False

    async def _authorized(self, method: str, path: str, **kwargs: Any) -> Optional[httpx.Response]:
        token = self._token or await self.login()
        if token is None:
            return None
        response = await self._client.request(method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        if response.status_code != 401:
            return response
        logger.info("harvia: token rejected, logging in again")
        self._token = None
        token = await self.login()
        if token is None:
            return None
        return await self._client.request(method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs)

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing Harvia HTTP client: %s", e)


__all__ = ["HarviaClient"]
