"""
Weather lookup tool.

Plain HTTP GET against a wttr.in-compatible service, returning one short
sentence the agent can read out. Non-2xx responses keep their status code
on the raised ToolExecutionError.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any
from urllib.parse import quote

import aiohttp

from logging_setup import Component, get_logger

from .errors import ToolExecutionError
from .tools import ParameterKind, ParameterSpec, ToolDescriptor

logger = get_logger(Component.TOOLS)

DEFAULT_WEATHER_API_URL = "https://wttr.in"


class WeatherLookup:
    """Callable tool handler bound to a weather service base URL."""

    def __init__(self, base_url: str = DEFAULT_WEATHER_API_URL, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def url_for(self, location: str) -> str:
        return f"{self.base_url}/{quote(location, safe='')}"

    async def __call__(self, arguments: dict[str, Any]) -> str:
        location = str(arguments["location"]).strip()
        if not location:
            raise ToolExecutionError("location must not be empty", tool_name="weather")

        endpoint = self.url_for(location)
        start_ts = time.time()
        logger.debug("Requesting weather", endpoint=endpoint)
        try:
            async with aiohttp.ClientSession() as s:
                async with s.get(
                    endpoint,
                    params={"format": "%C %t"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    if not 200 <= resp.status < 300:
                        logger.warning(
                            "Weather API returned error status",
                            endpoint=endpoint,
                            status=resp.status,
                            latency_ms=int((time.time() - start_ts) * 1000),
                        )
                        raise ToolExecutionError(
                            f"Weather API returned status: {resp.status}",
                            tool_name="weather",
                            status_code=resp.status,
                        )
                    weather = (await resp.text()).strip()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "Weather API request failed",
                endpoint=endpoint,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            raise ToolExecutionError(
                f"Weather API request failed: {type(e).__name__}", tool_name="weather"
            ) from e

        logger.info(
            "Weather API response",
            endpoint=endpoint,
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return f"The weather in {location} right now is {weather}."


def weather_tool(base_url: str = DEFAULT_WEATHER_API_URL) -> ToolDescriptor:
    """The `weather` tool descriptor."""
    return ToolDescriptor(
        name="weather",
        description="Get the weather in a location",
        parameters=(
            ParameterSpec(
                name="location",
                kind=ParameterKind.STRING,
                description="The location to get the weather for",
            ),
        ),
        handler=WeatherLookup(base_url),
    )
