"""
Internet Service - Web search and weather lookups used to enrich agent prompts.
"""

import asyncio
import logging
import re
from urllib.parse import quote
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import requests

from ..core.config import InternetConfig

logger = logging.getLogger(__name__)

SEARCH_INDICATORS = [
    'what is', 'who is', 'when did', 'where is', 'how to',
    'latest', 'recent', 'current', 'today', 'news about',
    'search for', 'find information', 'look up',
    'weather in', 'weather for', 'temperature', 'forecast',
    "how's the weather", "what's the weather",
    'tell me about', 'information about', 'details about',
    'update on', 'status of', 'price of', 'stock price',
    'happening in', 'events in',
]

WEATHER_PATTERNS = [
    re.compile(r"what'?s the weather (?:in|for) ([a-z0-9\s,.-]+?)(?:\?|$|\.|!|,)", re.IGNORECASE),
    re.compile(r"how'?s the weather (?:in|for) ([a-z0-9\s,.-]+?)(?:\?|$|\.|!|,)", re.IGNORECASE),
    re.compile(r"weather (?:in|for) ([a-z0-9\s,.-]+?)(?:\?|$|\.|!|,)", re.IGNORECASE),
    re.compile(r"temperature (?:in|for) ([a-z0-9\s,.-]+?)(?:\?|$|\.|!|,)", re.IGNORECASE),
]

@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str

class InternetService:
    """Looks things up on the web for agents that have internet access."""

    def __init__(self, config: InternetConfig):
        self.config = config
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': 'NexusPrime/1.0'})

    def should_search(self, message: str) -> bool:
        """Check if a message might benefit from an internet lookup."""
        if not self.config.enabled:
            return False
        if self.config.auto_search:
            return True

        lower_message = message.lower()
        return any(indicator in lower_message for indicator in SEARCH_INDICATORS)

    def extract_weather_location(self, message: str) -> Optional[str]:
        lower_message = message.lower()
        for pattern in WEATHER_PATTERNS:
            match = pattern.search(lower_message)
            if match:
                location = match.group(1).strip()
                if len(location) > 1:
                    return location
        return None

    def _search_sync(self, query: str, max_results: int) -> List[SearchResult]:
        response = self.session.get(
            self.config.search_url,
            params={
                'action': 'opensearch',
                'search': query,
                'limit': max_results,
                'namespace': 0,
                'format': 'json',
            },
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()

        # opensearch returns [query, titles, descriptions, urls]
        data = response.json()
        titles, snippets, urls = data[1], data[2], data[3]
        return [
            SearchResult(title=title, url=url, snippet=snippet or "")
            for title, snippet, url in zip(titles, snippets, urls)
        ]

    async def search_web(self, query: str, max_results: Optional[int] = None) -> List[SearchResult]:
        """Search the web (Wikipedia) for the query."""
        limit = max_results or self.config.max_results
        results = await asyncio.to_thread(self._search_sync, query, limit)
        logger.info(f"Web search for '{query}' returned {len(results)} results")
        return results

    def _weather_sync(self, location: str) -> str:
        response = self.session.get(
            f"{self.config.weather_url.rstrip('/')}/{quote(location)}",
            params={'format': '3'},
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()
        return response.text.strip()

    async def get_weather(self, location: str) -> str:
        return await asyncio.to_thread(self._weather_sync, location)

    @staticmethod
    def format_search_results(results: List[SearchResult]) -> str:
        return "\n".join(
            f"{index}. {result.title} ({result.url}) {result.snippet}".strip()
            for index, result in enumerate(results, start=1)
        )

    @staticmethod
    def current_time_info() -> str:
        return datetime.now().strftime("%A, %B %d, %Y %H:%M")

    async def gather_context(self, message: str) -> Optional[str]:
        """Build a context block for the enriched prompt, or None if no lookup applies."""
        if not self.should_search(message):
            return None

        context = ""
        location = self.extract_weather_location(message)
        if location:
            try:
                context = f"Weather: {await self.get_weather(location)}"
            except (requests.RequestException, ValueError) as e:
                logger.error(f"Weather fetch failed for {location}: {e}")
                context = f"Weather unavailable for {location}."
        else:
            try:
                results = await self.search_web(message)
                if results:
                    context = f"Information: {self.format_search_results(results)}"
            except (requests.RequestException, ValueError, IndexError) as e:
                logger.error(f"Web search failed: {e}")
                context = "Web search unavailable."

        context = f"{context} Time: {self.current_time_info()}".strip()
        return context

    def close(self):
        self.session.close()
