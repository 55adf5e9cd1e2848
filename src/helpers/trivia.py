import logging
from typing import List, Optional

import httpx

from src.core.config import TRIVIA_API_URL, TRIVIA_CATEGORIES_URL

logger = logging.getLogger(__name__)

RESPONSE_CODE_MESSAGES = {
    1: "No results found for these parameters. Try adjusting your criteria.",
    2: "Invalid parameter in request",
    3: "Session token not found",
    4: "Session token has returned all possible questions",
    5: "Rate limit exceeded",
}


class TriviaAPIError(Exception):
    pass


class TriviaClient:
    """Клиент Open Trivia DB"""

    def __init__(self, base_url: str = TRIVIA_API_URL, categories_url: str = TRIVIA_CATEGORIES_URL,
                 timeout: float = 10.0):
        self.base_url = base_url
        self.categories_url = categories_url
        self.timeout = timeout

    async def _get(self, url: str, params: Optional[dict] = None) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise TriviaAPIError(f"Trivia API request failed: {e}") from e

    async def get_categories(self) -> List[dict]:
        data = await self._get(self.categories_url)
        if "trivia_categories" not in data:
            raise TriviaAPIError("Invalid response from categories API")
        return data["trivia_categories"]

    async def fetch_questions(self, amount: int, category: int, difficulty: str = "mixed",
                              question_type: str = "mixed") -> List[dict]:
        params = {"amount": amount, "category": category}
        if difficulty != "mixed":
            params["difficulty"] = difficulty
        if question_type != "mixed":
            params["type"] = question_type

        logger.info("Fetching trivia questions %s", params)
        data = await self._get(self.base_url, params)
        code = data.get("response_code", 0)
        if code != 0:
            raise TriviaAPIError(RESPONSE_CODE_MESSAGES.get(code, "Unknown error occurred"))
        return data.get("results", [])
