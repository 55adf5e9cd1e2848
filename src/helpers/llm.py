from openai import AsyncOpenAI

from src.core.config import OPENAI_API_KEY, OPENAI_MODEL


class LLMUnavailable(Exception):
    pass


class LLMClient:
    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_MODEL):
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key) if api_key else None

    @property
    def available(self) -> bool:
        return self.client is not None

    async def generate_response(self, prompt: str, system_prompt: str = "You are an expert educational assistant.",
                                max_tokens: int = 200, temperature: float = 0.7) -> str:
        if self.client is None:
            raise LLMUnavailable("OPENAI_API_KEY is not configured")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        content = response.choices[0].message.content
        if not content:
            raise LLMUnavailable("Empty completion")
        return content.strip()
