from openai import AsyncOpenAI

from yinyang.models.request import VisionResult


class VisionClient:
    """
    Describes an image with an OpenAI-compatible chat completions endpoint.
    Built per submission from that submission's credential; never shared.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self._model = model
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        return self._model

    async def describe(self, image_url: str, prompt: str, detail: str) -> VisionResult:
        response = await self._client.chat.completions.create(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url, "detail": detail}},
                    ],
                }
            ],
        )
        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        usage = getattr(response, "usage", None)
        return VisionResult(
            content=content,
            tokens_used=getattr(usage, "total_tokens", None),
            model_used=getattr(response, "model", None) or self._model,
        )
