import httpx

from yinyang.models.request import SentenceSentiment
from yinyang.services.errors import ClassifierError


def _label_score(labels: list[dict], name: str) -> float:
    matches = [item for item in labels if item.get("label") == name]
    if len(matches) != 1:
        raise ClassifierError(f"classifier output has {len(matches)} {name} labels, expected one")
    score = float(matches[0]["score"])
    if not 0.0 <= score <= 1.0:
        raise ClassifierError(f"{name} score {score} is outside [0, 1]")
    return score


def sentiment_from_labels(labels: list[dict], threshold: float) -> SentenceSentiment:
    """Reduce a [{label, score}, ...] classifier answer to a good/bad decision."""
    negative = _label_score(labels, "NEGATIVE")
    positive = _label_score(labels, "POSITIVE")
    return SentenceSentiment(
        negative=negative,
        positive=positive,
        good=positive - negative > threshold,
    )


class SentimentScorer:
    """Binary sentiment classifier reached over the Workers AI REST interface."""

    def __init__(self, base_url: str, api_token: str, model: str, timeout: float = 10.0) -> None:
        self._url = f"{base_url.rstrip('/')}/{model}"
        self._api_token = api_token
        self._model = model
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    async def classify(self, text: str) -> list[dict]:
        headers = {"Authorization": f"Bearer {self._api_token}"} if self._api_token else {}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json={"text": text}, headers=headers)
            response.raise_for_status()
            payload = response.json()

        labels = payload.get("result") if isinstance(payload, dict) else payload
        # Some deployments nest one list per input
        if isinstance(labels, list) and labels and isinstance(labels[0], list):
            labels = labels[0]
        if not isinstance(labels, list):
            raise ClassifierError(f"unexpected classifier payload: {payload!r}")
        return labels

    async def score(self, text: str, threshold: float) -> SentenceSentiment:
        labels = await self.classify(text)
        return sentiment_from_labels(labels, threshold)
