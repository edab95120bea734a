import logging

from yinyang.config import Settings
from yinyang.models.runtime_config import RuntimeConfig
from yinyang.repositories.base import AbstractConfigRepository

logger = logging.getLogger(__name__)

MAX_REQUEST_ID_LENGTH = 32


def _coerce(name: str, raw: str | None, default, cast):
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("[config] unparsable value, using default | name=%s | value=%r", name, raw)
        return default


def load_runtime_config(repository: AbstractConfigRepository, settings: Settings) -> RuntimeConfig:
    """Read every named setting from the config store, falling back to Settings defaults."""
    id_length = _coerce(
        "requestIdLength", repository.get("requestIdLength"), settings.DEFAULT_REQUEST_ID_LENGTH, int
    )
    return RuntimeConfig(
        prompt=repository.get("prompt") or settings.DEFAULT_PROMPT,
        detail=repository.get("detail") or settings.DEFAULT_DETAIL,
        good_threshold=_coerce(
            "goodThreshold", repository.get("goodThreshold"), settings.DEFAULT_GOOD_THRESHOLD, float
        ),
        vision_model=repository.get("visionModel") or settings.DEFAULT_VISION_MODEL,
        classifier_model=repository.get("classifierModel") or settings.DEFAULT_CLASSIFIER_MODEL,
        request_id_length=max(4, min(id_length, MAX_REQUEST_ID_LENGTH)),
    )
