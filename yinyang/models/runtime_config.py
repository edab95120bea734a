from dataclasses import dataclass


@dataclass(frozen=True)
class RuntimeConfig:
    """Per-submission snapshot of the config store."""

    prompt: str
    detail: str
    good_threshold: float
    vision_model: str
    classifier_model: str
    request_id_length: int
