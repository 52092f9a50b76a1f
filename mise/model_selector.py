"""
Model selection policy.
"""
from typing import Optional

from mise.config import Settings, settings as default_settings
from mise.models import Topic

COMPLEX_TOPIC = "complex"


def select_model(topic: str, query_length: int, config: Optional[Settings] = None) -> str:
    """Pick a model id for a classified query.

    Coding goes to the code model; long or complex queries to the large
    model; everything else to the fast default.
    """
    config = config or default_settings
    if topic == Topic.CODING:
        return config.code_model
    if query_length > config.long_query_threshold or topic == COMPLEX_TOPIC:
        return config.large_model
    return config.default_model
