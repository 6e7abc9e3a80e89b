"""
Feed source catalogue loading.

The catalogue is a JSON object mapping each source key to its feed URL and
optional social handles::

    {
      "rebuildfm": {"feed": "https://feeds.rebuild.fm/rebuildfm", "twitter": "@rebuildfm"},
      "mozaicfm": {"feed": "https://feed.mozaic.fm/", "hashtag": "mozaicfm"}
    }

File order is preserved; it is the input order used to break ordering ties.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import ValidationError as PydanticValidationError

from ..models import FeedSource
from ..utils.exceptions import ConfigurationError, ErrorCode, ValidationError
from ..utils.validators import URLValidator, validate_source_key


def parse_sources(data: Dict[str, Any]) -> List[FeedSource]:
    """Build FeedSource models from the decoded catalogue.

    Raises:
        ConfigurationError: If an entry is malformed
    """
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Source catalogue must be a JSON object keyed by source id",
            error_code=ErrorCode.CONFIG_PARSE_ERROR,
        )

    sources = []
    for key, entry in data.items():
        if not isinstance(entry, dict) or "feed" not in entry:
            raise ConfigurationError(
                f"Source '{key}' must be an object with a 'feed' URL",
                config_key=key,
                error_code=ErrorCode.CONFIG_PARSE_ERROR,
            )
        try:
            validate_source_key(key)
            feed_url = URLValidator.validate_feed_url(entry["feed"])
            sources.append(FeedSource(
                key=key,
                feed=feed_url,
                twitter=entry.get("twitter") or None,
                hashtag=entry.get("hashtag") or None,
                link=entry.get("link") or None,
            ))
        except (ValidationError, PydanticValidationError) as e:
            raise ConfigurationError(
                f"Invalid source '{key}': {e}",
                config_key=key,
                error_code=ErrorCode.CONFIG_INVALID,
            ) from e

    return sources


def load_sources(path: Union[str, Path]) -> List[FeedSource]:
    """Load the source catalogue from a JSON file.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Source catalogue not found: {path}",
            config_key="sources.path",
            error_code=ErrorCode.CONFIG_MISSING,
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Source catalogue is not valid JSON: {e}",
            config_key="sources.path",
            error_code=ErrorCode.CONFIG_PARSE_ERROR,
        ) from e

    return parse_sources(data)
