"""
Social Enrichment
=================

Providers of per-source social data (follower counts, hashtag activity and
similar) merged into feed records after aggregation. Fetching from social
networks is out of scope; data arrives pre-collected.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Union

from ..config.settings import SocialSettings
from ..utils.exceptions import SocialDataError
from ..utils.logging import get_logger_for_component

Accounts = Dict[str, Dict[str, str]]
SocialData = Dict[str, Dict[str, Any]]


class SocialDataProvider(ABC):
    """Source of partial record fields keyed by source key."""

    name = "base"

    @abstractmethod
    async def fetch(self, accounts: Accounts) -> SocialData:
        """Return ``{key: {field: value}}`` for the given accounts.

        Args:
            accounts: ``{key: {"twitter": handle, "hashtag": tag}}``

        Raises:
            SocialDataError: If the data cannot be obtained
        """


class NullSocialDataProvider(SocialDataProvider):
    """Provider that never returns data."""

    name = "null"

    async def fetch(self, accounts: Accounts) -> SocialData:
        return {}


class StaticSocialDataProvider(SocialDataProvider):
    """Serves pre-collected social data from a JSON file."""

    name = "static"

    def __init__(self, data_path: Union[str, Path]):
        self.data_path = Path(data_path)
        self.logger = get_logger_for_component("social")

    async def fetch(self, accounts: Accounts) -> SocialData:
        data = await asyncio.to_thread(self._read)
        result = {key: data[key] for key in accounts if isinstance(data.get(key), dict)}
        self.logger.info(
            f"Loaded social data for {len(result)}/{len(accounts)} accounts from {self.data_path}"
        )
        return result

    def _read(self) -> SocialData:
        try:
            with open(self.data_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SocialDataError(
                f"Cannot read social data: {e}",
                context={"path": str(self.data_path)},
            ) from e

        if not isinstance(data, dict):
            raise SocialDataError(
                "Social data must be a JSON object keyed by source key",
                context={"path": str(self.data_path)},
            )
        return data


def create_social_provider(settings: SocialSettings) -> SocialDataProvider:
    """Pick the provider for the configured social settings."""
    if settings.data_path:
        return StaticSocialDataProvider(settings.data_path)
    return NullSocialDataProvider()
