"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for PodFeed tests. Payload builders and
the scripted HTTP session live in ``tests/helpers.py``.
"""

import json
import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before any imports
os.environ["PODFEED_LOGGING__CONSOLE_LOGGING"] = "false"
os.environ["PODFEED_FETCH__RETRY_DELAY_SECONDS"] = "0"
os.environ["PODFEED_DEBUG"] = "true"

from podfeed.config.settings import (  # noqa: E402
    FetchSettings,
    OutputSettings,
    PodFeedSettings,
    ProcessingSettings,
    SocialSettings,
    SourceSettings,
)


@pytest.fixture
def output_root(tmp_path) -> Path:
    return tmp_path / "static"


@pytest.fixture
def sources_file(tmp_path) -> Path:
    path = tmp_path / "data" / "rss.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({
        "alpha": {"feed": "https://feeds.example.com/alpha.xml", "twitter": "@alpha_fm"},
        "beta": {"feed": "https://feeds.example.com/beta.xml", "hashtag": "betacast"},
    }), encoding="utf-8")
    return path


@pytest.fixture
def test_settings(output_root, sources_file) -> PodFeedSettings:
    """Settings with all output under a temporary directory."""
    return PodFeedSettings(
        fetch=FetchSettings(timeout_seconds=1.0, retry_delay_seconds=0.0),
        processing=ProcessingSettings(batch_width=20),
        output=OutputSettings(
            public_root=str(output_root),
            downloads_dir=str(output_root / "downloads"),
            snapshot_path=str(output_root / "build_info.json"),
        ),
        sources=SourceSettings(path=str(sources_file)),
        social=SocialSettings(enabled=True, data_path=None),
    )
