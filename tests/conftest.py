"""
Pytest configuration and shared fixtures.

Registers the integration marker and its command-line switch, and provides
fake recognizers so the unit suite never needs Tesseract or poppler.
"""

import pytest

from ledgerscan.core.config import Settings
from ledgerscan.services.acquisition.recognizers import PassResult, Recognizer, SegmentationMode


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real binaries and services"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring Tesseract, Ollama or Azure"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeRecognizer(Recognizer):
    """Returns canned text per segmentation mode; an Exception value makes that pass fail"""

    name = "fake"

    def __init__(self, outputs: dict, preprocess: bool = False):
        self.outputs = outputs
        self.wants_preprocessing = preprocess
        self.calls = []

    @classmethod
    def from_settings(cls, settings):
        return cls({})

    @property
    def modes(self):
        return tuple(SegmentationMode(name, psm) for psm, name in enumerate(self.outputs))

    def recognize(self, image, mode):
        self.calls.append(mode.name)
        output = self.outputs[mode.name]
        if isinstance(output, Exception):
            raise output
        return PassResult(text=output, confidence=80.0)


@pytest.fixture
def fake_recognizer_factory():
    return FakeRecognizer


@pytest.fixture
def test_settings():
    """Settings independent of the process environment and .env"""
    return Settings(
        _env_file=None,
        LLM_PROVIDER="ollama",
        OLLAMA_URL="http://ollama.test:11434",
        LLM_BACKOFF_SECONDS=0,
        OCR_PROVIDER="tesseract",
        FX_PROVIDER="frankfurter",
        FX_API_URL="https://fx.test",
        DEFAULT_CURRENCY="ILS",
        ACCEPTED_CURRENCIES="ILS,USD,EUR,GBP",
        SERVICE_BUS_CONNECTION_STRING=None,
    )
