import os
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep tests away from the real data directory.
os.environ.setdefault("TINY_GIANT_DATA_DIR", str(PROJECT_ROOT / ".pytest_data"))
os.environ.setdefault("TINY_GIANT_LOG_DIR", str(PROJECT_ROOT / ".pytest_data" / "logs"))

from core.exceptions import LLMError  # noqa: E402
from core.llm_adapter import LLMResponse  # noqa: E402
from core.reconciler import PlannerState, ProgressReconciler  # noqa: E402
from core.store import LocalStore  # noqa: E402

TODAY = date(2024, 3, 15)


class FakeLLM:
    """Scripted LLM: returns queued replies in order, or raises when given an exception."""

    def __init__(self, replies: Optional[List] = None):
        self.replies = list(replies or [])
        self.calls = []

    def generate(self, prompt, system_prompt=None, temperature=0.7, max_tokens=1000):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model="fake")

    def get_model_name(self):
        return "fake"


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def reconciler():
    return ProgressReconciler(PlannerState(), today_provider=lambda: TODAY)


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "data")


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def llm_error():
    return LLMError("boom", provider="fake", model_name="fake")
