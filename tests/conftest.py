"""Root test configuration: fake collaborators and fast settings shared by all tests"""

from pathlib import Path

import pytest

from mdsync.config import Settings


class FakeSurface:
    """In-memory editing surface; type() simulates a user edit."""

    def __init__(self) -> None:
        self.body = ""
        self.set_calls = 0
        self._callback = None

    def get_body(self) -> str:
        return self.body

    def set_body(self, text: str) -> None:
        self.body = text
        self.set_calls += 1
        # Real editors notify listeners for programmatic changes too.
        if self._callback is not None:
            self._callback(text)

    def on_body_changed(self, callback) -> None:
        self._callback = callback

    def type(self, text: str) -> None:
        self.body = text
        self._callback(text)


class FakeUI:
    """Scripted HostUI that records every notification."""

    def __init__(self) -> None:
        self.overwrite = False
        self.delete_choice = "all"
        self.url_answer = None
        self.open_large = True
        self.notifications: list[tuple[str, str]] = []
        self.delete_prompts: list = []
        self.url_prompts: list[tuple[str, str]] = []

    async def confirm_overwrite(self, target: Path) -> bool:
        return self.overwrite

    async def confirm_deletes(self, ops):
        self.delete_prompts.append(list(ops))
        return list(ops) if self.delete_choice == "all" else None

    async def prompt_url(self, current: str, prompt: str):
        self.url_prompts.append((current, prompt))
        return self.url_answer

    async def confirm_large_file(self, size: int) -> bool:
        return self.open_large

    def notify(self, level: str, message: str) -> None:
        self.notifications.append((level, message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.notifications]


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def ui():
    return FakeUI()


@pytest.fixture
def sent():
    """List that doubles as a send callback target: use sent.append."""
    return []


@pytest.fixture
def settings():
    return Settings(
        debounce_ms=10,
        update_debounce_ms=5,
        image_retry_limit=2,
        image_retry_base_delay=0.01,
        pending_image_timeout=0.5,
        upload_timeout=0.5,
        rename_timeout=0.5,
        url_edit_timeout=0.5,
    )


@pytest.fixture
def uri():
    """Deterministic display URI factory."""
    return lambda path: f"view://{Path(path).as_posix()}"
