"""Action Gateway contract.

The interpreter never talks to a device directly. Hosts supply an
``ActionGateway`` implementation that performs gestures, samples pixels,
recognizes text and matches templates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, model_validator


class GlobalAction(str, Enum):
    BACK = "back"
    HOME = "home"
    RECENTS = "recents"


class ScreenRegion(BaseModel):
    """A rectangle in screen pixels, right/bottom exclusive."""

    model_config = ConfigDict(frozen=True)

    left: int
    top: int
    right: int
    bottom: int

    @model_validator(mode="after")
    def _non_empty(self) -> Self:
        if self.right <= self.left or self.bottom <= self.top:
            raise ValueError(
                f"empty region ({self.left},{self.top})-({self.right},{self.bottom})"
            )
        return self

    @property
    def center(self) -> tuple[int, int]:
        return (self.left + self.right) // 2, (self.top + self.bottom) // 2


class TextBlock(BaseModel):
    """One block of recognized text and where it was found."""

    text: str
    bounds: ScreenRegion | None = None


class RecognizedText(BaseModel):
    text: str = ""
    blocks: list[TextBlock] = []


class ImageMatch(BaseModel):
    """Top-left corner and size of a template match."""

    x: int
    y: int
    width: int
    height: int
    confidence: float

    @property
    def center(self) -> tuple[int, int]:
        return self.x + self.width // 2, self.y + self.height // 2


class TextRecognizer(ABC):
    """A text-recognition session.

    Recognition is asynchronous: ``process`` returns immediately with a
    future that completes with the recognized text.
    """

    @abstractmethod
    def process(self, region: ScreenRegion | None) -> Future[RecognizedText]:
        """Capture the screen (or *region* of it) and recognize its text."""

    @abstractmethod
    def close(self) -> None:
        """Release the session. Called at most once per session."""


class ActionGateway(ABC):
    """Device actions and sensing used by the interpreter.

    Every method except ``TextRecognizer.process`` is synchronous from the
    interpreter's point of view.
    """

    def is_ready(self) -> bool:
        """Whether gestures can currently be dispatched."""
        return True

    @abstractmethod
    def click(self, x: float, y: float) -> None: ...

    @abstractmethod
    def long_click(self, x: float, y: float, duration_ms: int) -> None: ...

    @abstractmethod
    def swipe(
        self, x1: float, y1: float, x2: float, y2: float, duration_ms: int,
    ) -> None: ...

    @abstractmethod
    def perform_global_action(self, action: GlobalAction) -> None: ...

    @abstractmethod
    def get_pixel(self, x: int, y: int) -> int | None:
        """Packed ARGB color at (x, y), or None when capture is unavailable."""

    @abstractmethod
    def create_text_recognizer(self) -> TextRecognizer | None: ...

    @abstractmethod
    def find_image(self, template: Path, threshold: float) -> ImageMatch | None:
        """Best match of *template* on the current screen at or above *threshold*."""

    @abstractmethod
    def send_message(self, text: str) -> None:
        """Deliver a chat notification."""

    @abstractmethod
    def vibrate(self, duration_ms: int) -> None: ...

    @abstractmethod
    def set_clipboard(self, text: str) -> None: ...

    @abstractmethod
    def show_toast(self, text: str) -> None: ...
