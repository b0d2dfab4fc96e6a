"""Shared test helpers for the clickscript test suite."""

import textwrap
from concurrent.futures import Future

from clickscript.model.gateway import (
    ActionGateway,
    RecognizedText,
    TextRecognizer,
)
from clickscript.runtime import EngineSettings, ScriptEngine

FAST_SETTINGS = EngineSettings(
    sleep_slice_ms=5,
    color_poll_ms=5,
    text_poll_ms=5,
    ocr_timeout_ms=200,
    find_text_ocr_timeout_ms=100,
)


class FakeRecognizer(TextRecognizer):
    """Recognizer that answers from a queue of canned results.

    The last result repeats once the queue is down to one entry. With
    ``hang=True`` the returned futures never complete.
    """

    def __init__(self, results=None, hang=False, error=None):
        self.results = list(results or [])
        self.hang = hang
        self.error = error
        self.regions = []
        self.closed = 0

    def process(self, region):
        self.regions.append(region)
        future = Future()
        if self.hang:
            return future
        if self.error is not None:
            future.set_exception(self.error)
        elif len(self.results) > 1:
            future.set_result(self.results.pop(0))
        elif self.results:
            future.set_result(self.results[0])
        else:
            future.set_result(RecognizedText())
        return future

    def close(self):
        self.closed += 1


class RecordingGateway(ActionGateway):
    """Gateway that records every action instead of performing it."""

    def __init__(self, pixels=None, default_pixel=0xFF000000, recognizer=None,
                 image_match=None, ready=True):
        self.actions = []
        self.pixels = dict(pixels or {})
        self.default_pixel = default_pixel
        self.recognizer = recognizer
        self.recognizers_created = 0
        self.image_match = image_match
        self.image_requests = []
        self.ready = ready
        self.click_error = None
        self.vibrate_error = None

    def is_ready(self):
        return self.ready

    def click(self, x, y):
        if self.click_error is not None:
            raise self.click_error
        self.actions.append(("click", x, y))

    def long_click(self, x, y, duration_ms):
        self.actions.append(("long_click", x, y, duration_ms))

    def swipe(self, x1, y1, x2, y2, duration_ms):
        self.actions.append(("swipe", x1, y1, x2, y2, duration_ms))

    def perform_global_action(self, action):
        self.actions.append(("global", action))

    def get_pixel(self, x, y):
        return self.pixels.get((x, y), self.default_pixel)

    def create_text_recognizer(self):
        self.recognizers_created += 1
        return self.recognizer

    def find_image(self, template, threshold):
        self.image_requests.append((template, threshold))
        return self.image_match

    def send_message(self, text):
        self.actions.append(("message", text))

    def vibrate(self, duration_ms):
        if self.vibrate_error is not None:
            raise self.vibrate_error
        self.actions.append(("vibrate", duration_ms))

    def set_clipboard(self, text):
        self.actions.append(("clipboard", text))

    def show_toast(self, text):
        self.actions.append(("toast", text))

    @property
    def clicks(self):
        return [a for a in self.actions if a[0] == "click"]


def make_engine(gateway=None, **kwargs):
    """Build an engine with fast timings. Returns (engine, gateway, log)."""
    if gateway is None:
        gateway = RecordingGateway()
    log = []
    kwargs.setdefault("settings", FAST_SETTINGS)
    engine = ScriptEngine(gateway, on_log=log.append, **kwargs)
    return engine, gateway, log


def run(source, gateway=None, **kwargs):
    """Execute dedented *source*. Returns (engine, gateway, log)."""
    engine, gateway, log = make_engine(gateway, **kwargs)
    engine.execute(textwrap.dedent(source).strip("\n"))
    return engine, gateway, log
