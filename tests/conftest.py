import asyncio
import time

import pytest

from snaptrans.errors import OCREngineError
from snaptrans.image.synthetic import render_text_image
from snaptrans.ocr.engine import OCREngine
from snaptrans.ocr.unit import OCRExecutionUnit


class FakeOCR:
    """Scriptable engine factory. Every engine it builds shares this state.

    ``actions`` is consumed one entry per recognition:
    "error" raises OCREngineError, "crash" kills the worker, ("sleep", s) stalls.
    """

    def __init__(self, text="TEST", confidence=0.92):
        self.text = text
        self.confidence = confidence
        self.loads = []
        self.unloads = 0
        self.recognitions = 0
        self.actions = []
        self.fail_languages = set()

    def __call__(self):
        return _FakeEngine(self)


class _FakeEngine(OCREngine):
    def __init__(self, owner):
        self.owner = owner

    def load(self, languages):
        if languages in self.owner.fail_languages:
            raise OCREngineError(f"missing traineddata for {languages}")
        self.owner.loads.append(languages)

    def recognize(self, image, page_seg_mode, engine_mode):
        self.owner.recognitions += 1
        action = self.owner.actions.pop(0) if self.owner.actions else None
        if action == "error":
            raise OCREngineError("simulated engine failure")
        if action == "crash":
            raise SystemExit("simulated crash")
        if isinstance(action, tuple) and action[0] == "sleep":
            time.sleep(action[1])
        return self.owner.text, self.owner.confidence

    def unload(self):
        self.owner.unloads += 1


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_ocr():
    return FakeOCR()


@pytest.fixture
def make_unit():
    def _make(factory, **kwargs):
        kwargs.setdefault("execution", "thread")
        kwargs.setdefault("request_timeout", 5.0)
        kwargs.setdefault("warmup_sizes", ((60, 20), (120, 40)))
        return OCRExecutionUnit(factory, **kwargs)

    return _make


@pytest.fixture
def test_image():
    return render_text_image("TEST", 100, 40)
