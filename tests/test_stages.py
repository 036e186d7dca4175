"""
Tests for playback handles and the shared synthesizer interruption policy.
"""
import asyncio

import pytest

from voice_agent.errors import SynthesisError
from voice_agent.stages import BaseSynthesizer, UtteranceRequest


class GatedSynthesizer(BaseSynthesizer):
    """Each utterance plays until its gate is opened."""

    def __init__(self):
        super().__init__()
        self.gates = {}
        self.log = []

    async def _play(self, request):
        gate = self.gates.setdefault(request.text, asyncio.Event())
        self.log.append(("start", request.text))
        try:
            await gate.wait()
        except asyncio.CancelledError:
            self.log.append(("cancelled", request.text))
            raise
        if request.text == "explode":
            raise ValueError("bad audio")
        self.log.append(("end", request.text))


@pytest.mark.asyncio
async def test_non_interrupting_requests_queue():
    synth = GatedSynthesizer()
    first = synth.speak(UtteranceRequest("one"))
    second = synth.speak(UtteranceRequest("two"))
    await asyncio.sleep(0.01)

    assert synth.log == [("start", "one")]

    synth.gates["one"].set()
    await first.wait()
    await asyncio.sleep(0.01)
    assert synth.log[-1] == ("start", "two")

    synth.gates["two"].set()
    await second.wait()
    assert synth.log == [("start", "one"), ("end", "one"), ("start", "two"), ("end", "two")]


@pytest.mark.asyncio
async def test_interrupting_request_cancels_current():
    synth = GatedSynthesizer()
    first = synth.speak(UtteranceRequest("one"))
    await asyncio.sleep(0.01)

    second = synth.speak(UtteranceRequest("two", interrupt=True))
    await asyncio.sleep(0.01)

    assert first.interrupted
    assert first.done()
    assert synth.log == [("start", "one"), ("cancelled", "one"), ("start", "two")]
    assert synth.current is second

    synth.gates["two"].set()
    await second.wait()


@pytest.mark.asyncio
async def test_interrupt_after_finish_is_noop():
    synth = GatedSynthesizer()
    synth.gates["one"] = asyncio.Event()
    synth.gates["one"].set()
    playback = synth.speak(UtteranceRequest("one"))
    await playback.wait()

    assert playback.interrupt() is False
    assert playback.interrupted is False


@pytest.mark.asyncio
async def test_wait_returns_after_interrupt():
    synth = GatedSynthesizer()
    playback = synth.speak(UtteranceRequest("one"))
    await asyncio.sleep(0.01)

    assert playback.interrupt() is True
    await asyncio.wait_for(playback.wait(), 1.0)
    assert playback.cancelled()
    assert playback.error is None


@pytest.mark.asyncio
async def test_failure_surfaces_as_synthesis_error():
    synth = GatedSynthesizer()
    playback = synth.speak(UtteranceRequest("explode"))
    await asyncio.sleep(0.01)
    synth.gates["explode"].set()

    with pytest.raises(SynthesisError, match="bad audio"):
        await playback.wait()
    assert isinstance(playback.error, SynthesisError)


@pytest.mark.asyncio
async def test_done_callback_receives_playback():
    synth = GatedSynthesizer()
    seen = []
    playback = synth.speak(UtteranceRequest("one"))
    playback.add_done_callback(seen.append)
    await asyncio.sleep(0.01)
    synth.gates["one"].set()
    await playback.wait()
    await asyncio.sleep(0)

    assert seen == [playback]


@pytest.mark.asyncio
async def test_aclose_interrupts_current():
    synth = GatedSynthesizer()
    playback = synth.speak(UtteranceRequest("one"))
    await asyncio.sleep(0.01)

    await synth.aclose()

    assert playback.interrupted
    assert ("cancelled", "one") in synth.log


@pytest.mark.asyncio
async def test_base_play_is_abstract():
    playback = BaseSynthesizer().speak(UtteranceRequest("one"))

    with pytest.raises(SynthesisError):
        await playback.wait()
