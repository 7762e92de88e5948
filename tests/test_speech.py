"""Tests for speech synthesis."""

from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from turnengine.artifacts import ArtifactStore
from turnengine.effects.speech import SpeechSynthesizer, sanitize_plain_text
from turnengine.errors import UpstreamError


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock()
    mock.audio.speech.create = AsyncMock(return_value=MagicMock(content=b"ID3 audio"))
    return mock


@pytest.fixture
def synth(client: MagicMock, artifacts: ArtifactStore) -> SpeechSynthesizer:
    return SpeechSynthesizer(client, artifacts, default_voice="nova")


class TestSanitize:
    def test_strips_markdown(self):
        text = "# Title\n**Bold** and _soft_ with a [link](http://x.y)."
        assert sanitize_plain_text(text) == "Title Bold and soft with a link."

    def test_drops_code_blocks_and_images(self):
        text = "Before ```python\nprint(1)\n``` after ![pic](a.png) `inline`"
        assert sanitize_plain_text(text) == "Before after inline"

    def test_horizontal_rule(self):
        assert sanitize_plain_text("one\n---\ntwo") == "one two"


def test_pick_voice(synth: SpeechSynthesizer) -> None:
    assert synth.pick_voice("Shimmer") == "shimmer"
    assert synth.pick_voice("robot") == "nova"
    assert synth.pick_voice(None) == "nova"


async def test_synthesize_writes_audio(
    synth: SpeechSynthesizer, client: MagicMock, artifacts: ArtifactStore
) -> None:
    path = await synth.synthesize("**Hello** there", "msg1", voice="echo")

    assert path == "audio/msg1.mp3"
    assert artifacts.read_bytes(path) == b"ID3 audio"
    kwargs = client.audio.speech.create.call_args.kwargs
    assert kwargs["input"] == "Hello there"
    assert kwargs["voice"] == "echo"


async def test_nothing_speakable(synth: SpeechSynthesizer, client: MagicMock) -> None:
    assert await synth.synthesize("```code only```", "msg1") is None
    client.audio.speech.create.assert_not_awaited()


async def test_api_error(synth: SpeechSynthesizer, client: MagicMock) -> None:
    client.audio.speech.create.side_effect = openai.OpenAIError("down")
    with pytest.raises(UpstreamError):
        await synth.synthesize("hello", "msg1")
