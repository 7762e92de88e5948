"""Speech synthesis for voice-mode turns (OpenAI audio speech API)."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import openai

from turnengine.errors import UpstreamError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from turnengine.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

VOICES = frozenset({
    "alloy", "ash", "ballad", "coral", "echo", "fable", "nova", "onyx", "sage", "shimmer",
})
MAX_SPEECH_CHARS = 4096

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]*)`")
_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_MARKUP_CHARS_RE = re.compile(r"[>_~#*]+")
_RULE_RE = re.compile(r"-{3,}")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_plain_text(text: str) -> str:
    """Strip Markdown so the text reads naturally when spoken."""
    text = _CODE_BLOCK_RE.sub(" ", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _IMAGE_RE.sub(" ", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _MARKUP_CHARS_RE.sub("", text)
    text = _RULE_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


class SpeechSynthesizer:
    def __init__(
        self,
        client: AsyncOpenAI,
        artifacts: ArtifactStore,
        *,
        model: str = "gpt-4o-mini-tts",
        default_voice: str = "alloy",
    ) -> None:
        self._client = client
        self._artifacts = artifacts
        self._model = model
        self._default_voice = default_voice

    def pick_voice(self, voice: str | None) -> str:
        if voice and voice.lower() in VOICES:
            return voice.lower()
        if voice:
            logger.info("Unknown voice %r, using %s", voice, self._default_voice)
        return self._default_voice

    async def synthesize(self, text: str, name: str, voice: str | None = None) -> str | None:
        """Speak *text* and store the audio. Returns the artifact path.

        Returns None when nothing speakable is left after sanitizing.
        """
        spoken = sanitize_plain_text(text)[:MAX_SPEECH_CHARS]
        if not spoken:
            return None
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=self.pick_voice(voice),
                input=spoken,
                response_format="mp3",
            )
        except openai.OpenAIError as exc:
            msg = f"Speech synthesis failed: {exc}"
            raise UpstreamError(msg) from exc
        return self._artifacts.write(f"audio/{name}.mp3", response.content)
