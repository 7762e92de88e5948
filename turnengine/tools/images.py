"""Image generation — OpenAI images API, delivered through a placeholder message."""

from __future__ import annotations

import base64
import logging
import time
from typing import TYPE_CHECKING

import openai

from turnengine.conversations.models import (
    ROLE_ASSISTANT,
    STATUS_COMPLETE,
    STATUS_FAILED,
    STATUS_PENDING,
    Message,
)
from turnengine.errors import UpstreamError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from turnengine.artifacts import ArtifactStore
    from turnengine.conversations.store import ConversationStore
    from turnengine.effects.broadcast import BroadcastHub

logger = logging.getLogger(__name__)

MESSAGE_TYPE_IMAGE = "image"
PENDING_TEXT = "Generating your image..."
FAILED_TEXT = "Sorry, I couldn't generate that image. Please try again."


def make_placeholder(conversation_id: str, owner_id: str, prompt: str, mode: str) -> Message:
    """Pending assistant message shown while the image is generated."""
    return Message(
        conversation_id=conversation_id,
        owner_id=owner_id,
        role=ROLE_ASSISTANT,
        text=PENDING_TEXT,
        status=STATUS_PENDING,
        mode=mode,
        metadata={"message_type": MESSAGE_TYPE_IMAGE, "prompt": prompt},
    )


class ImageGenerator:
    def __init__(
        self,
        client: AsyncOpenAI,
        artifacts: ArtifactStore,
        *,
        model: str = "gpt-image-1",
        size: str = "1024x1024",
        quality: str = "medium",
    ) -> None:
        self._client = client
        self._artifacts = artifacts
        self._model = model
        self._size = size
        self._quality = quality

    async def generate(self, prompt: str, name: str) -> str:
        """Generate one image and store it. Returns the artifact path."""
        try:
            response = await self._client.images.generate(
                model=self._model,
                prompt=prompt,
                size=self._size,
                quality=self._quality,
                n=1,
            )
        except openai.OpenAIError as exc:
            msg = f"Image generation failed: {exc}"
            raise UpstreamError(msg) from exc

        image_b64 = response.data[0].b64_json if response.data else None
        if not image_b64:
            msg = "No image data returned from OpenAI"
            raise UpstreamError(msg)
        return self._artifacts.write(f"images/{name}.png", base64.b64decode(image_b64))

    async def fulfil(
        self,
        placeholder: Message,
        conversations: ConversationStore,
        broadcast: BroadcastHub,
    ) -> str:
        """Store the placeholder, generate, then update the placeholder in place.

        Returns the final status. Generation failures mark the placeholder
        ``failed``. Unexpected errors also mark it ``failed`` before they
        propagate to the task wrapper.
        """
        await conversations.insert_message(placeholder)
        broadcast.publish(placeholder.owner_id, placeholder.to_event())

        prompt = placeholder.metadata.get("prompt", "")
        t0 = time.monotonic()
        try:
            path = await self.generate(prompt, placeholder.id)
        except (UpstreamError, ValueError) as exc:
            logger.warning("Image for %s failed: %s", placeholder.id, exc)
            await mark_failed(placeholder, conversations, broadcast, str(exc))
            return placeholder.status
        except Exception as exc:
            await mark_failed(placeholder, conversations, broadcast, str(exc))
            raise

        logger.info("Image for %s ready in %.1fs", placeholder.id, time.monotonic() - t0)
        placeholder.status = STATUS_COMPLETE
        placeholder.text = ""
        placeholder.metadata = {**placeholder.metadata, "image_path": path}
        await _save(placeholder, conversations, broadcast)
        return placeholder.status


async def mark_failed(
    placeholder: Message,
    conversations: ConversationStore,
    broadcast: BroadcastHub,
    error: str,
) -> None:
    """Flip a stored placeholder to ``failed`` and announce it."""
    placeholder.status = STATUS_FAILED
    placeholder.text = FAILED_TEXT
    placeholder.metadata = {**placeholder.metadata, "error": error}
    await _save(placeholder, conversations, broadcast)


async def _save(
    placeholder: Message, conversations: ConversationStore, broadcast: BroadcastHub
) -> None:
    await conversations.update_message(
        placeholder.id,
        status=placeholder.status,
        text=placeholder.text,
        metadata=placeholder.metadata,
    )
    broadcast.publish(placeholder.owner_id, placeholder.to_event())
