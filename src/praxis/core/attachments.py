"""
Attachment preprocessing.

Turns user attachments into text the orchestrator can put into history:

* audio without a transcript is transcribed (failures become ``[Transcription failed]``);
* images get a context-free preview, a context extraction from the message text and a refine call
  blending the two;
* text attachments are inlined.

The same image and audio passes describe media found in fetched web pages (``describe_media``),
with the article text as context.

The outgoing user message is assembled as: content, audio transcripts, text attachments, image
descriptions.
"""

import asyncio
import base64
import logging
from contextlib import nullcontext
from typing import (
    Dict,
    List,
    Sequence,
    Tuple,
)

from praxis.config import settings
from praxis.core import prompts
from praxis.core.schema import (
    Attachment,
    ImagePart,
    Message,
    Role,
)
from praxis.core.trace import Trace
from praxis.llm.errors import LLMProviderError
from praxis.llm.providers import (
    LLMProvider,
    load_provider,
)
from praxis.llm.schemas import (
    IMAGE_CONTEXT_SCHEMA,
    IMAGE_PREVIEW_SCHEMA,
)

logger = logging.getLogger(__name__)

TRANSCRIPTION_FAILED = "[Transcription failed]"


class AttachmentPreprocessor:
    """Builds the user message for a run from its content and attachments."""

    def __init__(
        self,
        transcriber: Tuple[LLMProvider, str] | None = None,
        vision: Tuple[LLMProvider, str] | None = None,
    ):
        # (provider, api model) pairs; resolved from settings on first use when not injected
        self._transcriber = transcriber
        self._vision = vision

    def _transcription_backend(self) -> Tuple[LLMProvider, str]:
        if self._transcriber is None:
            provider, info = load_provider(settings.TRANSCRIPTION_MODEL)
            self._transcriber = (provider, info.api_model)
        return self._transcriber

    def _vision_backend(self) -> Tuple[LLMProvider, str]:
        if self._vision is None:
            provider, info = load_provider(settings.VISION_MODEL)
            self._vision = (provider, info.api_model)
        return self._vision

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------
    async def transcribe(self, attachment: Attachment) -> str:
        if attachment.transcript:
            return attachment.transcript
        try:
            provider, model = self._transcription_backend()
            audio = base64.b64decode(attachment.data, validate=True)
            transcript = await provider.transcribe(audio, attachment.name, model)
        except (LLMProviderError, LookupError, ValueError) as exc:
            logger.warning("Transcription of '%s' failed: %s", attachment.name, exc)
            return TRANSCRIPTION_FAILED
        attachment.transcript = transcript
        return transcript

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    async def preview_image(self, image: Attachment) -> str:
        """Context-free description; never sees the user's text."""
        try:
            provider, model = self._vision_backend()
            result = await provider.structured_completion(
                model,
                [
                    Message(
                        role=Role.USER,
                        content=f"Describe the image {image.name} concisely.",
                        images=[_image_part(image)],
                    )
                ],
                IMAGE_PREVIEW_SCHEMA,
                system=prompts.IMAGE_PREVIEW_PROMPT,
            )
        except (LLMProviderError, LookupError) as exc:
            logger.warning("Image preview for '%s' failed: %s", image.name, exc)
            return ""
        return str(result.data["preview"])

    async def image_context(self, images: Sequence[Attachment], text: str) -> Dict[str, str]:
        """Context sentences per image name, taken from *text*."""
        if not text.strip():
            return {}
        try:
            provider, model = self._vision_backend()
            result = await provider.structured_completion(
                model,
                [Message(role=Role.USER, content=text)],
                IMAGE_CONTEXT_SCHEMA,
                system=prompts.image_context_prompt(images),
            )
        except (LLMProviderError, LookupError) as exc:
            logger.warning("Image context extraction failed: %s", exc)
            return {}
        return {item["name"]: item["context"] for item in result.data["images"]}

    async def refine_description(self, image: Attachment, preview: str, context: str) -> str:
        if not context:
            return preview
        try:
            provider, model = self._vision_backend()
            completion = await provider.complete(
                model,
                [
                    Message(
                        role=Role.USER,
                        content=prompts.refine_request(image.name, preview, context),
                        images=[_image_part(image)],
                    )
                ],
                system=prompts.REFINE_DESCRIPTION_PROMPT,
            )
        except (LLMProviderError, LookupError) as exc:
            logger.warning("Refining description of '%s' failed: %s", image.name, exc)
            return preview
        return completion.text.strip() or preview

    async def describe_images(self, images: Sequence[Attachment], text: str) -> None:
        pending = [image for image in images if not image.description]
        if not pending:
            return
        # Preview and context passes are independent
        *previews, contexts = await asyncio.gather(
            *(self.preview_image(image) for image in pending),
            self.image_context(pending, text),
        )
        descriptions = await asyncio.gather(
            *(
                self.refine_description(image, preview, contexts.get(image.name, ""))
                for image, preview in zip(pending, previews)
            )
        )
        for image, description in zip(pending, descriptions):
            image.description = description

    async def describe_media(
        self, images: Sequence[Attachment], audio: Sequence[Attachment], context: str
    ) -> None:
        """
        Describe media found in fetched content, in place.

        Images are previewed and refined against *context* (the article text); audio gets a
        transcript, or the failure marker.
        """
        _, *transcripts = await asyncio.gather(
            self.describe_images(images, context), *(self.transcribe(a) for a in audio)
        )
        for attachment, transcript in zip(audio, transcripts):
            attachment.transcript = transcript

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    async def process(
        self,
        content: str,
        attachments: Sequence[Attachment] = (),
        trace: Trace | None = None,
    ) -> Message:
        """Return the user message for *content* and *attachments*."""
        if not attachments:
            return Message(role=Role.USER, content=content)

        audio = [a for a in attachments if a.attachment_type == "audio"]
        texts = [a for a in attachments if a.attachment_type == "text"]
        images = [a for a in attachments if a.attachment_type == "image"]

        names = [a.name for a in attachments]
        with trace.span("attachments", input=names) if trace else nullcontext():
            transcripts = await asyncio.gather(*(self.transcribe(a) for a in audio))
            await self.describe_images(images, content)

        parts: List[str] = [content] if content else []
        parts.extend(
            f"[Audio transcription: {a.name}]\n{transcript}"
            for a, transcript in zip(audio, transcripts)
        )
        parts.extend(f"[Attachment: {a.name}]\n{a.data}" for a in texts)
        parts.extend(f"[Image: {a.name}]\n{a.description or ''}".rstrip() for a in images)
        return Message(
            role=Role.USER,
            content="\n\n".join(parts),
            images=[_image_part(image) for image in images],
        )


def _image_part(image: Attachment) -> ImagePart:
    return ImagePart(data=image.data, media_type=image.media_type or "image/jpeg")
