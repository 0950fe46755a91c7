"""
Google Gemini adapter (bespoke multimodal endpoints).

Images come back inline from ``:generateContent`` as base64 parts. Veo videos
run as long-running operations started with ``:predictLongRunning`` and
polled by operation name until ``done`` is true.
"""

import base64
import logging
from typing import Optional

from ..errors import ErrorKind, GenerationError
from ..models import (
    JobState,
    MediaKind,
    PollStatus,
    ProviderCapabilities,
    Submission,
    SubmitPayload,
    TaskHandle,
)
from .base import ProviderAdapter, as_dict, failure_text

logger = logging.getLogger(__name__)


# finishReason values that mean the model refused rather than failed
BLOCKING_FINISH_REASONS = {
    "SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "IMAGE_SAFETY",
}


class GeminiAdapter(ProviderAdapter):
    """Gemini image generation and Veo video generation."""

    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    capabilities = ProviderCapabilities(
        kinds=frozenset({MediaKind.IMAGE, MediaKind.VIDEO}),
        supports_image_to_image=True,
        supports_image_to_video=True,
        fallback_models={
            MediaKind.IMAGE: ["gemini-2.5-flash-image"],
            MediaKind.VIDEO: ["veo-3.0-fast-generate-001", "veo-3.0-generate-001"],
        },
        default_timeout=120.0,
    )

    def _auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.config.api_key.get_secret_value()}

    async def submit(self, payload: SubmitPayload) -> Submission:
        self._check_kind(payload)
        if payload.kind == MediaKind.IMAGE:
            return await self._submit_image(payload)
        return await self._submit_video(payload)

    async def _submit_image(self, payload: SubmitPayload) -> Submission:
        parts: list[dict] = [{"text": payload.prompt}]
        if payload.reference_uri:
            image_bytes, mime = await self._load_reference(payload.reference_uri)
            parts.append({
                "inlineData": {
                    "mimeType": mime,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            })

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE", "TEXT"],
                "imageConfig": {"aspectRatio": payload.options.aspect_ratio},
            },
        }
        body.update(payload.options.extra)

        data = await self._request(
            "POST", f"/models/{payload.model}:generateContent", json=body, model=payload.model,
        )

        block_reason = as_dict(data.get("promptFeedback")).get("blockReason")
        if block_reason:
            raise GenerationError(
                f"Prompt blocked by safety filter: {block_reason}",
                kind=ErrorKind.BAD_REQUEST, provider=self.name, model=payload.model,
            )

        candidates = data.get("candidates")
        if not candidates or not isinstance(candidates, list):
            raise GenerationError(
                "No candidates in response",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )

        candidate = as_dict(candidates[0])
        image_ref = _inline_image(candidate)
        if image_ref is None:
            finish_reason = candidate.get("finishReason", "")
            if finish_reason == "RECITATION":
                raise GenerationError(
                    "Output rejected for reproducing copyrighted material (RECITATION)",
                    kind=ErrorKind.BAD_REQUEST, provider=self.name, model=payload.model,
                )
            if finish_reason in BLOCKING_FINISH_REASONS:
                raise GenerationError(
                    f"Generation blocked by safety filter: {finish_reason}",
                    kind=ErrorKind.BAD_REQUEST, provider=self.name, model=payload.model,
                )
            raise GenerationError(
                f"No image in response (finishReason={finish_reason or 'unknown'})",
                kind=ErrorKind.UNKNOWN, provider=self.name, model=payload.model,
            )

        task_id = data.get("responseId") or f"{payload.model}:inline"
        handle = TaskHandle(task_id=task_id, kind=MediaKind.IMAGE, model=payload.model)
        return Submission(handle=handle, status=PollStatus(state=JobState.SUCCEEDED, result_ref=image_ref))

    async def _submit_video(self, payload: SubmitPayload) -> Submission:
        opts = payload.options
        instance: dict = {"prompt": payload.prompt}
        if payload.reference_uri:
            image_bytes, mime = await self._load_reference(payload.reference_uri)
            instance["image"] = {
                "bytesBase64Encoded": base64.b64encode(image_bytes).decode("ascii"),
                "mimeType": mime,
            }

        parameters: dict = {"aspectRatio": opts.aspect_ratio}
        if opts.duration_seconds:
            parameters["durationSeconds"] = opts.duration_seconds
        if opts.negative_prompt:
            parameters["negativePrompt"] = opts.negative_prompt
        parameters.update(opts.extra)

        data = await self._request(
            "POST",
            f"/models/{payload.model}:predictLongRunning",
            json={"instances": [instance], "parameters": parameters},
            model=payload.model,
        )

        operation = data.get("name")
        if not operation:
            raise GenerationError(
                "Video submission returned no operation name",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )
        logger.info(f"Gemini video operation {operation} started ({payload.model})")
        handle = TaskHandle(task_id=operation, kind=MediaKind.VIDEO, model=payload.model)
        return Submission(handle=handle, status=PollStatus(state=JobState.RUNNING))

    async def poll(self, handle: TaskHandle) -> PollStatus:
        data = await self._request("GET", f"/{handle.task_id}", model=handle.model)

        if not data.get("done"):
            return PollStatus(state=JobState.RUNNING)

        if data.get("error"):
            return PollStatus(
                state=JobState.FAILED,
                raw_failure_text=failure_text(data["error"], "Operation failed"),
            )

        video_response = as_dict(as_dict(data.get("response")).get("generateVideoResponse"))
        filtered = video_response.get("raiMediaFilteredReasons")
        if filtered:
            if isinstance(filtered, list):
                filtered = "; ".join(str(reason) for reason in filtered)
            return PollStatus(
                state=JobState.FAILED,
                raw_failure_text=f"Video filtered by safety policy: {filtered}",
            )

        samples = video_response.get("generatedSamples")
        sample = as_dict(samples[0]) if isinstance(samples, list) and samples else {}
        uri = as_dict(sample.get("video")).get("uri")
        if not uri or not isinstance(uri, str):
            return PollStatus(state=JobState.FAILED, raw_failure_text="Operation completed without a result URL")
        return PollStatus(state=JobState.SUCCEEDED, result_ref=uri, progress_hint=100)


def _inline_image(candidate: dict) -> Optional[str]:
    parts = as_dict(candidate.get("content")).get("parts")
    if not isinstance(parts, list):
        return None
    for part in parts:
        part = as_dict(part)
        inline = as_dict(part.get("inlineData") or part.get("inline_data"))
        if inline.get("data"):
            mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return f"data:{mime};base64,{inline['data']}"
    return None
