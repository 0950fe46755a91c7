"""
Zhipu BigModel open platform adapter (native vendor API).

Images are synchronous: ``/images/generations`` returns the URL directly.
Videos are asynchronous: ``/videos/generations`` returns a task id that is
polled at ``/async-result/{id}`` until ``task_status`` leaves PROCESSING.
"""

import logging
import uuid
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


ZHIPU_STATUS = {
    "PROCESSING": JobState.RUNNING,
    "SUCCESS": JobState.SUCCEEDED,
    "FAIL": JobState.FAILED,
}


def _find_video_url(data: dict) -> Optional[str]:
    """The result URL moves around between API revisions."""
    results = data.get("video_result")
    if isinstance(results, list) and results:
        first = as_dict(results[0])
        url = first.get("url") or first.get("video_url")
        if url:
            return url

    if data.get("video_url"):
        return data["video_url"]

    result = as_dict(data.get("result"))
    url = result.get("video_url") or result.get("url")
    if url:
        return url

    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        choice = as_dict(choices[0])
        return (
            choice.get("video_url")
            or choice.get("url")
            or as_dict(choice.get("data")).get("url")
        )
    return None


class ZhipuAdapter(ProviderAdapter):
    """CogView images and CogVideoX videos."""

    name = "zhipu"
    default_base_url = "https://open.bigmodel.cn/api/paas/v4"
    capabilities = ProviderCapabilities(
        kinds=frozenset({MediaKind.IMAGE, MediaKind.VIDEO}),
        supports_image_to_image=False,
        supports_image_to_video=True,
        fallback_models={
            MediaKind.IMAGE: ["cogview-3-flash", "cogview-3"],
            MediaKind.VIDEO: ["cogvideox-flash", "cogvideox-3"],
        },
        default_timeout=60.0,
    )

    async def submit(self, payload: SubmitPayload) -> Submission:
        self._check_kind(payload)
        if payload.kind == MediaKind.IMAGE:
            return await self._submit_image(payload)
        return await self._submit_video(payload)

    async def _submit_image(self, payload: SubmitPayload) -> Submission:
        opts = payload.options
        body = {
            "model": payload.model,
            "prompt": payload.prompt,
            "size": opts.size or "1024x1024",
            "quality": opts.quality or "standard",
        }
        if opts.negative_prompt:
            body["negative_prompt"] = opts.negative_prompt
        body.update(opts.extra)

        data = await self._request("POST", "/images/generations", json=body, model=payload.model)

        items = data.get("data")
        first = as_dict(items[0]) if isinstance(items, list) and items else {}
        url = first.get("url")
        if not url and first.get("b64_json"):
            url = f"data:image/png;base64,{first['b64_json']}"
        if not url or not isinstance(url, str):
            raise GenerationError(
                "No image URL in response",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )

        task_id = data.get("id") or str(uuid.uuid4())
        handle = TaskHandle(task_id=str(task_id), kind=MediaKind.IMAGE, model=payload.model)
        return Submission(handle=handle, status=PollStatus(state=JobState.SUCCEEDED, result_ref=url))

    async def _submit_video(self, payload: SubmitPayload) -> Submission:
        opts = payload.options
        body = {
            "model": payload.model,
            "prompt": payload.prompt,
            "quality": opts.quality or "speed",
            "with_audio": bool(opts.with_audio),
            "watermark_enabled": True,
            "size": opts.size or _size_for_aspect(opts.aspect_ratio),
            "fps": opts.fps or 30,
            "duration": opts.duration_seconds or 5,
            "request_id": uuid.uuid4().hex,
        }
        if payload.reference_uri:
            body["image_url"] = payload.reference_uri
        body.update(opts.extra)

        data = await self._request("POST", "/videos/generations", json=body, model=payload.model)

        task_id = data.get("id")
        if not task_id:
            raise GenerationError(
                "Video submission returned no task id",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )

        state = ZHIPU_STATUS.get(str(data.get("task_status", "PROCESSING")), JobState.RUNNING)
        logger.info(f"Zhipu video task {task_id} submitted ({payload.model})")
        handle = TaskHandle(task_id=str(task_id), kind=MediaKind.VIDEO, model=payload.model)
        # A SUCCESS at submit time still needs a poll to get the URL
        if state == JobState.SUCCEEDED:
            state = JobState.RUNNING
        return Submission(handle=handle, status=PollStatus(state=state))

    async def poll(self, handle: TaskHandle) -> PollStatus:
        data = await self._request("GET", f"/async-result/{handle.task_id}", model=handle.model)

        raw_status = str(data.get("task_status", ""))
        state = ZHIPU_STATUS.get(raw_status)
        if state is None:
            logger.warning(f"Unknown Zhipu task status {raw_status!r} for {handle.task_id}")
            return PollStatus(state=JobState.RUNNING)

        if state == JobState.SUCCEEDED:
            url = _find_video_url(data)
            if not url or not isinstance(url, str):
                return PollStatus(
                    state=JobState.FAILED,
                    raw_failure_text="Video generated but URL not found",
                )
            return PollStatus(state=state, result_ref=url, progress_hint=100)

        if state == JobState.FAILED:
            return PollStatus(state=state, raw_failure_text=failure_text(data.get("error"), "Zhipu task failed"))

        return PollStatus(state=state)


def _size_for_aspect(aspect_ratio: str) -> str:
    return {
        "16:9": "1920x1080",
        "9:16": "1080x1920",
        "1:1": "1024x1024",
    }.get(aspect_ratio, "1920x1080")
