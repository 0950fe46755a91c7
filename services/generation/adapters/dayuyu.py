"""
Dayuyu relay adapter (OpenAI-compatible, video only).

Submission may come back already finished with a ``video_url``; otherwise the
task is polled by id. The relay reports lower-case OpenAI-style statuses but
some deployments pass Sora's upper-case vocabulary through unchanged.
"""

import logging

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
from .base import ProviderAdapter, failure_text
from .shenma import parse_progress

logger = logging.getLogger(__name__)


DAYUYU_STATUS = {
    "queued": JobState.RUNNING,
    "pending": JobState.RUNNING,
    "not_start": JobState.RUNNING,
    "in_progress": JobState.RUNNING,
    "processing": JobState.RUNNING,
    "completed": JobState.SUCCEEDED,
    "success": JobState.SUCCEEDED,
    "succeeded": JobState.SUCCEEDED,
    "failed": JobState.FAILED,
    "failure": JobState.FAILED,
}


class DayuyuAdapter(ProviderAdapter):
    name = "dayuyu"
    default_base_url = "https://api.dyuapi.com"
    capabilities = ProviderCapabilities(
        kinds=frozenset({MediaKind.VIDEO}),
        supports_image_to_image=False,
        supports_image_to_video=True,
        fallback_models={MediaKind.VIDEO: ["dayuyu-video-1"]},
        default_timeout=120.0,
    )

    async def submit(self, payload: SubmitPayload) -> Submission:
        self._check_kind(payload)

        opts = payload.options
        body = {
            "model": payload.model,
            "prompt": payload.prompt,
            "duration": opts.duration_seconds or 10,
            "aspect_ratio": opts.aspect_ratio,
            "hd": opts.hd,
        }
        if payload.reference_uri:
            body["image_url"] = payload.reference_uri
        body.update(opts.extra)

        data = await self._request("POST", "/videos/generations", json=body, model=payload.model)

        task_id = data.get("id") or data.get("task_id")
        if not task_id:
            raise GenerationError(
                "Video submission returned no task id",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )

        handle = TaskHandle(task_id=str(task_id), kind=MediaKind.VIDEO, model=payload.model)
        if isinstance(data.get("video_url"), str) and data["video_url"]:
            return Submission(
                handle=handle,
                status=PollStatus(state=JobState.SUCCEEDED, result_ref=data["video_url"]),
            )

        logger.info(f"Dayuyu video task {task_id} submitted ({payload.model})")
        return Submission(handle=handle, status=PollStatus(state=JobState.RUNNING))

    async def poll(self, handle: TaskHandle) -> PollStatus:
        data = await self._request("GET", f"/videos/generations/{handle.task_id}", model=handle.model)

        raw_status = str(data.get("status", "")).lower()
        state = DAYUYU_STATUS.get(raw_status)
        progress = parse_progress(data.get("progress"))
        if state is None:
            logger.warning(f"Unknown Dayuyu task status {raw_status!r} for {handle.task_id}")
            return PollStatus(state=JobState.RUNNING, progress_hint=progress)

        if state == JobState.SUCCEEDED:
            url = data.get("video_url") or data.get("url")
            if not url or not isinstance(url, str):
                return PollStatus(state=JobState.FAILED, raw_failure_text="Task completed without a result URL")
            return PollStatus(state=state, result_ref=url, progress_hint=100)

        if state == JobState.FAILED:
            return PollStatus(state=state, raw_failure_text=failure_text(data.get("error"), "Dayuyu task failed"))

        return PollStatus(state=state, progress_hint=progress)
