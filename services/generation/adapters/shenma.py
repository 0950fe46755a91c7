"""
Shenma relay adapter (OpenAI-compatible wire format).

Images go through the OpenAI images API: ``/v1/images/generations`` for text
prompts and the multipart ``/v1/images/edits`` when a reference image is
given. Both answer synchronously. Videos (Sora) are asynchronous on
``/v2/videos/generations``. The relay also exposes a token quota endpoint.
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
    QuotaInfo,
    Submission,
    SubmitPayload,
    TaskHandle,
)
from .base import ProviderAdapter, as_dict, failure_text

logger = logging.getLogger(__name__)


SHENMA_STATUS = {
    "NOT_START": JobState.RUNNING,
    "SUBMITTED": JobState.RUNNING,
    "QUEUED": JobState.RUNNING,
    "IN_PROGRESS": JobState.RUNNING,
    "SUCCESS": JobState.SUCCEEDED,
    "FAILURE": JobState.FAILED,
}


def parse_progress(value) -> Optional[int]:
    """Relays report progress as 42, 42.0 or "42%"."""
    if value is None:
        return None
    try:
        return max(0, min(100, int(float(str(value).rstrip("%")))))
    except ValueError:
        return None


def first_image_ref(data: dict) -> Optional[str]:
    """URL or inline base64 of the first image in an OpenAI images response."""
    items = data.get("data")
    if not isinstance(items, list) or not items:
        return None
    first = as_dict(items[0])
    if first.get("url"):
        return first["url"]
    if first.get("b64_json"):
        return f"data:image/png;base64,{first['b64_json']}"
    return None


class ShenmaAdapter(ProviderAdapter):
    """GPT image / nano-banana images and Sora videos through the Shenma relay."""

    name = "shenma"
    default_base_url = "https://api.whatai.cc"
    capabilities = ProviderCapabilities(
        kinds=frozenset({MediaKind.IMAGE, MediaKind.VIDEO}),
        supports_image_to_image=True,
        supports_image_to_video=True,
        fallback_models={
            MediaKind.IMAGE: ["gpt-image-1", "nano-banana"],
            MediaKind.VIDEO: ["sora-2", "sora-2-pro"],
        },
        default_timeout=120.0,
        supports_quota=True,
    )

    async def submit(self, payload: SubmitPayload) -> Submission:
        self._check_kind(payload)
        if payload.kind == MediaKind.VIDEO:
            return await self._submit_video(payload)
        if payload.reference_uri:
            return await self._submit_image_edit(payload)
        return await self._submit_image(payload)

    async def _submit_image(self, payload: SubmitPayload) -> Submission:
        opts = payload.options
        body = {
            "model": payload.model,
            "prompt": payload.prompt,
            "n": 1,
            "response_format": "url",
            "aspect_ratio": opts.aspect_ratio,
        }
        if opts.size:
            body["size"] = opts.size
        if opts.quality:
            body["quality"] = opts.quality
        body.update(opts.extra)

        data = await self._request("POST", "/v1/images/generations", json=body, model=payload.model)
        return self._image_submission(data, payload)

    async def _submit_image_edit(self, payload: SubmitPayload) -> Submission:
        image_bytes, mime = await self._load_reference(payload.reference_uri)
        extension = mime.split("/", 1)[-1]

        fields = {
            "model": payload.model,
            "prompt": payload.prompt,
            "response_format": "url",
            "aspect_ratio": payload.options.aspect_ratio,
        }
        if payload.options.size:
            fields["size"] = payload.options.size
        fields.update({k: str(v) for k, v in payload.options.extra.items()})

        data = await self._request(
            "POST",
            "/v1/images/edits",
            data=fields,
            files={"image": (f"reference.{extension}", image_bytes, mime)},
            model=payload.model,
        )
        return self._image_submission(data, payload)

    def _image_submission(self, data: dict, payload: SubmitPayload) -> Submission:
        ref = first_image_ref(data)
        if not ref:
            raise GenerationError(
                "No image data in response",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )
        task_id = str(data.get("id") or data.get("created") or uuid.uuid4())
        handle = TaskHandle(task_id=task_id, kind=MediaKind.IMAGE, model=payload.model)
        return Submission(handle=handle, status=PollStatus(state=JobState.SUCCEEDED, result_ref=ref))

    async def _submit_video(self, payload: SubmitPayload) -> Submission:
        opts = payload.options
        body = {
            "model": payload.model,
            "prompt": payload.prompt,
            "aspect_ratio": opts.aspect_ratio,
            "duration": opts.duration_seconds or 10,
            "hd": opts.hd,
        }
        if payload.reference_uri:
            body["images"] = [payload.reference_uri]
        body.update(opts.extra)

        data = await self._request("POST", "/v2/videos/generations", json=body, model=payload.model)

        task_id = data.get("task_id") or data.get("id")
        if not task_id:
            raise GenerationError(
                "Video submission returned no task id",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=payload.model,
            )
        logger.info(f"Shenma video task {task_id} submitted ({payload.model})")
        handle = TaskHandle(task_id=str(task_id), kind=MediaKind.VIDEO, model=payload.model)
        return Submission(
            handle=handle,
            status=PollStatus(state=JobState.RUNNING, progress_hint=parse_progress(data.get("progress"))),
        )

    async def poll(self, handle: TaskHandle) -> PollStatus:
        data = await self._request("GET", f"/v2/videos/generations/{handle.task_id}", model=handle.model)

        raw_status = str(data.get("status", "")).upper()
        state = SHENMA_STATUS.get(raw_status)
        progress = parse_progress(data.get("progress"))
        if state is None:
            logger.warning(f"Unknown Shenma task status {raw_status!r} for {handle.task_id}")
            return PollStatus(state=JobState.RUNNING, progress_hint=progress)

        if state == JobState.SUCCEEDED:
            url = data.get("video_url") or as_dict(data.get("data")).get("output")
            if not url or not isinstance(url, str):
                return PollStatus(state=JobState.FAILED, raw_failure_text="Task completed without a result URL")
            return PollStatus(state=state, result_ref=url, progress_hint=100)

        if state == JobState.FAILED:
            default = str(data.get("fail_reason") or "Shenma task failed")
            return PollStatus(state=state, raw_failure_text=failure_text(data.get("error"), default))

        return PollStatus(state=state, progress_hint=progress)

    async def quota(self) -> Optional[QuotaInfo]:
        data = await self._request("GET", "/v1/token/quota")
        # Some relay versions nest the numbers under "data"
        source = data.get("data") if isinstance(data.get("data"), dict) else data
        try:
            return QuotaInfo(
                total=source["total_quota"],
                used=source["used_quota"],
                remaining=source["remaining_quota"],
            )
        except (KeyError, ValueError) as e:
            raise GenerationError(
                f"Unusable quota response: {e}",
                kind=ErrorKind.UNREACHABLE, provider=self.name,
            ) from e
