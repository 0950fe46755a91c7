"""
FallbackChain tests: ordering, auth short-circuit, reference degradation.
"""

import pytest

from conftest import ScriptedAdapter, make_provider_config
from services.generation import (
    Candidate,
    ErrorKind,
    FallbackChain,
    FallbackExhausted,
    GenerationError,
    GenerationRequest,
    MediaKind,
    ProviderCapabilities,
    ReferenceAsset,
    build_candidates,
)


def bad_request(model: str) -> GenerationError:
    return GenerationError(f"HTTP 400: model {model} rejected the size", kind=ErrorKind.BAD_REQUEST)


def image_request(**kwargs) -> GenerationRequest:
    return GenerationRequest(kind=MediaKind.IMAGE, prompt="a lighthouse at dusk", **kwargs)


class TestOrdering:

    @pytest.mark.asyncio
    async def test_first_success_after_failures(self):
        adapter = ScriptedAdapter(submit_outcomes={"A": bad_request("A"), "B": bad_request("B")})
        candidates = [Candidate(adapter, "A"), Candidate(adapter, "B"), Candidate(adapter, "C")]

        outcome = await FallbackChain().run(candidates, image_request())

        assert outcome.winner.model == "C"
        assert outcome.submission.handle.task_id == "task-C"
        assert [a.model for a in outcome.attempts] == ["A", "B", "C"]
        assert [a.succeeded for a in outcome.attempts] == [False, False, True]
        assert outcome.attempts[0].error.kind == ErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self):
        adapter = ScriptedAdapter()
        candidates = [Candidate(adapter, "A"), Candidate(adapter, "B")]

        outcome = await FallbackChain().run(candidates, image_request())

        assert outcome.winner.model == "A"
        assert adapter.submitted_models == ["A"]

    @pytest.mark.asyncio
    async def test_all_fail_aggregates_every_attempt(self):
        adapter = ScriptedAdapter(submit_outcomes={
            "A": bad_request("A"),
            "B": GenerationError("HTTP 429: slow down", kind=ErrorKind.RATE_LIMITED),
        })
        candidates = [Candidate(adapter, "A"), Candidate(adapter, "B")]

        with pytest.raises(FallbackExhausted) as exc_info:
            await FallbackChain().run(candidates, image_request())

        error = exc_info.value
        assert [a.model for a in error.attempts] == ["A", "B"]
        assert error.error.kind == ErrorKind.RATE_LIMITED
        assert error.kind == ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_unknown_and_chain_continues(self):
        adapter = ScriptedAdapter(submit_outcomes={"A": KeyError("task_id")})
        candidates = [Candidate(adapter, "A"), Candidate(adapter, "B")]

        outcome = await FallbackChain().run(candidates, image_request())

        assert outcome.winner.model == "B"
        assert outcome.attempts[0].error.kind == ErrorKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_empty_candidate_list_rejected(self):
        with pytest.raises(ValueError):
            await FallbackChain().run([], image_request())


class TestAuthShortCircuit:

    @pytest.mark.asyncio
    async def test_auth_failure_skips_remaining_candidates(self):
        adapter = ScriptedAdapter(submit_outcomes={
            "A": GenerationError("HTTP 401: invalid token", kind=ErrorKind.AUTH_FAILED),
        })
        candidates = [Candidate(adapter, "A"), Candidate(adapter, "B")]

        with pytest.raises(FallbackExhausted) as exc_info:
            await FallbackChain().run(candidates, image_request())

        assert exc_info.value.error.kind == ErrorKind.AUTH_FAILED
        assert len(exc_info.value.attempts) == 1
        assert adapter.submitted_models == ["A"]

    @pytest.mark.asyncio
    async def test_auth_failure_also_stops_cross_provider(self):
        primary = ScriptedAdapter(name="relayA", submit_outcomes={
            "m1": GenerationError("HTTP 401", kind=ErrorKind.AUTH_FAILED),
        })
        backup = ScriptedAdapter(name="relayB")

        with pytest.raises(FallbackExhausted):
            await FallbackChain().run([Candidate(primary, "m1"), Candidate(backup, "m1")], image_request())

        assert backup.submit_calls == []


class TestReferenceDegradation:

    @pytest.mark.asyncio
    async def test_reference_attempt_then_text_only_with_description(self):
        adapter = ScriptedAdapter(config=make_provider_config(fallback_models=["m1"]), submit_outcomes={})
        request = image_request(reference_asset=ReferenceAsset(
            uri="https://img.test/ref.png",
            description="a red lighthouse on a cliff",
        ))

        # Reference-conditioned endpoint errors once, text-only then succeeds
        calls = []
        original_submit = adapter.submit

        async def submit(payload):
            calls.append(payload)
            if payload.reference_uri:
                raise GenerationError("HTTP 404: /v1/images/edits not found", kind=ErrorKind.BAD_REQUEST)
            return await original_submit(payload)

        adapter.submit = submit
        candidates = build_candidates([adapter], request)
        outcome = await FallbackChain().run(candidates, request)

        assert [c.use_reference for c in candidates] == [True, False]
        assert calls[0].reference_uri == "https://img.test/ref.png"
        assert calls[0].prompt == "a lighthouse at dusk"
        assert calls[1].reference_uri is None
        assert "a red lighthouse on a cliff" in calls[1].prompt
        assert outcome.winner.use_reference is False
        assert outcome.attempts[0].used_reference is True

    @pytest.mark.asyncio
    async def test_unusable_reference_runs_text_only_with_description(self):
        adapter = ScriptedAdapter(config=make_provider_config(fallback_models=["m1"]))
        request = image_request(reference_asset=ReferenceAsset(
            uri="ftp://img.test/ref.png",
            description="a red lighthouse on a cliff",
        ))

        candidates = build_candidates([adapter], request)
        outcome = await FallbackChain().run(candidates, request)

        assert [c.use_reference for c in candidates] == [False]
        assert adapter.submit_calls[0].reference_uri is None
        assert "a red lighthouse on a cliff" in adapter.submit_calls[0].prompt
        assert outcome.attempts[0].used_reference is False

    @pytest.mark.parametrize("uri", [
        "",
        "ftp://img.test/ref.png",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/bmp;base64,Qk0=",
        "data:image/png;base64," + "A" * (7 * 1024 * 1024),
        "https://",
    ])
    def test_invalid_references_build_no_reference_candidate(self, uri):
        adapter = ScriptedAdapter(config=make_provider_config(fallback_models=["m1"]))
        request = image_request(reference_asset=ReferenceAsset(uri=uri))

        assert request.reference_asset.problem() is not None
        assert [c.use_reference for c in build_candidates([adapter], request)] == [False]

    @pytest.mark.parametrize("uri", [
        "data:image/png;base64,iVBORw0KGgo=",
        "data:image/JPEG;base64,/9j/4AAQ",
        "https://img.test/ref.webp",
    ])
    def test_valid_references_are_kept(self, uri):
        assert ReferenceAsset(uri=uri).problem() is None


class TestBuildCandidates:

    def test_preferred_model_first_without_duplicates(self):
        adapter = ScriptedAdapter(config=make_provider_config(preferred_model="m2"))
        candidates = build_candidates([adapter], image_request())
        assert [c.model for c in candidates] == ["m2", "m1"]

    def test_caller_fallback_list_replaces_defaults(self):
        adapter = ScriptedAdapter(config=make_provider_config(fallback_models=["x", "y"]))
        assert [c.model for c in build_candidates([adapter], image_request())] == ["x", "y"]

    def test_reference_skipped_when_unsupported(self):
        caps = ProviderCapabilities(
            kinds=frozenset({MediaKind.IMAGE}),
            supports_image_to_image=False,
            fallback_models={MediaKind.IMAGE: ["m1"]},
        )
        adapter = ScriptedAdapter(capabilities=caps)
        request = image_request(reference_asset=ReferenceAsset(uri="https://img.test/ref.png"))

        candidates = build_candidates([adapter], request)

        assert [(c.model, c.use_reference) for c in candidates] == [("m1", False)]

    def test_adapters_without_kind_are_skipped(self):
        video_only = ScriptedAdapter(name="video", capabilities=ProviderCapabilities(
            kinds=frozenset({MediaKind.VIDEO}),
            fallback_models={MediaKind.VIDEO: ["v1"]},
        ))
        images = ScriptedAdapter(name="images")

        candidates = build_candidates([video_only, images], image_request())

        assert {c.provider for c in candidates} == {"images"}
