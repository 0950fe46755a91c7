"""
ErrorClassifier tests.

Run with:
    python -m pytest tests/test_classifier.py -v
"""

import pytest

from services.generation import ClassifiedError, ErrorClassifier, ErrorKind, GenerationError


class TestClassify:
    """Pattern rules and priority order."""

    def setup_method(self):
        self.classifier = ErrorClassifier()

    @pytest.mark.parametrize("raw, expected", [
        ("The prompt references a public figure", ErrorKind.MODERATION_PERSON),
        ("检测到真人图像，无法生成", ErrorKind.MODERATION_PERSON),
        ("Your request was rejected by our content policy", ErrorKind.MODERATION_POLICY),
        ("输入内容包含敏感信息", ErrorKind.MODERATION_POLICY),
        ("Output may infringe copyright", ErrorKind.MODERATION_COPYRIGHT),
        ("该内容涉嫌侵权", ErrorKind.MODERATION_COPYRIGHT),
        ("401 Unauthorized", ErrorKind.AUTH_FAILED),
        ("Invalid API key provided", ErrorKind.AUTH_FAILED),
        ("You exceeded your current quota", ErrorKind.QUOTA_EXHAUSTED),
        ("账户余额不足", ErrorKind.QUOTA_EXHAUSTED),
        ("Too Many Requests", ErrorKind.RATE_LIMITED),
        ("upstream request timed out", ErrorKind.UNREACHABLE),
        ("HTTP 503: Service Unavailable", ErrorKind.UNREACHABLE),
    ])
    def test_known_vocabulary(self, raw, expected):
        assert self.classifier.classify(raw).kind == expected

    def test_person_rule_beats_policy_rule(self):
        error = self.classifier.classify("Blocked by safety system: celebrity likeness detected")
        assert error.kind == ErrorKind.MODERATION_PERSON

    def test_moderation_beats_auth_status(self):
        error = self.classifier.classify("403: content policy violation")
        assert error.kind == ErrorKind.MODERATION_POLICY

    def test_person_word_alone_is_not_moderation(self):
        error = self.classifier.classify("视频生成失败：人物动作描述过长，请缩短提示词")
        assert error.kind != ErrorKind.MODERATION_PERSON

    def test_real_person_phrase_is_moderation(self):
        error = self.classifier.classify("参考图包含公众人物，无法生成")
        assert error.kind == ErrorKind.MODERATION_PERSON

    def test_unmatched_text_is_unknown_and_verbatim(self):
        raw = "Model exploded: code=XZ-99"
        error = self.classifier.classify(raw, provider="relayA", model="m1")

        assert error.kind == ErrorKind.UNKNOWN
        assert error.code == "UNKNOWN"
        assert error.raw == raw
        assert error.provider == "relayA"
        assert error.model == "m1"

    def test_hint_used_when_nothing_matches(self):
        error = self.classifier.classify("HTTP 400: field 'size' invalid", hint=ErrorKind.BAD_REQUEST)
        assert error.kind == ErrorKind.BAD_REQUEST

    def test_empty_text(self):
        error = self.classifier.classify(None)
        assert error.kind == ErrorKind.UNKNOWN
        assert error.raw == ""

    def test_message_template_mentions_provider(self):
        error = self.classifier.classify("rate limit exceeded", provider="shenma")
        assert "shenma" in error.message
        assert error.code == "RATE_LIMITED"

    def test_custom_rules(self):
        classifier = ErrorClassifier(rules=[(ErrorKind.QUOTA_EXHAUSTED, [r"no more coins"])])
        assert classifier.classify("No more coins").kind == ErrorKind.QUOTA_EXHAUSTED
        assert classifier.classify("401").kind == ErrorKind.UNKNOWN


class TestFromException:
    """Classification at adapter boundaries."""

    def setup_method(self):
        self.classifier = ErrorClassifier()

    def test_transport_auth_kind_is_kept(self):
        error = GenerationError("HTTP 401: bad token", kind=ErrorKind.AUTH_FAILED, provider="zhipu")
        classified = self.classifier.from_exception(error)
        assert classified.kind == ErrorKind.AUTH_FAILED
        assert classified.provider == "zhipu"

    def test_bad_request_body_refined_by_text(self):
        error = GenerationError(
            "HTTP 400: prompt contains sensitive content",
            kind=ErrorKind.BAD_REQUEST,
            provider="shenma",
        )
        assert self.classifier.from_exception(error).kind == ErrorKind.MODERATION_POLICY

    def test_plain_bad_request_stays_bad_request(self):
        error = GenerationError("HTTP 400: aspect_ratio must be 16:9 or 9:16", kind=ErrorKind.BAD_REQUEST)
        assert self.classifier.from_exception(error).kind == ErrorKind.BAD_REQUEST

    def test_quota_text_refines_rate_limit_status(self):
        error = GenerationError(
            "HTTP 429: You exceeded your current quota, please check your plan and billing details",
            kind=ErrorKind.RATE_LIMITED,
            provider="gemini",
        )
        classified = self.classifier.from_exception(error)

        assert classified.kind == ErrorKind.QUOTA_EXHAUSTED
        assert not classified.kind.transient

    def test_rate_limit_status_beats_lower_ranked_text(self):
        error = GenerationError("HTTP 429: upstream request timed out", kind=ErrorKind.RATE_LIMITED)
        assert self.classifier.from_exception(error).kind == ErrorKind.RATE_LIMITED

    def test_auth_status_refined_by_moderation_text(self):
        error = GenerationError("HTTP 403: public figure detected", kind=ErrorKind.AUTH_FAILED)
        assert self.classifier.from_exception(error).kind == ErrorKind.MODERATION_PERSON

    def test_foreign_exception(self):
        classified = self.classifier.from_exception(ConnectionResetError("connection reset by peer"))
        assert classified.kind == ErrorKind.UNREACHABLE


class TestErrorKind:

    def test_codes_are_stable(self):
        assert ErrorKind.MODERATION_PERSON.code == "MODERATION_PERSON"
        assert ErrorKind.TIMED_OUT.code == "TIMED_OUT"

    def test_transient_kinds(self):
        assert ErrorKind.UNREACHABLE.transient
        assert ErrorKind.RATE_LIMITED.transient
        assert not ErrorKind.AUTH_FAILED.transient
        assert not ErrorKind.BAD_REQUEST.transient

    def test_classified_error_str(self):
        error = ClassifiedError.of(ErrorKind.CANCELLED)
        assert str(error) == "[CANCELLED] The job was cancelled."
