"""
ErrorClassifier - maps raw provider failure text into the error taxonomy.

Rules are evaluated in a fixed priority order and the first match wins. Text
from both English and Chinese providers is covered.
"""

import logging
import re
from typing import Optional

from .errors import ClassifiedError, ErrorKind, GenerationError

logger = logging.getLogger(__name__)


# Priority order matters: moderation before auth/quota, since moderation
# messages often come back with a generic 400 or 403.
DEFAULT_RULES: list[tuple[ErrorKind, list[str]]] = [
    (ErrorKind.MODERATION_PERSON, [
        r"real[\s_-]?person",
        r"public[\s_-]?figure",
        r"celebrit",
        r"likeness",
        r"\bperson(al)?\s+(image|photo)s?\b.*\b(not allowed|prohibited|blocked)",
        r"真人",
        r"(真实|公众)人物",
        r"肖像",
    ]),
    (ErrorKind.MODERATION_POLICY, [
        r"content[\s_-]?policy",
        r"moderation",
        r"safety",
        r"sensitive",
        r"\bnsfw\b",
        r"unsafe",
        r"prohibited",
        r"\bblocked\b",
        r"inappropriate",
        r"违规",
        r"敏感",
        r"不安全",
    ]),
    (ErrorKind.MODERATION_COPYRIGHT, [
        r"copyright",
        r"trademark",
        r"intellectual[\s_-]?property",
        r"版权",
        r"侵权",
    ]),
    (ErrorKind.AUTH_FAILED, [
        r"\b401\b",
        r"\b403\b",
        r"unauthori[sz]ed",
        r"invalid[\s_-]?(api[\s_-]?)?key",
        r"authentication",
        r"forbidden",
        r"令牌",
        r"鉴权",
    ]),
    (ErrorKind.QUOTA_EXHAUSTED, [
        r"quota",
        r"insufficient[\s_-]?(balance|funds|credit)",
        r"resource[\s_-]?exhausted",
        r"\b402\b",
        r"billing",
        r"out of credits?",
        r"余额不足",
        r"额度",
    ]),
    (ErrorKind.RATE_LIMITED, [
        r"\b429\b",
        r"rate[\s_-]?limit",
        r"too many requests",
        r"throttl",
        r"频率",
    ]),
    (ErrorKind.UNREACHABLE, [
        r"time[d\s_-]*out",
        r"connection",
        r"network",
        r"econn(refused|reset)",
        r"etimedout",
        r"\b50[234]\b",
        r"(temporarily )?unavailable",
        r"bad gateway",
        r"超时",
    ]),
]


class ErrorClassifier:
    """
    Classifies raw failure text.

    Usage:
        classifier = ErrorClassifier()
        error = classifier.classify("Request contains a public figure", provider="shenma")
        error.kind  # ErrorKind.MODERATION_PERSON
    """

    def __init__(self, rules: Optional[list[tuple[ErrorKind, list[str]]]] = None):
        self._rules = [
            (kind, [re.compile(p, re.IGNORECASE) for p in patterns])
            for kind, patterns in (rules or DEFAULT_RULES)
        ]

    def classify(
        self,
        raw: Optional[str],
        hint: Optional[ErrorKind] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ClassifiedError:
        """
        Classify raw failure text.

        Args:
            raw: Provider failure text, kept verbatim on the result
            hint: Kind already known from the transport (e.g. HTTP status)
            provider: Provider key for the message
            model: Model that failed

        Returns:
            ClassifiedError. When both the text and the hint name a kind, the
            one earlier in rule order wins. Unmatched text becomes ``hint`` or
            UNKNOWN.
        """
        text = raw or ""
        matched = self._match(text)

        if matched is not None and hint is not None:
            kind = matched if self._rank(matched) <= self._rank(hint) else hint
        else:
            kind = matched or hint or ErrorKind.UNKNOWN

        if kind == ErrorKind.UNKNOWN:
            logger.debug(f"Unclassified failure from {provider}: {text[:200]}")
        return ClassifiedError.of(kind, raw=text, provider=provider, model=model)

    def from_exception(
        self,
        error: BaseException,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ClassifiedError:
        """Classify an exception raised at an adapter boundary."""
        if isinstance(error, GenerationError):
            return self.classify(
                str(error),
                hint=error.kind,
                provider=error.provider or provider,
                model=error.model or model,
            )
        return self.classify(str(error) or type(error).__name__, provider=provider, model=model)

    def _match(self, text: str) -> Optional[ErrorKind]:
        for kind, patterns in self._rules:
            if any(p.search(text) for p in patterns):
                return kind
        return None

    def _rank(self, kind: ErrorKind) -> int:
        # Kinds without a rule (BAD_REQUEST, TIMED_OUT, ...) rank last
        for index, (rule_kind, _) in enumerate(self._rules):
            if rule_kind == kind:
                return index
        return len(self._rules)
