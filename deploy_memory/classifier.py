"""
Failure classification and fingerprinting.

Classification is a pure function of the signals: the status reasons are
joined into one matching surface and walked against an ordered rule table.
The first rule with a matching pattern wins, so rule order is part of the
contract (rollback states must be checked before generic in-progress states,
because ``UPDATE_ROLLBACK_IN_PROGRESS`` also contains ``IN_PROGRESS``).
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .models import ErrorClass, FailureClassification, FailureSignal

logger = logging.getLogger(__name__)

# Storage partition keys are built from fingerprints; changing this breaks history.
FINGERPRINT_LENGTH = 16
FINGERPRINT_DELIMITER = ":"

UNKNOWN_CONFIDENCE = 0.5
EMPTY_CONFIDENCE = 0.0
UNKNOWN_TOKENS = ("unknown", "error")


@dataclass(frozen=True)
class FailureRule:
    """A rule mapping status reason patterns to an error class."""
    error_class: ErrorClass
    service: str
    patterns: Tuple[str, ...]
    confidence: float
    tokens: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(re.search(pattern, text, re.IGNORECASE) for pattern in self.patterns)


DEFAULT_RULES: Tuple[FailureRule, ...] = (
    FailureRule(
        error_class=ErrorClass.CFN_ROLLBACK_LOCK,
        service="CloudFormation",
        patterns=(
            r'update_rollback_complete_cleanup_in_progress',
            r'update_rollback_in_progress',
            r'update_rollback_failed',
            r'\brollback_in_progress',
            r'\brollback_failed',
            r'\brollback_complete\b.*(cannot|can not) be updated',
            r'is in (update_)?rollback_complete state',
        ),
        confidence=0.95,
        tokens=("CloudFormation", "rollback", "lock", "stack"),
    ),
    FailureRule(
        error_class=ErrorClass.CFN_IN_PROGRESS_LOCK,
        service="CloudFormation",
        patterns=(
            r'\b(create|update|delete|import|review)_in_progress\b',
            r'\w+_in_progress state',
            r'stack is currently being (updated|created|deleted)',
            r'in_progress',
        ),
        confidence=0.95,
        tokens=("CloudFormation", "in_progress", "lock", "stack"),
    ),
    FailureRule(
        error_class=ErrorClass.ACM_DNS_VALIDATION_PENDING,
        service="ACM",
        patterns=(
            r'dns validation (is )?pending',
            r'certificate validation (is )?not (yet )?complete',
            r'pending_validation',
            r'waiting for (the )?(dns|cname) (validation|record)',
            r'certificate.*(has not|not) been validated',
        ),
        confidence=0.9,
        tokens=("ACM", "DNS", "validation", "certificate"),
    ),
    FailureRule(
        error_class=ErrorClass.ROUTE53_DELEGATION_PENDING,
        service="Route53",
        patterns=(
            r'delegation (is )?pending',
            r'ns records? (are |is )?not configured',
            r'name ?servers? (have |has )?not (been )?updated',
            r'hosted zone.*not (yet )?delegated',
            r'no hosted zone found',
        ),
        confidence=0.9,
        tokens=("Route53", "DNS", "delegation", "nameserver"),
    ),
    FailureRule(
        error_class=ErrorClass.MISSING_SECRET,
        service="SecretsManager",
        patterns=(
            r"secrets ?manager can'?t find",
            r'resourcenotfoundexception.*secret',
            r'secretsmanager:[^\s]*.*(does not exist|not found)',
            r'secret\b.*\b(does not exist|not found)',
        ),
        confidence=0.85,
        tokens=("SecretsManager", "secret", "missing"),
    ),
    FailureRule(
        error_class=ErrorClass.MISSING_ENV_VAR,
        service="Configuration",
        patterns=(
            r'missing required (configuration|environment variable|env var|parameter)',
            r'environment variable \S+ (is )?not (set|defined)',
            r'env(ironment)? var(iable)?s? .*(is missing|not set|undefined)',
            r'required (configuration|parameter) \S+ (is )?not (set|provided)',
        ),
        confidence=0.8,
        tokens=("configuration", "environment", "variable", "missing"),
    ),
    FailureRule(
        error_class=ErrorClass.DEPRECATED_CDK_API,
        service="CDK",
        patterns=(
            r'deprecated api',
            r'\[deprecated\]',
            r'deprecated method',
            r'is deprecated',
            r'has been deprecated',
        ),
        confidence=0.75,
        tokens=("CDK", "deprecated", "api"),
    ),
    FailureRule(
        error_class=ErrorClass.UNIT_MISMATCH,
        service="Configuration",
        patterns=(
            r'unit mismatch',
            r'expected .*\b(kb|mb|gb|tb|kib|mib|gib|bytes)\b.*\bgot\b.*\b(kb|mb|gb|tb|kib|mib|gib|bytes)\b',
            r'expected .*\b(ms|milliseconds|seconds|minutes)\b.*\bgot\b.*\b(ms|milliseconds|seconds|minutes)\b',
        ),
        confidence=0.8,
        tokens=("configuration", "units", "mismatch"),
    ),
)


def get_rules() -> Tuple[FailureRule, ...]:
    """Return the default rule table in evaluation order."""
    return DEFAULT_RULES


# Applied in order; later substitutions see the placeholders of earlier ones.
_TEMPLATE_SUBSTITUTIONS: Tuple[Tuple[str, str], ...] = (
    (r'\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?|(?<![\w-])\d{10,13}(?:\.\d+)?(?![\w-])', '<TIMESTAMP>'),
    (r'\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b', '<UUID>'),
    (r'\barn:[a-z0-9-]+:[a-z0-9-]+:[a-z0-9-]*:[^:\s]*:[^\s\'"(),;]+', '<ARN>'),
    (r'\b[A-Z0-9]{20,}\b', '<ID>'),
    (r'\b[A-Za-z0-9][\w-]*Stack\b', '<STACK>'),
    (r'\b\d+(?:\.\d+)?\s?(?:milliseconds?|ms|seconds?|secs?|s|minutes?|mins?|m|hours?|hrs?|h|days?|d'
     r'|bytes?|b|kib|kb|mib|mb|gib|gb|tib|tb)\b', '<VALUE>'),
)

# Case-sensitive classes: <ID> matches uppercase tokens and <STACK> the "Stack" suffix.
_CASE_SENSITIVE = {'<ID>', '<STACK>'}


def normalize_template(text: str) -> str:
    """
    Replace volatile substrings in an error message with fixed placeholders.

    Args:
        text: Raw status reason text

    Returns:
        Template string suitable for fingerprinting
    """
    template = text
    for pattern, placeholder in _TEMPLATE_SUBSTITUTIONS:
        flags = 0 if placeholder in _CASE_SENSITIVE else re.IGNORECASE
        template = re.sub(pattern, placeholder, template, flags=flags)
    return re.sub(r'\s+', ' ', template).strip()


def generate_fingerprint(error_class: ErrorClass, service: str, template: str) -> str:
    """
    Digest (error class, service, template) into a short stable identifier.

    SHA-256 truncated to FINGERPRINT_LENGTH hex characters.
    """
    payload = FINGERPRINT_DELIMITER.join((error_class.value, service, template))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def classify_failure(
    signals: Sequence[FailureSignal],
    rules: Sequence[FailureRule] = DEFAULT_RULES,
) -> FailureClassification:
    """
    Classify a burst of failure signals.

    Args:
        signals: Signals in observation order
        rules: Ordered rule table (first match wins)

    Returns:
        FailureClassification with fingerprint, error class and confidence
    """
    if not signals:
        return FailureClassification(
            fingerprint_id=generate_fingerprint(ErrorClass.UNKNOWN, "Unknown", ""),
            error_class=ErrorClass.UNKNOWN,
            service="Unknown",
            confidence=EMPTY_CONFIDENCE,
            tokens=(),
        )

    joined = " ".join(signal.status_reason for signal in signals)
    combined_text = joined.lower()

    for rule in rules:
        if rule.matches(combined_text):
            logger.debug(f"Matched rule {rule.error_class.value} for {len(signals)} signal(s)")
            # Template before lower-casing so the case-sensitive classes still apply.
            template = normalize_template(joined).lower()
            return FailureClassification(
                fingerprint_id=generate_fingerprint(rule.error_class, rule.service, template),
                error_class=rule.error_class,
                service=rule.service,
                confidence=rule.confidence,
                tokens=rule.tokens,
            )

    first = signals[0]
    logger.debug(f"No rule matched; falling back to UNKNOWN for {first.resource_type}")
    return FailureClassification(
        fingerprint_id=generate_fingerprint(
            ErrorClass.UNKNOWN, first.resource_type, normalize_template(first.status_reason)
        ),
        error_class=ErrorClass.UNKNOWN,
        service=first.resource_type,
        confidence=UNKNOWN_CONFIDENCE,
        tokens=UNKNOWN_TOKENS,
    )


_STOP_WORDS = {
    "the", "and", "for", "with", "this", "that", "from", "have", "been", "were",
    "was", "are", "not", "but", "into", "your", "will", "when", "then", "than",
    "there", "their", "which", "while", "would", "could", "should", "after",
    "before", "because", "does", "following",
}


def extract_tokens(signals: Sequence[FailureSignal]) -> List[str]:
    """
    Extract searchable keywords from signals.

    Resource types are kept verbatim; status reason words longer than three
    characters are lower-cased, stop words dropped, duplicates removed.
    """
    tokens: List[str] = []
    seen = set()

    def add(token: str) -> None:
        if token not in seen:
            seen.add(token)
            tokens.append(token)

    for signal in signals:
        if signal.resource_type:
            add(signal.resource_type)
        for word in re.findall(r"[A-Za-z0-9_]+", signal.status_reason):
            word = word.lower()
            if len(word) > 3 and word not in _STOP_WORDS:
                add(word)

    return tokens
