"""Password strength and breach policy.

Pure and stateless apart from the configured limits and breach corpus:
- score(): itemized violations plus a weak/medium/strong rating
- is_compromised(): membership check against a pluggable breach corpus
- generate_strong(): password that satisfies score() by construction
- enforce(): raise WeakPasswordError / CompromisedPasswordError
"""

import re
import secrets
import string
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from credence.core.auth import check_password_breached
from credence.core.errors import CompromisedPasswordError, WeakPasswordError

DEFAULT_MIN_LENGTH = 8
DEFAULT_MAX_LENGTH = 128

# Length at which the fifth strength criterion is met
_STRONG_LENGTH = 12

_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")
_SYMBOL_RE = re.compile(r"[^a-zA-Z\d]")

# Low-entropy shapes, matched case-insensitively
_COMMON_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(password|admin|letmein|welcome)", re.IGNORECASE),
    re.compile(r"qwerty|asdf|zxcv", re.IGNORECASE),
    re.compile(r"(.)\1{3,}"),
)

_ASCENDING_DIGITS = "0123456789"
_DESCENDING_DIGITS = _ASCENDING_DIGITS[::-1]

# Breached-password corpus used when no other corpus is configured
_DEFAULT_BREACHED = (
    "password",
    "12345678",
    "123456789",
    "qwerty",
    "abc123",
    "monkey",
    "1234567",
    "letmein",
    "trustno1",
    "dragon",
    "baseball",
    "iloveyou",
    "master",
    "sunshine",
    "ashley",
    "bailey",
    "shadow",
    "123123",
    "654321",
    "superman",
)

_MAX_GENERATE_ATTEMPTS = 100


class PasswordViolation(str, Enum):
    """Reasons a password fails the policy."""

    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    MISSING_UPPERCASE = "missing_uppercase"
    MISSING_LOWERCASE = "missing_lowercase"
    MISSING_DIGIT = "missing_digit"
    MISSING_SYMBOL = "missing_symbol"
    COMMON_PATTERN = "common_pattern"


class PasswordStrength(str, Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


@dataclass(frozen=True)
class PasswordScore:
    """Result of scoring a candidate password.

    Attributes:
        is_valid: True when there are no violations.
        violations: Failed rules, in a stable order.
        messages: Human-readable text for each violation.
        strength: Rating; always WEAK when is_valid is False.
    """

    is_valid: bool
    violations: list[PasswordViolation] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    strength: PasswordStrength = PasswordStrength.WEAK


class BreachCorpus(Protocol):
    """Source of known-compromised passwords."""

    def contains(self, password: str) -> bool: ...


class StaticBreachCorpus:
    """In-memory list of breached passwords.

    A candidate is compromised when any entry occurs anywhere inside it,
    ignoring case.
    """

    def __init__(self, entries: Iterable[str] = _DEFAULT_BREACHED) -> None:
        self._entries = tuple(e.lower() for e in entries if e)

    def contains(self, password: str) -> bool:
        candidate = password.lower()
        return any(entry in candidate for entry in self._entries)


def _has_digit_run(password: str, run: int = 4) -> bool:
    """Whether the password holds `run` consecutive sequential digits."""
    for match in re.finditer(r"\d{%d,}" % run, password):
        digits = match.group()
        for i in range(len(digits) - run + 1):
            window = digits[i : i + run]
            if window in _ASCENDING_DIGITS or window in _DESCENDING_DIGITS:
                return True
    return False


def _has_common_pattern(password: str) -> bool:
    if _has_digit_run(password):
        return True
    return any(p.search(password) for p in _COMMON_PATTERNS)


class PasswordPolicy:
    """Configured password policy.

    Args:
        min_length: Minimum accepted length.
        max_length: Maximum accepted length.
        corpus: Breach corpus for is_compromised().
        check_remote: Also consult the HIBP API in enforce().
    """

    def __init__(
        self,
        *,
        min_length: int = DEFAULT_MIN_LENGTH,
        max_length: int = DEFAULT_MAX_LENGTH,
        corpus: BreachCorpus | None = None,
        check_remote: bool = False,
    ) -> None:
        if min_length < 4 or max_length < min_length:
            msg = f"Invalid password length bounds: {min_length}..{max_length}"
            raise ValueError(msg)
        self.min_length = min_length
        self.max_length = max_length
        self._corpus = corpus if corpus is not None else StaticBreachCorpus()
        self._check_remote = check_remote

    def _message(self, violation: PasswordViolation) -> str:
        return {
            PasswordViolation.TOO_SHORT: f"Password must be at least {self.min_length} characters",
            PasswordViolation.TOO_LONG: f"Password must be at most {self.max_length} characters",
            PasswordViolation.MISSING_UPPERCASE: "Password must contain at least one uppercase letter",
            PasswordViolation.MISSING_LOWERCASE: "Password must contain at least one lowercase letter",
            PasswordViolation.MISSING_DIGIT: "Password must contain at least one number",
            PasswordViolation.MISSING_SYMBOL: "Password must contain at least one special character",
            PasswordViolation.COMMON_PATTERN: "Password contains a common pattern and is too weak",
        }[violation]

    def score(self, password: str) -> PasswordScore:
        """Validate a password and rate its strength.

        Args:
            password: Candidate password.

        Returns:
            PasswordScore with every failed rule listed.
        """
        has_upper = bool(_UPPER_RE.search(password))
        has_lower = bool(_LOWER_RE.search(password))
        has_digit = bool(_DIGIT_RE.search(password))
        has_symbol = bool(_SYMBOL_RE.search(password))

        violations: list[PasswordViolation] = []
        if len(password) < self.min_length:
            violations.append(PasswordViolation.TOO_SHORT)
        if len(password) > self.max_length:
            violations.append(PasswordViolation.TOO_LONG)
        if not has_upper:
            violations.append(PasswordViolation.MISSING_UPPERCASE)
        if not has_lower:
            violations.append(PasswordViolation.MISSING_LOWERCASE)
        if not has_digit:
            violations.append(PasswordViolation.MISSING_DIGIT)
        if not has_symbol:
            violations.append(PasswordViolation.MISSING_SYMBOL)
        if _has_common_pattern(password):
            violations.append(PasswordViolation.COMMON_PATTERN)

        if violations:
            return PasswordScore(
                is_valid=False,
                violations=violations,
                messages=[self._message(v) for v in violations],
                strength=PasswordStrength.WEAK,
            )

        criteria = sum(
            (has_symbol, has_digit, has_upper, has_lower, len(password) >= _STRONG_LENGTH)
        )
        if criteria == 5:
            strength = PasswordStrength.STRONG
        elif criteria == 4:
            strength = PasswordStrength.MEDIUM
        else:
            strength = PasswordStrength.WEAK
        return PasswordScore(is_valid=True, strength=strength)

    def is_compromised(self, password: str) -> bool:
        """Check the password against the breach corpus.

        Args:
            password: Candidate password.

        Returns:
            True if the corpus flags it.
        """
        return self._corpus.contains(password)

    def generate_strong(self, length: int = 16) -> str:
        """Generate a password that passes score() and the breach corpus.

        One character of each required class is seeded, the rest is filled
        from the union, and the result is shuffled with a CSPRNG.

        Args:
            length: Desired length, within the policy bounds.

        Returns:
            Generated password.

        Raises:
            ValueError: If length is outside the policy bounds.
        """
        if not self.min_length <= length <= self.max_length:
            msg = (
                f"Generated password length must be between "
                f"{self.min_length} and {self.max_length}"
            )
            raise ValueError(msg)

        classes = (string.ascii_uppercase, string.ascii_lowercase, string.digits, _SYMBOLS)
        alphabet = "".join(classes)
        rng = secrets.SystemRandom()

        for _ in range(_MAX_GENERATE_ATTEMPTS):
            chars = [secrets.choice(c) for c in classes]
            chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
            rng.shuffle(chars)
            candidate = "".join(chars)
            # Random fill can land on a pattern or corpus entry; draw again
            if self.score(candidate).is_valid and not self.is_compromised(candidate):
                return candidate

        msg = "Could not generate a password satisfying the policy"
        raise RuntimeError(msg)

    async def enforce(self, password: str) -> None:
        """Raise if the password may not be set.

        Args:
            password: Candidate password.

        Raises:
            WeakPasswordError: If score() reports violations.
            CompromisedPasswordError: If the corpus or HIBP flags it.
        """
        result = self.score(password)
        if not result.is_valid:
            raise WeakPasswordError(
                [v.value for v in result.violations], result.messages
            )
        if self.is_compromised(password):
            raise CompromisedPasswordError()
        if self._check_remote and await check_password_breached(password):
            raise CompromisedPasswordError()
