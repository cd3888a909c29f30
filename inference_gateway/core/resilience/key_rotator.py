"""
Provider Key Rotation

The KeyRotator owns the credential pool of every provider. Selection is
round-robin over credentials that are neither cooling down nor at their
per-minute request cap; a credential cools down after the provider reports a
quota or authentication failure for it.

Concurrency:
- The round-robin cursor is an atomic counter in the StateStore
- Cooldowns are written atomically (``cooldown_until`` with a TTL) and read
  fresh on every selection, so every instance sees the same pool
- Per-key request counts (this minute, today) are fixed windows checked and
  incremented in one ``hit_windows`` call, so two instances can never both
  take the last request of a key's minute
- When no credential is usable the provider is reported exhausted
  (`CredentialsExhaustedError`), which is distinct from a circuit being open

Per-key success and error counts are kept per UTC day and reported by
``status`` alongside the request counts.
"""

import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from inference_gateway.analysis.models.analysis import ProviderCredential
from inference_gateway.core.config.constants import (
    KEY_POOL_KEY_PREFIX,
    SECONDS_PER_DAY,
    SECONDS_PER_MINUTE,
    LLMProvider,
)
from inference_gateway.core.config.settings import Settings
from inference_gateway.core.exceptions import (
    CredentialsExhaustedError,
    ProviderNotConfiguredError,
    StoreError,
)
from inference_gateway.core.interfaces.state_store import Clock, StateStore, WindowSpec, window_start
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)

# Daily request window has no cap, it only counts
_UNCAPPED = 2**31


def build_credentials(provider: str, secrets: Iterable[str | None]) -> list[ProviderCredential]:
    """Turn configured secrets into credentials with ids ``{provider}_{n}``."""
    credentials = []
    for secret in secrets:
        if not secret:
            continue
        index = len(credentials) + 1
        credentials.append(
            ProviderCredential(
                provider=provider, key_id=f"{provider}_{index}", index=index, secret=secret
            )
        )
    return credentials


class KeyRotator:
    """
    Round-robin credential selection with per-key cooldown and request cap.

    Usage:
        credential = await rotator.select("gemini")
        ...
        except ProviderQuotaExceededError:
            await rotator.cooldown(credential)
            await rotator.record_outcome(credential, success=False)
    """

    def __init__(
        self,
        store: StateStore,
        credentials: Mapping[str, Sequence[ProviderCredential]],
        cooldown_seconds: float = 60,
        clock: Clock = time.time,
        rpm_limit: int = 0,
    ):
        self._store = store
        self._credentials = {provider: list(creds) for provider, creds in credentials.items()}
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._rpm_limit = rpm_limit

    @classmethod
    def from_settings(cls, store: StateStore, settings: Settings, clock: Clock = time.time) -> "KeyRotator":
        credentials = {
            LLMProvider.GEMINI.value: build_credentials(LLMProvider.GEMINI.value, settings.gemini.API_KEYS),
            LLMProvider.OPENAI.value: build_credentials(LLMProvider.OPENAI.value, [settings.openai.API_KEY]),
        }
        limits = settings.limits
        return cls(store, credentials, limits.KEY_COOLDOWN_SECONDS, clock, rpm_limit=limits.KEY_RPM_LIMIT)

    def _cursor_key(self, provider: str) -> str:
        return f"{KEY_POOL_KEY_PREFIX}:{provider}:cursor"

    def _cooldown_key(self, credential: ProviderCredential) -> str:
        return f"{KEY_POOL_KEY_PREFIX}:{credential.provider}:cooldown:{credential.key_id}"

    def _outcome_key(self, credential: ProviderCredential, outcome: str) -> str:
        day = window_start(self._clock(), SECONDS_PER_DAY)
        return f"{KEY_POOL_KEY_PREFIX}:{credential.provider}:{outcome}:{credential.key_id}:{day}"

    def _request_windows(self, credential: ProviderCredential) -> tuple[WindowSpec, WindowSpec]:
        now = self._clock()
        prefix = f"{KEY_POOL_KEY_PREFIX}:{credential.provider}"
        minute = WindowSpec(
            key=f"{prefix}:rpm:{credential.key_id}",
            limit=self._rpm_limit or _UNCAPPED,
            window_start=window_start(now, SECONDS_PER_MINUTE),
            window_seconds=SECONDS_PER_MINUTE,
        )
        day = WindowSpec(
            key=f"{prefix}:daily:{credential.key_id}",
            limit=_UNCAPPED,
            window_start=window_start(now, SECONDS_PER_DAY),
            window_seconds=SECONDS_PER_DAY,
        )
        return minute, day

    def has_credentials(self, provider: str) -> bool:
        return bool(self._credentials.get(provider))

    async def cooldown_until(self, credential: ProviderCredential) -> float | None:
        """Epoch second the credential becomes usable again, or None if usable now."""
        raw = await self._store.get(self._cooldown_key(credential))
        if raw is None:
            return None
        until = float(raw)
        return until if until > self._clock() else None

    async def select(self, provider: str) -> ProviderCredential:
        """
        Pick the next usable credential and count the request against it.

        STAGE-KEY.1: Credential selection

        Raises:
            ProviderNotConfiguredError: If the provider has no credentials
            CredentialsExhaustedError: If every credential is cooling down or
                at its per-minute cap
        """
        pool = self._credentials.get(provider)
        if not pool:
            raise ProviderNotConfiguredError(
                f"No credentials configured for {provider}", details={"provider": provider}
            )

        try:
            start = (await self._store.incr(self._cursor_key(provider)) - 1) % len(pool)
        except StoreError as e:
            logger.warning("Key cursor unavailable, using first key", stage="KEY.1", provider=provider, error=str(e))
            return pool[0]

        earliest: float | None = None
        for offset in range(len(pool)):
            credential = pool[(start + offset) % len(pool)]
            try:
                until = await self.cooldown_until(credential)
                if until is not None:
                    earliest = until if earliest is None else min(earliest, until)
                    continue

                minute, day = self._request_windows(credential)
                rejected = await self._store.hit_windows([minute, day])
            except StoreError as e:
                logger.warning("Key pool state unavailable", stage="KEY.1", key_id=credential.key_id, error=str(e))
                return credential

            if rejected is None:
                logger.debug("Credential selected", stage="KEY.1", provider=provider, key_id=credential.key_id)
                return credential

            logger.debug("Credential at request cap", stage="KEY.1", key_id=credential.key_id, limit=minute.limit)
            earliest = minute.reset_at if earliest is None else min(earliest, minute.reset_at)

        logger.warning("No usable credential", stage="KEY.2", provider=provider, available_at=earliest)
        retry_after = max(1, int(earliest - self._clock())) if earliest else None
        raise CredentialsExhaustedError(
            f"All {provider} credentials are cooling down or at their request cap",
            details={"provider": provider, "available_at": earliest, "retry_after": retry_after},
        )

    async def cooldown(self, credential: ProviderCredential, seconds: float | None = None) -> None:
        """
        Suspend a credential after a quota or auth failure.

        STAGE-KEY.3: Credential cooldown
        """
        duration = seconds or self._cooldown_seconds
        until = self._clock() + duration
        try:
            await self._store.set(self._cooldown_key(credential), repr(until), ttl=duration)
        except StoreError as e:
            logger.warning("Failed to store cooldown", stage="KEY.3", key_id=credential.key_id, error=str(e))
            return
        logger.warning(
            "Credential cooling down",
            stage="KEY.3",
            provider=credential.provider,
            key_id=credential.key_id,
            cooldown_seconds=duration,
        )

    async def record_outcome(self, credential: ProviderCredential, success: bool) -> None:
        """
        Count a call outcome against the credential.

        STAGE-KEY.4: Key usage accounting
        """
        outcome = "success" if success else "errors"
        try:
            await self._store.incr(self._outcome_key(credential, outcome), ttl=2 * SECONDS_PER_DAY)
        except StoreError as e:
            logger.warning("Failed to record key outcome", stage="KEY.4", key_id=credential.key_id, error=str(e))

    async def _count(self, key: str) -> int:
        raw = await self._store.get(key)
        return int(raw) if raw is not None else 0

    async def key_metrics(self, credential: ProviderCredential) -> dict[str, Any]:
        minute, day = self._request_windows(credential)
        successes = await self._count(self._outcome_key(credential, "success"))
        errors = await self._count(self._outcome_key(credential, "errors"))
        outcomes = successes + errors
        return {
            "key_id": credential.key_id,
            "cooldown_until": await self.cooldown_until(credential),
            "requests_this_minute": await self._store.window_count(minute),
            "rpm_limit": self._rpm_limit or None,
            "requests_today": await self._store.window_count(day),
            "successes_today": successes,
            "errors_today": errors,
            "error_rate": round(errors / outcomes, 4) if outcomes else 0.0,
        }

    async def status(self, provider: str) -> dict[str, Any]:
        """Pool metrics: availability plus per-key usage and outcomes."""
        pool = self._credentials.get(provider, [])
        keys = [await self.key_metrics(credential) for credential in pool]
        in_cooldown = sum(1 for key in keys if key["cooldown_until"] is not None)
        at_cap = sum(
            1 for key in keys
            if key["cooldown_until"] is None
            and key["rpm_limit"] is not None
            and key["requests_this_minute"] >= key["rpm_limit"]
        )
        return {
            "total": len(pool),
            "available": len(pool) - in_cooldown - at_cap,
            "in_cooldown": in_cooldown,
            "at_rate_limit": at_cap,
            "keys": keys,
        }
