"""
Debounce Controller — delayed, cancellable input validation.

Holds at most one pending validation task on the running asyncio loop.

  submit(text):  cancel the pending task, schedule a new one after the delay
  cancel():      the scheduled validation never runs and publishes nothing

Only the most recent text is ever validated; superseded submissions are
pure cancellations, never queued. The task suspends only at the delay;
validation itself is synchronous. Every task checks its own cancellation
token before publishing, so a stale verdict can never replace a newer one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from mutation_kernel.constants import DEBOUNCE_DELAY_MS
from mutation_kernel.domain_types import AttributeRange
from mutation_kernel.validator import Verdict, VerdictKind, validate

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag owned by one scheduled validation."""

    __slots__ = ("cancelled",)

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(frozen=True)
class PublishedVerdict:
    """A verdict together with the text it was computed for."""

    text: str
    verdict: Verdict

    @property
    def is_confirmable(self) -> bool:
        return self.verdict.is_confirmable


class DebounceController:
    """
    range_provider returns the range of the attribute being edited, or
    None once editing has closed. on_publish, when given, receives every
    published verdict.
    """

    def __init__(
        self,
        range_provider: Callable[[], Optional[AttributeRange]],
        on_publish: Optional[Callable[[PublishedVerdict], None]] = None,
        delay: float = DEBOUNCE_DELAY_MS / 1000.0,
        validator: Callable[[str, AttributeRange], Verdict] = validate,
    ) -> None:
        self._range_provider = range_provider
        self._on_publish = on_publish
        self._delay = delay
        self._validator = validator
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._latest: Optional[PublishedVerdict] = None
        self.submitted_count = 0
        self.published_count = 0
        self.cancelled_count = 0

    # -- State access -------------------------------------------------------

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def latest(self) -> Optional[PublishedVerdict]:
        return self._latest

    @property
    def is_confirmable(self) -> bool:
        return self._latest is not None and self._latest.is_confirmable

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Public API ---------------------------------------------------------

    def submit(self, text: str) -> asyncio.Task:
        """Schedule validation of *text*. Must be called from a running loop."""
        self.cancel()
        loop = asyncio.get_running_loop()
        token = CancellationToken()
        self._token = token
        self._task = loop.create_task(self._run(text, token))
        self.submitted_count += 1
        logger.debug("Scheduled validation of %r in %.3fs", text, self._delay)
        return self._task

    def cancel(self) -> None:
        """Cancel the pending validation, if any. Safe to call repeatedly."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            self.cancelled_count += 1
            logger.debug("Cancelled pending validation")
        self._task = None
        self._token = None

    def reset(self) -> None:
        """Cancel and forget the last published verdict."""
        self.cancel()
        self._latest = None

    async def wait(self) -> Optional[PublishedVerdict]:
        """Wait for the pending validation (if any) and return the latest verdict."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self._latest

    # -- Internal -----------------------------------------------------------

    async def _run(self, text: str, token: CancellationToken) -> None:
        await asyncio.sleep(self._delay)
        if token.cancelled:
            return

        attribute_range = self._range_provider()
        if attribute_range is None:
            logger.warning("Validation of %r skipped: no attribute is being edited", text)
            return

        verdict = self._validator(text, attribute_range)
        if token.cancelled:
            return
        self._publish(PublishedVerdict(text=text, verdict=verdict))

    def _publish(self, published: PublishedVerdict) -> None:
        verdict = published.verdict
        if verdict.kind is VerdictKind.INVALID:
            logger.warning("Rejected input %r: %s", published.text, verdict.message)
        elif verdict.kind is VerdictKind.VALID:
            logger.info(
                "Accepted input %r (multiplier %r)", published.text, verdict.multiplier,
            )
        self._latest = published
        self.published_count += 1
        if self._on_publish is not None:
            self._on_publish(published)
