"""Concurrent parsing and aggregation of fetched messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from ..core.interfaces import FetchError, MessageParser
from ..core.models import (
    ClassifiedError,
    ErrorCategory,
    FetchedMessage,
    FetchReport,
    NormalizedEmail,
)

LOGGER = logging.getLogger(__name__)


class FetchOrchestrator:
    """Parse a fetched batch concurrently and return it newest first."""

    def __init__(
        self,
        parser: MessageParser,
        *,
        provider_label: str,
        max_workers: int | None = None,
    ) -> None:
        """Initialise the orchestrator with a parser and provider label."""
        if max_workers is not None and max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._parser = parser
        self._provider_label = provider_label
        self._max_workers = max_workers

    async def collect(
        self, messages: Sequence[FetchedMessage]
    ) -> tuple[list[NormalizedEmail], FetchReport]:
        """Parse every message, skipping individual failures.

        Raises :class:`FetchError` only when every message in a non-empty
        batch fails to parse.
        """
        if not messages:
            return [], FetchReport(requested=0, returned=0, failed=0)

        loop = asyncio.get_running_loop()
        executor = (
            ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="mime-parse"
            )
            if self._max_workers is not None
            else None
        )
        try:
            tasks = [
                loop.run_in_executor(
                    executor, self._parser.parse, message, self._provider_label
                )
                for message in messages
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)

        emails: list[NormalizedEmail] = []
        failed = 0
        for message, result in zip(messages, results):
            if isinstance(result, BaseException):
                LOGGER.error(
                    "Failed to parse message %s: %s",
                    message.sequence_number,
                    result,
                )
                failed += 1
            elif result is None:
                LOGGER.debug(
                    "Parser returned no email for message %s",
                    message.sequence_number,
                )
                failed += 1
            else:
                emails.append(result)

        report = FetchReport(
            requested=len(messages), returned=len(emails), failed=failed
        )
        if not emails:
            error = ClassifiedError(
                category=ErrorCategory.PARSE_PARTIAL,
                original_message=f"All {failed} fetched message(s) failed to parse",
            )
            raise FetchError(error.original_message, error)
        if failed:
            LOGGER.warning(
                "Parsed %s of %s message(s); %s skipped",
                len(emails),
                len(messages),
                failed,
            )

        emails.sort(key=lambda email: email.received_at, reverse=True)
        return emails, report


__all__ = ["FetchOrchestrator"]
