"""
Comment Transfer Batcher

Creates matched comments on the target file in rate-limited batches.

First Principles:
- Low-similarity matches never reach the API
- One failed comment must not stop the rest of its batch
- Bad credentials are not a per-comment problem: AuthError aborts the transfer
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from commentsync.core.exceptions import TransferAPIError
from commentsync.core.frameio_client import FrameioClient, Session
from commentsync.models.frames import ConfidenceTier, MatchResult, TransferOutcome, TransferResult


# Frame.io shows a comment one frame before the frame it was created at.
PLATFORM_FRAME_OFFSET = 1

CONFIDENCE_MARKS = {
    ConfidenceTier.HIGH: "✓",
    ConfidenceTier.MEDIUM: "~",
    ConfidenceTier.LOW: "?",
}


@dataclass(frozen=True)
class TransferOptions:
    min_similarity: float = 0.8
    add_prefix: bool = True


def format_comment_text(match: MatchResult, add_prefix: bool) -> str:
    text = match.comment.text or "No comment text"
    if add_prefix:
        return f"[Transferred {CONFIDENCE_MARKS[match.confidence]}] {text}"
    return text


class CommentTransfer:
    def __init__(
        self,
        client: FrameioClient,
        batch_size: int = 10,
        batch_delay_seconds: float = 60.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        default_options: Optional[TransferOptions] = None,
    ):
        self.client = client
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.default_options = default_options or TransferOptions()
        self._sleep = sleep or asyncio.sleep

    async def _transfer_one(
        self,
        session: Session,
        account_id: str,
        target_file_id: str,
        match: MatchResult,
        add_prefix: bool,
    ) -> TransferOutcome:
        text = format_comment_text(match, add_prefix)
        try:
            comment_id = await self.client.create_comment(
                session,
                account_id,
                target_file_id,
                text,
                match.target_frame_number + PLATFORM_FRAME_OFFSET,
            )
        except TransferAPIError as e:
            print(f"   ✗ Comment {match.comment.id}: {e}")
            return TransferOutcome(match.comment, match, transferred=False, failed=True, reason=f"API error: {e}")

        print(f"   📝 \"{text[:40]}\" @ frame {match.target_frame_number} "
              f"({match.similarity * 100:.1f}% {match.confidence.value})")
        return TransferOutcome(match.comment, match, transferred=True, created_comment_id=comment_id)

    async def transfer(
        self,
        session: Session,
        account_id: str,
        target_file_id: str,
        matches: Sequence[MatchResult],
        options: Optional[TransferOptions] = None,
    ) -> TransferResult:
        """
        Transfer matches in batches of batch_size, sleeping batch_delay_seconds
        between batches (not after the last).

        Returns:
            TransferResult with one outcome per match and the session that was
            current at the end (it may have been refreshed between batches).
        """
        options = options or self.default_options
        outcomes: List[TransferOutcome] = []
        qualifying: List[MatchResult] = []

        for match in matches:
            if match.similarity < options.min_similarity:
                outcomes.append(TransferOutcome(
                    match.comment, match, transferred=False,
                    reason=f"Low similarity ({match.similarity * 100:.1f}%)",
                ))
            else:
                qualifying.append(match)

        batches = [qualifying[i:i + self.batch_size] for i in range(0, len(qualifying), self.batch_size)]
        print(f"\n🚀 Comment Transfer: {len(qualifying)} comments, {len(batches)} batches "
              f"({len(outcomes)} below {options.min_similarity:.0%})")

        for index, batch in enumerate(batches):
            if index > 0:
                print(f"   ⏳ Waiting {self.batch_delay_seconds:.0f}s before next batch (rate limit)...")
                await self._sleep(self.batch_delay_seconds)
            session = await self.client.ensure_fresh(session)
            print(f"\n📦 Batch {index + 1}/{len(batches)}: {len(batch)} comments")
            for match in batch:
                outcomes.append(await self._transfer_one(session, account_id, target_file_id, match, options.add_prefix))

        transferred = sum(1 for o in outcomes if o.status == "transferred")
        failed = sum(1 for o in outcomes if o.status == "failed")
        skipped = sum(1 for o in outcomes if o.status == "skipped")
        print(f"✓ Transfer done: {transferred} transferred, {skipped} skipped, {failed} failed")

        return TransferResult(
            success=failed == 0,
            transferred=transferred,
            skipped=skipped,
            failed=failed,
            outcomes=outcomes,
            session=session,
        )
