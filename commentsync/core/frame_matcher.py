"""
Frame Matcher

Maps each source comment frame to a target frame in two phases:

    coarse      full scan of the target pool by Hamming distance
    refinement  neighbor-frame voting for ambiguous (near-tie) matches

Classification of a coarse result:
    best > loose_distance              -> skip
    runner_up - best < tie_gap         -> needs refinement
    best <= strict_distance            -> transfer, high confidence
    otherwise                          -> transfer, low confidence
"""

import bisect
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from commentsync.core.perceptual_hash import bit_distance
from commentsync.models.frames import (
    ConfidenceTier,
    FrameHash,
    MatchResult,
    SkippedComment,
    SourceComment,
)


NeighborFetcher = Callable[[List[int]], Awaitable[Dict[int, FrameHash]]]


@dataclass(frozen=True)
class MatchThresholds:
    strict_distance: int = 10
    loose_distance: int = 20
    tie_gap: int = 4
    distinct_seconds: float = 0.5
    max_candidates: int = 5
    medium_vote_ratio: float = 0.6


class MatchAction(str, Enum):
    SKIP = "skip"
    TRANSFER = "transfer"
    NEEDS_REFINEMENT = "needs_refinement"


@dataclass(frozen=True)
class Classification:
    action: MatchAction
    confidence: Optional[ConfidenceTier] = None


def classify_match(best: int, runner_up: Optional[int], thresholds: MatchThresholds) -> Classification:
    """Decide what to do with a coarse match from its best and runner-up distances."""
    if best > thresholds.loose_distance:
        return Classification(MatchAction.SKIP)
    if runner_up is not None and runner_up - best < thresholds.tie_gap:
        return Classification(MatchAction.NEEDS_REFINEMENT)
    if best <= thresholds.strict_distance:
        return Classification(MatchAction.TRANSFER, ConfidenceTier.HIGH)
    return Classification(MatchAction.TRANSFER, ConfidenceTier.LOW)


@dataclass(frozen=True)
class Candidate:
    index: int
    frame_number: int
    timestamp: float
    distance: int


@dataclass(frozen=True)
class CoarseMatch:
    best: Candidate
    runner_up_distance: Optional[int]
    candidates: List[Candidate]


@dataclass
class MatchReport:
    matches: List[MatchResult] = field(default_factory=list)
    skipped: List[SkippedComment] = field(default_factory=list)


class TargetPool:
    """
    Target-side hashes sorted by timestamp, held as numpy arrays so a
    coarse scan is one vectorised XOR + popcount.
    """

    def __init__(self, hashes: Iterable[FrameHash], fps: float):
        self.fps = fps
        ordered = sorted(hashes, key=self._timestamp_of)
        self._hashes: List[FrameHash] = ordered
        self.timestamps = np.array([self._timestamp_of(h) for h in ordered], dtype=np.float64)
        self.frame_numbers = np.array([self._frame_number_of(h) for h in ordered], dtype=np.int64)
        self.bits = np.array([h.bits for h in ordered], dtype=np.uint64)
        self._timestamp_list = self.timestamps.tolist()

    def _timestamp_of(self, h: FrameHash) -> float:
        return h.timestamp if h.timestamp is not None else h.frame_number / self.fps

    def _frame_number_of(self, h: FrameHash) -> int:
        return h.frame_number if h.frame_number is not None else round(h.timestamp * self.fps)

    def __len__(self) -> int:
        return len(self._hashes)

    @property
    def hashes(self) -> List[FrameHash]:
        return list(self._hashes)

    def distances(self, bits: int) -> np.ndarray:
        return np.bitwise_count(self.bits ^ np.uint64(bits)).astype(np.int64)

    def nearest_index(self, timestamp: float) -> int:
        """Index of the pool entry closest in time (earlier entry on ties)."""
        i = bisect.bisect_left(self._timestamp_list, timestamp)
        if i == 0:
            return 0
        if i >= len(self._timestamp_list):
            return len(self._timestamp_list) - 1
        before, after = self._timestamp_list[i - 1], self._timestamp_list[i]
        return i - 1 if timestamp - before <= after - timestamp else i

    def candidate(self, index: int, distance: int) -> Candidate:
        return Candidate(
            index=index,
            frame_number=int(self.frame_numbers[index]),
            timestamp=float(self.timestamps[index]),
            distance=distance,
        )

    def merged_with(self, hashes: Iterable[FrameHash]) -> "TargetPool":
        """New pool with extra hashes; an existing frame number keeps its first hash."""
        by_frame = {self._frame_number_of(h): h for h in reversed(self._hashes)}
        for h in hashes:
            by_frame.setdefault(self._frame_number_of(h), h)
        return TargetPool(by_frame.values(), self.fps)


class FrameMatcher:
    def __init__(
        self,
        thresholds: Optional[MatchThresholds] = None,
        neighbor_offsets: Sequence[int] = (-5, -1, 0, 1, 5),
    ):
        self.thresholds = thresholds or MatchThresholds()
        self.neighbor_offsets = tuple(neighbor_offsets)

    # =========================================================================
    # COARSE PHASE
    # =========================================================================

    def coarse_match(self, source_bits: int, pool: TargetPool) -> CoarseMatch:
        """
        Full scan of the pool.

        best: minimum distance (earliest in time on ties)
        runner_up: minimum distance among entries more than distinct_seconds
            away from the best, or None if there are none
        candidates: entries within best + tie_gap, pairwise more than
            distinct_seconds apart, closest first, at most max_candidates
        """
        if len(pool) == 0:
            raise ValueError("Target pool is empty")
        t = self.thresholds
        distances = pool.distances(source_bits)
        best_index = int(np.argmin(distances))
        best_distance = int(distances[best_index])
        best_time = pool.timestamps[best_index]

        outside = np.abs(pool.timestamps - best_time) > t.distinct_seconds
        runner_up = int(distances[outside].min()) if outside.any() else None

        within = np.flatnonzero(distances <= best_distance + t.tie_gap)
        ranked = sorted(within.tolist(), key=lambda i: (int(distances[i]), pool.timestamps[i]))
        candidates: List[Candidate] = []
        for i in ranked:
            if len(candidates) >= t.max_candidates:
                break
            if all(abs(pool.timestamps[i] - c.timestamp) > t.distinct_seconds for c in candidates):
                candidates.append(pool.candidate(i, int(distances[i])))

        return CoarseMatch(
            best=pool.candidate(best_index, best_distance),
            runner_up_distance=runner_up,
            candidates=candidates,
        )

    # =========================================================================
    # REFINEMENT PHASE
    # =========================================================================

    def vote(
        self,
        comment: SourceComment,
        coarse: CoarseMatch,
        neighbors: Dict[int, FrameHash],
        pool: TargetPool,
        source_fps: float,
    ):
        """
        Temporal voting: for each neighbor offset, the candidate whose
        time-shifted pool frame is uniquely closest to the neighbor's hash
        wins that offset's vote.

        Returns a MatchResult or a SkippedComment.
        """
        t = self.thresholds
        votes = {c.index: 0 for c in coarse.candidates}
        totals = {c.index: 0 for c in coarse.candidates}
        zero_offset_distance = {}
        cast = 0

        for offset in self.neighbor_offsets:
            neighbor = neighbors.get(comment.frame_number + offset)
            if neighbor is None:
                continue
            scored = []
            for c in coarse.candidates:
                shifted = pool.nearest_index(c.timestamp + offset / source_fps)
                d = bit_distance(neighbor.bits, int(pool.bits[shifted]))
                scored.append((d, c))
                totals[c.index] += d
                if offset == 0:
                    zero_offset_distance[c.index] = d
            scored.sort(key=lambda pair: pair[0])
            if len(scored) == 1 or scored[0][0] < scored[1][0]:
                votes[scored[0][1].index] += 1
                cast += 1

        if cast == 0:
            return SkippedComment(comment, "refinement could not separate candidates")

        ranking = sorted(coarse.candidates, key=lambda c: (-votes[c.index], totals[c.index]))
        winner = ranking[0]
        if len(ranking) > 1:
            runner = ranking[1]
            if votes[runner.index] == votes[winner.index] and totals[runner.index] == totals[winner.index]:
                return SkippedComment(comment, "refinement could not separate candidates")

        won = votes[winner.index]
        centre = zero_offset_distance.get(winner.index, winner.distance)
        if won == cast and centre <= t.strict_distance:
            tier = ConfidenceTier.HIGH
        elif won / cast >= t.medium_vote_ratio:
            tier = ConfidenceTier.MEDIUM
        else:
            tier = ConfidenceTier.LOW

        return MatchResult(
            comment=comment,
            target_frame_number=winner.frame_number,
            target_timestamp=winner.timestamp,
            bit_distance=winner.distance,
            confidence=tier,
            reason=f"temporal refinement: {won}/{cast} neighbor votes for frame {winner.frame_number}",
        )

    def neighbor_frames(self, comment: SourceComment, source_frame_count: int) -> List[int]:
        frames = []
        for offset in self.neighbor_offsets:
            n = comment.frame_number + offset
            if 0 <= n < source_frame_count:
                frames.append(n)
        return frames

    # =========================================================================
    # FULL MATCH
    # =========================================================================

    async def match(
        self,
        comments: Sequence[SourceComment],
        source_hashes: Dict[int, FrameHash],
        pool: TargetPool,
        fetch_neighbors: NeighborFetcher,
        source_fps: float,
        source_frame_count: int,
    ) -> MatchReport:
        """
        Match every comment. Each comment ends up in exactly one of
        report.matches or report.skipped.

        Args:
            source_hashes: hash of each comment's source frame, by frame number
            fetch_neighbors: coroutine(frame_numbers) -> {frame_number: FrameHash}
                for the source video, called once for all ambiguous comments
        """
        report = MatchReport()
        ambiguous = []

        for comment in comments:
            source = source_hashes.get(comment.frame_number)
            if source is None:
                report.skipped.append(SkippedComment(comment, "source frame unavailable"))
                continue
            coarse = self.coarse_match(source.bits, pool)
            verdict = classify_match(coarse.best.distance, coarse.runner_up_distance, self.thresholds)
            if verdict.action is MatchAction.SKIP:
                report.skipped.append(SkippedComment(
                    comment, f"no close match (best distance {coarse.best.distance})",
                ))
            elif verdict.action is MatchAction.TRANSFER:
                report.matches.append(MatchResult(
                    comment=comment,
                    target_frame_number=coarse.best.frame_number,
                    target_timestamp=coarse.best.timestamp,
                    bit_distance=coarse.best.distance,
                    confidence=verdict.confidence,
                    reason=f"coarse match: distance {coarse.best.distance}",
                ))
            else:
                ambiguous.append((comment, coarse))

        if ambiguous:
            wanted = sorted({
                n for comment, _ in ambiguous for n in self.neighbor_frames(comment, source_frame_count)
            })
            print(f"   🔍 Refining {len(ambiguous)} ambiguous matches ({len(wanted)} neighbor frames)")
            neighbors = await fetch_neighbors(wanted)
            for comment, coarse in ambiguous:
                outcome = self.vote(comment, coarse, neighbors, pool, source_fps)
                if isinstance(outcome, MatchResult):
                    report.matches.append(outcome)
                    landed = f"frame {outcome.target_frame_number}"
                else:
                    report.skipped.append(outcome)
                    landed = "skipped"
                print(f"      {comment.id} [{source_hashes[comment.frame_number].hex}]: "
                      f"{len(coarse.candidates)} candidates → {landed}")

        print(f"   ✓ Matched {len(report.matches)} / {len(comments)} comments "
              f"({len(report.skipped)} skipped)")
        return report
