from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from podcast_digest.models.metadata import PlatformMetadata, YouTubeVideoDetails
from podcast_digest.repositories.interfaces import FailedSearchLog
from podcast_digest.repositories.podcast_repository import FailedYouTubeSearch

LOGGER = logging.getLogger("podcast_digest.matcher")

MATCH_THRESHOLD = 0.5
SEARCH_RESULTS_PER_QUERY = 5
TITLE_WEIGHT = 0.6
CHANNEL_WEIGHT = 0.1
DURATION_BONUS = 0.3
DURATION_TOLERANCE = 0.05
VIEW_SCORE_CAP = 0.1


@dataclass(frozen=True)
class MatchCandidate:
    video: YouTubeVideoDetails
    score: float
    query: str


class YouTubeSearchClient(Protocol):
    def search(self, query: str, *, max_results: int = 5) -> list[str]:
        ...

    def get_videos(self, video_ids: list[str]) -> list[YouTubeVideoDetails]:
        ...


def levenshtein_distance(first: str, second: str) -> int:
    if first == second:
        return 0
    if not first:
        return len(second)
    if not second:
        return len(first)

    previous = list(range(len(second) + 1))
    for row_index, first_char in enumerate(first, start=1):
        current = [row_index]
        for column_index, second_char in enumerate(second, start=1):
            substitution_cost = 0 if first_char == second_char else 1
            current.append(
                min(
                    previous[column_index] + 1,
                    current[column_index - 1] + 1,
                    previous[column_index - 1] + substitution_cost,
                )
            )
        previous = current
    return previous[-1]


def string_similarity(first: str, second: str) -> float:
    """Case-insensitive normalized Levenshtein similarity in [0, 1]."""
    left = first.lower()
    right = second.lower()
    if left == right:
        return 1.0
    max_length = max(len(left), len(right))
    return (max_length - levenshtein_distance(left, right)) / max_length


def duration_score(video_seconds: int, spotify_seconds: int) -> float:
    if spotify_seconds <= 0:
        return 0.0
    if abs(video_seconds - spotify_seconds) < DURATION_TOLERANCE * spotify_seconds:
        return DURATION_BONUS
    return 0.0


def view_score(view_count: int | None) -> float:
    if view_count is None or view_count < 0:
        return 0.0
    return min(VIEW_SCORE_CAP, VIEW_SCORE_CAP * math.log10(view_count + 1) / 3)


def score_candidate(video: YouTubeVideoDetails, episode: PlatformMetadata) -> float:
    # fsum keeps an exact title/duration/channel match at 1.0 instead of 0.999...
    return math.fsum(
        (
            TITLE_WEIGHT * string_similarity(video.title, episode.title),
            duration_score(video.duration_seconds, episode.duration_seconds),
            CHANNEL_WEIGHT * string_similarity(video.channel_title, episode.show_name),
            view_score(video.view_count),
        )
    )


def build_search_queries(title: str, show_name: str) -> list[str]:
    title = " ".join(title.split())
    show_name = " ".join(show_name.split())
    candidates = [
        f"{title} {show_name} podcast",
        f"{title} podcast",
        f"{show_name} podcast {title}",
    ]
    queries: list[str] = []
    for candidate in candidates:
        query = " ".join(candidate.split())
        if query and query != "podcast" and query not in queries:
            queries.append(query)
    return queries


def select_best_candidate(
    videos: Sequence[YouTubeVideoDetails],
    episode: PlatformMetadata,
    *,
    query: str,
    threshold: float = MATCH_THRESHOLD,
) -> MatchCandidate | None:
    """Highest score at or above threshold; ties keep the earlier result."""
    best: MatchCandidate | None = None
    for video in videos:
        score = score_candidate(video, episode)
        LOGGER.debug(
            "matcher candidate video_id=%s score=%.3f query=%s",
            video.video_id,
            score,
            query,
        )
        if score < threshold:
            continue
        if best is None or score > best.score:
            best = MatchCandidate(video=video, score=score, query=query)
    return best


class PlatformMatcher:
    """Find the YouTube upload of a Spotify episode so it can be transcribed."""

    def __init__(
        self,
        *,
        youtube: YouTubeSearchClient,
        failed_search_log: FailedSearchLog,
        threshold: float = MATCH_THRESHOLD,
        results_per_query: int = SEARCH_RESULTS_PER_QUERY,
    ) -> None:
        self._youtube = youtube
        self._failed_search_log = failed_search_log
        self._threshold = threshold
        self._results_per_query = max(1, results_per_query)

    def find_match(self, episode: PlatformMetadata) -> MatchCandidate | None:
        queries = build_search_queries(episode.title, episode.show_name)
        for query in queries:
            video_ids = self._youtube.search(query, max_results=self._results_per_query)
            if not video_ids:
                continue
            videos = self._youtube.get_videos(video_ids[: self._results_per_query])
            best = select_best_candidate(
                videos,
                episode,
                query=query,
                threshold=self._threshold,
            )
            if best is not None:
                LOGGER.info(
                    "matcher match_found episode_id=%s video_id=%s score=%.3f query=%s",
                    episode.platform_id,
                    best.video.video_id,
                    best.score,
                    query,
                )
                return best

        LOGGER.info(
            "matcher no_match episode_id=%s queries=%s",
            episode.platform_id,
            len(queries),
        )
        self._failed_search_log.log_failed_youtube_search(
            FailedYouTubeSearch(
                search_query=queries[0] if queries else "",
                spotify_show_name=episode.show_name,
                spotify_title=episode.title,
                spotify_url=episode.url,
            )
        )
        return None
