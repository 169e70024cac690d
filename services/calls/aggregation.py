"""
Dashboard aggregation over completed calls.

Pure functions: they take an already-fetched snapshot of call records and
agents and never touch the database. A record is anything with
``created_at``, ``evaluation`` (a mapping or None) and ``agent_id``.

A call without an overall rating still counts as a call and adds 0 to the
score total. Averages over zero calls are 0.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
GRANULARITIES = (DAILY, WEEKLY, MONTHLY)


@dataclass(frozen=True)
class Summary:
    total_calls: int
    overall_average_score: float


@dataclass(frozen=True)
class TrendPoint:
    bucket_key: str
    bucket_start: date
    call_volume: int
    average_score: float


@dataclass(frozen=True)
class LeaderboardEntry:
    agent_id: object
    agent_name: str
    total_calls: int
    average_score: float


@dataclass(frozen=True)
class Dashboard:
    summary: Summary
    trends: List[TrendPoint]
    leaderboard: List[LeaderboardEntry]


def overall_rating(record) -> float:
    evaluation = getattr(record, "evaluation", None) or {}
    return evaluation.get("overall_rating") or 0


def average(total: float, count: int) -> float:
    if count == 0:
        return 0.0
    return round(total / count, 2)


def summarize(records: Iterable) -> Summary:
    records = list(records)
    total = sum(overall_rating(r) for r in records)
    return Summary(
        total_calls=len(records),
        overall_average_score=average(total, len(records)),
    )


def bucket_start(moment: datetime, granularity: str, tz: Optional[tzinfo] = None) -> date:
    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    day = moment.date()

    if granularity == DAILY:
        return day
    if granularity == WEEKLY:
        return day - timedelta(days=day.weekday())
    if granularity == MONTHLY:
        return day.replace(day=1)
    raise ValueError(f"Unknown granularity '{granularity}', expected one of {GRANULARITIES}.")


def bucket_key(start: date, granularity: str) -> str:
    if granularity == MONTHLY:
        return start.strftime("%Y-%m")
    return start.isoformat()


def trend_series(records: Iterable, granularity: str, tz: Optional[tzinfo] = None) -> List[TrendPoint]:
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity '{granularity}', expected one of {GRANULARITIES}.")

    volume = defaultdict(int)
    totals = defaultdict(float)
    for record in records:
        start = bucket_start(record.created_at, granularity, tz)
        volume[start] += 1
        totals[start] += overall_rating(record)

    return [
        TrendPoint(
            bucket_key=bucket_key(start, granularity),
            bucket_start=start,
            call_volume=volume[start],
            average_score=average(totals[start], volume[start]),
        )
        for start in sorted(volume)
    ]


def agent_leaderboard(records: Iterable, agents: Iterable) -> List[LeaderboardEntry]:
    records = list(records)
    entries = []
    for agent in agents:
        agent_calls = [r for r in records if r.agent_id == agent.id]
        total = sum(overall_rating(r) for r in agent_calls)
        entries.append(
            LeaderboardEntry(
                agent_id=agent.id,
                agent_name=agent.name,
                total_calls=len(agent_calls),
                average_score=average(total, len(agent_calls)),
            )
        )
    # sorted() is stable, so ties keep roster order
    return sorted(entries, key=lambda e: e.average_score, reverse=True)


def build_dashboard(records: Iterable, agents: Iterable, granularity: str = DAILY, tz=None) -> Dashboard:
    records = list(records)
    return Dashboard(
        summary=summarize(records),
        trends=trend_series(records, granularity, tz),
        leaderboard=agent_leaderboard(records, agents),
    )
