"""Contribution statistics and achievement badges.

``compute_stats`` is a pure function over plain records: the same inputs
always give the same report, and nothing is read from or written to the
database here. Badges come from declarative rule tables evaluated once over
the computed aggregates; every numeric limit is looked up in a thresholds
mapping so deployments can tune them.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Mapping, Optional

DEFAULT_THRESHOLDS = {
    "request_creator": 5,
    "request_master": 20,
    "first_help": 1,
    "super_helper": 5,
    "helper_elite": 10,
    "community_hero": 25,
    "premium_helper": 100,
    "reliable": 10,
    "community_champion": 10,
    "community_legend": 50,
    "reliable_helper": 50,
    "dependable_pillar": 80,
    "weekly_warrior": 7,
    "monthly_maven": 30,
    "quick_responder": 5,
    "five_star_excellence": 10,
    "weekend_warrior": 10,
    "highly_rated": 4.5,
    "highly_rated_min_ratings": 5,
    "versatile_helper": 3,
    "versatile_per_category": 5,
    "category_specialist": 10,
    "category_expert": 25,
    "category_master": 50,
    "category_excellence": 15,
    "category_swift": 10,
    "category_weekend_hero": 8,
    "quick_response_seconds": 3600,
}


@dataclass(frozen=True)
class RequestRecord:
    id: int
    status: str
    category: str
    created_at: datetime
    claimed_at: Optional[datetime] = None
    rating_score: Optional[int] = None

    @classmethod
    def from_model(cls, req) -> "RequestRecord":
        return cls(
            id=req.id,
            status=req.status,
            category=req.category or "Other",
            created_at=req.created_at,
            claimed_at=req.claimed_at,
            rating_score=req.rating.score if req.rating is not None else None,
        )

    @property
    def helped_at(self) -> datetime:
        return self.claimed_at or self.created_at


@dataclass(frozen=True)
class Badge:
    key: str
    title: str
    description: str
    category: Optional[str] = None


@dataclass
class Aggregates:
    total_requests: int = 0
    completed_requests: int = 0
    open_requests: int = 0
    helped_others: int = 0
    helped_completed: int = 0
    impact: int = 0
    response_rate: int = 0
    max_streak: int = 0
    rating_count: int = 0
    average_rating: float = 0.0
    five_star_count: int = 0
    weekend_helps: int = 0
    quick_responses: int = 0
    versatile_categories: int = 0
    categories: dict = field(default_factory=dict)
    helped_categories: dict = field(default_factory=dict)
    category_five_stars: dict = field(default_factory=dict)
    category_quick: dict = field(default_factory=dict)
    category_weekend: dict = field(default_factory=dict)


@dataclass
class StatsReport:
    aggregates: Aggregates
    badges: list[Badge]

    def to_dict(self) -> dict:
        a = self.aggregates
        return {
            "totalRequests": a.total_requests,
            "completedRequests": a.completed_requests,
            "openRequests": a.open_requests,
            "helpedOthers": a.helped_others,
            "helpedCompleted": a.helped_completed,
            "impact": a.impact,
            "responseRate": a.response_rate,
            "maxStreak": a.max_streak,
            "ratingCount": a.rating_count,
            "averageRating": a.average_rating,
            "fiveStarCount": a.five_star_count,
            "weekendHelps": a.weekend_helps,
            "quickResponses": a.quick_responses,
            "categoriesBreakdown": a.categories,
            "helpedCategories": a.helped_categories,
            "badges": [asdict(b) for b in self.badges],
        }


Check = Callable[[Aggregates, Mapping], bool]


@dataclass(frozen=True)
class BadgeRule:
    key: str
    title: str
    description: str
    when: Check


@dataclass(frozen=True)
class CategoryRule:
    key: str
    title: str
    description: str
    metric: str


def _at_least(metric: str, key: str) -> Check:
    return lambda agg, t: getattr(agg, metric) >= t[key]


def _highly_rated(agg: Aggregates, t: Mapping) -> bool:
    return (
        agg.rating_count >= t["highly_rated_min_ratings"]
        and agg.average_rating >= t["highly_rated"]
    )


BADGE_RULES = (
    BadgeRule("request_creator", "Request Creator", "Created {n} or more requests",
              _at_least("total_requests", "request_creator")),
    BadgeRule("request_master", "Request Master", "Created {n} or more requests",
              _at_least("total_requests", "request_master")),
    BadgeRule("first_help", "First Help", "Helped a community member",
              _at_least("helped_others", "first_help")),
    BadgeRule("super_helper", "Super Helper", "Helped {n} or more community members",
              _at_least("helped_others", "super_helper")),
    BadgeRule("helper_elite", "Helper Elite", "Helped {n} or more community members",
              _at_least("helped_others", "helper_elite")),
    BadgeRule("community_hero", "Community Hero", "Helped {n} or more community members",
              _at_least("helped_others", "community_hero")),
    BadgeRule("premium_helper", "Premium Helper", "Completed {n} successful helps",
              _at_least("helped_completed", "premium_helper")),
    BadgeRule("reliable", "Reliable", "Completed {n} helps confirmed by requesters",
              _at_least("helped_completed", "reliable")),
    BadgeRule("community_champion", "Community Champion", "Made an impact on {n}+ occasions",
              _at_least("impact", "community_champion")),
    BadgeRule("community_legend", "Community Legend", "Made an impact on {n}+ occasions",
              _at_least("impact", "community_legend")),
    BadgeRule("reliable_helper", "Reliable Helper", "{n}%+ response rate to community requests",
              _at_least("response_rate", "reliable_helper")),
    BadgeRule("dependable_pillar", "Dependable Pillar", "{n}%+ response rate to community requests",
              _at_least("response_rate", "dependable_pillar")),
    BadgeRule("weekly_warrior", "Weekly Warrior", "Active for {n} consecutive days",
              _at_least("max_streak", "weekly_warrior")),
    BadgeRule("monthly_maven", "Monthly Maven", "Active for {n} consecutive days",
              _at_least("max_streak", "monthly_maven")),
    BadgeRule("quick_responder", "Quick Responder", "Responded to {n} requests within 1 hour",
              _at_least("quick_responses", "quick_responder")),
    BadgeRule("five_star_excellence", "Five Star Excellence", "Received {n} or more 5-star ratings",
              _at_least("five_star_count", "five_star_excellence")),
    BadgeRule("weekend_warrior", "Weekend Warrior", "Helped {n} times during weekends",
              _at_least("weekend_helps", "weekend_warrior")),
    BadgeRule("highly_rated", "Highly Rated", "Average rating of {n} or better",
              _highly_rated),
    BadgeRule("versatile_helper", "Versatile Helper", "Helped in at least {n} categories",
              _at_least("versatile_categories", "versatile_helper")),
)

CATEGORY_RULES = (
    CategoryRule("category_specialist", "{category} Specialist",
                 "Completed {n}+ requests in {category}", "helped_categories"),
    CategoryRule("category_expert", "{category} Expert",
                 "Completed {n}+ requests in {category}", "helped_categories"),
    CategoryRule("category_master", "{category} Master",
                 "Completed {n}+ requests in {category}", "helped_categories"),
    CategoryRule("category_excellence", "{category} Excellence",
                 "Received {n}+ five-star ratings in {category}", "category_five_stars"),
    CategoryRule("category_swift", "Swift {category} Helper",
                 "Quick response to {n}+ {category} requests", "category_quick"),
    CategoryRule("category_weekend_hero", "{category} Weekend Hero",
                 "Completed {n}+ {category} requests on weekends", "category_weekend"),
)


def max_consecutive_days(days: Iterable[date]) -> int:
    unique = sorted(set(days))
    if not unique:
        return 0
    best = current = 1
    for prev, cur in zip(unique, unique[1:]):
        if cur - prev == timedelta(days=1):
            current += 1
            best = max(best, current)
        else:
            current = 1
    return best


def _aggregate(requests: list[RequestRecord], claims: list[RequestRecord],
               t: Mapping) -> Aggregates:
    agg = Aggregates()
    agg.total_requests = len(requests)
    agg.completed_requests = sum(1 for r in requests if r.status == "completed")
    agg.open_requests = sum(1 for r in requests if r.status == "open")
    agg.helped_others = len(claims)
    agg.helped_completed = sum(1 for c in claims if c.status == "completed")
    agg.impact = agg.helped_others + agg.completed_requests

    opportunities = agg.helped_others + agg.open_requests
    agg.response_rate = round(agg.helped_others * 100 / opportunities) if opportunities else 0

    activity = [r.created_at.date() for r in requests]
    activity += [c.helped_at.date() for c in claims]
    agg.max_streak = max_consecutive_days(activity)

    agg.categories = dict(sorted(Counter(r.category for r in requests).items()))
    agg.helped_categories = dict(sorted(Counter(c.category for c in claims).items()))

    scores = [c.rating_score for c in claims if c.rating_score is not None]
    agg.rating_count = len(scores)
    agg.average_rating = round(sum(scores) / len(scores), 1) if scores else 0.0
    agg.five_star_count = sum(1 for s in scores if s == 5)

    quick_limit = timedelta(seconds=t["quick_response_seconds"])
    five, quick, weekend = Counter(), Counter(), Counter()
    for c in claims:
        if c.rating_score == 5:
            five[c.category] += 1
        if c.claimed_at is not None and c.claimed_at - c.created_at <= quick_limit:
            quick[c.category] += 1
        if c.helped_at.weekday() >= 5:
            weekend[c.category] += 1
    agg.quick_responses = sum(quick.values())
    agg.weekend_helps = sum(weekend.values())
    agg.category_five_stars = dict(sorted(five.items()))
    agg.category_quick = dict(sorted(quick.items()))
    agg.category_weekend = dict(sorted(weekend.items()))
    agg.versatile_categories = sum(
        1 for n in agg.helped_categories.values() if n >= t["versatile_per_category"]
    )
    return agg


def _badges(agg: Aggregates, t: Mapping) -> list[Badge]:
    badges = [
        Badge(rule.key, rule.title, rule.description.format(n=t[rule.key]))
        for rule in BADGE_RULES
        if rule.when(agg, t)
    ]
    categories = sorted(set(agg.helped_categories) | set(agg.categories))
    for category in categories:
        for rule in CATEGORY_RULES:
            count = getattr(agg, rule.metric).get(category, 0)
            if count >= t[rule.key]:
                badges.append(Badge(
                    rule.key,
                    rule.title.format(category=category),
                    rule.description.format(n=t[rule.key], category=category),
                    category=category,
                ))
    return badges


def compute_stats(requests: Iterable[RequestRecord], claims: Iterable[RequestRecord],
                  thresholds: Optional[Mapping] = None) -> StatsReport:
    """Summarise a user's authored ``requests`` and the ``claims`` they took on."""
    t = dict(DEFAULT_THRESHOLDS)
    if thresholds:
        t.update(thresholds)
    agg = _aggregate(list(requests), list(claims), t)
    return StatsReport(aggregates=agg, badges=_badges(agg, t))
