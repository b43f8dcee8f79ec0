"""
Usage analytics and performance metrics.

Events land in ``analytics_events``; every metric is computed on read over
a time window. Quality metrics come from peer review ratings and the
approval queue.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.storage.database import get_db
from promptdesk.storage.models import (
    dumps,
    generate_uuid,
    hours_between,
    loads,
    now_iso,
    parse_iso,
    to_iso,
    utcnow,
)

PROMPT_VIEW = "prompt_view"
PROMPT_USE = "prompt_use"
PROMPT_CREATE = "prompt_create"
SANDBOX_TEST = "sandbox_test"
REVIEW_SUBMIT = "review_submit"

# Metrics compared period over period
COMPARED_METRICS = [
    "total_events",
    "unique_users",
    "prompt_views",
    "prompt_uses",
    "sandbox_sessions",
    "reviews_completed",
    "avg_ai_accuracy",
    "avg_satisfaction_rating",
    "sandbox_success_rate",
    "avg_time_to_approval_hours",
]


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; 100 when growing from zero."""
    if not previous:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


class AnalyticsService:
    """Track usage events and compute usage and quality metrics."""

    # =========================================================================
    # Tracking
    # =========================================================================

    def track_event(
        self,
        event_type: str,
        event_name: str,
        user_id: str | None = None,
        prompt_id: str | None = None,
        department_id: str | None = None,
        session_id: str | None = None,
        duration_seconds: float | None = None,
        properties: dict[str, Any] | None = None,
        conn: Connection | None = None,
    ) -> str:
        """Record one analytics event.

        Args:
            event_type: Coarse grouping (prompt, sandbox, review, feature)
            event_name: Specific event (prompt_view, prompt_use, ...)
            conn: Join the caller's transaction (the caller commits)

        Returns:
            The event ID
        """
        event_id = generate_uuid()
        params = {
            "id": event_id,
            "event_type": event_type,
            "event_name": event_name,
            "user_id": user_id,
            "prompt_id": prompt_id,
            "department_id": department_id,
            "session_id": session_id,
            "duration_seconds": duration_seconds,
            "properties": dumps(properties or {}),
            "created_at": now_iso(),
        }
        sql = text("""
            INSERT INTO analytics_events
            (id, event_type, event_name, user_id, prompt_id, department_id, session_id,
             duration_seconds, properties, created_at)
            VALUES (:id, :event_type, :event_name, :user_id, :prompt_id, :department_id,
                    :session_id, :duration_seconds, :properties, :created_at)
        """)
        if conn is not None:
            conn.execute(sql, params)
        else:
            with get_db() as own:
                own.execute(sql, params)
                own.commit()
        return event_id

    def track_prompt_view(self, prompt_id: str, user_id: str | None = None, **kwargs: Any) -> str:
        return self.track_event("prompt", PROMPT_VIEW, user_id=user_id, prompt_id=prompt_id, **kwargs)

    def track_prompt_use(self, prompt_id: str, user_id: str | None = None, **kwargs: Any) -> str:
        return self.track_event("prompt", PROMPT_USE, user_id=user_id, prompt_id=prompt_id, **kwargs)

    def track_sandbox_test(
        self,
        user_id: str | None = None,
        prompt_id: str | None = None,
        success: bool = True,
        duration_seconds: float | None = None,
        **kwargs: Any,
    ) -> str:
        properties = {**kwargs.pop("properties", {}), "success": success}
        return self.track_event(
            "sandbox", SANDBOX_TEST, user_id=user_id, prompt_id=prompt_id,
            duration_seconds=duration_seconds, properties=properties, **kwargs,
        )

    def track_review_submit(self, submission_id: str, user_id: str | None = None, **kwargs: Any) -> str:
        properties = {**kwargs.pop("properties", {}), "submission_id": submission_id}
        return self.track_event("review", REVIEW_SUBMIT, user_id=user_id, properties=properties, **kwargs)

    def track_feature_usage(self, feature_name: str, action: str, user_id: str | None = None, **kwargs: Any) -> str:
        properties = {**kwargs.pop("properties", {}), "feature_name": feature_name}
        return self.track_event("feature", f"feature_{action}", user_id=user_id, properties=properties, **kwargs)

    # =========================================================================
    # Usage Metrics
    # =========================================================================

    def _events(
        self,
        start: datetime,
        end: datetime,
        extra: str = "",
        params: dict[str, Any] | None = None,
        end_inclusive: bool = True,
    ) -> list[Any]:
        upper = "<=" if end_inclusive else "<"
        with get_db() as conn:
            result = conn.execute(
                text(f"""
                SELECT * FROM analytics_events
                WHERE created_at >= :start AND created_at {upper} :end {extra}
                ORDER BY created_at
                """),
                {"start": to_iso(start), "end": to_iso(end), **(params or {})},
            )
            return result.fetchall()

    def get_usage_metrics(self, start: datetime, end: datetime, end_inclusive: bool = True) -> dict[str, Any]:
        events = self._events(start, end, end_inclusive=end_inclusive)
        names = Counter(e.event_name for e in events)
        return {
            "total_events": len(events),
            "unique_users": len({e.user_id for e in events if e.user_id}),
            "prompt_views": names[PROMPT_VIEW],
            "prompt_uses": names[PROMPT_USE],
            "sandbox_sessions": names[SANDBOX_TEST],
            "reviews_completed": names[REVIEW_SUBMIT],
        }

    def get_department_metrics(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Per-department usage, busiest first."""
        departments: dict[str, dict[str, Any]] = {}
        for e in self._events(start, end, "AND department_id IS NOT NULL"):
            dept = departments.setdefault(
                e.department_id, {"events": 0, "users": set(), "prompt_uses": 0}
            )
            dept["events"] += 1
            if e.user_id:
                dept["users"].add(e.user_id)
            if e.event_name == PROMPT_USE:
                dept["prompt_uses"] += 1

        metrics = []
        for department_id, d in departments.items():
            users = len(d["users"])
            metrics.append({
                "department_id": department_id,
                "total_events": d["events"],
                "unique_users": users,
                "prompt_uses": d["prompt_uses"],
                "avg_engagement": round(d["events"] / users, 2) if users else 0.0,
            })
        metrics.sort(key=lambda m: m["total_events"], reverse=True)
        return metrics

    def get_most_used_prompts(self, limit: int = 10, days: int = 30, now: datetime | None = None) -> list[dict[str, Any]]:
        """Rank prompts by a trending score over the last ``days`` days."""
        end = now or utcnow()
        events = self._events(
            end - timedelta(days=days), end,
            "AND prompt_id IS NOT NULL AND event_name IN (:view, :use)",
            {"view": PROMPT_VIEW, "use": PROMPT_USE},
        )

        stats: dict[str, dict[str, Any]] = {}
        for e in events:
            s = stats.setdefault(e.prompt_id, {"uses": 0, "views": 0, "first": e.created_at, "last": e.created_at})
            if e.event_name == PROMPT_USE:
                s["uses"] += 1
            else:
                s["views"] += 1
            s["last"] = e.created_at

        titles: dict[str, str] = {}
        if stats:
            with get_db() as conn:
                for row in conn.execute(text("SELECT id, title FROM prompts")).fetchall():
                    if row.id in stats:
                        titles[row.id] = row.title

        ranked = []
        for prompt_id, s in stats.items():
            days_active = max(1, (parse_iso(s["last"]) - parse_iso(s["first"])).days)
            growth = s["uses"] / days_active
            ranked.append({
                "prompt_id": prompt_id,
                "title": titles.get(prompt_id),
                "use_count": s["uses"],
                "view_count": s["views"],
                "days_active": days_active,
                "growth_rate": round(growth, 2),
                "trending_score": round(s["uses"] * 10 + s["views"] + growth * 20),
            })
        ranked.sort(key=lambda p: p["trending_score"], reverse=True)
        return ranked[:limit]

    def get_adoption_time_series(self, feature: str, days: int = 30, now: datetime | None = None) -> list[dict[str, Any]]:
        """Daily unique users of a feature (event name or feature_<action>)."""
        end = now or utcnow()
        start = end - timedelta(days=days)
        events = self._events(
            start, end, "AND (event_name = :feature OR event_name = :prefixed)",
            {"feature": feature, "prefixed": f"feature_{feature}"},
        )
        by_day: dict[str, set[str]] = {}
        for e in events:
            by_day.setdefault(e.created_at[:10], set()).add(e.user_id or "")

        series = []
        day = start.date()
        while day <= end.date():
            key = day.isoformat()
            users = by_day.get(key, set())
            series.append({"date": key, "unique_users": len(users - {""})})
            day += timedelta(days=1)
        return series

    def get_cohort_analysis(self, start: datetime, end: datetime, now: datetime | None = None) -> dict[str, Any]:
        events = self._events(start, end)
        users = {e.user_id for e in events if e.user_id}

        day_start = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
        with get_db() as conn:
            active_rows = conn.execute(
                text("""
                SELECT DISTINCT user_id FROM analytics_events
                WHERE user_id IS NOT NULL AND created_at >= :day_start AND created_at < :day_end
                """),
                {"day_start": to_iso(day_start), "day_end": to_iso(day_start + timedelta(days=1))},
            ).fetchall()
        active_today = len(users & {r.user_id for r in active_rows})

        total = len(users)
        return {
            "total_users": total,
            "active_today": active_today,
            "retention_rate": round(active_today / total * 100, 1) if total else 0.0,
            "avg_events_per_user": round(len(events) / total, 1) if total else 0.0,
        }

    def get_feature_usage_breakdown(self, days: int = 30, now: datetime | None = None) -> list[dict[str, Any]]:
        end = now or utcnow()
        breakdown: dict[str, dict[str, Any]] = {}
        for e in self._events(end - timedelta(days=days), end, "AND event_type = 'feature'"):
            feature = loads(e.properties, {}).get("feature_name") or e.event_name
            entry = breakdown.setdefault(feature, {"usage_count": 0, "users": set(), "actions": Counter()})
            entry["usage_count"] += 1
            entry["actions"][e.event_name.removeprefix("feature_")] += 1
            if e.user_id:
                entry["users"].add(e.user_id)

        result = [
            {
                "feature_name": name,
                "usage_count": entry["usage_count"],
                "unique_users": len(entry["users"]),
                "actions": dict(entry["actions"]),
            }
            for name, entry in breakdown.items()
        ]
        result.sort(key=lambda f: f["usage_count"], reverse=True)
        return result

    # =========================================================================
    # Performance Metrics
    # =========================================================================

    def get_performance_metrics(self, start: datetime, end: datetime, end_inclusive: bool = True) -> dict[str, Any]:
        """Quality metrics from reviews, sandbox runs and the approval queue."""
        params = {"start": to_iso(start), "end": to_iso(end)}
        upper = "<=" if end_inclusive else "<"
        with get_db() as conn:
            ratings = conn.execute(
                text(f"""
                SELECT AVG(accuracy_rating) AS accuracy, AVG(clarity_rating) AS clarity,
                       AVG(usefulness_rating) AS usefulness, AVG(overall_rating) AS overall
                FROM peer_reviews
                WHERE created_at >= :start AND created_at {upper} :end
                """),
                params,
            ).fetchone()

            approvals = conn.execute(
                text(f"""
                SELECT submitted_at, completed_at FROM approval_queue
                WHERE status = 'approved' AND completed_at IS NOT NULL
                  AND completed_at >= :start AND completed_at {upper} :end
                """),
                params,
            ).fetchall()

            submitted = conn.execute(
                text(f"SELECT COUNT(*) FROM approval_queue WHERE submitted_at >= :start AND submitted_at {upper} :end"),
                params,
            ).fetchone()[0]
            revisions = conn.execute(
                text(f"SELECT COUNT(*) FROM revision_requests WHERE created_at >= :start AND created_at {upper} :end"),
                params,
            ).fetchone()[0]

        sandbox = self._events(start, end, "AND event_name = :name", {"name": SANDBOX_TEST}, end_inclusive)
        successes = sum(1 for e in sandbox if loads(e.properties, {}).get("success") is True)

        approval_hours = [
            hours_between(parse_iso(a.submitted_at), parse_iso(a.completed_at)) for a in approvals
        ]

        return {
            "avg_ai_accuracy": round(ratings.accuracy or 0, 2),
            "avg_clarity_score": round(ratings.clarity or 0, 2),
            "avg_usefulness_score": round(ratings.usefulness or 0, 2),
            "avg_satisfaction_rating": round(ratings.overall or 0, 2),
            "sandbox_success_rate": round(successes / len(sandbox) * 100, 1) if sandbox else 0.0,
            "avg_time_to_approval_hours": (
                round(sum(approval_hours) / len(approval_hours), 1) if approval_hours else 0.0
            ),
            "revision_frequency": round(revisions / submitted, 2) if submitted else 0.0,
        }

    def compare_periods(self, current_start: datetime, current_end: datetime) -> dict[str, Any]:
        """Compare a period with the equally long period right before it.

        The previous period excludes its end, so an event at
        ``current_start`` counts only toward the current period.
        """
        length = current_end - current_start
        previous_start = current_start - length
        previous_end = current_start

        current = {
            **self.get_usage_metrics(current_start, current_end),
            **self.get_performance_metrics(current_start, current_end),
        }
        previous = {
            **self.get_usage_metrics(previous_start, previous_end, end_inclusive=False),
            **self.get_performance_metrics(previous_start, previous_end, end_inclusive=False),
        }
        return {
            "current_period": {"start": to_iso(current_start), "end": to_iso(current_end)},
            "previous_period": {"start": to_iso(previous_start), "end": to_iso(previous_end)},
            "current": current,
            "previous": previous,
            "changes": {m: percent_change(current[m], previous[m]) for m in COMPARED_METRICS},
        }


# Global service instance
_analytics_service: AnalyticsService | None = None


def get_analytics_service() -> AnalyticsService:
    """Get or create the global analytics service."""
    global _analytics_service
    if _analytics_service is None:
        _analytics_service = AnalyticsService()
    return _analytics_service


def reset_analytics_service() -> None:
    global _analytics_service
    _analytics_service = None
