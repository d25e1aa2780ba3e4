import json
from collections import Counter
from datetime import datetime, timezone

import plotly.express as px
from flask import Blueprint, current_app, request
from flask_login import current_user, login_required
from plotly.utils import PlotlyJSONEncoder
from sqlalchemy import func

from ..extensions import db
from ..lifecycle import COMPLETED
from ..models.help_request import HelpRequest
from ..models.user import User

analytics_bp = Blueprint("analytics", __name__)


def _month_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m")


def _last_n_months_labels(n: int = 6) -> list[str]:
    base = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    months = []
    for i in range(n - 1, -1, -1):
        y = base.year
        m = base.month - i
        while m <= 0:
            m += 12
            y -= 1
        months.append(f"{y:04d}-{m:02d}")
    return months


def _json_response(obj):
    return current_app.response_class(
        json.dumps(obj, cls=PlotlyJSONEncoder, allow_nan=False),
        mimetype="application/json",
    )


@analytics_bp.get("/analytics")
@login_required
def overview():
    my_reqs = HelpRequest.query.filter_by(created_by_id=current_user.id).all()
    helped = HelpRequest.query.filter_by(claimed_by_id=current_user.id).all()

    by_status = Counter([r.status for r in my_reqs])
    status_labels = list(by_status.keys()) or ["no data"]
    status_values = list(by_status.values()) or [1]

    months = _last_n_months_labels(6)
    created_counts = {m: 0 for m in months}
    helped_counts = {m: 0 for m in months}
    for r in my_reqs:
        k = _month_key(r.created_at)
        if k in created_counts:
            created_counts[k] += 1
    for r in helped:
        k = _month_key(r.claimed_at or r.created_at)
        if k in helped_counts:
            helped_counts[k] += 1

    fig_status = px.pie(
        names=status_labels,
        values=status_values,
        hole=0.4,
        title="Your requests by status",
    )
    fig_status.update_traces(textposition="inside", textinfo="percent+label")

    fig_activity = px.bar(
        x=months * 2,
        y=list(created_counts.values()) + list(helped_counts.values()),
        color=["Requests created"] * len(months) + ["Helped others"] * len(months),
        barmode="group",
        title="Activity per month (last 6 months)",
        labels={"x": "Month", "y": "Count", "color": ""},
    )

    return _json_response({"status": fig_status, "activity": fig_activity})


@analytics_bp.get("/leaderboard")
@login_required
def leaderboard():
    limit = min(max(request.args.get("limit", 10, type=int), 1), 100)
    helps = func.count(HelpRequest.id).label("helps")
    rows = (
        db.session.query(User, helps)
        .join(HelpRequest, HelpRequest.claimed_by_id == User.id)
        .filter(HelpRequest.status == COMPLETED)
        .group_by(User.id)
        .order_by(helps.desc(), User.id.asc())
        .limit(limit)
        .all()
    )
    return _json_response([
        {"rank": i, "userId": u.id, "name": u.name, "completedHelps": n}
        for i, (u, n) in enumerate(rows, start=1)
    ])
