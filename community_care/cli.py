from __future__ import annotations

import random

import click
from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .errors import CareError
from .extensions import db
from .geo import Geocoded, PlainText, Position
from .lifecycle import CATEGORIES, URGENCIES, Actor, ServiceContext
from .models.help_request import HelpRequest, Rating, RequestEvent
from .models.message import Message
from .models.notification import Notification
from .models.user import User
from .requests import service


def _db_uri() -> str:
    return current_app.config.get("SQLALCHEMY_DATABASE_URI", "")


def _ctx(user: User) -> ServiceContext:
    return ServiceContext(actor=Actor.from_user(user))


@click.command("init-db")
def init_db_cmd():
    uri = _db_uri()
    click.echo(f"Creating tables on DB: {uri}")
    db.create_all()
    click.echo("✔ Tables created.")


@click.command("reset-db")
@click.option("--force", is_flag=True, help="Drop + create (irreversible).")
def reset_db_cmd(force: bool):
    uri = _db_uri()
    if not force:
        click.echo("Add --force to confirm dropping all tables.")
        return
    click.echo(f"Dropping & creating tables on DB: {uri}")
    db.drop_all()
    db.create_all()
    click.echo("✔ Database reset.")


@click.command("purge-data")
def purge_data_cmd():
    db.session.query(Notification).delete()
    db.session.query(Message).delete()
    db.session.query(Rating).delete()
    db.session.query(RequestEvent).delete()
    db.session.query(HelpRequest).delete()
    db.session.query(User).delete()
    db.session.commit()
    if _db_uri().startswith("sqlite:"):
        # only present when a table uses AUTOINCREMENT
        try:
            db.session.execute(text("DELETE FROM sqlite_sequence"))
            db.session.commit()
        except OperationalError:
            db.session.rollback()
    click.echo("✔ All data removed (schema kept).")


@click.command("seed-demo")
def seed_demo_cmd():
    resident = User(email="resident@carenet.org", name="Demo Resident", user_type="resident")
    resident.set_password("demo1234")
    volunteer = User(email="volunteer@carenet.org", name="Demo Volunteer", user_type="volunteer")
    volunteer.set_password("demo1234")
    db.session.add_all([resident, volunteer])
    db.session.commit()

    service.create_request(
        _ctx(resident),
        title="Pick up groceries",
        description="Weekly groceries from the corner shop, list will be at the door.",
        category="Groceries & Shopping",
        urgency="medium",
        location=Geocoded(42.6977, 23.3219, "12 Vitosha Blvd"),
    )
    click.echo("✔ Seed done. Users: resident@carenet.org / volunteer@carenet.org (password: demo1234)")


FIRST_NAMES = [
    "Alex", "Mira", "Daniel", "Eva", "Ivo", "Nina", "Chris", "Maria", "Petar", "Georgi",
    "Viktor", "Sofia", "Ani", "Stoyan", "Kalina", "Toma", "Raya", "Mila", "Rumen", "Teo",
]
LAST_NAMES = [
    "Petrov", "Georgieva", "Ivanov", "Dimitrova", "Nikolov", "Stoyanova", "Kolev",
    "Marinova", "Kostov", "Hristova", "Vasilev", "Todorova", "Alexandrov", "Ilieva",
]
TASKS = {
    "Groceries & Shopping": "Grocery run for the week",
    "Medical Assistance": "Ride to a doctor's appointment",
    "Transportation": "Lift to the train station",
    "Pet Care": "Walk my dog this afternoon",
    "Technology Help": "Set up video calls on my tablet",
    "Yard Work": "Rake leaves in the front yard",
    "Companionship": "Afternoon chat and a walk",
}


def _rand_name() -> str:
    return f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}"


def _rand_location():
    lat = 42.69 + random.uniform(-0.05, 0.05)
    lng = 23.32 + random.uniform(-0.05, 0.05)
    if random.random() < 0.7:
        return Geocoded(lat, lng, f"{random.randint(1, 200)} Main St")
    return PlainText(f"Block {random.randint(1, 400)}, entrance {random.choice('ABCD')}")


def _advance(req: HelpRequest, resident: User, volunteer: User, stage: str) -> None:
    """Drive ``req`` through the lifecycle up to ``stage``."""
    if stage == "open":
        return
    service.claim(_ctx(volunteer), req.id)
    if stage == "claimed":
        return
    loc = req.location
    pos = None
    if isinstance(loc, Geocoded):
        pos = Position(loc.lat + random.uniform(-0.0005, 0.0005), loc.lng, accuracy=15.0)
    service.mark_complete(_ctx(volunteer), req.id, pos)
    if stage == "pending_completion":
        return
    service.verify_completion(_ctx(resident), req.id, approved=True)
    if random.random() < 0.8:
        service.rate(_ctx(resident), req.id, random.choice([3, 4, 5, 5, 5]), "Thank you!")


@click.command("seed-bulk")
@click.option("--users", default=20, show_default=True, help="Number of users.")
@click.option("--requests", "n_requests", default=60, show_default=True, help="Number of requests.")
@click.option("--seed", default=42, show_default=True, help="Random seed.")
def seed_bulk_cmd(users: int, n_requests: int, seed: int):
    random.seed(seed)
    click.echo(f"Seeding on DB: {_db_uri()}")

    all_users: list[User] = []
    for i in range(users):
        u = User(
            email=f"user{i:03d}@carenet.org",
            name=_rand_name(),
            user_type=random.choice(["resident", "volunteer", "both"]),
        )
        u.set_password("demo1234")
        db.session.add(u)
        all_users.append(u)
    db.session.commit()

    residents = [u for u in all_users if u.user_type in ("resident", "both")]
    volunteers = [u for u in all_users if u.user_type in ("volunteer", "both")]
    click.echo(f"Users: total={len(all_users)} residents={len(residents)} volunteers={len(volunteers)}")
    if not residents or not volunteers:
        click.echo("Need at least one resident and one volunteer.")
        return

    stages = ["open", "claimed", "pending_completion", "completed"]
    weights = [0.3, 0.2, 0.15, 0.35]
    failed = 0
    for _ in range(n_requests):
        resident = random.choice(residents)
        category = random.choice(CATEGORIES)
        req = service.create_request(
            _ctx(resident),
            title=TASKS.get(category, f"Help needed: {category}"),
            description=f"Looking for a neighbour who can help with {category.lower()} this week.",
            category=category,
            urgency=random.choice(URGENCIES),
            location=_rand_location(),
        )
        candidates = [v for v in volunteers if v.id != resident.id]
        if not candidates:
            continue
        stage = random.choices(stages, weights)[0]
        try:
            _advance(req, resident, random.choice(candidates), stage)
        except CareError as exc:
            failed += 1
            click.echo(f"  request {req.id}: {exc.message}")

    counts = {s: HelpRequest.query.filter_by(status=s).count() for s in stages}
    click.echo(
        "✔ Seed completed:\n"
        f"  Users: {len(all_users)}\n"
        f"  Requests: {n_requests} "
        + " ".join(f"{k}={v}" for k, v in counts.items())
        + (f"\n  Failed transitions: {failed}" if failed else "")
    )
