import pytest

from campus_cli.config import Settings
from campus_cli.context import build_context
from campus_cli.store.paths import student_path

DEPARTMENTS = ["CSE", "ECE"]


class OutboxSender:
    """Collects outgoing mail instead of talking to an SMTP server."""

    def __init__(self):
        self.sent = []

    def send_email(self, recipient_email, subject, body, html_content=None):
        self.sent.append({"to": recipient_email, "subject": subject, "body": body})
        return True


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    # audit logs are written relative to the working directory
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'campus.db'}",
        departments=list(DEPARTMENTS),
        default_academic_year=2025,
        max_workers=1,
    )


@pytest.fixture
def outbox():
    return OutboxSender()


@pytest.fixture
def ctx(settings, outbox):
    return build_context(settings, email_sender=outbox)


@pytest.fixture
def store(ctx):
    return ctx.store


@pytest.fixture
def clock(ctx):
    ctx.clock.load()
    return ctx.clock


@pytest.fixture
def reps(ctx):
    return ctx.reps


@pytest.fixture
def seed_student(store):
    def _seed(level, dept, roll, name=None, email=None, **fields):
        student_id = f"student_{roll.lower()}"
        store.set(
            student_path(level, dept, student_id),
            {
                "id": student_id,
                "rollNo": roll,
                "name": name or f"Student {roll}",
                "email": f"{roll.lower()}@campus.edu" if email is None else email,
                "departmentId": dept,
                "year_level": level,
                "currentYear": level,
                **fields,
            },
        )
        return student_id

    return _seed
