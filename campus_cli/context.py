from dataclasses import dataclass
from typing import Optional, Type

from sqlalchemy.engine import Engine

from campus_cli.academic_year import AcademicYearClock
from campus_cli.config import Settings
from campus_cli.db.config import get_engine, init_db
from campus_cli.identity import IdentityProvider
from campus_cli.reps.assignments import ClassRepManager
from campus_cli.reps.projections import ProjectionRepairer
from campus_cli.reps.reactivation import ReactivationService
from campus_cli.store import DocumentStore
from campus_cli.utils.email_sender import EmailSender


@dataclass
class CampusContext:
    """Everything a command needs, wired against one engine."""

    settings: Settings
    engine: Engine
    store: DocumentStore
    identity: IdentityProvider
    clock: AcademicYearClock
    reps: ClassRepManager
    reactivation: ReactivationService
    repairer: ProjectionRepairer


def build_context(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    email_sender: Type[EmailSender] = EmailSender,
) -> CampusContext:
    settings = settings or Settings.from_env()
    engine = engine or get_engine(settings.database_url)
    init_db(engine)

    store = DocumentStore(engine, settings.max_batch_operations)
    identity = IdentityProvider(engine, email_sender)
    reps = ClassRepManager(store, identity, settings)
    return CampusContext(
        settings=settings,
        engine=engine,
        store=store,
        identity=identity,
        clock=AcademicYearClock(store, settings),
        reps=reps,
        reactivation=ReactivationService(reps),
        repairer=ProjectionRepairer(store, settings),
    )
