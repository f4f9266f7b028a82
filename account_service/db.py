from sqlmodel import Session, SQLModel, create_engine

from .config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)


def init_db(bind=None):
    from .models import Account, SyncJob, Transaction  # noqa
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as s:
        yield s
