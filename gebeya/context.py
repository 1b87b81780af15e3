from dataclasses import dataclass

from fastapi import Request
from pymongo.database import Database

from .config import Settings
from .mailer import Mailer
from .storage import ImageStorage


@dataclass
class AppContext:
    """Everything a request handler needs, built once at startup."""
    settings: Settings
    db: Database
    storage: ImageStorage
    mailer: Mailer

    @classmethod
    def build(cls, settings: Settings, db: Database) -> "AppContext":
        return cls(
            settings=settings,
            db=db,
            storage=ImageStorage(settings.upload_dir, f"{settings.public_url}/uploads"),
            mailer=Mailer(settings),
        )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(request: Request) -> Database:
    return get_context(request).db


def get_settings(request: Request) -> Settings:
    return get_context(request).settings
