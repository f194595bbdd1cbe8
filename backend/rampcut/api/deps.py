from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from rampcut.models.database import get_db
from rampcut.services.export_service import ExportService

DbSession = Annotated[Session, Depends(get_db)]


def get_export_service(db: DbSession) -> ExportService:
    return ExportService(db)


ExportServiceDep = Annotated[ExportService, Depends(get_export_service)]
