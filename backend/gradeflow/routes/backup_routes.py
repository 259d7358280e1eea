"""JSON backups: downloadable exports, uploads and stored snapshots."""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlmodel import Session

from ..auth import get_current_user
from ..backups import BackupService, parse_backup
from ..config import settings
from ..database import get_session
from ..errors import InvalidRequestError
from ..models import utcnow

router = APIRouter(prefix="/api/backups", tags=["backups"])


@router.get("/export")
def export_backup(user=Depends(get_current_user), db: Session = Depends(get_session)):
    """Download the caller's data as a JSON attachment."""
    data = BackupService(db).export_user_data(user.id)
    filename = f"gradeflow-backup-{utcnow().strftime('%Y%m%d-%H%M%S')}.json"
    return JSONResponse(data, headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.post("/restore/json")
def restore_json(
    backupFile: UploadFile = File(...),
    mergeData: bool = Form(False),
    updateSettings: bool = Form(False),
    user=Depends(get_current_user),
    db: Session = Depends(get_session),
):
    """Restore an uploaded JSON backup, replacing or merging with existing data."""
    raw = backupFile.file.read()
    if not raw:
        raise InvalidRequestError("No backup file provided")
    if len(raw) > settings.MAX_UPLOAD_BYTES:
        raise InvalidRequestError("Backup file is too large")
    payload = parse_backup(raw)
    restored = BackupService(db).restore(user.id, payload, merge=mergeData, update_settings=updateSettings)
    return {"message": "Backup restored successfully", "restored": restored}


@router.post("/create", status_code=201)
def create_backup(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return {"message": "Backup created successfully", "backup": BackupService(db).create_snapshot(user.id)}


@router.get("/list")
def list_backups(user=Depends(get_current_user), db: Session = Depends(get_session)):
    return BackupService(db).list_snapshots(user.id)


@router.post("/restore/{timestamp}")
def restore_backup(timestamp: str, merge: bool = False, user=Depends(get_current_user),
                   db: Session = Depends(get_session)):
    restored = BackupService(db).restore_snapshot(user.id, timestamp, merge=merge)
    return {"message": "Backup restored successfully", "restored": restored}


@router.delete("/{timestamp}")
def delete_backup(timestamp: str, user=Depends(get_current_user), db: Session = Depends(get_session)):
    BackupService(db).delete_snapshot(user.id, timestamp)
    return {"message": "Backup deleted successfully"}
