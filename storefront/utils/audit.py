# storefront/utils/audit.py
from sqlalchemy.orm import Session
from storefront.models.log import Log

def write_log(db: Session, *, action, resource, status="SUCCESS", actor="system", request_id=None, ip=None, meta=None):
    # Joins the caller's transaction: the entry commits or rolls back with the change it describes
    entry = Log(actor=actor, request_id=request_id, action=action, resource=resource, status=status, ip=ip, meta=meta or {})
    db.add(entry)
    return entry
