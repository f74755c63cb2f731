import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user_id
from ..db import get_db
from ..models.models import Client
from ..schemas.clients import ClientCreate, ClientOut
from ..services.authorization import Capability, authorize, load_for_user, parse_id


router = APIRouter(prefix="/clients", tags=["clients"])


@router.post("", response_model=ClientOut, status_code=201)
def create_client(req: ClientCreate, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    authorize(db, user_id, req.organization_id, Capability.CREATE_JOBS, label="Organization")
    client = Client(created_by_user_id=user_id, **req.model_dump())
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@router.get("", response_model=List[ClientOut])
def list_clients(
    organization_id: str,
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    org_uuid = parse_id(organization_id, "Organization")
    authorize(db, user_id, org_uuid, label="Organization")
    query = db.query(Client).filter(Client.organization_id == org_uuid)
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                Client.company_name.ilike(like),
                Client.first_name.ilike(like),
                Client.last_name.ilike(like),
                Client.email.ilike(like),
            )
        )
    return query.order_by(Client.created_at.desc()).all()


@router.get("/{client_id}", response_model=ClientOut)
def get_client(client_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    return load_for_user(db, Client, client_id, user_id, label="Client")
