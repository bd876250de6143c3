from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from m33t import models, schemas
from m33t.errors import DuplicateMintError


def create_token_creation(db: Session, record: schemas.TokenCreationCreate) -> models.TokenCreation:
    """Inserts a ledger row. Raises DuplicateMintError if the mint is already recorded."""
    db_token = models.TokenCreation(**record.model_dump())
    db.add(db_token)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateMintError(f"Token with mint {record.mint_address} already recorded") from e
    db.refresh(db_token)
    return db_token


def get_token_by_mint(db: Session, mint_address: str) -> Optional[models.TokenCreation]:
    return db.query(models.TokenCreation).filter(models.TokenCreation.mint_address == mint_address).first()


def _newest_first(query):
    return query.order_by(models.TokenCreation.created_at.desc(), models.TokenCreation.id.desc())


def get_tokens_by_creator(db: Session, creator_address: str) -> List[models.TokenCreation]:
    query = db.query(models.TokenCreation).filter(models.TokenCreation.creator_address == creator_address)
    return _newest_first(query).all()


def get_tokens_by_event(db: Session, event_id: str) -> List[models.TokenCreation]:
    query = db.query(models.TokenCreation).filter(models.TokenCreation.event_id == event_id)
    return _newest_first(query).all()


def get_all_tokens(db: Session) -> List[models.TokenCreation]:
    return _newest_first(db.query(models.TokenCreation)).all()


def attach_signature(db: Session, mint_address: str, signature: str) -> Optional[models.TokenCreation]:
    """Sets the confirmed transaction signature on a row. Returns None if the mint is unknown."""
    db_token = get_token_by_mint(db, mint_address)
    if db_token is None:
        return None
    db_token.transaction_signature = signature
    db.commit()
    db.refresh(db_token)
    return db_token
