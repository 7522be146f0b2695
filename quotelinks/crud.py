import secrets
import string

from sqlalchemy.orm import Session

from quotelinks import models

ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 7

def generate_id(db: Session | None = None, length: int = ID_LENGTH) -> str:
    link_id = "".join(secrets.choice(ALPHABET) for _ in range(length))
    if db is not None:
        while get_link(db, link_id):
            link_id = "".join(secrets.choice(ALPHABET) for _ in range(length))
    return link_id

def insert_link(db: Session, link: models.QuoteLink) -> models.QuoteLink:
    db.add(link)
    db.commit()
    db.refresh(link)
    return link

def get_link(db: Session, link_id: str) -> models.QuoteLink | None:
    return db.query(models.QuoteLink).filter_by(id=link_id).first()

def list_recent_links(db: Session, skip: int = 0, limit: int = 100) -> list[models.QuoteLink]:
    return (
        db.query(models.QuoteLink)
        .order_by(models.QuoteLink.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
