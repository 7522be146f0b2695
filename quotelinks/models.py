from sqlalchemy import BigInteger, Column, Index, String, Text

from quotelinks.database import Base


class QuoteLink(Base):
    __tablename__ = "quote_links"

    id = Column(String(16), primary_key=True)
    quote = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    author = Column(Text, nullable=False)
    original_url = Column(Text, nullable=False)
    ogp_image_url = Column(Text, nullable=False)
    author_avatar_url = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)  # epoch milliseconds

    __table_args__ = (
        Index("idx_created_at", created_at.desc()),
    )
