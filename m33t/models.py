from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from m33t.database import Base


class TokenCreation(Base):
    """
    One row per minted event token. Written when the mint + pool transaction is built,
    not when it lands on-chain, so a row can outlive a transaction nobody submitted.
    """
    __tablename__ = "token_creations"

    id = Column(Integer, primary_key=True, index=True)
    mint_address = Column(String(44), unique=True, index=True, nullable=False)
    creator_address = Column(String(44), index=True, nullable=False)
    pool_address = Column(String(44), nullable=False)
    position_address = Column(String(44), nullable=False)
    name = Column(String(255), nullable=False)
    symbol = Column(String(20), nullable=False)
    uri = Column(Text)
    event_id = Column(String(255), index=True, nullable=False)
    transaction_signature = Column(String(88), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<TokenCreation {self.symbol} mint={self.mint_address[:8]}... event={self.event_id}>"
