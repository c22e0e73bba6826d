from sqlalchemy import Column, Integer, String, JSON, UniqueConstraint
from llmchat.database import Base


class DocumentDB(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),)

    # Autoincrement key doubles as insertion order within a collection
    seq = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String, nullable=False, index=True)
    doc_id = Column(String, nullable=False)
    data = Column(JSON, nullable=False)
