"""
Uploaded files. The pipeline only reads the source PDF's storage path.
"""

from sqlalchemy import String, Text, BigInteger
from sqlalchemy.orm import Mapped, mapped_column

from .base import OrgBase


class File(OrgBase):
    __tablename__ = "files"

    project_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    # Path inside the drawings-pdfs bucket, e.g. "{org_id}/{project_id}/plans.pdf"
    mime_type: Mapped[str] = mapped_column(String, nullable=True, default="application/pdf")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=True)
