"""Import all models so SQLAlchemy metadata knows about them."""
from textstore.models.base import Base
from textstore.models.file_record import FileRecord

__all__ = ["Base", "FileRecord"]
