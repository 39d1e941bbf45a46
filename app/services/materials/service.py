from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, RepositoryError
from app.models.material import Material


class MaterialService:
    """Read access to the content catalog plus the download counter."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, material_id: str) -> Material | None:
        try:
            return self.db.query(Material).filter(Material.id == material_id).one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError() from e

    def get_or_404(self, material_id: str) -> Material:
        material = self.get(material_id)
        if material is None:
            raise NotFoundError("Material not found")
        return material

    def increment_downloads(self, material_id: str) -> None:
        try:
            self.db.execute(
                update(Material)
                .where(Material.id == material_id)
                .values(downloads=Material.downloads + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError() from e
