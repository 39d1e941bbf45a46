"""
Create the payments tables on a fresh database.
Run: python -m scripts.init_db
"""
from app.db.base import Base
from app.db.session import engine
from app.models import download_token, material, payment  # noqa: F401  registers tables


def main() -> None:
    Base.metadata.create_all(bind=engine)
    print("Tables created:", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    main()
