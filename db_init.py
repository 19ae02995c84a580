# db_init.py
from pathlib import Path

from config import Config
from models import Base, make_engine


def main():
    # Ensure the SQLite folder exists for local dev
    uri = Config.SQLALCHEMY_DATABASE_URI
    if uri.startswith("sqlite:///"):
        Path(uri[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    # Ensure exports/ exists for bulk PDFs
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(uri, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    print("✅ Database initialized.")
    print(f"DB: {uri}")
    print(f"Exports dir: {Config.EXPORTS_DIR}")


if __name__ == "__main__":
    main()
