from db.database import engine, Base
from db import models  # noqa: F401

def main():
    Base.metadata.create_all(bind=engine)
    print("✅ DB ready: tables created")

if __name__ == "__main__":
    main()
