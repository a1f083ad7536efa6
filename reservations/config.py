import os


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./erc_reservations.db")
    SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "1") == "1"

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    STAFF_ROLES = ("teacher", "admin")
    ROLES = ("student", "teacher", "admin")


config = Config()
