from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from reservations.config import config

SQLALCHEMY_DATABASE_URL = config.DATABASE_URL

connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Tables that may be row-locked before a conditional write
LOCKABLE_TABLES = ("resources", "equipment", "availability")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def lock_row(db: Session, table: str, row_id: str) -> None:
    """
    Take a row lock on `table.id = row_id` for the rest of the transaction.

    SQLite has no row locks; its first write statement takes the database
    write lock instead, so every conditional write that follows is already
    serialized there.
    """
    if table not in LOCKABLE_TABLES:
        raise ValueError(f"cannot lock rows of {table!r}")
    if db.get_bind().dialect.name == "sqlite":
        return
    db.execute(text(f"SELECT id FROM {table} WHERE id = :id FOR UPDATE"), {"id": row_id})


def init_db(bind=None, seed=None):
    # Import models here to create tables
    from reservations import models
    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    if seed is None:
        seed = config.SEED_DEMO_DATA
    if not seed:
        return

    db: Session = sessionmaker(bind=bind)()
    try:
        # Seed the department's studios and equipment if empty
        if not db.query(models.User).first():
            db.add_all([
                models.User(id="u-student", name="Demo Student", email="student@example.com"),
                models.User(id="u-teacher", name="Demo Teacher", email="teacher@example.com"),
            ])
        if not db.query(models.Resource).first():
            db.add_all([
                models.Resource(id="studio-a", name="Studio A (Main Live Room)", kind="Studio",
                                capacity=10, equipment=["Drum Kit", "Piano", "Amps"]),
                models.Resource(id="studio-b", name="Studio B (Vocal Booth)", kind="Booth",
                                capacity=2, equipment=["Neumann U87", "Pro Tools HD"]),
                models.Resource(id="suite-1", name="Production Suite 1", kind="Room",
                                capacity=3, equipment=["Mac Studio", "Logic Pro", "Ableton"]),
            ])
        if not db.query(models.Equipment).first():
            stock = [
                ("sm58", "Shure SM58", "Microphone", 10),
                ("sm57", "Shure SM57", "Microphone", 8),
                ("focusrite", "Scarlett 2i2", "Interface", 15),
                ("ts-cable", "Instrument Cable (10ft)", "Cable", 50),
                ("strat", "Fender Stratocaster", "Instrument", 3),
            ]
            db.add_all([
                models.Equipment(id=i, name=n, category=c, total_qty=q, available_qty=q)
                for i, n, c, q in stock
            ])
        db.commit()
    finally:
        db.close()
