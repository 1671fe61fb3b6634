"""Pytest configuration and shared fixtures for KRSP query tests"""

import datetime
import os
from pathlib import Path
from typing import Iterator, Optional

import pytest
from dotenv import load_dotenv
from sqlalchemy import (
    Column,
    Date,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
)

from krsp import ConnectionConfig, ConnectionHandle, connect

# Load environment variables
load_dotenv()


# ==================== Fixture Schema ====================

metadata = MetaData()

squirrel = Table(
    "squirrel",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("taglft", String(10)),
    Column("tagrt", String(10)),
    Column("colorlft", String(10)),
    Column("colorrt", String(10)),
    Column("locx", String(10)),
    Column("locy", String(10)),
    Column("gr", String(4)),
    Column("sex", String(1)),
    Column("trap_date", Date),
    Column("byear", Integer),
    Column("dam_id", Integer, nullable=True),
)

trapping = Table(
    "trapping",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("squirrel_id", Integer, nullable=False),
    Column("date", Date),
    Column("gr", String(4)),
    Column("LocX", String(10)),
    Column("LocY", String(10)),
    Column("wgt", Float),
    Column("ft", Integer),
)

behaviour = Table(
    "behaviour",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("squirrel_id", Integer),
    Column("date", Date),
    Column("grid", String(4)),
    Column("behaviour", Integer),
    Column("detail", Integer),
    Column("mode", Integer),
)

litter = Table(
    "litter",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("squirrel_id", Integer, nullable=False),
    Column("yr", Integer),
    Column("grid", String(4)),
    Column("br", Integer, nullable=True),
    Column("ln", Integer),
    Column("fieldBDate", Date),
    Column("tagDt", Date),
)

juvenile = Table(
    "juvenile",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("litter_id", Integer, nullable=False),
    Column("squirrel_id", Integer),
    Column("sex", String(1)),
    Column("weight", Integer),
    Column("tagwt", Float, nullable=True),
)

census = Table(
    "census",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("squirrel_id", Integer),
    Column("census_date", Date),
    Column("gr", String(4)),
    Column("reflo", String(10)),
    Column("sq_fate", Integer),
)

d = datetime.date

FIXTURE_ROWS = {
    squirrel: [
        dict(id=1, taglft="M1001", tagrt="M1002", colorlft="R", colorrt="B",
             locx="A.5", locy="10.0", gr="KL", sex="F", trap_date=d(2015, 4, 2),
             byear=2012, dam_id=None),
        dict(id=2, taglft="M2001", tagrt="M2002", colorlft="G", colorrt="Y",
             locx="B.0", locy="3.5", gr="SU", sex="F", trap_date=d(2015, 5, 10),
             byear=2013, dam_id=None),
        dict(id=3, taglft="M3001", tagrt="M3002", colorlft="W", colorrt="W",
             locx="C.1", locy="7.0", gr="KL", sex="F", trap_date=d(2015, 3, 15),
             byear=2011, dam_id=None),
        dict(id=4, taglft="M4001", tagrt="M4002", colorlft="O", colorrt="O",
             locx="D.0", locy="1.0", gr="KL", sex="M", trap_date=d(2014, 6, 1),
             byear=2013, dam_id=1),
    ],
    trapping: [
        dict(id=1, squirrel_id=1, date=d(2015, 4, 2), gr="KL", LocX="A.5",
             LocY="10.0", wgt=250.0, ft=1),
        dict(id=2, squirrel_id=1, date=d(2015, 6, 10), gr="KL", LocX="A.5",
             LocY="10.5", wgt=255.0, ft=2),
        dict(id=3, squirrel_id=1, date=d(2014, 8, 1), gr="KL", LocX="A.0",
             LocY="10.0", wgt=240.0, ft=1),
        dict(id=4, squirrel_id=2, date=d(2015, 5, 10), gr="SU", LocX="B.0",
             LocY="3.5", wgt=230.0, ft=1),
    ],
    behaviour: [
        dict(id=1, squirrel_id=1, date=d(2015, 6, 1), grid="KL", behaviour=1,
             detail=0, mode=1),
        dict(id=2, squirrel_id=1, date=d(2015, 6, 2), grid="KL", behaviour=1,
             detail=0, mode=1),
        dict(id=3, squirrel_id=3, date=d(2015, 6, 2), grid="KL", behaviour=2,
             detail=1, mode=1),
        dict(id=4, squirrel_id=2, date=d(2015, 6, 3), grid="SU", behaviour=1,
             detail=0, mode=2),
        dict(id=5, squirrel_id=2, date=d(2014, 6, 3), grid="SU", behaviour=1,
             detail=0, mode=2),
    ],
    litter: [
        dict(id=1, squirrel_id=1, yr=2015, grid="KL", br=None, ln=3,
             fieldBDate=d(2015, 4, 20), tagDt=d(2015, 5, 15)),
        dict(id=2, squirrel_id=2, yr=2015, grid="SU", br=1, ln=2,
             fieldBDate=d(2015, 5, 1), tagDt=d(2015, 5, 25)),
        dict(id=3, squirrel_id=3, yr=2015, grid="KL", br=None, ln=4,
             fieldBDate=d(2015, 4, 1), tagDt=d(2015, 4, 28)),
        dict(id=4, squirrel_id=1, yr=2014, grid="KL", br=None, ln=2,
             fieldBDate=d(2014, 4, 25), tagDt=d(2014, 5, 20)),
    ],
    juvenile: [
        dict(id=1, litter_id=1, squirrel_id=10, sex="M", weight=15, tagwt=50.0),
        dict(id=2, litter_id=1, squirrel_id=11, sex="F", weight=14, tagwt=48.5),
        dict(id=3, litter_id=3, squirrel_id=12, sex="F", weight=16, tagwt=None),
        dict(id=4, litter_id=4, squirrel_id=13, sex="M", weight=13, tagwt=45.0),
    ],
    census: [
        dict(id=1, squirrel_id=1, census_date=d(2015, 5, 15), gr="KL",
             reflo="A.5", sq_fate=1),
        dict(id=2, squirrel_id=3, census_date=d(2015, 5, 15), gr="KL",
             reflo="C.1", sq_fate=1),
        dict(id=3, squirrel_id=2, census_date=d(2015, 5, 15), gr="SU",
             reflo="B.0", sq_fate=1),
        dict(id=4, squirrel_id=1, census_date=d(2014, 5, 15), gr="KL",
             reflo="A.5", sq_fate=1),
        dict(id=5, squirrel_id=99, census_date=d(2015, 5, 15), gr="KL",
             reflo="Z.0", sq_fate=4),
    ],
}


def build_fixture_database(path: Path) -> str:
    """Create the KRSP fixture tables in a SQLite file and return its URL"""
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    try:
        with engine.begin() as conn:
            metadata.create_all(conn)
            for table, rows in FIXTURE_ROWS.items():
                conn.execute(table.insert(), rows)
    finally:
        engine.dispose()
    return url


# ==================== Configuration Fixtures ====================


@pytest.fixture(scope="session")
def mysql_database_url() -> Optional[str]:
    """MySQL KRSP test database URL from environment"""
    return os.getenv("KRSP_TEST_DATABASE_URL")


@pytest.fixture
def krsp_db_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite KRSP fixture database"""
    return build_fixture_database(tmp_path / "krsp.db")


@pytest.fixture
def krsp_config(krsp_db_url: str) -> ConnectionConfig:
    """Configuration for the fixture database"""
    return ConnectionConfig(url=krsp_db_url)


# ==================== Connection Fixtures ====================


@pytest.fixture
def handle(krsp_config: ConnectionConfig) -> Iterator[ConnectionHandle]:
    """Open handle on the fixture database with proper cleanup"""
    con = connect(krsp_config)
    try:
        yield con
    finally:
        con.close()


@pytest.fixture
def mysql_handle(mysql_database_url: Optional[str]) -> Iterator[ConnectionHandle]:
    """Handle on a real MySQL KRSP database"""
    if not mysql_database_url:
        pytest.skip("KRSP_TEST_DATABASE_URL not set in environment")
    con = connect(url=mysql_database_url)
    try:
        yield con
    finally:
        con.close()


# ==================== Pytest Configuration ====================


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "sqlite: tests against the SQLite fixture database")
    config.addinivalue_line("markers", "mysql: MySQL-specific tests")
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring a live database"
    )
