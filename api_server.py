"""
api_server.py

Read-only FastAPI backend exposing:
- health check
- EIP-1559 config update history
- the config active at a given L2 block
"""

from typing import Dict, List

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from config import DB_PATH
from db_utils import create_core_tables, get_connection
from query import get_config_for_block, get_config_updates, get_update_count

app = FastAPI(
    title="OP EIP-1559 Config Updates – API",
    version="1.0.0",
    description=(
        "History of EIP-1559 parameter changes on an OP Stack L2 since Holocene.\n\n"
        "Backed by the SQLite database filled by the config update fetcher in `main.py`."
    ),
)


class ConfigUpdate(BaseModel):
    l2_block_number: int
    l2_block_hash: str
    base_fee_max_change_denominator: int
    elasticity_multiplier: int


class ActiveConfig(BaseModel):
    since_block: int
    base_fee_max_change_denominator: int
    elasticity_multiplier: int


@app.on_event("startup")
def _startup() -> None:
    # Ensure tables exist so the API doesn't crash before the fetcher's first run
    conn = get_connection(DB_PATH)
    try:
        create_core_tables(conn)
    finally:
        conn.close()


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/config-updates", response_model=List[ConfigUpdate])
def list_config_updates(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[ConfigUpdate]:
    df = get_config_updates(limit=limit, offset=offset, db_path=DB_PATH)

    return [
        ConfigUpdate(
            l2_block_number=int(row["Block"]),
            l2_block_hash=str(row["Block Hash"]),
            base_fee_max_change_denominator=int(row["Denominator"]),
            elasticity_multiplier=int(row["Elasticity"]),
        )
        for _, row in df.iterrows()
    ]


@app.get("/config-updates/count")
def config_updates_count() -> Dict[str, int]:
    return {"count": get_update_count(db_path=DB_PATH)}


@app.get("/config-updates/at/{block_number}", response_model=ActiveConfig)
def config_at_block(block_number: int) -> ActiveConfig:
    """
    Return the EIP-1559 config active at the given L2 block.
    """
    active = get_config_for_block(block_number, db_path=DB_PATH)
    if active is None:
        raise HTTPException(status_code=404, detail=f"No config is known for block {block_number}")
    return ActiveConfig(**active)
