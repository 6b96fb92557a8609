"""
Ricrea lo schema del database dei noleggi (auto, noleggi, estensioni, pagamenti).

Uso (con il pacchetto installato: pip install -e .):
    python reset_db.py
"""

import asyncio
import logging

from noleggio.core.database import close_db, create_schema


async def reset():
    print("Connessione al database, ricreazione tabelle noleggi...")
    await create_schema(drop_existing=True)
    await close_db()
    print("Database dei noleggi resettato con successo!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
    asyncio.run(reset())
