"""
API v1 Routes
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from noleggio.api.v1 import rentals

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(rentals.router)

# Esportazione
__all__ = ["api_v1_router"]
