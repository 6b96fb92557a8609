"""
Fleet Rental Manager (Gestionale Noleggio) - Backend

Prenotazioni, ciclo di vita e registro pagamenti dei noleggi auto.
"""

__version__ = "1.0.0"
