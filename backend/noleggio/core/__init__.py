"""
Core: configurazione, database, eccezioni, calendario e dependency.
"""
