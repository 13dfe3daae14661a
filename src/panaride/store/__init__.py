from .sql_trip_store import SqlTripStore, init_database
from .trip_store import InMemoryTripStore, TripStore

__all__ = ["InMemoryTripStore", "SqlTripStore", "TripStore", "init_database"]
