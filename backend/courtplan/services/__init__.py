"""
Services Layer

- allocation_engine / standings_engine: pure functions over plain values
- allocation_service / standings_service: load snapshots, call the engines, write rows
- division_lifecycle: status cache and guards shared by both

Services take the Session and ids explicitly and raise typed errors;
routes translate those to HTTP status codes.
"""
