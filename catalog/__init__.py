"""catalog/ -- KEV catalog ingestion and storage.

Layer rule: catalog/ imports from core/ and third-party libraries only.
It does NOT import from api/ or auth/.
"""
