"""auth/ -- Credential hashing, token codec, persistence and the auth service.

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way
around, so the service stays free of any HTTP vocabulary.
"""
