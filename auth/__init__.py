"""auth/ -- Credential handling, token issuance and account storage for usergate.

Layer rule: auth/ imports only stdlib + third-party libraries, except
auth.dependencies, which plugs into FastAPI's Depends() system.
It does NOT import from api/ or core/.
api/ and main.py import from auth/, not the other way around.
"""
