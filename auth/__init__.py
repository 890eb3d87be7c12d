"""auth/ -- Credentials, tokens and the login/renew/logout lifecycle for TokenAuth.

Layer rule: auth/ imports only stdlib + third-party libraries (core/ for type
hints only). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
