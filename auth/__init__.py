"""auth/ -- Authentication core for authkit.

Layer rule: auth/ imports only core/ + stdlib + third-party libraries.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
