"""auth/ -- Authentication and authorization package for the Tigra auth service.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or resources/.
api/ imports from auth/, not the other way around.
"""
