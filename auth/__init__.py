"""auth/ -- Identity resolution, authorization policy and user directory for ServiceDesk.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or cmdb/.
api/ imports from auth/, not the other way around.
"""
