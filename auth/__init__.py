"""
auth/ -- Authentication package for Gatehouse.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and
(for the password reset service) mail/. It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
