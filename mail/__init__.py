"""mail/ -- Outbound transactional email for Gatehouse.

Layer rule: mail/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or auth/.
"""
