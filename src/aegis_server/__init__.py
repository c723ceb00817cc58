"""aegis_server: FastAPI REST server for the eligibility pipeline.

Exposes the consumer (sessions, codes), partner (verify) and admin
surfaces of ``aegis_screening`` over HTTP.  Start with ``aegis-server``
or ``uvicorn aegis_server.app:app``.
"""
