"""Backend for mdpresent: markdown slide presentations with locked documents.

Route handlers in server.py stay thin; this package holds:
- document storage under the preset directory
- markdown rendering, HTML/PDF export and live reload
- the file-lock subsystem: password hashing, AES-GCM content encryption,
  the lock metadata store and per-session temporary access

Security note:
The ``sessionId`` cookie is a capability token for temporary access grants.
Never log passwords, derived keys or full session ids.
"""

__version__ = "1.0.0"
