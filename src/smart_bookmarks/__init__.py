"""Smart Bookmarks.

Personal bookmark manager backed by a managed identity and data provider.
Contains the session handshake endpoint, the backend client services and the
bookmark controller used by the command line client.
"""

__version__ = "0.1.0"
