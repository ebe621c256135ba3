"""Administrative console for WhatsApp link instances."""

__version__ = "0.1.0"
