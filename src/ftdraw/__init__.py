"""ftdraw - group draws, pot draws and brackets for football tournaments."""

__version__ = "0.1.0"
