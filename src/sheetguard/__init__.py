"""SheetGuard - mutation safety engine for spreadsheet writes."""

__version__ = "0.1.0"
