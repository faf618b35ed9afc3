"""Sales Desk - sales order drafting on top of Zoho Inventory."""

__version__ = "0.1.0"
