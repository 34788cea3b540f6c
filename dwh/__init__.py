"""
CRM/ERP Sales Warehouse

Bronze -> Silver -> Gold refinement of CRM and ERP extracts into a sales
star schema, with quality gates between the layers.
"""

__version__ = "1.0.0"
