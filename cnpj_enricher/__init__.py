"""Enrich HubSpot company records with CNPJ registry data."""

__version__ = "0.1.0"
