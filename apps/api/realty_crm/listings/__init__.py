from realty_crm.listings.models import Lead, Property

__all__ = ["Lead", "Property"]
