from realty_crm.viewings.models import Viewing, ViewingStatus

__all__ = ["Viewing", "ViewingStatus"]
