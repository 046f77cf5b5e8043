from realty_crm.users.models import User

__all__ = ["User"]
