from realty_crm.teams.models import TeamAssignment

__all__ = ["TeamAssignment"]
