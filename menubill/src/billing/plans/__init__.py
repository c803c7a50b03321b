from .catalog import PlanCatalog

__all__ = ["PlanCatalog"]
