"""Database-backed repositories for the planner."""

from .catalog import CatalogRepository, catalog_repository
from .plans import PlanRepository, plan_repository

__all__ = ["CatalogRepository", "PlanRepository", "catalog_repository", "plan_repository"]
