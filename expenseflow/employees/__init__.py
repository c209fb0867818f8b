"""Employees module — identities, roles and the reporting line."""

from expenseflow.employees.models import Employee

__all__ = ["Employee"]
