"""Reconciliation building blocks shared by the resource handlers."""
