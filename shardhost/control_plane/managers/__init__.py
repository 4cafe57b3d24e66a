"""Data access managers for the control plane.

Each module provides async functions that encapsulate CRUD operations
and business logic.  Managers accept ``AsyncSession`` as a parameter
and raise domain exceptions (``LookupError``, ``ValueError``,
``AllocationError``), never HTTP exceptions -- that translation is the
router's responsibility.
"""
