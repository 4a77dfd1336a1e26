"""Assistant pipeline: budgeting, prompt assembly and orchestration.

Import concrete modules directly (``koda.core.service.assistant`` etc.);
this package re-exports nothing.
"""
