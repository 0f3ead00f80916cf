"""
Recipes CLI - scaffold-side tooling for recipe cron jobs.

Provides the `recipes` command:
    recipes cron sync      Sync a recipe's cron jobs with the scheduler
    recipes cron status    Show the stored cron job mapping for an owner
    recipes cron list      List scheduler jobs
    recipes config         View or change configuration
"""

__version__ = "0.3.0"
