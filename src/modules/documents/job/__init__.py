from .reminders import start_reminder_job, run_reminder_sweep

__all__ = ['start_reminder_job', 'run_reminder_sweep']
