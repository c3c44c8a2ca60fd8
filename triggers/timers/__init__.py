"""
Timer Triggers Module.

Blueprint with the engine's scheduled operations:
- assessment_watchdog: stuck job recovery every 5 minutes
- assessment_scheduler: daily scheduled assessments

Usage in function_app.py:
    from triggers.timers import timer_bp
    app.register_functions(timer_bp)

Exports:
    timer_bp: Azure Functions Blueprint with all timer triggers
"""

from .timer_bp import bp as timer_bp

__all__ = ['timer_bp']
