"""Find and delete dependant pods stuck in CrashLoopBackOff, with config loading and a weeder registry."""

__version__ = "0.1.0"