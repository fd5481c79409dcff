"""
Printing subsystem for Ticket Printer.

This package groups the print job orchestration engine:

- models: PrintJob / Attempt and the job lifecycle
- queue: per-target FIFO job queue with mutual exclusion
- strategies: delivery strategies and the ordered registry
- bridge: file-based channel to the background print service
- coordinator: bridge-first execution with strategy fallback
- status: read-only queue and job views
- worker: process-wide engine and public helpers

For convenience, common names are re-exported for easy import.
"""

from .errors import *
from .models import *
from .worker import *
